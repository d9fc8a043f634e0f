#!/usr/bin/env python3

"""Map resolved declarations to C declarations."""

import logging
import math

from ffibind.codegen import CodeGen
from ffibind.diagnostics import DiagnosticKind, Diagnostics, Target, TargetMappingError
from ffibind.graph import references
from ffibind.ir import (
    Declaration,
    DeclKind,
    DeclRef,
    FixedArray,
    FunctionPointer,
    Member,
    Pointer,
    PrimKind,
    Primitive,
    Type,
    Unit,
    fits,
)
from ffibind.symbols import SymbolTable
from ffibind.targets import MappedDeclaration, Section, map_each, raw_identifier, snake_case

logger = logging.getLogger(__name__)

# C spellings of the libc / std::os::raw types, and the Rust types with a fixed C name
C_TYPE_NAMES = {
    "c_char": "char",
    "c_schar": "signed char",
    "c_uchar": "unsigned char",
    "c_short": "short",
    "c_ushort": "unsigned short",
    "c_int": "int",
    "c_uint": "unsigned int",
    "c_long": "long",
    "c_ulong": "unsigned long",
    "c_longlong": "long long",
    "c_ulonglong": "unsigned long long",
    "c_float": "float",
    "c_double": "double",
    "size_t": "size_t",
    "ssize_t": "intptr_t",
    "isize": "intptr_t",
    "usize": "uintptr_t",
    "bool": "bool",
    "char": "uint32_t",
}

C_KEYWORDS = {
    "auto",
    "bool",
    "break",
    "case",
    "char",
    "const",
    "continue",
    "default",
    "do",
    "double",
    "else",
    "enum",
    "extern",
    "false",
    "float",
    "for",
    "goto",
    "if",
    "inline",
    "int",
    "long",
    "register",
    "restrict",
    "return",
    "short",
    "signed",
    "sizeof",
    "static",
    "struct",
    "switch",
    "true",
    "typedef",
    "union",
    "unsigned",
    "void",
    "volatile",
    "while",
    "_Bool",
}

C_INT_MIN = -(1 << 31)
C_INT_MAX = (1 << 31) - 1

INT_TYPES = {
    "u8": (8, False),
    "u16": (16, False),
    "u32": (32, False),
    "u64": (64, False),
    "i8": (8, True),
    "i16": (16, True),
    "i32": (32, True),
    "i64": (64, True),
}


def int_type_name(width: int, signed: bool) -> str:
    return f"{'' if signed else 'u'}int{width}_t"


class CMapper:
    """C target mapper. Owns the C primitive table and declarator rules."""

    target = Target.C

    def __init__(self, symbols: SymbolTable, diagnostics: Diagnostics):
        self.symbols = symbols
        self.diagnostics = diagnostics
        self.config = symbols.config
        self._names: dict[str, str] = {}  # target identifier -> qualified name

    # -- types ----------------------------------------------------------------

    def primitive_name(self, ty: Primitive) -> str:
        if ty.name in C_TYPE_NAMES:
            return C_TYPE_NAMES[ty.name]
        if ty.kind == PrimKind.FLOAT:
            return "float" if ty.width == 32 else "double"
        if ty.kind == PrimKind.BOOL:
            return "bool"
        return int_type_name(ty.width, ty.signed)

    def base_name(self, ty: Type) -> str:
        if isinstance(ty, Primitive):
            return self.primitive_name(ty)
        if isinstance(ty, Unit):
            return "void"
        if isinstance(ty, DeclRef):
            decl = self.symbols[ty.target]
            override = self.symbols.override(decl)
            if override is not None and override.c_type:
                return override.c_type
            return self.symbols.target_name(decl)
        raise TargetMappingError(f"`{ty}` has no C spelling")

    def declare(self, ty: Type, inner: str = "", const: bool = False) -> str:
        """C declarator for `ty` wrapped around `inner` (a name or abstract declarator).

        `const` qualifies the object being declared; it is set for the
        pointee of a `*const` pointer.
        """
        if isinstance(ty, Pointer):
            star = "*const " + inner if const else "*" + inner
            return self.declare(ty.pointee, star.rstrip(), const=not ty.mutable)
        if isinstance(ty, FixedArray):
            if inner.startswith("*"):
                inner = f"({inner})"
            return self.declare(ty.element, f"{inner}[{ty.length}]", const)
        if isinstance(ty, FunctionPointer):
            params = ", ".join(self._fn_pointer_param(name, p) for name, p in ty.params) or "void"
            qualifier = "const " if const else ""
            return self.declare(ty.returns, f"(*{qualifier}{inner})({params})")
        base = self.base_name(ty)
        prefix = "const " if const else ""
        return f"{prefix}{base} {inner}".rstrip()

    def _fn_pointer_param(self, name: str | None, ty: Type) -> str:
        if isinstance(ty, (FixedArray, Unit)):
            raise TargetMappingError(f"function pointer parameter of type `{ty}` cannot be passed by value in C")
        return self.declare(ty, self.identifier(name) if name else "")

    def map_type(self, ty: Type) -> str:
        return self.declare(ty)

    def identifier(self, name: str, decl: Declaration | None = None) -> str:
        name = raw_identifier(name)
        if name not in C_KEYWORDS:
            return name
        if decl is not None:
            self.diagnostics.warning(
                DiagnosticKind.TARGET_MAPPING,
                f"`{name}` in `{decl.qualified_name}` is a C keyword; renamed to `{name}_`",
                declarations=[decl.qualified_name],
                location=decl.location,
                target=self.target,
            )
        return name + "_"

    # -- declarations ---------------------------------------------------------

    def map_declarations(self, order: list[Declaration]) -> list[MappedDeclaration]:
        items, _ = map_each(self, order, self.diagnostics)
        return items

    def map_declaration(self, decl: Declaration) -> list[MappedDeclaration]:
        override = self.symbols.override(decl)
        if override is not None and override.c_type:
            # the user supplies this type
            return []

        name = self.symbols.target_name(decl)
        if decl.kind == DeclKind.FUNCTION:
            item = self._map_function(decl, name)
        elif decl.kind == DeclKind.CONST:
            item = self._map_const(decl, name)
        else:
            item = self._map_type_declaration(decl, name)

        owner = self._names.get(item.name)
        if owner is not None:
            raise TargetMappingError(
                f"`{decl.qualified_name}` and `{owner}` both map to the C identifier `{item.name}`",
                related=[owner],
            )
        self._names[item.name] = decl.qualified_name
        item.pointer_refs = self._pointer_refs(decl)
        return [item]

    def _map_type_declaration(self, decl: Declaration, name: str) -> MappedDeclaration:
        if decl.kind == DeclKind.OPAQUE:
            forward = f"typedef struct {name} {name};"
            return MappedDeclaration(decl, name, Section.TYPE, [forward], forward=forward, forwarded_lines=[])
        if decl.kind in (DeclKind.STRUCT, DeclKind.UNION):
            return self._map_struct(decl, name)
        if decl.kind == DeclKind.ENUM:
            if decl.is_data_enum:
                return self._map_data_enum(decl, name)
            return self._map_plain_enum(decl, name)
        if decl.kind == DeclKind.TYPE_ALIAS:
            gen = CodeGen()
            gen.doc_comment(decl.docs)
            if isinstance(decl.type, Unit):
                raise TargetMappingError(f"alias `{decl.qualified_name}` names the unit type")
            gen.line(f"typedef {self.declare(decl.type, name)};")
            return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines())
        raise TargetMappingError(f"no C mapping for {decl.kind.value} `{decl.qualified_name}`")

    def _field_lines(self, gen: CodeGen, fields: list[Member], decl: Declaration):
        for member in fields:
            if isinstance(member.type, Unit):
                raise TargetMappingError(
                    f"field `{member.name}` of `{decl.qualified_name}` has no size in C"
                )
            gen.doc_comment(member.docs)
            gen.line(f"{self.declare(member.type, self.identifier(member.name, decl))};")

    def _map_struct(self, decl: Declaration, name: str) -> MappedDeclaration:
        keyword = "union" if decl.kind == DeclKind.UNION else "struct"

        def render(typedef: bool) -> list[str]:
            gen = CodeGen()
            gen.doc_comment(decl.docs)
            header = f"typedef {keyword} {name} {{" if typedef else f"{keyword} {name} {{"
            with gen.block(header, f"}} {name};" if typedef else "};"):
                self._field_lines(gen, decl.members, decl)
            return gen.to_lines()

        return MappedDeclaration(
            decl,
            name,
            Section.TYPE,
            render(typedef=True),
            forward=f"typedef {keyword} {name} {name};",
            forwarded_lines=render(typedef=False),
        )

    def _enum_constants(self, gen: CodeGen, decl: Declaration, prefix: str, width: int | None, signed: bool):
        for variant in decl.variants:
            value = variant.discriminant
            if width is not None and not fits(value, width, signed):
                raise TargetMappingError(
                    f"discriminant {value} of `{decl.qualified_name}::{variant.name}` does not fit "
                    f"{int_type_name(width, signed)}"
                )
            if not C_INT_MIN <= value <= C_INT_MAX:
                raise TargetMappingError(
                    f"discriminant {value} of `{decl.qualified_name}::{variant.name}` is outside the range "
                    "of a C enum constant"
                )
            gen.doc_comment(variant.docs)
            gen.line(f"{prefix}_{raw_identifier(variant.name)} = {value},")

    def _tag_int(self, decl: Declaration) -> tuple[int, bool] | None:
        """Integer type of the discriminant, or None for a plain C enum.

        The configured tag type only applies to data-carrying enums; a plain
        enum keeps the size its repr gives it in Rust.
        """
        tag_type = self.config.enum_layout.tag_type
        if decl.is_data_enum and tag_type != "repr":
            return INT_TYPES[tag_type]
        repr_int = decl.repr_int
        if repr_int is None:
            return None
        if repr_int in ("isize", "usize"):
            return self.config.pointer_width, repr_int == "isize"
        return INT_TYPES[repr_int]

    def _render_tag(self, gen: CodeGen, decl: Declaration, tag_name: str, prefix: str):
        tag = self._tag_int(decl)
        if tag is None:
            with gen.block(f"typedef enum {tag_name} {{", f"}} {tag_name};"):
                self._enum_constants(gen, decl, prefix, None, True)
        else:
            width, signed = tag
            with gen.block("enum {", "};"):
                self._enum_constants(gen, decl, prefix, width, signed)
            gen.line(f"typedef {int_type_name(width, signed)} {tag_name};")

    def _map_plain_enum(self, decl: Declaration, name: str) -> MappedDeclaration:
        gen = CodeGen()
        gen.doc_comment(decl.docs)
        self._render_tag(gen, decl, name, name)
        return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines())

    def _map_data_enum(self, decl: Declaration, name: str) -> MappedDeclaration:
        layout = self.config.enum_layout
        tag_name = f"{name}_Tag"
        # repr(C) puts the tag before a union of bodies; a bare primitive repr
        # makes every body start with the tag
        tag_in_bodies = decl.repr_int is not None and "C" not in decl.repr

        gen = CodeGen()
        self._render_tag(gen, decl, tag_name, name)
        payloads = []
        for variant in decl.variants:
            if not variant.has_payload:
                continue
            if not variant.fields:
                raise TargetMappingError(
                    f"variant `{decl.qualified_name}::{variant.name}` has an empty payload, "
                    "which has no C layout"
                )
            body_name = f"{name}_{raw_identifier(variant.name)}_Body"
            gen.blank()
            with gen.block(f"typedef struct {body_name} {{", f"}} {body_name};"):
                if tag_in_bodies:
                    gen.line(f"{tag_name} tag;")
                self._field_lines(gen, variant.fields, decl)
            payloads.append((body_name, self.identifier(snake_case(raw_identifier(variant.name)), decl)))

        gen.blank()
        gen.doc_comment(decl.docs)
        if tag_in_bodies:
            with gen.block(f"typedef union {name} {{", f"}} {name};"):
                gen.line(f"{tag_name} tag;")
                for body_name, member in payloads:
                    gen.line(f"{body_name} {member};")
        else:
            with gen.block(f"typedef struct {name} {{", f"}} {name};"):
                gen.line(f"{tag_name} tag;")
                with gen.block("union {", f"}} {self.identifier(layout.union_field, decl)};"):
                    for body_name, member in payloads:
                        gen.line(f"{body_name} {member};")
        return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines())

    def const_literal(self, decl: Declaration) -> str:
        ty = decl.type
        value = decl.value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float):
            if not math.isfinite(value):
                raise TargetMappingError(f"constant `{decl.qualified_name}` is not a finite number")
            text = repr(value)
            return text + "f" if ty.width == 32 else text
        if not isinstance(value, int):
            raise TargetMappingError(f"constant `{decl.qualified_name}` has no value")
        suffix = ("" if ty.signed else "U") + ("LL" if ty.width == 64 else "")
        if ty.signed and ty.width == 64 and value == -(1 << 63):
            # the literal 9223372036854775808 does not fit a signed long long
            return "(-9223372036854775807LL - 1)"
        if value < 0:
            return f"({value}{suffix})"
        return f"{value}{suffix}"

    def _map_const(self, decl: Declaration, name: str) -> MappedDeclaration:
        gen = CodeGen()
        gen.doc_comment(decl.docs)
        gen.line(f"#define {name} {self.const_literal(decl)}")
        return MappedDeclaration(decl, name, Section.CONSTANT, gen.to_lines())

    def _map_function(self, decl: Declaration, name: str) -> MappedDeclaration:
        params = []
        for member in decl.members:
            if isinstance(member.type, FixedArray):
                raise TargetMappingError(
                    f"parameter `{member.name}` of `{decl.qualified_name}` passes an array by value"
                )
            if isinstance(member.type, Unit):
                raise TargetMappingError(
                    f"parameter `{member.name}` of `{decl.qualified_name}` has the unit type"
                )
            params.append(self.declare(member.type, self.identifier(member.name, decl)))
        if isinstance(decl.type, FixedArray):
            raise TargetMappingError(f"`{decl.qualified_name}` returns an array by value")

        signature = "{}({})".format(name, ", ".join(params) or "void")
        gen = CodeGen()
        gen.doc_comment(decl.docs)
        gen.line(f"{self.declare(decl.type, signature)};")
        return MappedDeclaration(decl, name, Section.FUNCTION, gen.to_lines())

    def _pointer_refs(self, decl: Declaration) -> list[tuple[str, str]]:
        """Forward declarations for structs, unions and opaques reached through pointers."""
        refs = []
        for qualified, indirect in references(decl):
            if not indirect:
                continue
            target = self.symbols.get(qualified)
            if target is None or target.kind not in (DeclKind.STRUCT, DeclKind.UNION, DeclKind.OPAQUE):
                continue
            if self.symbols.is_skipped(target):
                continue
            override = self.symbols.override(target)
            if override is not None and override.c_type:
                continue
            keyword = "union" if target.kind == DeclKind.UNION else "struct"
            ref_name = self.symbols.target_name(target)
            refs.append((ref_name, f"typedef {keyword} {ref_name} {ref_name};"))
        return refs
