#!/usr/bin/env python3

"""Map resolved declarations to Java classes and JNI native methods."""

import logging
import math
from dataclasses import dataclass

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
    is_unsigned,
)
from ffibind.resolver import wrap
from ffibind.symbols import SymbolTable
from ffibind.targets import MappedDeclaration, Section, camel_case, map_each, raw_identifier, snake_case

logger = logging.getLogger(__name__)

# https://docs.oracle.com/javase/8/docs/technotes/guides/jni/spec/types.html
JNI_DESCRIPTORS = {
    "boolean": "Z",
    "byte": "B",
    "char": "C",
    "short": "S",
    "int": "I",
    "long": "J",
    "float": "F",
    "double": "D",
    "void": "V",
}

# (width, signed) -> Java primitive; unsigned types move to the next wider signed type
SIGNED_INTS = {8: "byte", 16: "short", 32: "int", 64: "long"}
WIDENED_UNSIGNED = {8: "short", 16: "int", 32: "long", 64: "long"}

JAVA_KEYWORDS = {
    "abstract",
    "assert",
    "boolean",
    "break",
    "byte",
    "case",
    "catch",
    "char",
    "class",
    "const",
    "continue",
    "default",
    "do",
    "double",
    "else",
    "enum",
    "extends",
    "false",
    "final",
    "finally",
    "float",
    "for",
    "goto",
    "if",
    "implements",
    "import",
    "instanceof",
    "int",
    "interface",
    "long",
    "native",
    "new",
    "null",
    "package",
    "private",
    "protected",
    "public",
    "return",
    "short",
    "static",
    "strictfp",
    "super",
    "switch",
    "synchronized",
    "this",
    "throw",
    "throws",
    "transient",
    "true",
    "try",
    "void",
    "volatile",
    "while",
    "_",
}

USER_DATA = "user_data"
LENGTH_SUFFIX = "_len"


@dataclass(frozen=True)
class JavaType:
    name: str
    descriptor: str

    @property
    def is_long(self) -> bool:
        return self.name == "long"


LONG = JavaType("long", "J")
VOID = JavaType("void", "V")


def widening_note(type_names) -> list[str]:
    """Class documentation lines describing how unsigned values are carried."""
    if not type_names:
        return []
    names = ", ".join(sorted(type_names))
    return [
        "",
        f"<p>Unsigned native values ({names}) are held in the next wider signed Java type and",
        "masked back to their width when passed to native code. 64-bit unsigned values share",
        "the bits of a Java long: values above Long.MAX_VALUE appear negative.",
    ]


def _describe(claimant: str) -> str:
    if claimant.startswith("module "):
        module = claimant.split(" ", 1)[1]
        return f"the class of module `{module}`"
    return f"`{claimant}`"


class JavaMapper:
    """Java/JNI target mapper. Owns the Java primitive table and the JNI descriptors."""

    target = Target.JAVA

    def __init__(self, symbols: SymbolTable, diagnostics: Diagnostics):
        self.symbols = symbols
        self.diagnostics = diagnostics
        self.config = symbols.config
        self.package = self.config.java.package
        self._widened: set[str] = set()
        self._current_widened: set[str] = set()
        self._current: Declaration | None = None
        # top-level class name -> qualified name, or "module <path>" for module classes
        self._classes: dict[str, str] = {}
        self._members: dict[tuple[str, str, str], str] = {}  # (class, kind, name) -> qualified name
        # claims of the declaration being mapped; kept only if it maps cleanly
        self._pending_classes: dict[str, str] = {}
        self._pending_members: dict[tuple[str, str, str], str] = {}

    # -- naming ---------------------------------------------------------------

    def identifier(self, name: str, decl: Declaration | None = None) -> str:
        name = raw_identifier(name)
        if name not in JAVA_KEYWORDS:
            return name
        if decl is not None:
            self.diagnostics.warning(
                DiagnosticKind.TARGET_MAPPING,
                f"`{name}` in `{decl.qualified_name}` is a Java keyword; renamed to `{name}_`",
                declarations=[decl.qualified_name],
                location=decl.location,
                target=self.target,
            )
        return name + "_"

    def field_name(self, name: str, decl: Declaration) -> str:
        name = raw_identifier(name)
        if name.startswith("_") and name[1:].isdigit():
            return name
        return self.identifier(camel_case(name), decl)

    def module_class(self, module: tuple[str, ...]) -> str:
        if module == ("crate",):
            return self.config.java.class_name
        return "".join(camel_case(part, upper=True) for part in module[1:])

    def descriptor_for_class(self, name: str, outer: str | None = None) -> str:
        path = self.package.replace(".", "/")
        prefix = f"{path}/" if path else ""
        if outer:
            return f"L{prefix}{outer}${name};"
        return f"L{prefix}{name};"

    def class_name(self, decl: Declaration) -> str:
        return camel_case(self.symbols.target_name(decl), upper=True)

    def _claim_class(self, name: str, claimant: str, decl: Declaration) -> None:
        """Reserve a top-level Java class name for a declaration or a module class."""
        existing = self._classes.get(name) or self._pending_classes.get(name)
        if existing is not None and existing != claimant:
            related = [] if existing.startswith("module ") else [existing]
            raise TargetMappingError(
                f"`{decl.qualified_name}` needs the Java class `{name}`, which already belongs to "
                f"{_describe(existing)}",
                related=related,
            )
        self._pending_classes[name] = claimant

    def _claim_module_class(self, decl: Declaration) -> str:
        owner = self.module_class(decl.module)
        self._claim_class(owner, "module " + "::".join(decl.module), decl)
        return owner

    def _claim_member(self, owner: str, kind: str, name: str, decl: Declaration) -> None:
        """Reserve a method, field or nested type name inside a module class."""
        key = (owner, kind, name)
        existing = self._members.get(key) or self._pending_members.get(key)
        if existing is not None and existing != decl.qualified_name:
            raise TargetMappingError(
                f"`{decl.qualified_name}` and `{existing}` both map to the Java {kind} `{owner}.{name}`",
                related=[existing],
            )
        self._pending_members[key] = decl.qualified_name

    # -- types ----------------------------------------------------------------

    def primitive(self, ty: Primitive) -> JavaType:
        if ty.kind == PrimKind.BOOL:
            return JavaType("boolean", "Z")
        if ty.kind == PrimKind.FLOAT:
            return JavaType("float", "F") if ty.width == 32 else JavaType("double", "D")
        if ty.kind == PrimKind.CHAR:
            # Rust char is a 32-bit scalar value; C char is a byte
            return JavaType("int", "I") if ty.width == 32 else JavaType("byte", "B")
        if is_unsigned(ty):
            self._note_widening(ty)
            name = WIDENED_UNSIGNED[ty.width]
        else:
            name = SIGNED_INTS[ty.width]
        return JavaType(name, JNI_DESCRIPTORS[name])

    def _note_widening(self, ty: Primitive) -> None:
        self._current_widened.add(ty.name)
        if ty.name in self._widened:
            return
        self._widened.add(ty.name)
        if ty.width == 64:
            message = (
                f"`{ty.name}` has no unsigned Java counterpart; mapped to `long`, values above "
                "Long.MAX_VALUE wrap to negative numbers"
            )
        else:
            message = (
                f"`{ty.name}` is widened to `{WIDENED_UNSIGNED[ty.width]}`; "
                f"values are zero-extended and masked to {ty.width} bits on the way back"
            )
        decl = self._current
        self.diagnostics.warning(
            DiagnosticKind.UNSIGNED_WIDENING,
            message,
            declarations=[decl.qualified_name] if decl is not None else [],
            location=decl.location if decl is not None else None,
            target=self.target,
        )

    def enum_value_type(self, decl: Declaration) -> JavaType:
        repr_int = decl.repr_int
        tag_type = self.config.enum_layout.tag_type
        if decl.is_data_enum and tag_type != "repr":
            repr_int = tag_type
        if repr_int is None:
            return JavaType("int", "I")
        width = self.config.pointer_width if repr_int in ("isize", "usize") else int(repr_int[1:])
        return self.primitive(Primitive(repr_int, PrimKind.INT, width, repr_int.startswith("i")))

    def custom_type(self, decl: Declaration) -> JavaType | None:
        override = self.symbols.override(decl)
        if override is None or not override.java_type:
            return None
        text = override.java_type
        if text in JNI_DESCRIPTORS:
            return JavaType(text, JNI_DESCRIPTORS[text])
        return JavaType(text, "L" + text.replace(".", "/") + ";")

    def java_type(self, ty: Type, by_value_context: str | None = None) -> JavaType:
        """Java type of `ty`.

        `by_value_context` names the function when the type is a parameter or
        return value; composite values cannot be passed there.
        """
        if isinstance(ty, Primitive):
            return self.primitive(ty)
        if isinstance(ty, (Pointer, FunctionPointer)):
            return LONG
        if isinstance(ty, Unit):
            raise TargetMappingError("the unit type has no Java value representation")
        if isinstance(ty, FixedArray):
            if by_value_context:
                raise TargetMappingError(f"`{by_value_context}` passes a fixed-size array by value")
            element = self.java_type(ty.element)
            return JavaType(element.name + "[]", "[" + element.descriptor)
        if isinstance(ty, DeclRef):
            decl = self.symbols[ty.target]
            custom = self.custom_type(decl)
            if custom is not None:
                return custom
            if decl.kind == DeclKind.TYPE_ALIAS:
                return self.java_type(decl.type, by_value_context)
            if decl.kind == DeclKind.ENUM and not decl.is_data_enum:
                return self.enum_value_type(decl)
            if decl.kind in (DeclKind.STRUCT, DeclKind.UNION, DeclKind.ENUM):
                what = {DeclKind.STRUCT: "struct", DeclKind.UNION: "union"}.get(decl.kind, "data-carrying enum")
                if by_value_context:
                    raise TargetMappingError(
                        f"`{by_value_context}` passes {what} `{decl.name}` by value; "
                        "Java has no value-struct ABI",
                        related=[decl.qualified_name],
                    )
                if decl.kind != DeclKind.STRUCT:
                    raise TargetMappingError(
                        f"{what} `{decl.name}` cannot be embedded in a Java data class",
                        related=[decl.qualified_name],
                    )
                name = self.class_name(decl)
                return JavaType(name, self.descriptor_for_class(name))
            raise TargetMappingError(f"`{decl.name}` cannot be used by value in Java", related=[decl.qualified_name])
        raise TargetMappingError(f"`{ty}` has no Java mapping")

    def map_type(self, ty: Type) -> str:
        return self.java_type(ty).name

    # -- declarations ---------------------------------------------------------

    def map_declarations(self, order: list[Declaration]) -> list[MappedDeclaration]:
        items, rejected = map_each(self, order, self.diagnostics)
        return self._omit_unreachable(items, order, rejected)

    def _omit_unreachable(
        self, items: list[MappedDeclaration], order: list[Declaration], rejected: dict[str, str]
    ) -> list[MappedDeclaration]:
        """Drop data classes whose every referrer was rejected for Java."""
        referrers: dict[str, set[str]] = {}
        for decl in order:
            for name, _ in references(decl):
                if name != decl.qualified_name:
                    referrers.setdefault(name, set()).add(decl.qualified_name)

        changed = True
        while changed:
            changed = False
            for item in items:
                qualified = item.decl.qualified_name
                if item.decl.kind != DeclKind.STRUCT or qualified in rejected:
                    continue
                users = referrers.get(qualified)
                if users and users.issubset(rejected):
                    causes = sorted(users)
                    rejected[qualified] = rejected[causes[0]]
                    self.diagnostics.error(
                        DiagnosticKind.TARGET_MAPPING,
                        f"`{qualified}` is only used by declarations rejected for Java "
                        f"({', '.join(causes)}); omitted: {rejected[causes[0]]}",
                        declarations=[qualified, *causes],
                        location=item.decl.location,
                        target=self.target,
                    )
                    changed = True
        return [item for item in items if item.decl.qualified_name not in rejected]

    def map_declaration(self, decl: Declaration) -> list[MappedDeclaration]:
        self._current = decl
        self._current_widened = set()
        self._pending_classes = {}
        self._pending_members = {}
        if decl.kind == DeclKind.FUNCTION:
            items = self._map_function(decl)
        elif decl.kind == DeclKind.CONST:
            items = [self._map_const(decl)]
        elif self.custom_type(decl) is not None:
            # the user supplies this type
            items = []
        elif decl.kind == DeclKind.STRUCT:
            items = [self._map_struct(decl)]
        elif decl.kind == DeclKind.UNION:
            self.diagnostics.warning(
                DiagnosticKind.TARGET_MAPPING,
                f"union `{decl.qualified_name}` is not mirrored in Java; pass it through pointers only",
                declarations=[decl.qualified_name],
                location=decl.location,
                target=self.target,
            )
            items = []
        elif decl.kind == DeclKind.ENUM:
            items = [self._map_enum(decl)]
        else:
            # aliases are substituted at use sites; opaque types are handles
            items = []
        for item in items:
            item.widened = set(self._current_widened)
        self._classes.update(self._pending_classes)
        self._members.update(self._pending_members)
        return items

    def _map_struct(self, decl: Declaration) -> MappedDeclaration:
        name = self.class_name(decl)
        self._claim_class(name, decl.qualified_name, decl)
        fields = [(self.field_name(m.name, decl), self.java_type(m.type), m) for m in decl.members]

        gen = CodeGen()
        gen.doc_comment(decl.docs + widening_note(self._current_widened))
        with gen.block(f"public final class {name} {{"):
            for field_name, java_type, member in fields:
                if isinstance(member.type, FixedArray):
                    gen.line(f"public static final int {snake_case(field_name).upper()}_LENGTH = {member.type.length};")
            for field_name, java_type, member in fields:
                gen.doc_comment(member.docs)
                gen.line(f"private final {java_type.name} {field_name};")
            gen.blank()
            args = ", ".join(f"{t.name} {n}" for n, t, _ in fields)
            with gen.block(f"public {name}({args}) {{"):
                for field_name, _, _ in fields:
                    gen.line(f"this.{field_name} = {field_name};")
            for field_name, java_type, _ in fields:
                gen.blank()
                getter = "get" + field_name[:1].upper() + field_name[1:]
                with gen.block(f"public {java_type.name} {getter}() {{"):
                    gen.line(f"return {field_name};")
        return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines())

    def _map_enum(self, decl: Declaration) -> MappedDeclaration:
        name = self.class_name(decl)
        if decl.is_data_enum:
            name += "Tag"
        self._claim_class(name, decl.qualified_name, decl)
        value_type = self.enum_value_type(decl)
        literal = {"long": "{}L", "short": "(short) {}", "byte": "(byte) {}"}.get(value_type.name, "{}")

        gen = CodeGen()
        docs = list(decl.docs)
        if decl.is_data_enum:
            docs.append(f"Discriminants of `{decl.name}`; payloads are only reachable from native code.")
        gen.doc_comment(docs + widening_note(self._current_widened))
        with gen.block(f"public enum {name} {{"):
            last = len(decl.variants) - 1
            for i, variant in enumerate(decl.variants):
                value = self._java_int(variant.discriminant, value_type)
                gen.doc_comment(variant.docs)
                literal_value = literal.format(value)
                gen.line(f"{self.identifier(variant.name, decl)}({literal_value}){';' if i == last else ','}")
            gen.blank()
            gen.line(f"private final {value_type.name} value;")
            gen.blank()
            with gen.block(f"{name}({value_type.name} value) {{"):
                gen.line("this.value = value;")
            gen.blank()
            with gen.block(f"public {value_type.name} getValue() {{"):
                gen.line("return value;")
            gen.blank()
            with gen.block(f"public static {name} fromValue({value_type.name} value) {{"):
                with gen.block(f"for ({name} e : {name}.values()) {{"):
                    with gen.block("if (e.value == value) {"):
                        gen.line("return e;")
                gen.line(f'throw new IllegalArgumentException("Invalid value for {name}: " + value);')
        return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines())

    def _java_int(self, value: int, java_type: JavaType) -> int:
        """Wrap a value into the range of the Java type (only u64 values can overflow)."""
        width = {"byte": 8, "short": 16, "int": 32, "long": 64}[java_type.name]
        return wrap(value, width, True)

    def _map_const(self, decl: Declaration) -> MappedDeclaration:
        java_type = self.java_type(decl.type)
        value = decl.value
        if isinstance(value, bool):
            literal = "true" if value else "false"
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise TargetMappingError(f"constant `{decl.qualified_name}` is not a finite number")
            literal = repr(value) + ("f" if java_type.name == "float" else "")
        elif isinstance(value, int):
            literal = str(self._java_int(value, java_type)) + ("L" if java_type.is_long else "")
        else:
            raise TargetMappingError(f"constant `{decl.qualified_name}` has no value")

        name = self.identifier(self.symbols.target_name(decl), decl)
        owner = self._claim_module_class(decl)
        self._claim_member(owner, "field", name, decl)

        gen = CodeGen()
        gen.doc_comment(decl.docs)
        gen.line(f"public static final {java_type.name} {name} = {literal};")
        return MappedDeclaration(decl, name, Section.CONSTANT, gen.to_lines(), owner=owner)

    def _map_function(self, decl: Declaration) -> list[MappedDeclaration]:
        rust_name = self.symbols.target_name(decl)
        method = self.identifier(camel_case(rust_name), decl)
        owner = self._claim_module_class(decl)
        self._claim_member(owner, "method", method, decl)
        params = decl.members
        has_user_data = any(
            p.name == USER_DATA and isinstance(p.type, Pointer) and isinstance(p.type.pointee, Unit)
            for p in params
        )

        items: list[MappedDeclaration] = []
        java_params: list[tuple[str, JavaType]] = []
        skip: set[int] = set()
        for index, param in enumerate(params):
            if index in skip:
                continue
            if param.name == USER_DATA and has_user_data:
                continue
            ty = param.type
            if isinstance(ty, FunctionPointer):
                if not has_user_data:
                    raise TargetMappingError(
                        f"function pointer parameter `{param.name}` of `{decl.qualified_name}` needs a "
                        f"`{USER_DATA}: *mut c_void` parameter to register a Java callback"
                    )
                callback = self._map_callback(decl, param, owner)
                items.append(callback)
                java_params.append(
                    (self.identifier(camel_case(param.name), decl),
                     JavaType(callback.name, self.descriptor_for_class(callback.name, owner)))
                )
                continue
            length = self._length_parameter(params, index)
            if length is not None:
                element = self.java_type(ty.pointee)
                java_params.append(
                    (self.identifier(camel_case(param.name), decl),
                     JavaType(element.name + "[]", "[" + element.descriptor))
                )
                skip.add(length)
                continue
            java_params.append(
                (self.identifier(camel_case(param.name), decl), self.java_type(ty, decl.qualified_name))
            )

        returns = VOID if isinstance(decl.type, Unit) else self.java_type(decl.type, decl.qualified_name)
        signature = "(" + "".join(t.descriptor for _, t in java_params) + ")" + returns.descriptor

        gen = CodeGen()
        docs = list(decl.docs)
        gen.doc_comment(docs)
        gen.line(f"// JNI signature: {signature}")
        args = ", ".join(f"{t.name} {n}" for n, t in java_params)
        gen.line(f"public static native {returns.name} {method}({args});")
        items.append(MappedDeclaration(decl, method, Section.FUNCTION, gen.to_lines(), owner=owner))
        return items

    def _length_parameter(self, params: list[Member], index: int) -> int | None:
        """Index of the length parameter that turns a pointer parameter into a Java array."""
        param = params[index]
        if not isinstance(param.type, Pointer) or not isinstance(param.type.pointee, Primitive):
            return None
        if index + 1 >= len(params):
            return None
        length = params[index + 1]
        if length.name not in (param.name + LENGTH_SUFFIX, "len"):
            return None
        if not (isinstance(length.type, Primitive) and length.type.name in ("usize", "size_t")):
            return None
        return index + 1

    def _map_callback(self, decl: Declaration, param: Member, owner: str) -> MappedDeclaration:
        fn: FunctionPointer = param.type
        name = camel_case(self.symbols.target_name(decl), upper=True) + camel_case(param.name, upper=True)
        if not name.endswith("Callback"):
            name += "Callback"
        self._claim_member(owner, "type", name, decl)
        context = f"{decl.qualified_name}::{param.name}"
        args = []
        for index, (arg_name, arg_type) in enumerate(fn.params):
            # the user_data pointer is handed back to native code, not to Java
            if index == 0 and isinstance(arg_type, Pointer) and isinstance(arg_type.pointee, Unit):
                continue
            java_name = self.identifier(camel_case(arg_name), decl) if arg_name else f"arg{index}"
            args.append(f"{self.java_type(arg_type, context).name} {java_name}")
        returns = "void" if isinstance(fn.returns, Unit) else self.java_type(fn.returns, context).name

        gen = CodeGen()
        with gen.block(f"public interface {name} {{"):
            gen.line(f"{returns} invoke({', '.join(args)});")
        return MappedDeclaration(decl, name, Section.TYPE, gen.to_lines(), owner=owner)
