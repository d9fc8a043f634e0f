#!/usr/bin/env python3

"""Extract FFI-exposed declarations from Rust source using tree-sitter."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import tree_sitter_rust as tsrust
from tree_sitter import Language, Node, Parser

from ffibind.diagnostics import Diagnostic, DiagnosticKind, ParseError, Severity
from ffibind.ir import (
    INT_REPRS,
    Declaration,
    DeclKind,
    FixedArray,
    FunctionPointer,
    Member,
    Pointer,
    RawPath,
    SourceLocation,
    Type,
    Unit,
    Unsupported,
    Variant,
)

logger = logging.getLogger(__name__)

RUST_LANGUAGE = Language(tsrust.language())

# ABIs that follow the platform C calling convention
C_ABIS = {"C", "C-unwind", "cdecl", "stdcall", "fastcall", "system", "system-unwind"}

INT_SUFFIXES = ("u8", "u16", "u32", "u64", "u128", "usize", "i8", "i16", "i32", "i64", "i128", "isize")

_INT_LITERAL = re.compile(
    r"^(?P<sign>-)?\s*(?P<digits>0x[0-9a-fA-F_]+|0o[0-7_]+|0b[01_]+|[0-9][0-9_]*)"
    r"(?P<suffix>" + "|".join(INT_SUFFIXES) + r")?$"
)
_FLOAT_LITERAL = re.compile(
    r"^(?P<sign>-)?\s*(?P<digits>[0-9][0-9_]*(\.[0-9_]*)?([eE][+-]?[0-9_]+)?)(?P<suffix>f32|f64)?$"
)
_ATTRIBUTE = re.compile(r"^#\[\s*(?P<name>[\w:]+)\s*(?:\((?P<args>.*)\)|=\s*(?P<value>.*))?\s*\]$", re.DOTALL)


# Helper to avoid type-checking warnings.
def _node_text(node: Node) -> str:
    assert node.text is not None
    return node.text.decode().strip()


def parse_int_literal(text: str) -> int | None:
    """Parse a Rust integer literal (with sign, radix prefix, underscores and suffix)."""
    match = _INT_LITERAL.match(text.strip())
    if not match:
        return None
    digits = match.group("digits").replace("_", "")
    value = int(digits, 0) if digits[:2] in ("0x", "0o", "0b") else int(digits, 10)
    return -value if match.group("sign") else value


def parse_float_literal(text: str) -> float | None:
    match = _FLOAT_LITERAL.match(text.strip())
    if not match or not any(c in match.group("digits") for c in ".eE") and not match.group("suffix"):
        return None
    value = float(match.group("digits").replace("_", ""))
    return -value if match.group("sign") else value


@dataclass
class SourceFile:
    """One Rust file fed to the extractor. File discovery happens elsewhere."""

    path: Path | None
    module: tuple[str, ...] = ("crate",)
    text: str | None = None

    def read(self) -> bytes:
        if self.text is not None:
            return self.text.encode()
        assert self.path is not None, "SourceFile needs a path or text"
        return self.path.read_bytes()


@dataclass
class HiddenType:
    """A type item that is not FFI-exposed (no pub or no C repr)."""

    name: str
    module: tuple[str, ...]
    kind: str  # 'struct' | 'enum' | 'union' | 'type'
    location: SourceLocation
    order: int

    @property
    def qualified_name(self) -> str:
        return "::".join(self.module + (self.name,))


@dataclass
class ExtractionResult:
    declarations: dict[str, Declaration] = field(default_factory=dict)
    hidden: dict[str, HiddenType] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class Attributes:
    names: set[str] = field(default_factory=set)
    repr: tuple[str, ...] = ()
    export_name: str | None = None

    @property
    def no_mangle(self) -> bool:
        return "no_mangle" in self.names

    def add(self, node: Node) -> None:
        match = _ATTRIBUTE.match(_node_text(node))
        if not match:
            return
        name = match.group("name")
        args = match.group("args")
        if name == "unsafe" and args:
            # #[unsafe(no_mangle)], #[unsafe(export_name = "x")]
            inner = _ATTRIBUTE.match(f"#[{args}]")
            if not inner:
                return
            name, args = inner.group("name"), inner.group("args")
            match = inner
        self.names.add(name)
        if name == "repr" and args:
            self.repr += tuple(a.strip() for a in args.split(",") if a.strip())
        elif name == "export_name" and match.group("value"):
            self.export_name = match.group("value").strip().strip('"')


def doc_comment_text(node: Node) -> str | None:
    """Return the text of an outer doc comment, or None for ordinary comments."""
    text = _node_text(node)
    if node.type == "line_comment":
        if text.startswith("///") and not text.startswith("////"):
            line = text[3:]
            return line[1:] if line.startswith(" ") else line
        return None
    if node.type == "block_comment" and text.startswith("/**") and not text.startswith("/***"):
        body = text[3:-2].strip()
        return "\n".join(line.strip().lstrip("*").strip() for line in body.splitlines())
    return None


def is_public(node: Node) -> bool:
    return any(child.type == "visibility_modifier" for child in node.children)


def has_type_generics(node: Node) -> bool:
    """True if the item declares type or const parameters (lifetimes alone are fine)."""
    params = node.child_by_field_name("type_parameters")
    if params is None:
        return False
    return any(
        child.type not in ("lifetime", "lifetime_parameter", "line_comment", "block_comment")
        for child in params.named_children
    )


def function_abi(node: Node) -> str | None:
    """ABI string of a function item or function type, None if it is not extern."""
    for child in node.children:
        if child.type != "function_modifiers":
            continue
        for modifier in child.children:
            if modifier.type == "extern_modifier":
                for part in modifier.children:
                    if part.type in ("string_literal", "raw_string_literal"):
                        return _node_text(part).strip('"')
                return "C"
    return None


class DeclarationExtractor:
    """Walks Rust syntax trees and collects FFI-exposed declarations."""

    def __init__(self):
        self.parser = Parser(RUST_LANGUAGE)
        self.result = ExtractionResult()
        self._order = 0

    def extract(self, sources: list[SourceFile]) -> ExtractionResult:
        for source in sources:
            self.extract_source(source)
        logger.debug(
            "extracted %d declarations (%d hidden types)",
            len(self.result.declarations),
            len(self.result.hidden),
        )
        return self.result

    def extract_source(self, source: SourceFile) -> None:
        code = source.read()
        tree = self.parser.parse(code)
        self._check_syntax(tree.root_node, source.path)
        self._traverse_items(tree.root_node, source.module, source.path)

    def _check_syntax(self, root: Node, path: Path | None) -> None:
        if not root.has_error:
            return

        def find_error(n: Node) -> Node | None:
            if n.is_error or n.is_missing:
                return n
            for child in n.children:
                if child.has_error or child.is_missing:
                    found = find_error(child)
                    if found:
                        return found
            return None

        bad = find_error(root) or root
        location = self._location(bad, path)
        what = f"missing `{bad.type}`" if bad.is_missing else f"unexpected `{_node_text(bad)[:40]}`"
        raise ParseError(f"malformed Rust source: {what}", location)

    def _location(self, node: Node, path: Path | None) -> SourceLocation:
        return SourceLocation(path, node.start_point[0] + 1, node.start_point[1] + 1)

    def _next_order(self) -> int:
        self._order += 1
        return self._order

    # -- items ----------------------------------------------------------------

    def _traverse_items(self, node: Node, module: tuple[str, ...], path: Path | None):
        """Visit the items of a source file or module body in order."""
        attrs = Attributes()
        docs: list[str] = []
        for child in node.named_children:
            if child.type == "attribute_item":
                attrs.add(child)
                continue
            if child.type in ("line_comment", "block_comment"):
                doc = doc_comment_text(child)
                if doc is not None:
                    docs.extend(doc.split("\n"))
                continue
            if child.type == "inner_attribute_item":
                continue

            if child.type == "function_item":
                self._extract_function(child, attrs, docs, module, path)
            elif child.type == "struct_item":
                self._extract_struct(child, attrs, docs, module, path, DeclKind.STRUCT)
            elif child.type == "union_item":
                self._extract_struct(child, attrs, docs, module, path, DeclKind.UNION)
            elif child.type == "enum_item":
                self._extract_enum(child, attrs, docs, module, path)
            elif child.type == "type_item":
                self._extract_alias(child, docs, module, path)
            elif child.type == "const_item":
                self._extract_const(child, docs, module, path)
            elif child.type == "mod_item":
                body = child.child_by_field_name("body")
                name_node = child.child_by_field_name("name")
                if body is not None and name_node is not None:
                    self._traverse_items(body, module + (_node_text(name_node),), path)

            attrs = Attributes()
            docs = []

    def _add(self, decl: Declaration) -> None:
        key = decl.qualified_name
        existing = self.result.declarations.get(key)
        if existing is not None:
            self.result.diagnostics.append(
                Diagnostic(
                    severity=Severity.WARNING,
                    kind=DiagnosticKind.UNSUPPORTED_CONSTRUCT,
                    message=f"duplicate definition of `{key}` ignored (first defined at {existing.location})",
                    declarations=[key],
                    location=str(decl.location) if decl.location else None,
                )
            )
            return
        self.result.declarations[key] = decl

    def _hide(self, node: Node, kind: str, module: tuple[str, ...], path: Path | None):
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        hidden = HiddenType(
            name=_node_text(name_node),
            module=module,
            kind=kind,
            location=self._location(name_node, path),
            order=self._next_order(),
        )
        self.result.hidden.setdefault(hidden.qualified_name, hidden)

    def _new_decl(self, node: Node, name: str, kind: DeclKind, module, path, docs) -> Declaration:
        name_node = node.child_by_field_name("name") or node
        return Declaration(
            name=name,
            kind=kind,
            module=module,
            location=self._location(name_node, path),
            docs=list(docs),
            order=self._next_order(),
        )

    def _extract_function(self, node: Node, attrs: Attributes, docs, module, path):
        if not (attrs.no_mangle or attrs.export_name):
            return
        abi = function_abi(node)
        if abi is None or abi not in C_ABIS:
            return

        name_node = node.child_by_field_name("name")
        name = attrs.export_name or _node_text(name_node)
        decl = self._new_decl(node, name, DeclKind.FUNCTION, module, path, docs)
        if has_type_generics(node):
            decl.unsupported_reason = "generic functions cannot cross the FFI boundary"

        params = node.child_by_field_name("parameters")
        for index, param in enumerate(p for p in params.named_children if p.type not in _TRIVIA):
            if param.type == "parameter":
                pattern = param.child_by_field_name("pattern")
                ty_node = param.child_by_field_name("type")
                pattern_text = _node_text(pattern)
                if pattern.type == "identifier":
                    param_name = pattern_text
                elif pattern_text == "_":
                    param_name = f"arg{index}"
                else:
                    param_name = f"arg{index}"
                    decl.unsupported_reason = (
                        f"only by-value identifier arguments are supported: `{pattern_text}` in `{name}`"
                    )
                decl.members.append(
                    Member(
                        name=param_name,
                        type=self._parse_type(ty_node, path),
                        location=self._location(param, path),
                    )
                )
            elif param.type == "self_parameter":
                decl.unsupported_reason = "methods taking `self` cannot be exported"
            elif param.type == "variadic_parameter":
                decl.unsupported_reason = "variadic functions are not supported"

        ret = node.child_by_field_name("return_type")
        decl.type = self._parse_type(ret, path) if ret is not None else Unit()
        self._add(decl)

    def _extract_struct(self, node: Node, attrs: Attributes, docs, module, path, kind: DeclKind):
        label = "union" if kind == DeclKind.UNION else "struct"
        if not (is_public(node) and "C" in attrs.repr):
            self._hide(node, label, module, path)
            return

        name = _node_text(node.child_by_field_name("name"))
        decl = self._new_decl(node, name, kind, module, path, docs)
        decl.repr = attrs.repr
        if has_type_generics(node):
            decl.unsupported_reason = f"generic {label}s have no single C layout"

        body = node.child_by_field_name("body")
        if body is None:
            decl.unsupported_reason = f"unit {label}s have no C representation"
        elif body.type == "field_declaration_list":
            decl.members = self._named_fields(body, path)
        elif body.type == "ordered_field_declaration_list":
            decl.members = self._tuple_fields(body, path)
        if body is not None and not decl.members:
            decl.unsupported_reason = f"empty {label}s have no C representation"
        self._add(decl)

    def _named_fields(self, body: Node, path) -> list[Member]:
        fields = []
        docs: list[str] = []
        for child in body.named_children:
            if child.type in ("line_comment", "block_comment"):
                doc = doc_comment_text(child)
                if doc is not None:
                    docs.extend(doc.split("\n"))
            elif child.type == "field_declaration":
                fields.append(
                    Member(
                        name=_node_text(child.child_by_field_name("name")),
                        type=self._parse_type(child.child_by_field_name("type"), path),
                        docs=docs,
                        location=self._location(child, path),
                    )
                )
                docs = []
        return fields

    def _tuple_fields(self, body: Node, path) -> list[Member]:
        return [
            Member(name=f"_{i}", type=self._parse_type(ty, path), location=self._location(ty, path))
            for i, ty in enumerate(body.children_by_field_name("type"))
        ]

    def _extract_enum(self, node: Node, attrs: Attributes, docs, module, path):
        decl_repr = attrs.repr
        int_repr = any(r in INT_REPRS for r in decl_repr)
        if not (is_public(node) and ("C" in decl_repr or int_repr)):
            self._hide(node, "enum", module, path)
            return

        name = _node_text(node.child_by_field_name("name"))
        decl = self._new_decl(node, name, DeclKind.ENUM, module, path, docs)
        decl.repr = decl_repr
        if has_type_generics(node):
            decl.unsupported_reason = "generic enums have no single C layout"

        next_value = 0
        variant_docs: list[str] = []
        body = node.child_by_field_name("body")
        for child in body.named_children if body is not None else []:
            if child.type in ("line_comment", "block_comment"):
                doc = doc_comment_text(child)
                if doc is not None:
                    variant_docs.extend(doc.split("\n"))
                continue
            if child.type != "enum_variant":
                continue

            variant = Variant(name=_node_text(child.child_by_field_name("name")), docs=variant_docs)
            variant_docs = []
            vbody = child.child_by_field_name("body")
            if vbody is not None and vbody.type == "field_declaration_list":
                variant.style = "struct"
                variant.fields = self._named_fields(vbody, path)
            elif vbody is not None and vbody.type == "ordered_field_declaration_list":
                variant.style = "tuple"
                variant.fields = self._tuple_fields(vbody, path)

            value_node = child.child_by_field_name("value")
            if value_node is not None:
                value = parse_int_literal(_node_text(value_node))
                if value is None:
                    decl.unsupported_reason = (
                        f"discriminant `{_node_text(value_node)}` of `{name}::{variant.name}` "
                        "is not an integer literal"
                    )
                    value = next_value
                else:
                    variant.explicit = True
                variant.discriminant = value
            else:
                variant.discriminant = next_value
            next_value = variant.discriminant + 1
            decl.variants.append(variant)

        if not decl.variants:
            decl.unsupported_reason = "enums without variants have no C representation"
        self._add(decl)

    def _extract_alias(self, node: Node, docs, module, path):
        if not is_public(node):
            self._hide(node, "type", module, path)
            return
        name = _node_text(node.child_by_field_name("name"))
        decl = self._new_decl(node, name, DeclKind.TYPE_ALIAS, module, path, docs)
        if has_type_generics(node):
            decl.unsupported_reason = "generic type aliases cannot be translated"
        decl.type = self._parse_type(node.child_by_field_name("type"), path)
        self._add(decl)

    def _extract_const(self, node: Node, docs, module, path):
        if not is_public(node):
            return
        name = _node_text(node.child_by_field_name("name"))
        decl = self._new_decl(node, name, DeclKind.CONST, module, path, docs)
        decl.type = self._parse_type(node.child_by_field_name("type"), path)
        value_node = node.child_by_field_name("value")
        decl.value_text = _node_text(value_node) if value_node is not None else ""
        self._add(decl)

    # -- types ----------------------------------------------------------------

    def _parse_type(self, node: Node | None, path: Path | None) -> Type:
        if node is None:
            return Unit()
        kind = node.type
        text = _node_text(node)

        if kind in ("primitive_type", "type_identifier"):
            return RawPath((text,), location=self._location(node, path))
        if kind == "scoped_type_identifier":
            return RawPath(tuple(s.strip() for s in text.split("::")), location=self._location(node, path))
        if kind == "generic_type":
            base = _node_text(node.child_by_field_name("type"))
            args_node = node.child_by_field_name("type_arguments")
            args = tuple(
                self._parse_type(a, path)
                for a in (args_node.named_children if args_node is not None else [])
                if a.type not in ("lifetime",) + _TRIVIA
            )
            return RawPath(
                tuple(s.strip() for s in base.split("::")), args, location=self._location(node, path)
            )
        if kind in ("pointer_type", "reference_type"):
            mutable = any(c.type == "mutable_specifier" for c in node.children)
            return Pointer(self._parse_type(node.child_by_field_name("type"), path), mutable)
        if kind == "array_type":
            element = self._parse_type(node.child_by_field_name("element"), path)
            length = node.child_by_field_name("length")
            if length is None:
                return Unsupported(text, "slices are dynamically sized")
            length_text = _node_text(length)
            value = parse_int_literal(length_text)
            if value is not None:
                return FixedArray(element, value)
            if re.fullmatch(r"[A-Za-z_][\w:]*", length_text):
                return FixedArray(element, None, length_name=length_text)
            return Unsupported(text, f"array length `{length_text}` is not a literal or constant")
        if kind == "function_type":
            return self._parse_function_type(node, path)
        if kind == "unit_type":
            return Unit()
        if kind == "tuple_type":
            return Unsupported(text, "tuples have no defined C layout")
        if kind in ("never_type", "empty_type") or text == "!":
            return Unsupported(text, "diverging functions cannot return across a C boundary")
        if kind == "dynamic_type":
            return Unsupported(text, "trait objects have no C representation")
        if kind in ("abstract_type", "bounded_type"):
            return Unsupported(text, "`impl Trait` types cannot cross the FFI boundary")
        return Unsupported(text, f"unsupported type syntax ({kind})")

    def _parse_function_type(self, node: Node, path) -> Type:
        text = _node_text(node)
        if node.child_by_field_name("trait") is not None:
            return Unsupported(text, "closure traits cannot cross the FFI boundary")
        abi = function_abi(node)
        if abi is None or abi not in C_ABIS:
            return Unsupported(text, 'function pointers must use the `extern "C"` ABI')

        params = []
        params_node = node.child_by_field_name("parameters")
        for child in params_node.named_children if params_node is not None else []:
            if child.type in ("attribute_item",) + _TRIVIA:
                continue
            if child.type == "parameter":
                pattern = child.child_by_field_name("pattern")
                param_name = _node_text(pattern) if pattern is not None else None
                if param_name == "_":
                    param_name = None
                params.append((param_name, self._parse_type(child.child_by_field_name("type"), path)))
            elif child.type == "variadic_parameter":
                return Unsupported(text, "variadic function pointers are not supported")
            else:
                params.append((None, self._parse_type(child, path)))

        ret = node.child_by_field_name("return_type")
        return FunctionPointer(tuple(params), self._parse_type(ret, path) if ret is not None else Unit())


_TRIVIA = ("line_comment", "block_comment")


def extract(sources: list[SourceFile]) -> ExtractionResult:
    return DeclarationExtractor().extract(sources)


def extract_text(text: str, module: tuple[str, ...] = ("crate",)) -> ExtractionResult:
    """Extract declarations from a single in-memory source."""
    return extract([SourceFile(path=None, module=module, text=text)])
