#!/usr/bin/env python3

"""Resolve raw type references of extracted declarations."""

import ast
import logging
import re

from ffibind.diagnostics import DiagnosticKind, Diagnostics
from ffibind.extractor import parse_float_literal, parse_int_literal
from ffibind.ir import (
    Declaration,
    DeclKind,
    DeclRef,
    FixedArray,
    FunctionPointer,
    Pointer,
    PrimKind,
    Primitive,
    RawPath,
    Type,
    Unit,
    Unsupported,
)
from ffibind.symbols import SymbolTable

logger = logging.getLogger(__name__)

# name -> (kind, width, signed); width None means "configured"
RUST_PRIMITIVES = {
    "i8": (PrimKind.INT, 8, True),
    "i16": (PrimKind.INT, 16, True),
    "i32": (PrimKind.INT, 32, True),
    "i64": (PrimKind.INT, 64, True),
    "u8": (PrimKind.INT, 8, False),
    "u16": (PrimKind.INT, 16, False),
    "u32": (PrimKind.INT, 32, False),
    "u64": (PrimKind.INT, 64, False),
    "isize": (PrimKind.INT, None, True),
    "usize": (PrimKind.INT, None, False),
    "f32": (PrimKind.FLOAT, 32, True),
    "f64": (PrimKind.FLOAT, 64, True),
    "bool": (PrimKind.BOOL, 8, False),
    "char": (PrimKind.CHAR, 32, False),
}

# C types re-exported by libc, std::os::raw and core::ffi
C_PRIMITIVES = {
    "c_char": (PrimKind.CHAR, 8, True),
    "c_schar": (PrimKind.INT, 8, True),
    "c_uchar": (PrimKind.INT, 8, False),
    "c_short": (PrimKind.INT, 16, True),
    "c_ushort": (PrimKind.INT, 16, False),
    "c_int": (PrimKind.INT, 32, True),
    "c_uint": (PrimKind.INT, 32, False),
    "c_long": (PrimKind.INT, "long", True),
    "c_ulong": (PrimKind.INT, "long", False),
    "c_longlong": (PrimKind.INT, 64, True),
    "c_ulonglong": (PrimKind.INT, 64, False),
    "c_float": (PrimKind.FLOAT, 32, True),
    "c_double": (PrimKind.FLOAT, 64, True),
    "size_t": (PrimKind.INT, None, False),
    "ssize_t": (PrimKind.INT, None, True),
    "intptr_t": (PrimKind.INT, None, True),
    "uintptr_t": (PrimKind.INT, None, False),
    "int8_t": (PrimKind.INT, 8, True),
    "int16_t": (PrimKind.INT, 16, True),
    "int32_t": (PrimKind.INT, 32, True),
    "int64_t": (PrimKind.INT, 64, True),
    "uint8_t": (PrimKind.INT, 8, False),
    "uint16_t": (PrimKind.INT, 16, False),
    "uint32_t": (PrimKind.INT, 32, False),
    "uint64_t": (PrimKind.INT, 64, False),
}

C_TYPE_PREFIXES = {
    ("libc",),
    ("std", "os", "raw"),
    ("core", "ffi"),
    ("std", "ffi"),
    ("core", "os", "raw"),
}

VOID_NAMES = {"c_void"}


class ResolutionFailure(Exception):
    def __init__(self, kind: DiagnosticKind, message: str):
        super().__init__(message)
        self.kind = kind


def _unsupported(message: str) -> ResolutionFailure:
    return ResolutionFailure(DiagnosticKind.UNSUPPORTED_CONSTRUCT, message)


def _unresolved(message: str) -> ResolutionFailure:
    return ResolutionFailure(DiagnosticKind.UNRESOLVED_TYPE, message)


class TypeResolver:
    """Rewrites RawPath references into primitives and declaration references.

    Declarations are enriched in place; any failure marks the owning
    declaration unemittable through the symbol table and is reported once.
    """

    def __init__(self, symbols: SymbolTable, diagnostics: Diagnostics):
        self.symbols = symbols
        self.diagnostics = diagnostics
        self.config = symbols.config
        self._const_values: dict[str, int | float | bool] = {}
        self._evaluating: set[str] = set()

    def resolve_all(self) -> None:
        for decl in self.symbols.declarations():
            if decl.kind == DeclKind.OPAQUE or self.symbols.is_skipped(decl):
                continue
            self.resolve_declaration(decl)

    def resolve_declaration(self, decl: Declaration) -> None:
        if decl.unsupported_reason:
            self._fail(decl, _unsupported(decl.unsupported_reason))
            return

        failures: list[ResolutionFailure] = []

        def attempt(fn, *args):
            try:
                return fn(*args)
            except ResolutionFailure as e:
                failures.append(e)
                return None

        for member in decl.members:
            resolved = attempt(self.resolve_type, member.type, decl)
            if resolved is not None:
                member.type = resolved
        for variant in decl.variants:
            for field in variant.fields:
                resolved = attempt(self.resolve_type, field.type, decl)
                if resolved is not None:
                    field.type = resolved
        if decl.type is not None and decl.kind != DeclKind.CONST:
            resolved = attempt(self.resolve_type, decl.type, decl)
            if resolved is not None:
                decl.type = resolved
        if decl.kind == DeclKind.CONST:
            attempt(self._resolve_const, decl)

        for failure in failures:
            self._fail(decl, failure)

    def _fail(self, decl: Declaration, failure: ResolutionFailure) -> None:
        self.diagnostics.error(
            failure.kind,
            str(failure),
            declarations=[decl.qualified_name],
            location=decl.location,
        )
        self.symbols.exclude(decl.qualified_name, failure.kind)

    # -- types ----------------------------------------------------------------

    def resolve_type(self, ty: Type, decl: Declaration, indirect: bool = False) -> Type:
        if isinstance(ty, (Primitive, DeclRef, Unit)):
            return ty
        if isinstance(ty, Unsupported):
            raise _unsupported(f"`{ty.text}` in `{decl.qualified_name}`: {ty.reason}")
        if isinstance(ty, Pointer):
            return Pointer(self.resolve_type(ty.pointee, decl, indirect=True), ty.mutable)
        if isinstance(ty, FixedArray):
            element = self.resolve_type(ty.element, decl, indirect)
            length = ty.length
            if length is None:
                length = self._array_length(ty.length_name, decl)
            return FixedArray(element, length, ty.length_name)
        if isinstance(ty, FunctionPointer):
            params = tuple((name, self.resolve_type(p, decl)) for name, p in ty.params)
            return FunctionPointer(params, self.resolve_type(ty.returns, decl))
        if isinstance(ty, RawPath):
            return self._resolve_path(ty, decl, indirect)
        raise _unsupported(f"unexpected type `{ty}` in `{decl.qualified_name}`")

    def primitive(self, segments: tuple[str, ...]) -> Type | None:
        """Canonical primitive for a path, or None if it names no primitive."""
        name = segments[-1]
        prefix = tuple(segments[:-1])
        if name in RUST_PRIMITIVES and prefix in ((), ("std", "primitive"), ("core", "primitive")):
            kind, width, signed = RUST_PRIMITIVES[name]
            return Primitive(name, kind, width or self.config.pointer_width, signed)
        if name in VOID_NAMES and (not prefix or prefix in C_TYPE_PREFIXES):
            return Unit()
        if name in C_PRIMITIVES and (not prefix or prefix in C_TYPE_PREFIXES):
            kind, width, signed = C_PRIMITIVES[name]
            if width == "long":
                width = self.config.c_long_width
            return Primitive(name, kind, width or self.config.pointer_width, signed)
        return None

    def _resolve_path(self, raw: RawPath, decl: Declaration, indirect: bool) -> Type:
        name = raw.name
        if raw.args:
            if name == "Option" and len(raw.args) == 1:
                inner = self.resolve_type(raw.args[0], decl, indirect)
                if isinstance(inner, (Pointer, FunctionPointer)):
                    return inner
                raise _unsupported(
                    f"`{raw}` in `{decl.qualified_name}`: Option is only FFI-safe around "
                    "references, NonNull and function pointers"
                )
            if name == "NonNull" and len(raw.args) == 1:
                return Pointer(self.resolve_type(raw.args[0], decl, indirect=True), mutable=True)
            raise _unsupported(f"generic type `{raw}` in `{decl.qualified_name}` cannot cross the FFI boundary")

        prim = self.primitive(raw.segments)
        if prim is not None:
            return prim
        if raw.segments == ("str",):
            raise _unsupported(f"`str` in `{decl.qualified_name}` is dynamically sized")
        if raw.segments in (("i128",), ("u128",)):
            raise _unsupported(f"`{name}` in `{decl.qualified_name}` has no stable C ABI")

        candidates = self.symbols.lookup(raw.segments, decl.module)
        if not candidates:
            raise _unresolved(f"cannot resolve type `{raw}` used in `{decl.qualified_name}`")
        if len(candidates) > 1:
            raise _unresolved(
                f"type `{raw}` used in `{decl.qualified_name}` is ambiguous: " + ", ".join(candidates)
            )

        qualified = candidates[0]
        if qualified in self.symbols:
            target = self.symbols[qualified]
            if target.kind != DeclKind.OPAQUE or indirect:
                return DeclRef(qualified)

        hidden = self.symbols.hidden(qualified)
        if indirect:
            return DeclRef(self.symbols.add_opaque(hidden).qualified_name)
        reason = "is not public" if hidden.kind == "type" else f"is a {hidden.kind} without #[repr(C)] or pub"
        raise _unsupported(
            f"`{hidden.name}` is used by value in `{decl.qualified_name}` but {reason}; "
            "it has no C-compatible layout"
        )

    def _array_length(self, name: str | None, decl: Declaration) -> int:
        if name is None:
            raise _unsupported(f"array without length in `{decl.qualified_name}`")
        value = self._lookup_const(tuple(name.split("::")), decl)
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise _unsupported(f"array length `{name}` in `{decl.qualified_name}` is not a non-negative integer")
        return value

    # -- constants ------------------------------------------------------------

    def _resolve_const(self, decl: Declaration) -> None:
        ty = decl.type = self.resolve_type(decl.type, decl)
        if not isinstance(ty, Primitive):
            raise _unsupported(f"constant `{decl.qualified_name}` of type `{ty}` has no C or Java equivalent")
        decl.value = self.const_value(decl)

    def const_value(self, decl: Declaration) -> int | float | bool:
        qualified = decl.qualified_name
        if qualified in self._const_values:
            return self._const_values[qualified]
        if qualified in self._evaluating:
            raise _unsupported(f"constant `{qualified}` is defined in terms of itself")
        self._evaluating.add(qualified)
        try:
            # constants may be referenced before their own turn in resolve_all
            decl.type = self.resolve_type(decl.type, decl)
            value = self._evaluate(decl)
        finally:
            self._evaluating.discard(qualified)
        self._const_values[qualified] = value
        return value

    def _lookup_const(self, segments: tuple[str, ...], decl: Declaration) -> int | float | bool:
        candidates = self.symbols.lookup(segments, decl.module, kinds={DeclKind.CONST})
        if len(candidates) != 1:
            what = "ambiguous" if candidates else "unknown"
            raise _unresolved(f"{what} constant `{'::'.join(segments)}` used in `{decl.qualified_name}`")
        return self.const_value(self.symbols[candidates[0]])

    def _evaluate(self, decl: Declaration) -> int | float | bool:
        text = decl.value_text.strip()
        ty = decl.type
        kind = ty.kind if isinstance(ty, Primitive) else None

        if kind == PrimKind.BOOL and text in ("true", "false"):
            return text == "true"
        if kind == PrimKind.FLOAT:
            value = parse_float_literal(text)
            if value is None and parse_int_literal(text) is not None:
                value = float(parse_int_literal(text))
            if value is None:
                raise _unsupported(f"constant `{decl.qualified_name}` is not a float literal: `{text}`")
            return value
        char = re.fullmatch(r"'(.)'", text)
        if char:
            return ord(char.group(1))

        if kind is None:
            raise _unsupported(f"constant `{decl.qualified_name}` of type `{ty}` has no C or Java equivalent")
        value = parse_int_literal(text)
        if value is None:
            value = ConstExpression(text, lambda segments: self._lookup_const(segments, decl)).evaluate()
            if not isinstance(value, int) or isinstance(value, bool):
                raise _unsupported(f"constant `{decl.qualified_name}` does not evaluate to an integer")
        if isinstance(ty, Primitive) and ty.kind in (PrimKind.INT, PrimKind.CHAR):
            value = wrap(value, ty.width, ty.signed)
        return value


def wrap(value: int, width: int, signed: bool) -> int:
    """Reduce an integer modulo 2**width into the range of the given type."""
    value &= (1 << width) - 1
    if signed and value >= 1 << (width - 1):
        value -= 1 << width
    return value


_CAST = re.compile(r"\s+as\s+[\w:]+")
_NUMBER = re.compile(
    r"\b(0x[0-9a-fA-F_]+|0o[0-7_]+|0b[01_]+|\d[\d_]*)"
    r"(?:u8|u16|u32|u64|usize|i8|i16|i32|i64|isize)?\b"
)
_PATH = re.compile(r"\b[A-Za-z_]\w*(?:::[A-Za-z_]\w*)*")


class ConstExpression:
    """Integer constant expression evaluated with Rust semantics.

    Supports literals, references to other constants, `as` casts (ignored,
    the result is wrapped to the constant's type), unary `-`/`!` and the
    arithmetic, shift and bitwise operators.
    """

    def __init__(self, text: str, lookup):
        self.text = text
        self.lookup = lookup
        self.names: dict[str, tuple[str, ...]] = {}

    def _prepare(self) -> str:
        expr = _CAST.sub("", self.text)
        expr = _NUMBER.sub(lambda m: str(parse_int_literal(m.group(1))), expr)

        def name(m: re.Match) -> str:
            placeholder = f"__const_{len(self.names)}"
            self.names[placeholder] = tuple(m.group(0).split("::"))
            return placeholder

        expr = _PATH.sub(name, expr)
        # Rust's bitwise not is `!`
        return re.sub(r"!(?!=)", "~", expr)

    def evaluate(self) -> int:
        try:
            tree = ast.parse(self._prepare(), mode="eval")
        except SyntaxError:
            raise _unsupported(f"unsupported constant expression `{self.text}`") from None
        return self._eval(tree.body)

    def _eval(self, node: ast.AST) -> int:
        if isinstance(node, ast.Constant) and isinstance(node.value, int):
            return node.value
        if isinstance(node, ast.Name) and node.id in self.names:
            value = self.lookup(self.names[node.id])
            if isinstance(value, bool) or not isinstance(value, int):
                raise _unsupported(f"`{'::'.join(self.names[node.id])}` is not an integer constant")
            return value
        if isinstance(node, ast.UnaryOp):
            operand = self._eval(node.operand)
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return operand
            if isinstance(node.op, ast.Invert):
                return ~operand
        if isinstance(node, ast.BinOp):
            left, right = self._eval(node.left), self._eval(node.right)
            op = node.op
            if isinstance(op, ast.Add):
                return left + right
            if isinstance(op, ast.Sub):
                return left - right
            if isinstance(op, ast.Mult):
                return left * right
            if isinstance(op, (ast.Div, ast.Mod)):
                if right == 0:
                    raise _unsupported(f"division by zero in `{self.text}`")
                # Rust truncates toward zero
                quotient = abs(left) // abs(right)
                if (left < 0) != (right < 0):
                    quotient = -quotient
                return quotient if isinstance(op, ast.Div) else left - quotient * right
            if isinstance(op, (ast.LShift, ast.RShift)) and not 0 <= right < 128:
                raise _unsupported(f"shift amount {right} out of range in `{self.text}`")
            if isinstance(op, ast.LShift):
                return left << right
            if isinstance(op, ast.RShift):
                return left >> right
            if isinstance(op, ast.BitOr):
                return left | right
            if isinstance(op, ast.BitAnd):
                return left & right
            if isinstance(op, ast.BitXor):
                return left ^ right
        raise _unsupported(f"unsupported constant expression `{self.text}`")


def resolve(symbols: SymbolTable, diagnostics: Diagnostics) -> None:
    TypeResolver(symbols, diagnostics).resolve_all()
