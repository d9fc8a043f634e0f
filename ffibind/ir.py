#!/usr/bin/env python3

"""Intermediate representation of FFI-exposed Rust declarations."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DeclKind(str, Enum):
    FUNCTION = "function"
    STRUCT = "struct"
    ENUM = "enum"
    TYPE_ALIAS = "type_alias"
    CONST = "const"
    UNION = "union"
    OPAQUE = "opaque"


class PrimKind(str, Enum):
    INT = "int"
    BOOL = "bool"
    CHAR = "char"
    FLOAT = "float"


@dataclass(frozen=True)
class SourceLocation:
    file: Path | None
    line: int
    column: int = 1

    def __str__(self) -> str:
        name = str(self.file) if self.file else "<memory>"
        return f"{name}:{self.line}:{self.column}"


# -- Types -------------------------------------------------------------------


class Type:
    """Base of the type union. Concrete variants are frozen dataclasses."""


@dataclass(frozen=True)
class Primitive(Type):
    name: str  # source spelling, e.g. "u32" or "c_int"
    kind: PrimKind
    width: int
    signed: bool = False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Unit(Type):
    def __str__(self) -> str:
        return "()"


@dataclass(frozen=True)
class Pointer(Type):
    pointee: Type
    mutable: bool = False

    def __str__(self) -> str:
        return f"*{'mut' if self.mutable else 'const'} {self.pointee}"


@dataclass(frozen=True)
class FixedArray(Type):
    element: Type
    length: int | None
    length_name: str | None = None  # constant used as the length, if any

    def __str__(self) -> str:
        return f"[{self.element}; {self.length_name or self.length}]"


@dataclass(frozen=True)
class FunctionPointer(Type):
    params: tuple[tuple[str | None, Type], ...]
    returns: Type

    def __str__(self) -> str:
        args = ", ".join(str(t) for _, t in self.params)
        return f'extern "C" fn({args}) -> {self.returns}'


@dataclass(frozen=True)
class DeclRef(Type):
    """Reference to another declaration by qualified name."""

    target: str

    def __str__(self) -> str:
        return self.target


@dataclass(frozen=True)
class RawPath(Type):
    """Unresolved name as written in source."""

    segments: tuple[str, ...]
    args: tuple[Type, ...] = ()
    location: SourceLocation | None = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        text = "::".join(self.segments)
        if self.args:
            text += "<" + ", ".join(str(a) for a in self.args) + ">"
        return text


@dataclass(frozen=True)
class Unsupported(Type):
    """Syntactic form that never maps to C or Java."""

    text: str
    reason: str

    def __str__(self) -> str:
        return self.text


def walk_type(ty: Type) -> Iterator[tuple[Type, bool]]:
    """Yield every nested type with a flag telling whether it sits behind a pointer."""

    def visit(t: Type, indirect: bool):
        yield t, indirect
        if isinstance(t, Pointer):
            yield from visit(t.pointee, True)
        elif isinstance(t, FixedArray):
            yield from visit(t.element, indirect)
        elif isinstance(t, FunctionPointer):
            for _, p in t.params:
                yield from visit(p, True)
            yield from visit(t.returns, True)
        elif isinstance(t, RawPath):
            for a in t.args:
                yield from visit(a, indirect)

    yield from visit(ty, False)


def is_unsigned(ty: Type) -> bool:
    return isinstance(ty, Primitive) and ty.kind == PrimKind.INT and not ty.signed


# -- Declarations -------------------------------------------------------------


@dataclass
class Member:
    """Struct field or function parameter."""

    name: str
    type: Type
    docs: list[str] = field(default_factory=list)
    location: SourceLocation | None = None


@dataclass
class Variant:
    name: str
    fields: list[Member] = field(default_factory=list)
    discriminant: int = 0
    explicit: bool = False
    style: str = "unit"  # 'unit' | 'tuple' | 'struct'
    docs: list[str] = field(default_factory=list)

    @property
    def has_payload(self) -> bool:
        return self.style != "unit"


@dataclass
class Declaration:
    name: str
    kind: DeclKind
    module: tuple[str, ...] = ("crate",)
    exposed: bool = True
    location: SourceLocation | None = None
    docs: list[str] = field(default_factory=list)
    order: int = 0

    # Struct/Union fields, Function parameters
    members: list[Member] = field(default_factory=list)
    # Enum variants
    variants: list[Variant] = field(default_factory=list)
    # Function return, alias target, const type
    type: Type | None = None
    # Const value
    value: int | float | bool | None = None
    value_text: str = ""

    repr: tuple[str, ...] = ()
    unsupported_reason: str | None = None
    emittable: bool = True

    @property
    def qualified_name(self) -> str:
        return "::".join(self.module + (self.name,))

    @property
    def is_data_enum(self) -> bool:
        return self.kind == DeclKind.ENUM and any(v.has_payload for v in self.variants)

    @property
    def repr_int(self) -> str | None:
        """Primitive integer named by the repr attribute, if any."""
        for item in self.repr:
            if item in INT_REPRS:
                return item
        return None

    def member_types(self) -> Iterator[Type]:
        for m in self.members:
            yield m.type
        for v in self.variants:
            for f in v.fields:
                yield f.type
        if self.type is not None:
            yield self.type

    def __hash__(self):
        return hash(self.qualified_name)

    def __eq__(self, other):
        return isinstance(other, Declaration) and self.qualified_name == other.qualified_name


INT_REPRS = {"u8", "u16", "u32", "u64", "usize", "i8", "i16", "i32", "i64", "isize"}


def fits(value: int, width: int, signed: bool) -> bool:
    if signed:
        return -(1 << (width - 1)) <= value < (1 << (width - 1))
    return 0 <= value < (1 << width)
