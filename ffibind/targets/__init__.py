"""Target mappers: one per output language, sharing the `TargetMapper` protocol."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from ffibind.diagnostics import DiagnosticKind, Diagnostics, Target, TargetMappingError
from ffibind.graph import references
from ffibind.ir import Declaration


class Section(str, Enum):
    TYPE = "type"
    CONSTANT = "constant"
    FUNCTION = "function"


@dataclass
class MappedDeclaration:
    """A declaration rendered for one target, ready for the emitter."""

    decl: Declaration
    name: str
    section: Section
    lines: list[str]

    # C: how to forward-declare this item, and its body once it was
    forward: str | None = None
    forwarded_lines: list[str] | None = None
    # C: (name, forward declaration) of items reached through pointers
    pointer_refs: list[tuple[str, str]] = field(default_factory=list)

    # Java: enclosing class for members; None for top-level types
    owner: str | None = None
    # Java: unsigned types widened inside this item
    widened: set[str] = field(default_factory=set)


class TargetMapper(Protocol):
    """Maps resolved declarations to one target language.

    Each implementation owns its own primitive and composite tables.
    `map_declaration` raises `TargetMappingError` for shapes the target
    cannot express; `map_declarations` records those as target-scoped
    diagnostics and carries on.
    """

    target: Target

    def map_type(self, ty) -> str: ...

    def map_declaration(self, decl: Declaration) -> list[MappedDeclaration]: ...

    def map_declarations(self, order: list[Declaration]) -> list[MappedDeclaration]: ...


def map_each(
    mapper: TargetMapper, order: list[Declaration], diagnostics: Diagnostics
) -> tuple[list[MappedDeclaration], dict[str, str]]:
    """Map declarations in order; returns the items and the rejected names with reasons."""
    items: list[MappedDeclaration] = []
    rejected: dict[str, str] = {}
    for decl in order:
        try:
            for name, _ in references(decl):
                if name in rejected:
                    raise TargetMappingError(
                        f"`{decl.qualified_name}` depends on `{name}`, which has no "
                        f"{mapper.target.value} mapping",
                        related=[name],
                    )
            items.extend(mapper.map_declaration(decl))
        except TargetMappingError as e:
            rejected[decl.qualified_name] = str(e)
            diagnostics.error(
                DiagnosticKind.TARGET_MAPPING,
                str(e),
                declarations=[decl.qualified_name, *e.related],
                location=decl.location,
                target=mapper.target,
            )
    return items, rejected


def raw_identifier(name: str) -> str:
    return name[2:] if name.startswith("r#") else name


def snake_case(name: str) -> str:
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


def camel_case(name: str, upper: bool = False) -> str:
    parts = [p for p in raw_identifier(name).split("_") if p]
    if not parts:
        return name
    head = parts[0] if not upper else parts[0][:1].upper() + parts[0][1:]
    if not upper and head.isupper():
        head = head.lower()
    return head + "".join(p[:1].upper() + p[1:] for p in parts[1:])
