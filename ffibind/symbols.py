#!/usr/bin/env python3

"""Run-scoped symbol table shared by the resolver, the graph and both mappers."""

import logging
from collections.abc import Iterable, Iterator

from ffibind.config import BindgenConfig, TypeOverride
from ffibind.diagnostics import DiagnosticKind
from ffibind.extractor import ExtractionResult, HiddenType
from ffibind.ir import Declaration, DeclKind

logger = logging.getLogger(__name__)

TYPE_KINDS = frozenset(
    {DeclKind.STRUCT, DeclKind.ENUM, DeclKind.UNION, DeclKind.TYPE_ALIAS, DeclKind.OPAQUE}
)


class FrozenSymbolTableError(RuntimeError):
    pass


class SymbolTable:
    """Index of every declaration of a run.

    Built once from an extraction result; the resolver may add opaque
    declarations and record exclusions, after which `freeze()` makes the
    table read-only for the target pipelines.
    """

    def __init__(self, extraction: ExtractionResult, config: BindgenConfig | None = None):
        self.config = config or BindgenConfig()
        self._declarations: dict[str, Declaration] = dict(extraction.declarations)
        self._hidden: dict[str, HiddenType] = dict(extraction.hidden)
        self._by_simple_name: dict[str, list[str]] = {}
        for qualified in list(self._declarations) + list(self._hidden):
            simple = qualified.rsplit("::", 1)[-1]
            self._by_simple_name.setdefault(simple, []).append(qualified)
        self._exclusions: dict[str, DiagnosticKind] = {}
        self._frozen = False

    # -- access ---------------------------------------------------------------

    def get(self, qualified_name: str) -> Declaration | None:
        return self._declarations.get(qualified_name)

    def __getitem__(self, qualified_name: str) -> Declaration:
        return self._declarations[qualified_name]

    def __contains__(self, qualified_name: str) -> bool:
        return qualified_name in self._declarations

    def __len__(self) -> int:
        return len(self._declarations)

    def __iter__(self) -> Iterator[Declaration]:
        return iter(self.declarations())

    def declarations(self) -> list[Declaration]:
        """All declarations in source order."""
        return sorted(self._declarations.values(), key=lambda d: d.order)

    def hidden(self, qualified_name: str) -> HiddenType | None:
        return self._hidden.get(qualified_name)

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookup ---------------------------------------------------------------

    def _known(self, qualified: str, kinds: Iterable[DeclKind]) -> bool:
        decl = self._declarations.get(qualified)
        if decl is not None:
            return decl.kind in kinds
        return DeclKind.OPAQUE in kinds and qualified in self._hidden

    def lookup(
        self, segments: tuple[str, ...], module: tuple[str, ...], kinds: Iterable[DeclKind] = TYPE_KINDS
    ) -> list[str]:
        """Find the qualified names a path may refer to from inside `module`.

        Tries the owning module, then an explicit crate/self/super path, then
        a unique simple name anywhere in the crate. Returns every candidate so
        the caller can report ambiguity.
        """
        kinds = frozenset(kinds)
        segments = tuple(segments)

        if segments[0] in ("crate", "self", "super"):
            base = module
            rest = segments
            if rest[0] == "crate":
                base, rest = ("crate",), rest[1:]
            elif rest[0] == "self":
                rest = rest[1:]
            while rest and rest[0] == "super":
                base, rest = base[:-1] or ("crate",), rest[1:]
            qualified = "::".join(base + rest)
            return [qualified] if self._known(qualified, kinds) else []

        local = "::".join(module + segments)
        if self._known(local, kinds):
            return [local]
        rooted = "::".join(("crate",) + segments)
        if self._known(rooted, kinds):
            return [rooted]

        candidates = [
            q
            for q in self._by_simple_name.get(segments[-1], [])
            if self._known(q, kinds) and q.split("::")[-len(segments) :] == list(segments)
        ]
        return sorted(candidates)

    # -- mutation during resolution ------------------------------------------

    def _check_mutable(self):
        if self._frozen:
            raise FrozenSymbolTableError("symbol table is frozen after resolution")

    def add_opaque(self, hidden: HiddenType) -> Declaration:
        """Register (once) an opaque declaration for a non-exposed type used through a pointer."""
        existing = self._declarations.get(hidden.qualified_name)
        if existing is not None:
            return existing
        self._check_mutable()
        decl = Declaration(
            name=hidden.name,
            kind=DeclKind.OPAQUE,
            module=hidden.module,
            exposed=False,
            location=hidden.location,
            order=hidden.order,
        )
        self._declarations[decl.qualified_name] = decl
        logger.debug("using opaque declaration for %s", decl.qualified_name)
        return decl

    def exclude(self, qualified_name: str, kind: DiagnosticKind) -> None:
        """Mark a declaration unemittable for every target."""
        self._check_mutable()
        decl = self._declarations.get(qualified_name)
        if decl is not None:
            decl.emittable = False
        self._exclusions.setdefault(qualified_name, kind)

    def exclusion(self, qualified_name: str) -> DiagnosticKind | None:
        return self._exclusions.get(qualified_name)

    def freeze(self) -> None:
        self._frozen = True

    # -- overrides ------------------------------------------------------------

    def override(self, decl: Declaration) -> TypeOverride | None:
        return self.config.override_for(decl.qualified_name, decl.name)

    def is_skipped(self, decl: Declaration) -> bool:
        override = self.override(decl)
        return override is not None and override.skip

    def target_name(self, decl: Declaration) -> str:
        """Identifier used for a declaration in generated code."""
        override = self.override(decl)
        if override is not None and override.rename:
            return override.rename
        return decl.name
