#!/usr/bin/env python3

"""Diagnostics collected over a binding run, and the fatal errors."""

import logging
import threading
from enum import Enum

from pydantic import BaseModel, Field

from ffibind.ir import SourceLocation

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class DiagnosticKind(str, Enum):
    PARSE = "ParseError"
    UNRESOLVED_TYPE = "UnresolvedTypeError"
    UNSUPPORTED_CONSTRUCT = "UnsupportedConstructError"
    CYCLIC_LAYOUT = "CyclicLayoutError"
    TARGET_MAPPING = "TargetMappingError"
    IO = "IOError"
    UNSIGNED_WIDENING = "UnsignedWidening"


class Target(str, Enum):
    C = "c"
    JAVA = "java"


class Diagnostic(BaseModel):
    severity: Severity
    kind: DiagnosticKind
    message: str
    declarations: list[str] = Field(default_factory=list)
    location: str | None = None
    target: Target | None = None  # None applies to every target

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def applies_to(self, target: Target) -> bool:
        return self.target is None or self.target == target

    def __str__(self) -> str:
        prefix = f"{self.location}: " if self.location else ""
        scope = f" [{self.target.value}]" if self.target else ""
        return f"{prefix}{self.severity.value}{scope}: {self.kind.value}: {self.message}"


class BindgenError(Exception):
    """Base for the fatal conditions of a run."""

    kind: DiagnosticKind

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(severity=Severity.ERROR, kind=self.kind, message=str(self))


class ParseError(BindgenError):
    """Raised when a source file cannot be parsed; aborts the whole run."""

    kind = DiagnosticKind.PARSE

    def __init__(self, message: str, location: SourceLocation | None = None):
        super().__init__(message)
        self.location = location

    def to_diagnostic(self) -> Diagnostic:
        diag = super().to_diagnostic()
        diag.location = str(self.location) if self.location else None
        return diag


class OutputWriteError(BindgenError):
    """Raised when an output artifact cannot be written."""

    kind = DiagnosticKind.IO

    def __init__(self, message: str, path=None, target: Target | None = None):
        super().__init__(message)
        self.path = path
        self.target = target

    def to_diagnostic(self) -> Diagnostic:
        diag = super().to_diagnostic()
        diag.location = str(self.path) if self.path else None
        diag.target = self.target
        return diag


class TargetMappingError(Exception):
    """Raised by a target mapper when a declaration has no mapping for that target."""

    def __init__(self, message: str, related: list[str] | None = None):
        super().__init__(message)
        self.related = related or []


class Diagnostics:
    """Accumulates diagnostics; safe to share between the two target pipelines."""

    def __init__(self):
        self._items: list[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        with self._lock:
            self._items.append(diagnostic)
        logger.debug("recorded %s", diagnostic)
        return diagnostic

    def error(
        self,
        kind: DiagnosticKind,
        message: str,
        declarations: list[str] | None = None,
        location: SourceLocation | None = None,
        target: Target | None = None,
    ) -> Diagnostic:
        return self.add(
            Diagnostic(
                severity=Severity.ERROR,
                kind=kind,
                message=message,
                declarations=declarations or [],
                location=str(location) if location else None,
                target=target,
            )
        )

    def warning(
        self,
        kind: DiagnosticKind,
        message: str,
        declarations: list[str] | None = None,
        location: SourceLocation | None = None,
        target: Target | None = None,
    ) -> Diagnostic:
        return self.add(
            Diagnostic(
                severity=Severity.WARNING,
                kind=kind,
                message=message,
                declarations=declarations or [],
                location=str(location) if location else None,
                target=target,
            )
        )

    def extend(self, other: "Diagnostics") -> None:
        for diagnostic in other:
            self.add(diagnostic)

    @property
    def items(self) -> list[Diagnostic]:
        with self._lock:
            return list(self._items)

    def for_target(self, target: Target) -> list[Diagnostic]:
        return [d for d in self.items if d.applies_to(target)]

    def has_errors(self, target: Target | None = None) -> bool:
        if target is None:
            return any(d.is_error for d in self.items)
        return any(d.is_error for d in self.for_target(target))

    def of_kind(self, kind: DiagnosticKind) -> list[Diagnostic]:
        return [d for d in self.items if d.kind == kind]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)
