#!/usr/bin/env python3

"""Wire the stages together and publish the generated artifacts."""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from ffibind.config import BindgenConfig
from ffibind.diagnostics import Diagnostics, OutputWriteError, Target
from ffibind.emitter import CEmitter, JavaEmitter
from ffibind.extractor import DeclarationExtractor, SourceFile
from ffibind.graph import DependencyGraph
from ffibind.ir import Declaration
from ffibind.resolver import TypeResolver
from ffibind.symbols import SymbolTable
from ffibind.targets.c import CMapper
from ffibind.targets.java import JavaMapper

logger = logging.getLogger(__name__)

SKIPPED_DIRS = {"target", ".git"}


def module_path(path: Path, src_root: Path) -> tuple[str, ...]:
    """Module path of a file laid out the way cargo expects."""
    relative = path.relative_to(src_root).with_suffix("")
    parts = list(relative.parts)
    if parts and parts[-1] == "mod":
        parts.pop()
    elif len(parts) == 1 and parts[0] in ("lib", "main"):
        parts = []
    return ("crate", *parts)


def discover_sources(root: Path) -> list[SourceFile]:
    """Collect the .rs files of a crate (or a single file) with their module paths."""
    root = root.resolve()
    if root.is_file():
        return [SourceFile(path=root)]
    src_root = root / "src" if (root / "src").is_dir() else root
    sources = []
    for path in sorted(src_root.rglob("*.rs")):
        if SKIPPED_DIRS.intersection(path.relative_to(src_root).parts):
            continue
        sources.append(SourceFile(path=path, module=module_path(path, src_root)))
    logger.debug("discovered %d Rust files under %s", len(sources), src_root)
    return sources


@dataclass
class Analysis:
    symbols: SymbolTable
    order: list[Declaration]
    graph: DependencyGraph


def analyze(sources: list[SourceFile], config: BindgenConfig, diagnostics: Diagnostics) -> Analysis:
    """Extraction, resolution and graph ordering; runs once for all targets.

    Raises ParseError on malformed input.
    """
    extraction = DeclarationExtractor().extract(sources)
    for diagnostic in extraction.diagnostics:
        diagnostics.add(diagnostic)

    symbols = SymbolTable(extraction, config)
    TypeResolver(symbols, diagnostics).resolve_all()
    graph = DependencyGraph(symbols, diagnostics).build()
    order = graph.topological_order()
    symbols.freeze()
    logger.info("%d declarations ready for emission", len(order))
    return Analysis(symbols=symbols, order=order, graph=graph)


def render_target(target: Target, analysis: Analysis, diagnostics: Diagnostics) -> dict[Path, str]:
    """Map and render one target. Returns artifact paths relative to the output root."""
    config = analysis.symbols.config
    if target == Target.C:
        items = CMapper(analysis.symbols, diagnostics).map_declarations(analysis.order)
        return {Path(config.header_name()): CEmitter(config).render(items)}
    items = JavaMapper(analysis.symbols, diagnostics).map_declarations(analysis.order)
    files = JavaEmitter(config).render(items)
    return {Path(config.java.source_dir) / path: text for path, text in files.items()}


def publish(files: dict[Path, str], output_dir: Path, target: Target | None = None) -> list[Path]:
    """Write every artifact through a temporary file, then move them all into place.

    Nothing is published if any write or move fails: files already moved are
    taken back out and the versions they replaced are restored.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for relative, text in files.items():
            destination = output_dir / relative
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    dir=destination.parent,
                    prefix=f".{destination.name}.",
                    suffix=".tmp",
                    delete=False,
                    encoding="utf-8",
                ) as f:
                    staged.append((Path(f.name), destination))
                    f.write(text)
            except OSError as e:
                raise OutputWriteError(f"cannot write {destination}: {e}", destination, target) from e

        published: list[tuple[Path, Path | None]] = []  # destination, backup of the file it replaced
        for temp, destination in staged:
            try:
                backup = None
                if destination.exists():
                    backup = destination.with_name(f".{destination.name}.bak")
                    os.replace(destination, backup)
                published.append((destination, backup))
                os.replace(temp, destination)
            except OSError as e:
                _roll_back(published)
                raise OutputWriteError(f"cannot publish {destination}: {e}", destination, target) from e

        for _, backup in published:
            if backup is not None:
                backup.unlink()
        return [destination for destination, _ in published]
    finally:
        for temp, _ in staged:
            if temp.exists():
                temp.unlink()


def _roll_back(published: list[tuple[Path, Path | None]]) -> None:
    for destination, backup in reversed(published):
        try:
            if destination.exists():
                destination.unlink()
            if backup is not None:
                os.replace(backup, destination)
        except OSError as e:
            logger.warning("could not restore %s: %s", destination, e)


@dataclass
class TargetOutput:
    target: Target
    files: dict[Path, str]
    succeeded: bool
    written: list[Path] = field(default_factory=list)
    io_failed: bool = False


@dataclass
class BindgenResult:
    diagnostics: Diagnostics
    outputs: dict[Target, TargetOutput] = field(default_factory=dict)
    order: list[Declaration] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.diagnostics.has_errors()

    @property
    def io_failed(self) -> bool:
        return any(o.io_failed for o in self.outputs.values())


async def run_bindgen(
    sources: list[SourceFile], config: BindgenConfig, output_dir: Path | None = None
) -> BindgenResult:
    """Run a whole binding generation.

    The C and Java pipelines run concurrently over the frozen symbol table.
    A target publishes only when no error applies to it; with no
    `output_dir` nothing is written.
    """
    diagnostics = Diagnostics()
    analysis = analyze(sources, config, diagnostics)
    result = BindgenResult(diagnostics=diagnostics, order=analysis.order)

    targets = list(dict.fromkeys(config.targets))
    # one collector per target keeps the merged report order stable
    collectors = {target: Diagnostics() for target in targets}
    rendered = await asyncio.gather(
        *(asyncio.to_thread(render_target, target, analysis, collectors[target]) for target in targets)
    )
    for target in targets:
        diagnostics.extend(collectors[target])

    for target, files in zip(targets, rendered):
        output = TargetOutput(target=target, files=files, succeeded=not diagnostics.has_errors(target))
        result.outputs[target] = output
        if not output.succeeded:
            logger.info("not writing %s output: errors reported", target.value)
            continue
        if output_dir is None:
            continue
        try:
            output.written = await asyncio.to_thread(publish, files, output_dir, target)
        except OutputWriteError as e:
            diagnostics.add(e.to_diagnostic())
            output.succeeded = False
            output.io_failed = True
    return result


def generate(sources: list[SourceFile], config: BindgenConfig, output_dir: Path | None = None) -> BindgenResult:
    return asyncio.run(run_bindgen(sources, config, output_dir))


def generate_from_text(text: str, config: BindgenConfig | None = None) -> BindgenResult:
    """Convenience for a single in-memory source; nothing is written."""
    return generate([SourceFile(path=None, text=text)], config or BindgenConfig())
