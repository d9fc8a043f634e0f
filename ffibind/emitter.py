#!/usr/bin/env python3

"""Render mapped declarations into the final C header and Java sources."""

import logging
import re
from pathlib import Path

from ffibind.codegen import CodeGen
from ffibind.config import BindgenConfig
from ffibind.targets import MappedDeclaration, Section
from ffibind.targets.java import widening_note

logger = logging.getLogger(__name__)

GENERATED_BANNER = "Generated by ffibind. Do not edit."


def include_guard(header_name: str) -> str:
    return "bindgen_" + re.sub(r"[^0-9A-Za-z]", "_", header_name)


class CEmitter:
    """Builds the C header: guard, includes, types in order, then prototypes."""

    def __init__(self, config: BindgenConfig):
        self.config = config

    def render(self, items: list[MappedDeclaration]) -> str:
        guard = include_guard(self.config.header_name())
        gen = CodeGen()
        gen.lines(
            f"/* {GENERATED_BANNER} */",
            "",
            f"#ifndef {guard}",
            f"#define {guard}",
            "",
            "#include <stdbool.h>",
            "#include <stddef.h>",
            "#include <stdint.h>",
            "",
            "/* bool is a one-byte value: 0 is false, 1 is true. */",
            "",
            "#ifdef __cplusplus",
            'extern "C" {',
            "#endif",
        )
        custom = self.config.c.custom_code.strip("\n")
        if custom:
            gen.blank()
            for text in custom.splitlines():
                gen.line(text)

        defined: set[str] = set()
        forwarded: set[str] = set()
        declarations = [i for i in items if i.section != Section.FUNCTION]
        for item in declarations:
            for name, forward in item.pointer_refs:
                if name in defined or name in forwarded:
                    continue
                gen.blank()
                gen.line(forward)
                forwarded.add(name)
            if item.name in forwarded and item.forwarded_lines is not None:
                lines = item.forwarded_lines
            else:
                lines = item.lines
            if lines:
                gen.blank()
                gen.extend(lines)
            defined.add(item.name)

        prototypes = [i for i in items if i.section == Section.FUNCTION]
        if prototypes:
            gen.blank()
        for item in prototypes:
            if item.decl.docs:
                gen.blank()
            gen.extend(item.lines)

        gen.blank()
        gen.lines(
            "#ifdef __cplusplus",
            "}",
            "#endif",
            "",
            f"#endif /* {guard} */",
            "",
        )
        return gen.output()


class JavaEmitter:
    """Builds one Java file per top-level type plus one class per Rust module."""

    def __init__(self, config: BindgenConfig):
        self.config = config

    def _header(self, gen: CodeGen):
        gen.line(f"// {GENERATED_BANNER}")
        package = self.config.java.package
        if package:
            gen.line(f"package {package};")
        gen.line()

    def render(self, items: list[MappedDeclaration]) -> dict[Path, str]:
        base = self.config.java.package_path()
        files: dict[Path, str] = {}

        modules: dict[str, list[MappedDeclaration]] = {}
        for item in items:
            if item.owner is None:
                gen = CodeGen()
                self._header(gen)
                gen.extend(item.lines)
                gen.line()
                files[base / f"{item.name}.java"] = gen.output()
            else:
                modules.setdefault(item.owner, []).append(item)

        for owner, members in modules.items():
            files[base / f"{owner}.java"] = self._render_module_class(owner, members)
        logger.debug("rendered %d Java files", len(files))
        return dict(sorted(files.items()))

    def _render_module_class(self, name: str, members: list[MappedDeclaration]) -> str:
        widened = set().union(*(m.widened for m in members))
        module = "::".join(members[0].decl.module)
        gen = CodeGen()
        self._header(gen)
        gen.doc_comment([f"Native bindings for `{module}`.", *widening_note(widened)])
        with gen.block(f"public final class {name} {{"):
            if any(m.section == Section.FUNCTION for m in members):
                with gen.block("static {"):
                    gen.line(f'System.loadLibrary("{self.config.lib_name}");')
                gen.blank()
            with gen.block(f"private {name}() {{"):
                pass
            for section in (Section.CONSTANT, Section.TYPE, Section.FUNCTION):
                for member in members:
                    if member.section == section:
                        gen.blank()
                        gen.extend(member.lines)
        gen.line()
        return gen.output()
