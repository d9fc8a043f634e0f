"""
Line-oriented text builder shared by the C and Java renderers.
"""


class CodeGen:
    """Accumulates lines with block indentation"""

    def __init__(self, indent: str = "    "):
        self._lines: list[str] = []
        self._indent = 0
        self._indent_str = indent

    def line(self, text: str = ""):
        if text:
            self._lines.append(self._indent_str * self._indent + text)
        else:
            self._lines.append("")

    def lines(self, *texts: str):
        for text in texts:
            self.line(text)

    def extend(self, texts: list[str]):
        """Add pre-rendered lines, re-indented to the current level"""
        for text in texts:
            self.line(text)

    def blank(self):
        """Add an empty line unless the previous one already is"""
        if self._lines and self._lines[-1] != "":
            self._lines.append("")

    def indent(self):
        self._indent += 1

    def dedent(self):
        if self._indent > 0:
            self._indent -= 1

    def block(self, header: str, footer: str = "}"):
        """Context manager for a braced block"""
        return _BlockContext(self, header, footer)

    def doc_comment(self, docs: list[str]):
        """Render doc lines as a /** ... */ comment (same syntax in C and Java)"""
        while docs and not docs[0].strip():
            docs = docs[1:]
        if not docs:
            return
        body = [d.replace("*/", "* /") for d in docs]
        if len(body) == 1:
            self.line(f"/** {body[0].strip()} */")
            return
        self.line("/**")
        for text in body:
            self.line(f" * {text}".rstrip())
        self.line(" */")

    def to_lines(self) -> list[str]:
        return list(self._lines)

    def output(self) -> str:
        return "\n".join(self._lines)


class _BlockContext:
    def __init__(self, gen: CodeGen, header: str, footer: str):
        self._gen = gen
        self._header = header
        self._footer = footer

    def __enter__(self):
        self._gen.line(self._header)
        self._gen.indent()
        return self

    def __exit__(self, *args):
        self._gen.dedent()
        self._gen.line(self._footer)
