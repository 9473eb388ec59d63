from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from project_fusion.anchors import AnchorAllocator
from project_fusion.file_manipulation import build_tree_lines, now_iso
from project_fusion.sanitizer import apply_aggressive_sanitization, neutralize_protocols

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from project_fusion.config import FusionConfig
    from project_fusion.models import FileRecord

OUTPUT_STRATEGIES: dict[str, type[OutputStrategy]] = {}

_MARKDOWN_SPECIAL = "\\`[]()<>"
_MARKDOWN_ESCAPE_TABLE = str.maketrans(
    {
        **{c: f"\\{c}" for c in _MARKDOWN_SPECIAL},
        # control characters, newlines included, would split a TOC bullet or a heading
        **{chr(code): "\ufffd" for code in (*range(0x20), 0x7F)},
    },
)

_HTML_ESCAPE_TABLE = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#39;",
        "/": "&#x2F;",
        "=": "&#x3D;",
        "(": "&#40;",
        ")": "&#41;",
        "[": "&#91;",
        "]": "&#93;",
        "{": "&#123;",
        "}": "&#125;",
        "$": "&#36;",
        "`": "&#96;",
        "+": "&#43;",
    },
)

_BACKTICK_RUN = re.compile(r"`+")

HTML_SECURITY_META: tuple[str, ...] = (
    "<meta http-equiv=\"Content-Security-Policy\" content=\"default-src 'none'; style-src 'unsafe-inline'\">",
    '<meta http-equiv="X-Frame-Options" content="DENY">',
    '<meta http-equiv="X-Content-Type-Options" content="nosniff">',
    '<meta http-equiv="Referrer-Policy" content="no-referrer">',
    '<meta name="referrer" content="no-referrer">',
)

_HTML_STYLE = """\
body { font-family: sans-serif; margin: 2em; line-height: 1.5; }
pre { background: #f6f8fa; padding: 1em; overflow-x: auto; }
.file-error h2 { color: #b00020; }
nav li.file-error a { color: #b00020; }
"""


def escape_markdown(text: str) -> str:
    """Backslash-escape the characters Markdown treats as link or code syntax.

    Covers ``\\``, `````, ``[``, ``]``, ``(``, ``)``, ``<`` and ``>`` so a file
    name can never open a link, an inline code span or raw HTML. Control
    characters become U+FFFD so a name always stays on one line.
    """
    return text.translate(_MARKDOWN_ESCAPE_TABLE)


def escape_html(text: str) -> str:
    """Escape ``text`` for HTML in a single pass.

    Every character that can open a tag, close an attribute or start a
    script/template context is replaced by an entity. Because the mapping is
    applied once, already-escaped input is escaped again (``&lt;`` becomes
    ``&amp;lt;``) rather than collapsed.

    Args:
        text (str): raw text, typically a file name or file content

    Returns:
        str: the escaped text
    """
    return text.translate(_HTML_ESCAPE_TABLE)


def code_fence_for(content: str) -> str:
    """Get a backtick fence longer than any backtick run inside ``content``."""
    longest = max((len(m.group(0)) for m in _BACKTICK_RUN.finditer(content)), default=0)
    return "`" * max(3, longest + 1)


@dataclass(frozen=True)
class OutputContext:
    """Everything a strategy needs to render one artifact.

    Attributes:
        project_title: Title shown in artifact headers.
        root: The scanned root directory.
        files_to_process: Records to render, in output order.
        config: The run configuration.
        generated_at: Timestamp shown in headers.
    """

    project_title: str
    root: Path
    files_to_process: Sequence[FileRecord]
    config: FusionConfig
    generated_at: str = field(default_factory=now_iso)


def register_output_strategy(name: str) -> Callable[[type[OutputStrategy]], type[OutputStrategy]]:
    """Decorator to register an output strategy class under a format name.

    Args:
        name (str): The format name (e.g. "markdown") the class renders. It must
            match the class ``name`` attribute.

    Returns:
        Callable[[type[OutputStrategy]], type[OutputStrategy]]: A decorator that stores the class in
        ``OUTPUT_STRATEGIES`` and returns it unchanged.
    """

    def decorator(cls: type[OutputStrategy]) -> type[OutputStrategy]:
        if cls.name != name:
            msg = f"strategy class {cls.__name__} declares name {cls.name!r}, registered as {name!r}"
            raise ValueError(msg)
        OUTPUT_STRATEGIES[name] = cls
        return cls

    return decorator


class OutputStrategy:
    """Base class of the per-format renderers.

    A strategy renders in two passes over the same records: the header pass
    (title, table of contents) and the body pass (one section per file). The
    anchor allocator is reset before each pass so both produce the same
    anchors for the same record order.
    """

    name: ClassVar[str] = ""
    extension: ClassVar[str] = ""

    def __init__(self) -> None:
        self.anchors = AnchorAllocator()

    def generate_header(self, context: OutputContext) -> str:
        raise NotImplementedError

    def process_file(self, record: FileRecord, context: OutputContext) -> str:
        raise NotImplementedError

    def generate_footer(self, context: OutputContext) -> str:  # noqa: ARG002
        return ""

    def prepare_content(self, record: FileRecord, context: OutputContext) -> str:
        """Apply render-time sanitization shared by every format."""
        content = record.content
        if context.config.aggressive_content_sanitization and not record.is_error_placeholder:
            content = apply_aggressive_sanitization(content)
        return content

    def render(self, context: OutputContext) -> str:
        out = io.StringIO()
        self.anchors.reset()
        out.write(self.generate_header(context))
        self.anchors.reset()
        for record in context.files_to_process:
            out.write(self.process_file(record, context))
        out.write(self.generate_footer(context))
        return out.getvalue()


@register_output_strategy("text")
class TextOutputStrategy(OutputStrategy):
    """Plain text: no escaping and no anchors, a file tree in the header."""

    name = "text"
    extension = "txt"

    def generate_header(self, context: OutputContext) -> str:
        out = io.StringIO()
        out.write("# Generated Project Fusion File\n")
        out.write(f"# Project: {context.project_title}\n")
        out.write(f"# Generated: {context.generated_at}\n")
        out.write(f"# Files: {len(context.files_to_process)}\n\n")
        tree_lines = build_tree_lines(context.root.name or str(context.root), [r.relative_path for r in context.files_to_process])
        out.write("\n".join(tree_lines))
        out.write("\n\n")
        return out.getvalue()

    def process_file(self, record: FileRecord, context: OutputContext) -> str:
        marker = "FILE (REJECTED)" if record.is_error_placeholder else "FILE"
        rule = "=" * 60
        out = io.StringIO()
        out.write(f"// {rule}\n// {marker}: {record.relative_path}\n// {rule}\n")
        out.write(self.prepare_content(record, context))
        out.write("\n\n")
        return out.getvalue()


@register_output_strategy("markdown")
class MarkdownOutputStrategy(OutputStrategy):
    """Markdown with a linked table of contents and fenced file sections."""

    name = "markdown"
    extension = "md"

    def generate_header(self, context: OutputContext) -> str:
        out = io.StringIO()
        out.write("# Generated Project Fusion File\n\n")
        out.write(f"**Project:** {escape_markdown(context.project_title)}\n\n")
        out.write(f"**Generated:** {context.generated_at}\n\n")
        out.write(f"**Files:** {len(context.files_to_process)}\n\n")
        out.write("## 📁 Table of Contents\n\n")
        for record in context.files_to_process:
            anchor = self.anchors.slug(record.relative_path)
            icon = "⚠️ " if record.is_error_placeholder else ""
            out.write(f"- {icon}[{escape_markdown(record.relative_path)}](#{anchor})\n")
        out.write("\n---\n\n")
        return out.getvalue()

    def prepare_content(self, record: FileRecord, context: OutputContext) -> str:
        content, _ = neutralize_protocols(super().prepare_content(record, context))
        return content

    def process_file(self, record: FileRecord, context: OutputContext) -> str:
        anchor = self.anchors.slug(record.relative_path)
        icon = "⚠️" if record.is_error_placeholder else "📄"
        content = self.prepare_content(record, context)
        fence = code_fence_for(content)
        out = io.StringIO()
        out.write(f"## {icon} {escape_markdown(record.relative_path)} {{#{anchor}}}\n\n")
        if record.truncated:
            out.write("> ⚠️ Parts of this file were truncated.\n\n")
        out.write(f"{fence}{record.language}\n{content}")
        if not content.endswith("\n"):
            out.write("\n")
        out.write(f"{fence}\n\n")
        return out.getvalue()


@register_output_strategy("html")
class HtmlOutputStrategy(OutputStrategy):
    """Standalone HTML document with fixed security meta tags."""

    name = "html"
    extension = "html"

    def generate_header(self, context: OutputContext) -> str:
        title = escape_html(context.project_title)
        out = io.StringIO()
        out.write("<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n<meta charset=\"utf-8\">\n")
        for meta in HTML_SECURITY_META:
            out.write(f"{meta}\n")
        out.write(f"<title>{title} - Project Fusion</title>\n")
        out.write(f"<style>\n{_HTML_STYLE}</style>\n</head>\n<body>\n")
        out.write(f"<h1>Generated Project Fusion File</h1>\n<p><strong>Project:</strong> {title}</p>\n")
        out.write(f"<p><strong>Generated:</strong> {escape_html(context.generated_at)}</p>\n")
        out.write(f"<p><strong>Files:</strong> {len(context.files_to_process)}</p>\n")
        out.write("<nav>\n<h2>📁 Table of Contents</h2>\n<ul>\n")
        for record in context.files_to_process:
            anchor = escape_html(self.anchors.slug(record.relative_path))
            css = ' class="file-error"' if record.is_error_placeholder else ""
            icon = "⚠️ " if record.is_error_placeholder else ""
            out.write(f'<li{css}><a href="#{anchor}">{icon}{escape_html(record.relative_path)}</a></li>\n')
        out.write("</ul>\n</nav>\n")
        return out.getvalue()

    def process_file(self, record: FileRecord, context: OutputContext) -> str:
        anchor = escape_html(self.anchors.slug(record.relative_path))
        css = "file-section file-error" if record.is_error_placeholder else "file-section"
        icon = "⚠️" if record.is_error_placeholder else "📄"
        language = escape_html(record.language)
        out = io.StringIO()
        out.write(f'<section class="{css}" id="{anchor}">\n')
        out.write(f"<h2>{icon} {escape_html(record.relative_path)}</h2>\n")
        if record.truncated:
            out.write("<p><em>Parts of this file were truncated.</em></p>\n")
        out.write(f'<pre><code class="language-{language}">')
        out.write(escape_html(self.prepare_content(record, context)))
        out.write("</code></pre>\n</section>\n")
        return out.getvalue()

    def generate_footer(self, context: OutputContext) -> str:  # noqa: ARG002
        return "</body>\n</html>\n"


def strategies_for(config: FusionConfig) -> list[OutputStrategy]:
    """Instantiate the built-in strategies switched on by ``config``, in a fixed order.

    Args:
        config (FusionConfig): the run configuration

    Returns:
        list[OutputStrategy]: fresh strategy instances, one per enabled format
    """
    return [OUTPUT_STRATEGIES[name]() for name in config.enabled_formats]
