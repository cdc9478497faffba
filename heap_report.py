"""
heap_report.py

Streaming XML report writer and report reader for heap dumps.

This module provides:
- ReportWriter: append-only, indented XML output that tracks open elements
- load_report: parse a finished report back into an element tree
- summarize_report: per-root totals and marker counts of a report
- ReportSummary console rendering

Report layout::

    <heapdump>
      <statics>
        <module name="..."> <field .../> ... </module>
        <type name="..."> <field .../> ... </type>
      </statics>
      <instances>
        <object type="..." name="..."> <field .../> ... </object>
      </instances>
    </heapdump>

A field node holds shape-specific children (value, struct, string, array,
item, entry, identity, seen, null, error) and ends with ``<total size=".."/>``.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import IO, Any, Dict, List, Tuple, Union
from xml.sax.saxutils import quoteattr

from heap_types import HeapDumpError


class ReportStreamError(HeapDumpError):
    """Raised when the report stream cannot be written or closed."""


# Characters that XML 1.0 does not allow at all, lone surrogates included
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def _attr_text(value: Any) -> str:
    if isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    return _INVALID_XML_CHARS.sub("?", text)


# ============================================================
#  Writer
# ============================================================

class ReportWriter:
    """Writes the report as indented XML, one element per line.

    Elements are opened with start() and closed with end(); element() writes
    a self-closing element. mark()/unwind() let a caller close whatever was
    opened after a known point, which keeps the document well formed when a
    field fails half way through.

    Example:
        >>> writer = ReportWriter(stream)
        >>> writer.declaration()
        >>> writer.start("statics")
        >>> writer.element("null")
        >>> writer.close()
    """

    def __init__(self, stream: IO[str], indent_size: int = 2):
        """Initialize the writer.

        Args:
            stream: Text stream receiving the report
            indent_size: Spaces per nesting level
        """
        self.stream = stream
        self.indent_size = indent_size
        self.open_tags: List[str] = []
        self.closed = False

    def _write(self, text: str) -> None:
        try:
            self.stream.write(text)
        except (OSError, ValueError) as exc:
            raise ReportStreamError(f"cannot write report: {exc}") from exc

    def _tag(self, tag: str, attrs: Dict[str, Any]) -> str:
        parts = [tag]
        for name, value in attrs.items():
            parts.append(f"{name}={quoteattr(_attr_text(value))}")
        return " ".join(parts)

    def _indent(self) -> str:
        return " " * (self.indent_size * len(self.open_tags))

    def declaration(self) -> None:
        self._write('<?xml version="1.0" encoding="utf-8"?>\n')

    def start(self, tag: str, **attrs: Any) -> None:
        """Open an element."""
        self._write(f"{self._indent()}<{self._tag(tag, attrs)}>\n")
        self.open_tags.append(tag)

    def end(self) -> None:
        """Close the innermost open element."""
        tag = self.open_tags.pop()
        self._write(f"{self._indent()}</{tag}>\n")

    def element(self, tag: str, **attrs: Any) -> None:
        """Write a self-closing element."""
        self._write(f"{self._indent()}<{self._tag(tag, attrs)}/>\n")

    def mark(self) -> int:
        """Current nesting depth, for a later unwind()."""
        return len(self.open_tags)

    def unwind(self, mark: int) -> None:
        """Close open elements until the nesting depth equals ``mark``."""
        while len(self.open_tags) > mark:
            self.end()

    def close(self) -> None:
        """Close every open element and flush the stream."""
        if self.closed:
            return
        self.closed = True
        self.unwind(0)
        try:
            self.stream.flush()
        except (OSError, ValueError) as exc:
            raise ReportStreamError(f"cannot flush report: {exc}") from exc

    def __enter__(self) -> "ReportWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is ReportStreamError:
            # the stream is unusable, do not write closing tags to it
            self.closed = True
            return
        self.close()


# ============================================================
#  Reader & summary
# ============================================================

def load_report(source: Union[str, IO[str]]) -> ET.Element:
    """Parse a report file (path or open stream) into its root element."""
    return ET.parse(source).getroot()


def node_size(node: ET.Element) -> int:
    """Trailing total of a field/item/entry node (0 when absent)."""
    total = node.find("total")
    if total is None:
        return 0
    return int(total.get("size", "0"))


def container_size(node: ET.Element) -> int:
    """Sum of the totals of the fields directly inside a container."""
    return sum(node_size(child) for child in node.findall("field"))


def container_label(node: ET.Element) -> str:
    if node.tag == "object":
        return f"{node.get('type')} '{node.get('name')}'"
    return node.get("name", node.tag)


@dataclass
class ReportSummary:
    """Aggregated view of a heap dump report.

    Attributes:
        statics_size: Total size reported under <statics>
        instances_size: Total size reported under <instances>
        roots: (label, size) per module/type/object container
        largest_fields: (path, size) of the biggest root fields
        markers: Count of error/seen/null/ignored markers
    """
    statics_size: int = 0
    instances_size: int = 0
    roots: List[Tuple[str, int]] = field(default_factory=list)
    largest_fields: List[Tuple[str, int]] = field(default_factory=list)
    markers: Dict[str, int] = field(default_factory=dict)

    @property
    def total_size(self) -> int:
        return self.statics_size + self.instances_size

    def to_console(self) -> str:
        """Render the summary to console format."""
        lines: List[str] = []
        lines.append("=== Heap Dump Summary ===")
        lines.append(f"Statics:   {self.statics_size} bytes")
        lines.append(f"Instances: {self.instances_size} bytes")
        lines.append(f"Total:     {self.total_size} bytes")
        lines.append("")

        lines.append("-- Roots --")
        if not self.roots:
            lines.append("(no roots)")
        for label, size in sorted(self.roots, key=lambda r: -r[1]):
            lines.append(f"  {label:40} {size:>10}")
        lines.append("")

        lines.append("-- Largest fields --")
        if not self.largest_fields:
            lines.append("(no fields)")
        for path, size in self.largest_fields:
            lines.append(f"  {path:40} {size:>10}")
        lines.append("")

        lines.append("-- Markers --")
        for name in sorted(self.markers):
            lines.append(f"  {name:10} : {self.markers[name]}")
        return "\n".join(lines)

    def print(self) -> None:
        print(self.to_console())


MARKER_TAGS = ("error", "seen", "null", "ignored")


def summarize_report(root: ET.Element, top: int = 10) -> ReportSummary:
    """Build a ReportSummary from a parsed report.

    Args:
        root: The <heapdump> element (see load_report)
        top: Number of largest root fields to keep
    """
    summary = ReportSummary()
    fields: List[Tuple[str, int]] = []

    statics = root.find("statics")
    if statics is not None:
        for container in statics:
            size = container_size(container)
            summary.statics_size += size
            summary.roots.append((container_label(container), size))
            for f in container.findall("field"):
                fields.append((f"{container_label(container)}.{f.get('name')}", node_size(f)))

    instances = root.find("instances")
    if instances is not None:
        for container in instances:
            size = container_size(container)
            summary.instances_size += size
            summary.roots.append((container_label(container), size))
            for f in container.findall("field"):
                fields.append((f"{container_label(container)}.{f.get('name')}", node_size(f)))

    fields.sort(key=lambda item: -item[1])
    summary.largest_fields = fields[:top]
    summary.markers = {tag: len(root.findall(f".//{tag}")) for tag in MARKER_TAGS}
    return summary


def summarize_file(path: str, top: int = 10) -> ReportSummary:
    """Load and summarize a report file."""
    return summarize_report(load_report(path), top=top)
