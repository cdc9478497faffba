"""
test_heap_report.py

Unit tests for the report writer and the report summary.
"""

import io
import xml.etree.ElementTree as ET

import pytest
from heap_report import (
    MARKER_TAGS,
    ReportStreamError,
    ReportSummary,
    ReportWriter,
    container_size,
    load_report,
    node_size,
    summarize_file,
    summarize_report,
)


SAMPLE_REPORT = """<?xml version="1.0" encoding="utf-8"?>
<heapdump>
  <statics>
    <type name="Settings">
      <field type="object" name="VERSION" runtimetype="str">
        <string length="3"/>
        <total size="18"/>
      </field>
    </type>
  </statics>
  <instances>
    <object type="Node" name="root">
      <field type="object" name="x" runtimetype="int">
        <value value="5"/>
        <total size="8"/>
      </field>
      <field type="object" name="next" runtimetype="-null-">
        <null/>
        <total size="8"/>
      </field>
      <error msg="AttributeError: b" field="b" type="object"/>
    </object>
    <object type="Node" name="again">
      <seen/>
    </object>
  </instances>
</heapdump>
"""


class BrokenStream(io.StringIO):
    """A stream that fails on every write."""

    def write(self, text):
        raise OSError("disk full")


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def sample():
    """Parsed hand-written report."""
    return ET.fromstring(SAMPLE_REPORT.encode("utf-8"))


# ============================================================
# Writer Tests
# ============================================================

class TestReportWriter:
    """Tests for ReportWriter."""

    def test_nesting_and_indent(self, stream):
        """Test elements are indented by nesting depth."""
        writer = ReportWriter(stream, indent_size=2)
        writer.start("statics")
        writer.element("null")
        writer.end()
        assert stream.getvalue() == "<statics>\n  <null/>\n</statics>\n"

    def test_attribute_escaping(self, stream):
        """Test quotes, ampersands and angle brackets are escaped."""
        writer = ReportWriter(stream)
        writer.element("error", msg='bad "value" <&>')
        node = ET.fromstring(stream.getvalue())
        assert node.get("msg") == 'bad "value" <&>'

    def test_control_characters_replaced(self, stream):
        """Test characters XML cannot carry are replaced."""
        writer = ReportWriter(stream)
        writer.element("value", value="a\x00b\x1fc")
        node = ET.fromstring(stream.getvalue())
        assert node.get("value") == "a?b?c"

    def test_lone_surrogates_replaced(self, stream):
        """Test unpaired surrogates are replaced before encoding."""
        writer = ReportWriter(stream)
        writer.element("field", name="bad\udcff", type="x\ud800y")
        text = stream.getvalue()
        node = ET.fromstring(text.encode("utf-8"))
        assert node.get("name") == "bad?"
        assert node.get("type") == "x?y"

    def test_bool_attributes(self, stream):
        """Test booleans are written in lower case."""
        writer = ReportWriter(stream)
        writer.element("identity", seen=True)
        assert 'seen="true"' in stream.getvalue()

    def test_unwind(self, stream):
        """Test unwind closes everything opened after the mark."""
        writer = ReportWriter(stream)
        writer.start("object")
        mark = writer.mark()
        writer.start("field")
        writer.start("item")
        writer.unwind(mark)
        assert writer.mark() == 1
        writer.end()
        node = ET.fromstring(stream.getvalue())
        assert node.find("field/item") is not None

    def test_close_completes_document(self, stream):
        """Test close() ends all open elements."""
        with ReportWriter(stream) as writer:
            writer.declaration()
            writer.start("heapdump")
            writer.start("statics")
        root = ET.fromstring(stream.getvalue().encode("utf-8"))
        assert root.tag == "heapdump"
        assert writer.closed

    def test_write_failure(self):
        """Test stream failures become ReportStreamError."""
        writer = ReportWriter(BrokenStream())
        with pytest.raises(ReportStreamError):
            writer.start("heapdump")

    def test_exit_after_stream_failure(self):
        """Test the context manager does not write to a failed stream."""
        with pytest.raises(ReportStreamError):
            with ReportWriter(BrokenStream()) as writer:
                writer.open_tags.append("heapdump")
                writer.element("null")
        assert writer.closed
        assert writer.open_tags == ["heapdump"]


# ============================================================
# Reader Tests
# ============================================================

class TestReader:
    """Tests for report reading helpers."""

    def test_node_size(self, sample):
        """Test the trailing total of a field."""
        field = sample.find("instances/object/field")
        assert node_size(field) == 8

    def test_node_size_missing_total(self):
        """Test nodes without a total count as 0."""
        assert node_size(ET.Element("field")) == 0

    def test_container_size(self, sample):
        """Test container totals ignore error markers."""
        obj = sample.find("instances/object")
        assert container_size(obj) == 16

    def test_load_report(self, tmp_path):
        """Test loading from a path."""
        path = tmp_path / "heapdump.xml"
        path.write_text(SAMPLE_REPORT, encoding="utf-8")
        assert load_report(str(path)).tag == "heapdump"


class TestSummary:
    """Tests for summarize_report and ReportSummary."""

    def test_totals(self, sample):
        """Test statics and instances totals."""
        summary = summarize_report(sample)
        assert summary.statics_size == 18
        assert summary.instances_size == 16
        assert summary.total_size == 34

    def test_roots(self, sample):
        """Test one root entry per container."""
        summary = summarize_report(sample)
        assert summary.roots == [("Settings", 18), ("Node 'root'", 16), ("Node 'again'", 0)]

    def test_largest_fields(self, sample):
        """Test root fields sorted by size."""
        summary = summarize_report(sample, top=2)
        assert summary.largest_fields == [("Settings.VERSION", 18), ("Node 'root'.x", 8)]

    def test_markers(self, sample):
        """Test marker counts."""
        summary = summarize_report(sample)
        assert set(summary.markers) == set(MARKER_TAGS)
        assert summary.markers["error"] == 1
        assert summary.markers["seen"] == 1
        assert summary.markers["null"] == 1
        assert summary.markers["ignored"] == 0

    def test_to_console(self, sample):
        """Test console rendering."""
        text = summarize_report(sample).to_console()
        assert "=== Heap Dump Summary ===" in text
        assert "Total:     34 bytes" in text
        assert "Settings.VERSION" in text
        assert "error      : 1" in text

    def test_empty_summary(self):
        """Test rendering a summary without roots."""
        text = ReportSummary().to_console()
        assert "(no roots)" in text
        assert "(no fields)" in text

    def test_summarize_file(self, tmp_path):
        """Test summarizing a report file."""
        path = tmp_path / "heapdump.xml"
        path.write_text(SAMPLE_REPORT, encoding="utf-8")
        assert summarize_file(str(path)).total_size == 34
