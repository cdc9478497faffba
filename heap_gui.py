"""
heap_gui.py

Graphical viewer for heap dump reports produced by heap_dump.

This module provides a tkinter-based window for:
- Browsing the report as a tree (statics, instances, fields, items)
- Showing the size and runtime type of every node
- Inspecting a node's attributes in a details panel
- Opening another report file

Usage:
    from heap_gui import view_report

    view_report("heapdump.xml")
"""

import tkinter as tk
import xml.etree.ElementTree as ET
from tkinter import ttk, scrolledtext, filedialog, messagebox
from typing import Dict, Optional

from heap_report import load_report, node_size, container_size, summarize_report


# ============================================================
# Color Scheme
# ============================================================

class ColorScheme:
    """Row colors for report nodes."""

    STATICS = "#E8F5E9"        # Light green
    INSTANCES = "#E3F2FD"      # Light blue
    ERROR = "#FFCDD2"          # Light red
    SEEN = "#EEEEEE"           # Light gray
    IGNORED = "#FFF9C4"        # Light yellow


# Node tags shown as tree rows; the rest only appear in the details panel
TREE_TAGS = (
    "statics", "instances", "module", "type", "object", "field",
    "item", "entry", "key", "error", "seen", "ignored", "identity",
)


def node_text(node: ET.Element) -> str:
    """Text of the first tree column for a report node."""
    tag = node.tag
    if tag in ("module", "type"):
        return f"{tag} {node.get('name')}"
    if tag == "object":
        return f"{node.get('type')} '{node.get('name')}'"
    if tag == "field":
        return node.get("name", "?")
    if tag == "error":
        return f"error: {node.get('msg')}"
    if tag == "ignored":
        return f"ignored ({node.get('reason')})"
    if tag == "identity":
        return f"{node.get('name')}{' (seen)' if node.get('seen') == 'true' else ''}"
    return tag


def node_type(node: ET.Element) -> str:
    if node.tag == "field":
        return node.get("runtimetype", "")
    return node.get("type", "")


def node_total(node: ET.Element) -> Optional[int]:
    """Size shown for a node, or None for nodes without one."""
    if node.tag in ("field", "item", "entry", "key"):
        return node_size(node)
    if node.tag in ("module", "type", "object"):
        return container_size(node)
    if node.tag in ("statics", "instances"):
        return sum(container_size(child) for child in node)
    return None


# ============================================================
# Report Viewer
# ============================================================

class ReportViewer:
    """Main window showing a heap dump report as a tree."""

    def __init__(self, report: Optional[ET.Element] = None, title: str = "Heap Dump Viewer"):
        """Initialize the viewer.

        Args:
            report: Parsed report root (see heap_report.load_report)
            title: Window title
        """
        self.report = report
        self.nodes: Dict[str, ET.Element] = {}

        # Create main window
        self.root = tk.Tk()
        self.root.title(title)
        self.root.geometry("1100x750")

        self.colors = ColorScheme()
        self._create_ui()

        if self.report is not None:
            self.show_report(self.report)

    def _create_ui(self) -> None:
        """Create the user interface."""
        main_frame = ttk.Frame(self.root)
        main_frame.pack(fill=tk.BOTH, expand=True)

        self._create_toolbar(main_frame)

        content_frame = ttk.Frame(main_frame)
        content_frame.pack(fill=tk.BOTH, expand=True)

        self._create_tree(content_frame)
        self._create_details_panel(content_frame)
        self._create_status_bar(main_frame)

    def _create_toolbar(self, parent: ttk.Frame) -> None:
        toolbar = ttk.Frame(parent, relief=tk.RAISED, borderwidth=1)
        toolbar.pack(side=tk.TOP, fill=tk.X, padx=5, pady=5)

        ttk.Button(toolbar, text="Open...", command=self.open_report).pack(side=tk.LEFT, padx=2)
        ttk.Button(toolbar, text="Expand all", command=self.expand_all).pack(side=tk.LEFT, padx=2)
        ttk.Button(toolbar, text="Collapse all", command=self.collapse_all).pack(side=tk.LEFT, padx=2)

    def _create_tree(self, parent: ttk.Frame) -> None:
        tree_frame = ttk.Frame(parent)
        tree_frame.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        self.tree = ttk.Treeview(tree_frame, columns=("type", "size"))
        self.tree.heading("#0", text="Node")
        self.tree.heading("type", text="Runtime type")
        self.tree.heading("size", text="Size (bytes)")
        self.tree.column("#0", width=380)
        self.tree.column("type", width=260)
        self.tree.column("size", width=100, anchor=tk.E)

        v_scroll = ttk.Scrollbar(tree_frame, orient=tk.VERTICAL, command=self.tree.yview)
        self.tree.configure(yscrollcommand=v_scroll.set)
        v_scroll.pack(side=tk.RIGHT, fill=tk.Y)
        self.tree.pack(side=tk.LEFT, fill=tk.BOTH, expand=True)

        self.tree.tag_configure("statics", background=self.colors.STATICS)
        self.tree.tag_configure("instances", background=self.colors.INSTANCES)
        self.tree.tag_configure("error", background=self.colors.ERROR)
        self.tree.tag_configure("seen", background=self.colors.SEEN)
        self.tree.tag_configure("ignored", background=self.colors.IGNORED)

        self.tree.bind("<<TreeviewSelect>>", self._on_select)

    def _create_details_panel(self, parent: ttk.Frame) -> None:
        details_frame = ttk.LabelFrame(parent, text="Details", width=300)
        details_frame.pack(side=tk.RIGHT, fill=tk.BOTH, padx=5)
        details_frame.pack_propagate(False)

        self.details_text = scrolledtext.ScrolledText(
            details_frame,
            wrap=tk.WORD,
            width=36,
            height=20,
            font=("Courier", 9)
        )
        self.details_text.pack(fill=tk.BOTH, expand=True, padx=5, pady=5)

    def _create_status_bar(self, parent: ttk.Frame) -> None:
        status_frame = ttk.Frame(parent, relief=tk.SUNKEN, borderwidth=1)
        status_frame.pack(side=tk.BOTTOM, fill=tk.X)

        self.status_label = ttk.Label(status_frame, text="Ready", anchor=tk.W)
        self.status_label.pack(side=tk.LEFT, padx=10, pady=2)

    def show_report(self, report: ET.Element) -> None:
        """Fill the tree with a parsed report."""
        self.report = report
        self.tree.delete(*self.tree.get_children())
        self.nodes.clear()

        # Iterative fill: reports can nest deeper than the recursion limit
        pending = [("", child) for child in reversed(list(report))]
        while pending:
            parent_id, node = pending.pop()
            if node.tag not in TREE_TAGS:
                continue
            size = node_total(node)
            item_id = self.tree.insert(
                parent_id,
                tk.END,
                text=node_text(node),
                values=(node_type(node), "" if size is None else size),
                tags=(node.tag,),
            )
            self.nodes[item_id] = node
            for child in reversed(list(node)):
                pending.append((item_id, child))

        summary = summarize_report(report)
        self.status_label.config(
            text=(
                f"Total {summary.total_size} bytes "
                f"(statics {summary.statics_size}, instances {summary.instances_size}) | "
                f"errors {summary.markers.get('error', 0)}"
            )
        )

    def _on_select(self, event) -> None:
        """Show the attributes of the selected node."""
        selection = self.tree.selection()
        if not selection:
            return
        node = self.nodes.get(selection[0])
        if node is None:
            return

        lines = [f"=== {node.tag.upper()} ===\n\n"]
        for name, value in node.attrib.items():
            lines.append(f"{name}: {value}\n")
        for child in node:
            if child.tag not in TREE_TAGS:
                attrs = " ".join(f"{k}={v}" for k, v in child.attrib.items())
                lines.append(f"<{child.tag}> {attrs}\n")

        self.details_text.delete("1.0", tk.END)
        self.details_text.insert("1.0", "".join(lines))

    def expand_all(self) -> None:
        for item_id in self.nodes:
            self.tree.item(item_id, open=True)

    def collapse_all(self) -> None:
        for item_id in self.nodes:
            self.tree.item(item_id, open=False)

    def open_report(self) -> None:
        """Ask for a report file and show it."""
        filename = filedialog.askopenfilename(
            filetypes=[("Heap dump", "*.xml"), ("All Files", "*.*")]
        )
        if filename:
            try:
                self.show_report(load_report(filename))
                self.root.title(f"Heap Dump Viewer - {filename}")
            except (OSError, ET.ParseError) as e:
                messagebox.showerror("Open Error", str(e))

    def run(self) -> None:
        """Run the GUI main loop."""
        self.root.mainloop()


# ============================================================
# Convenience function
# ============================================================

def view_report(path: str) -> None:
    """Convenience function to open a report file in the viewer.

    Args:
        path: Path of a heap dump XML file
    """
    viewer = ReportViewer(load_report(path), title=f"Heap Dump Viewer - {path}")
    viewer.run()


if __name__ == "__main__":
    import sys

    view_report(sys.argv[1] if len(sys.argv) > 1 else "heapdump.xml")
