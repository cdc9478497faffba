"""
heap_dump.py

Heap snapshot of a live Python object graph.

Starting from roots (module variables, class-level fields of a set of types
and a collection of live instances), HeapDump walks every reachable field,
estimates the memory each value retains and streams a hierarchical XML
report (see heap_report for the layout).

Every value is classified into a shape that decides its size and whether
the walk goes deeper:

- None: one reference slot
- enum members: width of the underlying numeric type
- arrays (list, tuple, dict, set, array.array, bytes, memoryview, ctypes
  arrays): one slot, then either element_size * count for fixed-layout
  elements or one slot per element plus the elements themselves
- primitives (bool, int, float, complex, ctypes scalars): native width
- ctypes structures and unions: native layout size, members not walked
- str: one slot, plus 2 bytes per character and a 4 byte header the first
  time a given string object is met
- anything else: one slot, plus its fields on first visit

Objects, arrays and strings are visited once per dump; later references get
a ``<seen/>`` marker. A failing field is reported as an ``<error/>`` node and
the walk carries on.

Example:
    >>> import mygame
    >>> from heap_dump import HeapDump, InstanceRoot
    >>> from heap_roots import module_types
    >>>
    >>> with open("heapdump.xml", "w", encoding="utf-8") as out:
    ...     result = HeapDump().dump(
    ...         out,
    ...         types=module_types(mygame),
    ...         instances=[InstanceRoot(mygame.world, "world")],
    ...     )
    >>> result.total_size
    48213
"""

from __future__ import annotations

import enum
import io
import logging
import struct
import sys
from dataclasses import dataclass
from types import ModuleType
from typing import IO, Any, Callable, Dict, Generator, Iterable, List, Optional, Tuple

from heap_report import ReportStreamError, ReportWriter
from heap_types import (
    ArrayInfo,
    ElementKind,
    FieldDescriptor,
    LayoutError,
    TypeRegistry,
    array_info,
    enum_size,
    format_name,
    is_composite,
    is_enum_type,
    is_open_generic,
    is_primitive,
    iter_elements,
    layout_size,
    module_fields,
    primitive_size,
    primitive_value,
    runtime_type,
    static_fields,
)

logger = logging.getLogger(__name__)


# ============================================================
#  Configuration
# ============================================================

@dataclass
class DumpConfig:
    """Configuration for heap dumps.

    Attributes:
        reference_width: Bytes taken by one reference slot
        skip_empty_types: Leave out types without static fields (and
            skipped enum/generic types) instead of writing empty tags
        char_size: Bytes per character of a string
        string_header_size: Fixed overhead per string object
        indent_size: Spaces per nesting level in the report
        missing_label: Label shown for identity objects that are no
            longer alive
    """
    reference_width: int = struct.calcsize("P")
    skip_empty_types: bool = True
    char_size: int = 2
    string_header_size: int = 4
    indent_size: int = 2
    missing_label: str = "--missing reference--"


# Default configuration used when a dumper gets none
dump_config = DumpConfig()


# ============================================================
#  Roots & identity metadata
# ============================================================

@dataclass
class InstanceRoot:
    """A live object handed to the dump as a root.

    Attributes:
        value: The object
        label: Name shown in the <object> tag
    """
    value: Any
    label: str


class IdentityInspector:
    """Decides which objects carry identity metadata in the report.

    Objects matching ``types`` get an ``<identity type name seen/>`` node
    each time they are reached. ``name_attribute`` supplies the label and
    ``is_alive`` tells whether the object is still usable; dead objects are
    labelled with DumpConfig.missing_label.
    """

    def __init__(
        self,
        types: Tuple[type, ...] = (),
        name_attribute: str = "name",
        is_alive: Optional[Callable[[Any], bool]] = None,
    ):
        self.types = tuple(types)
        self.name_attribute = name_attribute
        self.is_alive = is_alive

    def applies(self, value: Any) -> bool:
        return bool(self.types) and isinstance(value, self.types)

    def label(self, value: Any) -> Optional[str]:
        """Label of a live object, or None when it is gone."""
        if self.is_alive is not None and not self.is_alive(value):
            return None
        name = getattr(value, self.name_attribute, None)
        return str(name) if name is not None else format_name(type(value))


# ============================================================
#  Visited set
# ============================================================

class VisitedSet:
    """Objects already reported in the current dump, by identity.

    Members are kept referenced so that their ids stay unique until the
    set is cleared.
    """

    def __init__(self) -> None:
        self._members: Dict[int, Any] = {}

    def __contains__(self, value: Any) -> bool:
        return id(value) in self._members

    def __len__(self) -> int:
        return len(self._members)

    def add(self, value: Any) -> None:
        self._members[id(value)] = value

    def clear(self) -> None:
        self._members.clear()


@dataclass
class DumpResult:
    """Outcome of one dump.

    Attributes:
        total_size: Sum of the sizes of all root fields
        error_count: Number of <error> markers written
        visited_count: Distinct objects, arrays and strings reported
    """
    total_size: int = 0
    error_count: int = 0
    visited_count: int = 0


# ============================================================
#  HeapDump
# ============================================================

Walk = Generator[Any, Any, int]


class HeapDump:
    """Walks object graphs from a set of roots and reports them as XML.

    Each node of the walk is a generator that writes its part of the report,
    yields the generators of its children and returns its size. _walk()
    drives them from an explicit stack, so deep graphs do not depend on the
    interpreter recursion limit and the output order is the one of a plain
    depth-first recursion.
    """

    def __init__(
        self,
        config: Optional[DumpConfig] = None,
        inspector: Optional[IdentityInspector] = None,
        registry: Optional[TypeRegistry] = None,
    ):
        """Initialize the dumper.

        Args:
            config: Dump configuration (module default when None)
            inspector: Identity metadata policy (none when None)
            registry: Type descriptor cache (a fresh one when None)
        """
        self.config = config if config is not None else dump_config
        self.inspector = inspector if inspector is not None else IdentityInspector()
        self.registry = registry if registry is not None else TypeRegistry()
        self.visited = VisitedSet()
        self._writer: Optional[ReportWriter] = None
        self._errors = 0

    def dump(
        self,
        stream: IO[str],
        types: Iterable[type] = (),
        instances: Iterable[InstanceRoot] = (),
        modules: Iterable[ModuleType] = (),
    ) -> DumpResult:
        """Write a heap dump of the given roots to ``stream``.

        Args:
            stream: Text stream receiving the XML report
            types: Types whose static fields are roots
            instances: Live instances used as roots
            modules: Modules whose module-level variables are roots

        Returns:
            A DumpResult with the total size and error count

        Raises:
            ReportStreamError: If the stream cannot be written
        """
        self.visited.clear()
        self._errors = 0
        total = 0
        try:
            with ReportWriter(stream, self.config.indent_size) as writer:
                self._writer = writer
                writer.declaration()
                writer.start("heapdump")

                writer.start("statics")
                for module in modules:
                    total += self._walk(self._report_module(module))
                for cls in types:
                    total += self._walk(self._report_static_type(cls))
                writer.end()

                writer.start("instances")
                for root in instances:
                    total += self._walk(self._report_instance(root))
                writer.end()

                writer.end()
            result = DumpResult(total, self._errors, len(self.visited))
        finally:
            self.visited.clear()
            self._writer = None

        logger.info(
            "heap dump finished: %d bytes, %d objects, %d errors",
            result.total_size, result.visited_count, result.error_count,
        )
        return result

    # ------------- Driver ------------- #

    def _walk(self, task: Walk) -> int:
        """Run a node generator and all its descendants to completion."""
        stack: List[Walk] = [task]
        result: Any = None
        error: Optional[BaseException] = None
        while stack:
            top = stack[-1]
            try:
                if error is not None:
                    pending, error = error, None
                    child = top.throw(pending)
                else:
                    child = top.send(result)
            except StopIteration as stop:
                stack.pop()
                result = stop.value
            except Exception as exc:
                stack.pop()
                if not stack:
                    raise
                error = exc
            else:
                stack.append(child)
                result = None
        return result

    # ------------- Roots ------------- #

    def _report_module(self, module: ModuleType) -> Walk:
        writer = self._writer
        fields = module_fields(module)
        size = 0
        if fields or not self.config.skip_empty_types:
            writer.start("module", name=module.__name__)
            for f in fields:
                size += yield self._guarded_field(f, None)
            writer.end()
        return size

    def _report_static_type(self, cls: type) -> Walk:
        writer = self._writer
        name = format_name(cls)
        skip_empty = self.config.skip_empty_types
        tag_written = not skip_empty
        size = 0
        if tag_written:
            writer.start("type", name=name)

        if is_enum_type(cls):
            # enum classes hold nothing but their members
            if not skip_empty:
                writer.element("ignored", reason="enum")
        elif is_open_generic(cls):
            # static storage of an unbound generic is not reported
            if not skip_empty:
                writer.element("ignored", reason="generic")
        else:
            for f in static_fields(cls):
                if not tag_written:
                    writer.start("type", name=name)
                    tag_written = True
                size += yield self._guarded_field(f, None)

        if tag_written:
            writer.end()
        return size

    def _report_instance(self, root: InstanceRoot) -> Walk:
        writer = self._writer
        value = root.value
        seen = value in self.visited
        try:
            type_name = self._type_name(value)
            fields = [] if seen else self.registry.fields_of(value)
        except Exception as exc:
            # the root still gets its container; the next root carries on
            writer.start("object", type=format_name(type(value)), name=root.label)
            writer.element("error", msg=f"{type(exc).__name__}: {exc}")
            writer.end()
            self._errors += 1
            logger.debug("root %s failed: %s", root.label, exc)
            return 0

        writer.start("object", type=type_name, name=root.label)
        size = 0
        if seen:
            writer.element("seen")
        else:
            self.visited.add(value)
            for f in fields:
                size += yield self._guarded_field(f, value)
        writer.end()
        return size

    # ------------- Fields ------------- #

    def _guarded_field(self, field: FieldDescriptor, owner: Any) -> Walk:
        """Report one field; a failure becomes an <error> node of size 0."""
        writer = self._writer
        mark = writer.mark()
        try:
            size = yield self._report_field(field, owner)
        except ReportStreamError:
            raise
        except Exception as exc:
            writer.unwind(mark)
            writer.element(
                "error",
                msg=f"{type(exc).__name__}: {exc}",
                field=field.name,
                type=format_name(field.field_type),
            )
            self._errors += 1
            logger.debug("field %s of %s failed: %s", field.name,
                         format_name(field.declaring_type), exc)
            return 0
        return size

    def _report_field(self, field: FieldDescriptor, owner: Any) -> Walk:
        writer = self._writer
        value = field.get_value(owner)
        writer.start(
            "field",
            type=format_name(field.field_type),
            name=field.name,
            runtimetype="-null-" if value is None else self._type_name(value),
        )
        size = yield self._report_value(value, slot=True)
        writer.element("total", size=size)
        writer.end()
        return size

    def _report_element(self, tag: str, value: Any) -> Walk:
        writer = self._writer
        writer.start(tag, type="-null-" if value is None else self._type_name(value))
        size = yield self._report_value(value, slot=False)
        writer.element("total", size=size)
        writer.end()
        return size

    # ------------- Values ------------- #

    def _type_name(self, value: Any) -> str:
        tp = runtime_type(value)
        if isinstance(tp, type):
            return self.registry.describe(tp).name
        return format_name(tp)

    def _report_value(self, value: Any, slot: bool) -> Walk:
        """Classify a value, report it and return its size.

        ``slot`` tells whether the reference slot holding the value is
        charged here; array elements have their slots charged by the array.
        """
        writer = self._writer
        slot_size = self.config.reference_width if slot else 0

        if value is None:
            writer.element("null")
            return slot_size

        # before primitives and str: IntEnum and StrEnum members are both
        if isinstance(value, enum.Enum):
            writer.element("value", value=value.name if value.name is not None else value.value)
            return enum_size(value, self.config.reference_width)

        info = array_info(value)
        if info is not None:
            size = yield self._report_array(value, info)
            return slot_size + size

        if is_primitive(value):
            writer.element("value", value=primitive_value(value))
            return primitive_size(value)

        if is_composite(value):
            return self._report_struct(value)

        if isinstance(value, str):
            return slot_size + self._report_text(value)

        if isinstance(value, (type, ModuleType)):
            kind = "module" if isinstance(value, ModuleType) else "type"
            name = value.__name__ if kind == "module" else format_name(value)
            writer.element("opaque", kind=kind, name=name)
            return slot_size

        size = yield self._gather(value)
        return slot_size + size

    def _report_text(self, value: str) -> int:
        self._writer.element("string", length=len(value))
        if value in self.visited:
            return 0
        self.visited.add(value)
        return self.config.char_size * len(value) + self.config.string_header_size

    def _report_struct(self, value: Any) -> int:
        # members are assumed to be plain data; a py_object member makes
        # the layout size unavailable and the struct counts as 0
        writer = self._writer
        try:
            size = layout_size(type(value))
        except LayoutError as exc:
            writer.element("error", msg=f"layout size failed: {exc}")
            self._errors += 1
            size = 0
        writer.element("struct", size=size)
        return size

    def _report_array(self, value: Any, info: ArrayInfo) -> Walk:
        """Report the content of an array; its own slot is not included."""
        writer = self._writer
        if value in self.visited:
            writer.element("seen")
            return 0
        self.visited.add(value)

        count = info.total_length
        if info.rank > 1:
            writer.element("array", length=count, dims="x".join(str(d) for d in info.dims))
        else:
            writer.element("array", length=count)

        if info.kind is ElementKind.FIXED:
            return info.element_size * count

        size = self.config.reference_width * count * info.slots_per_element
        if isinstance(value, dict):
            for key, item in value.items():
                writer.start("entry")
                entry_size = yield self._report_element("key", key)
                entry_size += yield self._report_element("item", item)
                writer.element("total", size=entry_size)
                writer.end()
                size += entry_size
            return size

        for item in iter_elements(value):
            if item is None:
                continue
            if isinstance(item, str) and not isinstance(item, enum.Enum):
                size += self._report_text(item)
            else:
                size += yield self._report_element("item", item)
        return size

    def _gather(self, value: Any) -> Walk:
        """Report the fields of an object reached for the first time."""
        writer = self._writer
        seen = value in self.visited

        if self.inspector.applies(value):
            label = self.inspector.label(value)
            writer.element(
                "identity",
                type=self._type_name(value),
                name=label if label is not None else self.config.missing_label,
                seen=seen,
            )
            if seen:
                return 0
        elif seen:
            writer.element("seen")
            return 0

        self.visited.add(value)
        size = 0
        for f in self.registry.fields_of(value):
            size += yield self._guarded_field(f, value)
        return size


# ============================================================
#  Convenience functions
# ============================================================

def dump_to_string(
    types: Iterable[type] = (),
    instances: Iterable[InstanceRoot] = (),
    modules: Iterable[ModuleType] = (),
    config: Optional[DumpConfig] = None,
    inspector: Optional[IdentityInspector] = None,
) -> Tuple[str, DumpResult]:
    """Dump to memory and return the report text with the result."""
    stream = io.StringIO()
    result = HeapDump(config, inspector).dump(stream, types, instances, modules)
    return stream.getvalue(), result


def dump_to_xml(
    path: str,
    types: Iterable[type] = (),
    instances: Iterable[InstanceRoot] = (),
    modules: Iterable[ModuleType] = (),
    config: Optional[DumpConfig] = None,
    inspector: Optional[IdentityInspector] = None,
) -> DumpResult:
    """Dump to an XML file.

    Raises:
        ReportStreamError: If the file cannot be opened, written or closed
    """
    try:
        stream = open(path, "w", encoding="utf-8")
    except OSError as exc:
        raise ReportStreamError(f"cannot open {path}: {exc}") from exc
    try:
        return HeapDump(config, inspector).dump(stream, types, instances, modules)
    finally:
        try:
            stream.close()
        except OSError as exc:
            raise ReportStreamError(f"cannot close {path}: {exc}") from exc


if __name__ == "__main__":
    from heap_report import summarize_file
    from heap_roots import find_module, module_types

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    target = find_module(sys.argv[1] if len(sys.argv) > 1 else "heap_types")
    output = sys.argv[2] if len(sys.argv) > 2 else "heapdump.xml"

    dump_to_xml(output, types=module_types(target), modules=[target])
    summarize_file(output).print()
