"""In-memory device tree: nodes, properties and lookups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from devtree.data import Data, Marker, MarkerType

CELL_SIZE = 4
_INVALID_PHANDLE = 0xFFFFFFFF


@dataclass(frozen=True)
class Bus:
    """A bus type a node has been recognised as bridging."""

    name: str


@dataclass(eq=False)
class Property:
    """A named property with its value."""

    name: str
    val: Data = field(default_factory=Data)
    labels: list[str] = field(default_factory=list)
    srcpos: tuple[str, ...] = ()
    deleted: bool = False

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val) != CELL_SIZE:
            raise ValueError(f"property {self.name!r} is not a single cell")
        return int.from_bytes(self.val.val, "big")

    def cell_n(self, index: int) -> int:
        """The ``index``-th 32-bit cell of the value."""
        if not 0 <= index < len(self.val) // CELL_SIZE:
            raise IndexError(f"cell {index} out of range in {self.name!r}")
        start = index * CELL_SIZE
        return int.from_bytes(self.val.val[start:start + CELL_SIZE], "big")

    def strings(self) -> list[str]:
        """The value split into its NUL-separated strings."""
        raw = bytes(self.val)
        result = []
        start = 0
        while start < len(raw):
            end = raw.find(b"\0", start)
            if end < 0:
                end = len(raw)
            result.append(raw[start:end].decode("latin-1"))
            start = end + 1
        return result


@dataclass(eq=False)
class Node:
    """A tree node; deleted children and properties stay listed but hidden."""

    name: str = ""
    labels: list[str] = field(default_factory=list)
    srcpos: tuple[str, ...] = ()
    parent: Node | None = field(default=None, repr=False)
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    bus: Bus | None = None
    omit_if_unused: bool = False
    is_referenced: bool = False
    deleted: bool = False
    all_properties: list[Property] = field(default_factory=list)
    all_children: list[Node] = field(default_factory=list, repr=False)

    @property
    def properties(self) -> list[Property]:
        return [p for p in self.all_properties if not p.deleted]

    @property
    def children(self) -> list[Node]:
        return [c for c in self.all_children if not c.deleted]

    @property
    def basename(self) -> str:
        return self.name.partition("@")[0]

    @property
    def basenamelen(self) -> int:
        return len(self.basename)

    @property
    def unitname(self) -> str:
        return self.name.partition("@")[2]

    @property
    def fullpath(self) -> str:
        if self.parent is None:
            return "/"
        prefix = self.parent.fullpath
        return prefix + self.name if prefix.endswith("/") else f"{prefix}/{self.name}"

    def add_child(self, child: Node) -> Node:
        child.parent = self
        self.all_children.append(child)
        return child

    def add_property(self, prop: Property) -> Property:
        self.all_properties.append(prop)
        return prop

    def get_property(self, name: str) -> Property | None:
        return next((p for p in self.properties if p.name == name), None)

    def get_subnode(self, name: str) -> Node | None:
        return next((c for c in self.children if c.name == name), None)

    def remove_property(self, prop: Property) -> None:
        """Drop a property from the node entirely."""
        for index, candidate in enumerate(self.all_properties):
            if candidate is prop:
                del self.all_properties[index]
                return
        raise ValueError(f"property {prop.name!r} not in node {self.fullpath}")

    def delete(self) -> None:
        """Mark this node, its properties and its subtree as deleted."""
        self.deleted = True
        for child in self.all_children:
            child.delete()
        for prop in self.all_properties:
            prop.deleted = True
            prop.labels.clear()
        self.labels.clear()

    def walk(self) -> Iterator[Node]:
        """Yield this node and its live descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def is_compatible(self, compat: str) -> bool:
        prop = self.get_property("compatible")
        return prop is not None and compat in prop.strings()


@dataclass
class DtInfo:
    """A tree together with the settings it was built under."""

    dt: Node
    outname: str = "-"
    plugin: bool = False
    generate_symbols: bool = False


def phandle_is_valid(phandle: int) -> bool:
    return phandle not in (0, -1, _INVALID_PHANDLE)


def get_node_by_path(root: Node, path: str) -> Node | None:
    """Find a node by its absolute path of exact node names."""
    node = root
    for component in path.split("/"):
        if not component:
            continue
        node = node.get_subnode(component)
        if node is None:
            return None
    return node


def get_node_by_label(root: Node, label: str) -> Node | None:
    return next((n for n in root.walk() if label in n.labels), None)


def get_property_by_label(root: Node, label: str) -> tuple[Property, Node] | None:
    for node in root.walk():
        for prop in node.properties:
            if label in prop.labels:
                return prop, node
    return None


def get_marker_label(root: Node, label: str) -> tuple[Marker, Node, Property] | None:
    for node in root.walk():
        for prop in node.properties:
            for marker in prop.val.markers_of_type(MarkerType.LABEL):
                if marker.ref == label:
                    return marker, node, prop
    return None


def get_node_by_phandle(root: Node, phandle: int) -> Node | None:
    if not phandle_is_valid(phandle):
        return None
    return next((n for n in root.walk() if n.phandle == phandle), None)


def get_node_by_ref(root: Node, ref: str) -> Node | None:
    """Resolve a reference given as a path or a label."""
    if ref == "/":
        return root
    if ref.startswith("/"):
        return get_node_by_path(root, ref)
    return get_node_by_label(root, ref)


def get_node_phandle(root: Node, node: Node) -> int:
    """Return the node's phandle, allocating an unused one if needed."""
    if phandle_is_valid(node.phandle):
        return node.phandle
    used = {n.phandle for n in root.walk()}
    candidate = 1
    while candidate in used:
        candidate += 1
    node.phandle = candidate
    if node.get_property("phandle") is None:
        value = Data().add_marker(MarkerType.TYPE_UINT32).append_cell(candidate)
        node.add_property(Property("phandle", value))
    return candidate