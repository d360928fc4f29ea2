"""Structural and semantic checks on node names, properties and cell sizes."""

from __future__ import annotations

import string

from devtree.checkbase import Check, CheckRegistry, CheckRunner, is_multiple_of
from devtree.data import Data, Marker, MarkerType
from devtree.tree import (
    CELL_SIZE,
    Node,
    Property,
    get_marker_label,
    get_node_by_label,
    get_node_by_path,
    get_property_by_label,
)

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
NODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+-@"
PROPCHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARSSTRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"
_ALIASCHARS = LOWERCASE + DIGITS + "-"


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of ``text`` made only of ``allowed`` characters."""
    for index, char in enumerate(text):
        if char not in allowed:
            return index
    return len(text)


def _cstr(value: Data) -> str:
    """The value read as a C string: everything before the first NUL."""
    raw = bytes(value)
    return raw.split(b"\0", 1)[0].decode("latin-1")


def _node_addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _node_size_cells(node: Node) -> int:
    return 1 if node.size_cells == -1 else node.size_cells


# Property type helpers


def _require_string(runner: CheckRunner, check: Check, node: Node, propname: str) -> None:
    prop = node.get_property(propname)
    if prop is None:
        return
    if not prop.val.is_one_string():
        runner.fail_prop(check, node, prop, "property is not a string")


def _require_string_list(
    runner: CheckRunner, check: Check, node: Node, propname: str
) -> None:
    prop = node.get_property(propname)
    if prop is None:
        return
    raw = bytes(prop.val)
    if raw and raw[-1] != 0:
        runner.fail_prop(check, node, prop, "property is not a string list")


def _check_is_string(runner: CheckRunner, check: Check, node: Node) -> None:
    _require_string(runner, check, node, check.data)


def _check_is_string_list(runner: CheckRunner, check: Check, node: Node) -> None:
    _require_string_list(runner, check, node, check.data)


def _check_is_cell(runner: CheckRunner, check: Check, node: Node) -> None:
    prop = node.get_property(check.data)
    if prop is None:
        return
    if len(prop.val) != CELL_SIZE:
        runner.fail_prop(check, node, prop, "property is not a single cell")


def _check_always_fail(runner: CheckRunner, check: Check, node: Node) -> None:
    runner.fail(check, node, "always_fail check")


# Structural checks


def _check_duplicate_node_names(runner: CheckRunner, check: Check, node: Node) -> None:
    siblings = node.all_children
    for index, child in enumerate(siblings):
        if child.deleted:
            continue
        for other in siblings[index + 1:]:
            if child.name == other.name:
                runner.fail(check, other, "Duplicate node name")


def _check_duplicate_property_names(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    props = node.properties
    for index, prop in enumerate(props):
        for other in props[index + 1:]:
            if prop.name == other.name:
                runner.fail_prop(check, node, prop, "Duplicate property name")


def _check_node_name_chars(runner: CheckRunner, check: Check, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < len(node.name):
        runner.fail(check, node, f"Bad character '{node.name[n]}' in node name")


def _check_node_name_chars_strict(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    n = _span(node.name, check.data)
    if n < node.basenamelen:
        runner.fail(
            check, node, f"Character '{node.name[n]}' not recommended in node name"
        )


def _check_node_name_format(runner: CheckRunner, check: Check, node: Node) -> None:
    if "@" in node.unitname:
        runner.fail(check, node, "multiple '@' characters in node name")


def _check_node_name_vs_property_name(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    if node.parent is None:
        return
    if node.parent.get_property(node.name) is not None:
        runner.fail(check, node, "node name and property name conflict")


def _check_unit_address_vs_reg(runner: CheckRunner, check: Check, node: Node) -> None:
    if node.get_subnode("__overlay__") is not None:
        # Overlay fragments are a special case
        return
    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None
    unitname = node.unitname
    if prop is not None:
        if not unitname:
            runner.fail(
                check, node, "node has a reg or ranges property, but no unit name"
            )
    elif unitname:
        runner.fail(check, node, "node has a unit name, but no reg or ranges property")


def _check_property_name_chars(runner: CheckRunner, check: Check, node: Node) -> None:
    for prop in node.properties:
        n = _span(prop.name, check.data)
        if n < len(prop.name):
            runner.fail_prop(
                check, node, prop, f"Bad character '{prop.name[n]}' in property name"
            )


def _check_property_name_chars_strict(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    for prop in node.properties:
        name = prop.name
        n = _span(name, check.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' is only allowed at the start of a name, after any vendor prefix.
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, check.data)
        if n < len(name):
            runner.fail_prop(
                check,
                node,
                prop,
                f"Character '{name[n]}' not recommended in property name",
            )


def _describe_label(node: Node, prop: Property | None, mark: Marker | None) -> str:
    desc = "value of " if mark is not None else ""
    if prop is not None:
        desc += f"'{prop.name}' in "
    return desc + node.fullpath


def _check_duplicate_label(
    runner: CheckRunner,
    check: Check,
    label: str,
    node: Node,
    prop: Property | None,
    mark: Marker | None,
) -> None:
    root = runner.dti.dt
    othernode = get_node_by_label(root, label)
    otherprop: Property | None = None
    othermark: Marker | None = None
    if othernode is None:
        found = get_property_by_label(root, label)
        if found is not None:
            otherprop, othernode = found
    if othernode is None:
        found_mark = get_marker_label(root, label)
        if found_mark is not None:
            othermark, othernode, otherprop = found_mark
    if othernode is None:
        return
    if othernode is not node or otherprop is not prop or othermark is not mark:
        runner.fail(
            check,
            node,
            f"Duplicate label '{label}' on {_describe_label(node, prop, mark)}"
            f" and {_describe_label(othernode, otherprop, othermark)}",
        )


def _check_duplicate_label_node(runner: CheckRunner, check: Check, node: Node) -> None:
    for label in list(node.labels):
        _check_duplicate_label(runner, check, label, node, None, None)
    for prop in node.properties:
        for label in list(prop.labels):
            _check_duplicate_label(runner, check, label, node, prop, None)
        for mark in list(prop.val.markers_of_type(MarkerType.LABEL)):
            _check_duplicate_label(runner, check, mark.ref, node, prop, mark)


def _check_name_properties(runner: CheckRunner, check: Check, node: Node) -> None:
    prop = next((p for p in node.properties if p.name == "name"), None)
    if prop is None:
        return
    raw = bytes(prop.val)
    base = node.name.encode("latin-1")[: node.basenamelen]
    if len(raw) != node.basenamelen + 1 or raw[: node.basenamelen] != base:
        runner.fail(
            check,
            node,
            f'"name" property is incorrect ("{_cstr(prop.val)}" instead'
            " of base node name)",
        )
    else:
        # The name property is correct, and therefore redundant.
        node.remove_property(prop)


# Semantic checks


def _check_names_is_string_list(runner: CheckRunner, check: Check, node: Node) -> None:
    for prop in node.properties:
        if prop.name.endswith("-names"):
            _require_string_list(runner, check, node, prop.name)


def _check_alias_paths(runner: CheckRunner, check: Check, node: Node) -> None:
    if node.name != "aliases":
        return
    for prop in node.properties:
        if prop.name in ("phandle", "linux,phandle"):
            continue
        target = _cstr(prop.val)
        if not len(prop.val) or get_node_by_path(runner.dti.dt, target) is None:
            runner.fail_prop(
                check, node, prop, f"aliases property is not a valid node ({target})"
            )
            continue
        if _span(prop.name, _ALIASCHARS) != len(prop.name):
            runner.fail(
                check, node, "aliases property name must include only lowercase and '-'"
            )


def _fixup_addr_size_cells(runner: CheckRunner, check: Check, node: Node) -> None:
    node.addr_cells = -1
    node.size_cells = -1
    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell()
    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell()


def _check_reg_format(runner: CheckRunner, check: Check, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if node.parent is None:
        runner.fail(check, node, 'Root node has a "reg" property')
        return
    length = len(prop.val)
    if length == 0:
        runner.fail_prop(check, node, prop, "property is empty")
    addr_cells = _node_addr_cells(node.parent)
    size_cells = _node_size_cells(node.parent)
    entrylen = (addr_cells + size_cells) * CELL_SIZE
    if not is_multiple_of(length, entrylen):
        runner.fail_prop(
            check,
            node,
            prop,
            f"property has invalid length ({length} bytes) "
            f"(#address-cells == {addr_cells}, #size-cells == {size_cells})",
        )


def _check_ranges_format(runner: CheckRunner, check: Check, node: Node) -> None:
    ranges = check.data
    prop = node.get_property(ranges)
    if prop is None:
        return
    parent = node.parent
    if parent is None:
        runner.fail_prop(check, node, prop, f'Root node has a "{ranges}" property')
        return
    p_addr_cells = _node_addr_cells(parent)
    p_size_cells = _node_size_cells(parent)
    c_addr_cells = _node_addr_cells(node)
    c_size_cells = _node_size_cells(node)
    entrylen = (p_addr_cells + c_addr_cells + c_size_cells) * CELL_SIZE
    length = len(prop.val)

    if length == 0:
        if p_addr_cells != c_addr_cells:
            runner.fail_prop(
                check,
                node,
                prop,
                f'empty "{ranges}" property but its #address-cells ({c_addr_cells})'
                f" differs from {parent.fullpath} ({p_addr_cells})",
            )
        if p_size_cells != c_size_cells:
            runner.fail_prop(
                check,
                node,
                prop,
                f'empty "{ranges}" property but its #size-cells ({c_size_cells})'
                f" differs from {parent.fullpath} ({p_size_cells})",
            )
    elif not is_multiple_of(length, entrylen):
        runner.fail_prop(
            check,
            node,
            prop,
            f'"{ranges}" property has invalid length ({length} bytes) '
            f"(parent #address-cells == {p_addr_cells}, child #address-cells == "
            f"{c_addr_cells}, #size-cells == {c_size_cells})",
        )


# Style checks


def _check_avoid_default_addr_size(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    parent = node.parent
    if parent is None:
        return
    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return
    if parent.addr_cells == -1:
        runner.fail(check, node, "Relying on default #address-cells value")
    if parent.size_cells == -1:
        runner.fail(check, node, "Relying on default #size-cells value")


def _check_avoid_unnecessary_addr_size(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    if node.parent is None or node.addr_cells < 0 or node.size_cells < 0:
        return
    if (
        node.get_property("ranges") is not None
        or node.get_property("dma-ranges") is not None
        or not node.children
    ):
        return
    for child in node.children:
        if child.get_property("reg") is not None or child.get_property("ranges") is not None:
            return
    runner.fail(
        check,
        node,
        'unnecessary #address-cells/#size-cells without "ranges", "dma-ranges"'
        ' or child "reg" or "ranges" property',
    )


def _node_is_disabled(node: Node) -> bool:
    prop = node.get_property("status")
    return prop is not None and _cstr(prop.val) == "disabled"


def _unique_unit_address(
    runner: CheckRunner, check: Check, node: Node, disable_check: bool
) -> None:
    if node.addr_cells < 0 or node.size_cells < 0:
        return
    children = node.children
    for childa in children:
        addr_a = childa.unitname
        if not addr_a:
            continue
        if disable_check and _node_is_disabled(childa):
            continue
        for childb in children:
            if childb is childa:
                break
            if disable_check and _node_is_disabled(childb):
                continue
            if addr_a == childb.unitname:
                runner.fail(
                    check,
                    childb,
                    f"duplicate unit-address (also used in node {childa.fullpath})",
                )


def _check_unique_unit_address(runner: CheckRunner, check: Check, node: Node) -> None:
    _unique_unit_address(runner, check, node, False)


def _check_unique_unit_address_if_enabled(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    _unique_unit_address(runner, check, node, True)


def _check_obsolete_chosen_interrupt_controller(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    root = runner.dti.dt
    if node is not root:
        return
    chosen = get_node_by_path(root, "/chosen")
    if chosen is None:
        return
    prop = chosen.get_property("interrupt-controller")
    if prop is not None:
        runner.fail_prop(
            check, node, prop, '/chosen has obsolete "interrupt-controller" property'
        )


def _check_chosen_node_is_root(runner: CheckRunner, check: Check, node: Node) -> None:
    if node.name != "chosen":
        return
    if node.parent is not runner.dti.dt:
        runner.fail(check, node, "chosen node must be at root node")


def _check_chosen_node_bootargs(runner: CheckRunner, check: Check, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("bootargs")
    if prop is None:
        return
    _require_string(runner, check, node, prop.name)


def _check_chosen_node_stdout_path(
    runner: CheckRunner, check: Check, node: Node
) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("stdout-path")
    if prop is None:
        prop = node.get_property("linux,stdout-path")
        if prop is None:
            return
        runner.fail_prop(check, node, prop, "Use 'stdout-path' instead")
    _require_string(runner, check, node, prop.name)


def register(registry: CheckRegistry) -> None:
    """Add the structural, semantic and style checks to ``registry``."""

    def add(name, fn, data=None, *, warn=False, error=False, prereqs=()):
        return registry.add(
            Check(name=name, fn=fn, data=data, warn=warn, error=error,
                  prereqs=list(prereqs))
        )

    add("duplicate_node_names", _check_duplicate_node_names, error=True)
    add("duplicate_property_names", _check_duplicate_property_names, error=True)
    node_name_chars = add(
        "node_name_chars", _check_node_name_chars, NODECHARS, error=True
    )
    add("node_name_format", _check_node_name_format, error=True,
        prereqs=[node_name_chars])
    add("property_name_chars", _check_property_name_chars, PROPCHARS, error=True)
    name_is_string = add("name_is_string", _check_is_string, "name", error=True)
    add("name_properties", _check_name_properties, error=True,
        prereqs=[name_is_string])
    add("node_name_vs_property_name", _check_node_name_vs_property_name, warn=True,
        prereqs=[node_name_chars])
    add("duplicate_label", _check_duplicate_label_node, error=True)

    address_cells_is_cell = add(
        "address_cells_is_cell", _check_is_cell, "#address-cells", warn=True
    )
    size_cells_is_cell = add(
        "size_cells_is_cell", _check_is_cell, "#size-cells", warn=True
    )
    add("device_type_is_string", _check_is_string, "device_type", warn=True)
    add("model_is_string", _check_is_string, "model", warn=True)
    add("status_is_string", _check_is_string, "status", warn=True)
    add("label_is_string", _check_is_string, "label", warn=True)
    add("compatible_is_string_list", _check_is_string_list, "compatible", warn=True)
    add("names_is_string_list", _check_names_is_string_list, warn=True)

    add("property_name_chars_strict", _check_property_name_chars_strict,
        PROPNODECHARSSTRICT)
    add("node_name_chars_strict", _check_node_name_chars_strict, PROPNODECHARSSTRICT)

    addr_size_cells = add(
        "addr_size_cells", _fixup_addr_size_cells, warn=True,
        prereqs=[address_cells_is_cell, size_cells_is_cell],
    )
    add("reg_format", _check_reg_format, warn=True, prereqs=[addr_size_cells])
    add("ranges_format", _check_ranges_format, "ranges", warn=True,
        prereqs=[addr_size_cells])
    add("dma_ranges_format", _check_ranges_format, "dma-ranges", warn=True,
        prereqs=[addr_size_cells])

    add("unit_address_vs_reg", _check_unit_address_vs_reg, warn=True)

    avoid_default = add(
        "avoid_default_addr_size", _check_avoid_default_addr_size, warn=True,
        prereqs=[addr_size_cells],
    )
    add("avoid_unnecessary_addr_size", _check_avoid_unnecessary_addr_size,
        warn=True, prereqs=[avoid_default])
    add("unique_unit_address", _check_unique_unit_address, warn=True,
        prereqs=[avoid_default])
    add("unique_unit_address_if_enabled", _check_unique_unit_address_if_enabled,
        prereqs=[avoid_default])
    add("obsolete_chosen_interrupt_controller",
        _check_obsolete_chosen_interrupt_controller, warn=True)
    add("chosen_node_is_root", _check_chosen_node_is_root, warn=True)
    add("chosen_node_bootargs", _check_chosen_node_bootargs, warn=True)
    add("chosen_node_stdout_path", _check_chosen_node_stdout_path, warn=True)

    add("alias_paths", _check_alias_paths, warn=True)
    add("always_fail", _check_always_fail)