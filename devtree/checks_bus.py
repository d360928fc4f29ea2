"""Checks that recognise PCI, simple-bus, I2C and SPI buses and their addressing."""

from __future__ import annotations

import string

from devtree.checkbase import Check, CheckRegistry, CheckRunner
from devtree.data import Data
from devtree.tree import CELL_SIZE, Bus, Node, Property

PCI_BUS = Bus("PCI")
SIMPLE_BUS = Bus("simple-bus")
I2C_BUS = Bus("i2c-bus")
SPI_BUS = Bus("spi-bus")

I2C_OWN_SLAVE_ADDRESS = 1 << 30
I2C_TEN_BIT_ADDRESS = 1 << 31
_U32_MASK = 0xFFFFFFFF
_U64_MASK = 0xFFFFFFFFFFFFFFFF


def _node_addr_cells(node: Node) -> int:
    return 2 if node.addr_cells == -1 else node.addr_cells


def _node_size_cells(node: Node) -> int:
    return 1 if node.size_cells == -1 else node.size_cells


def _strprefixeq(name: str, length: int, prefix: str) -> bool:
    """True when the first ``length`` characters of ``name`` are exactly ``prefix``."""
    return len(prefix) == length and name[:length] == prefix


def _cstr(value: Data) -> str:
    return bytes(value).split(b"\0", 1)[0].decode("latin-1")


def _words(prop: Property, count: int, start: int = 0) -> list[int]:
    """``count`` big-endian cells from the value, starting at cell ``start``.

    Cells past the end of the value read as zero.
    """
    raw = bytes(prop.val)
    begin = start * CELL_SIZE
    chunk = raw[begin:begin + count * CELL_SIZE].ljust(count * CELL_SIZE, b"\0")
    return [
        int.from_bytes(chunk[i:i + CELL_SIZE], "big")
        for i in range(0, len(chunk), CELL_SIZE)
    ]


def _parent_bus(node: Node) -> Bus | None:
    return node.parent.bus if node.parent is not None else None


# PCI


def _check_pci_bridge(runner: CheckRunner, check: Check, node: Node) -> None:
    prop = node.get_property("device_type")
    if prop is None or _cstr(prop.val) != "pci":
        return

    node.bus = PCI_BUS

    n = node.basenamelen
    if not _strprefixeq(node.name, n, "pci") and not _strprefixeq(node.name, n, "pcie"):
        runner.fail(check, node, 'node name is not "pci" or "pcie"')

    if node.get_property("ranges") is None:
        runner.fail(check, node, "missing ranges for PCI bridge (or not a bridge)")

    if _node_addr_cells(node) != 3:
        runner.fail(check, node, "incorrect #address-cells for PCI bridge")
    if _node_size_cells(node) != 2:
        runner.fail(check, node, "incorrect #size-cells for PCI bridge")

    prop = node.get_property("bus-range")
    if prop is None:
        return
    if len(prop.val) != CELL_SIZE * 2:
        runner.fail_prop(check, node, prop, "value must be 2 cells")
        return
    first, last = _words(prop, 2)
    if first > last:
        runner.fail_prop(
            check, node, prop, "1st cell must be less than or equal to 2nd cell"
        )
    if last > 0xFF:
        runner.fail_prop(
            check, node, prop, "maximum bus number must be less than 256"
        )


def _check_pci_device_bus_num(runner: CheckRunner, check: Check, node: Node) -> None:
    if _parent_bus(node) is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return

    bus_num = (_words(prop, 1)[0] & 0x00FF0000) >> 16

    assert node.parent is not None
    prop = node.parent.get_property("bus-range")
    if prop is None:
        min_bus = max_bus = 0
    else:
        min_bus, max_bus = _words(prop, 2)
    if bus_num < min_bus or bus_num > max_bus:
        runner.fail_prop(
            check,
            node,
            prop,
            f"PCI bus number {bus_num} out of range, expected ({min_bus} - {max_bus})",
        )


def _check_pci_device_reg(runner: CheckRunner, check: Check, node: Node) -> None:
    if _parent_bus(node) is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return

    reg, cell1, cell2 = _words(prop, 3)
    if cell1 or cell2:
        runner.fail_prop(
            check, node, prop, "PCI reg config space address cells 2 and 3 must be 0"
        )

    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8

    if reg & 0xFF000000:
        runner.fail_prop(
            check, node, prop, "PCI reg address is not configuration space"
        )
    if reg & 0x000000FF:
        runner.fail_prop(
            check,
            node,
            prop,
            "PCI reg config space address register number must be 0",
        )

    unitname = node.unitname
    if func == 0 and unitname == f"{dev:x}":
        return
    unit_addr = f"{dev:x},{func:x}"
    if unitname == unit_addr:
        return
    runner.fail(
        check, node, f'PCI unit address format error, expected "{unit_addr}"'
    )


# simple-bus


def _check_simple_bus_bridge(runner: CheckRunner, check: Check, node: Node) -> None:
    if node.is_compatible("simple-bus"):
        node.bus = SIMPLE_BUS


def _check_simple_bus_reg(runner: CheckRunner, check: Check, node: Node) -> None:
    parent = node.parent
    if parent is None or parent.bus is not SIMPLE_BUS:
        return

    source: Property | None = None
    start = 0
    prop = node.get_property("reg")
    if prop is not None:
        if len(prop.val):
            source = prop
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # skip over the child address
            source = prop
            start = _node_addr_cells(node)

    if source is None:
        if parent.parent is not None and node.bus is not SIMPLE_BUS:
            runner.fail(check, node, "missing or empty reg/ranges property")
        return

    reg = 0
    for word in _words(source, _node_addr_cells(parent), start):
        reg = ((reg << 32) | word) & _U64_MASK

    unit_addr = f"{reg:x}"
    if node.unitname != unit_addr:
        runner.fail(
            check,
            node,
            f'simple-bus unit address format error, expected "{unit_addr}"',
        )


# I2C


def _check_i2c_bus_bridge(runner: CheckRunner, check: Check, node: Node) -> None:
    n = node.basenamelen
    if _strprefixeq(node.name, n, "i2c-bus") or _strprefixeq(node.name, n, "i2c-arb"):
        node.bus = I2C_BUS
    elif _strprefixeq(node.name, n, "i2c"):
        for child in node.children:
            if _strprefixeq(child.name, n, "i2c-bus"):
                return
        node.bus = I2C_BUS
    else:
        return

    if not node.children:
        return

    if _node_addr_cells(node) != 1:
        runner.fail(check, node, "incorrect #address-cells for I2C bus")
    if _node_size_cells(node) != 0:
        runner.fail(check, node, "incorrect #size-cells for I2C bus")


def _check_i2c_bus_reg(runner: CheckRunner, check: Check, node: Node) -> None:
    if _parent_bus(node) is not I2C_BUS:
        return

    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        runner.fail(check, node, "missing or empty reg property")
        return

    count = -(-len(prop.val) // CELL_SIZE)
    words = _words(prop, count)
    keep = _U32_MASK & ~I2C_OWN_SLAVE_ADDRESS

    unit_addr = f"{words[0] & keep:x}"
    if node.unitname != unit_addr:
        runner.fail(
            check, node, f'I2C bus unit address format error, expected "{unit_addr}"'
        )

    for word in words:
        reg = word & keep
        if reg & I2C_TEN_BIT_ADDRESS:
            if (reg & ~I2C_TEN_BIT_ADDRESS) > 0x3FF:
                runner.fail_prop(
                    check,
                    node,
                    prop,
                    f'I2C address must be less than 10-bits, got "0x{reg:x}"',
                )
        elif reg > 0x7F:
            runner.fail_prop(
                check,
                node,
                prop,
                f'I2C address must be less than 7-bits, got "0x{reg:x}". '
                "Set I2C_TEN_BIT_ADDRESS for 10 bit addresses or fix the property",
            )


# SPI


def _check_spi_bus_bridge(runner: CheckRunner, check: Check, node: Node) -> None:
    spi_addr_cells = 1

    if _strprefixeq(node.name, node.basenamelen, "spi"):
        node.bus = SPI_BUS
    else:
        # Try to detect SPI buses which don't have a proper node name
        if _node_addr_cells(node) != 1 or _node_size_cells(node) != 0:
            return
        if any(
            prop.name.startswith("spi-")
            for child in node.children
            for prop in child.properties
        ):
            node.bus = SPI_BUS
        if node.bus is SPI_BUS and node.get_property("reg") is not None:
            runner.fail(check, node, "node name for SPI buses should be 'spi'")

    if node.bus is not SPI_BUS or not node.children:
        return

    if node.get_property("spi-slave") is not None:
        spi_addr_cells = 0
    if _node_addr_cells(node) != spi_addr_cells:
        runner.fail(check, node, "incorrect #address-cells for SPI bus")
    if _node_size_cells(node) != 0:
        runner.fail(check, node, "incorrect #size-cells for SPI bus")


def _check_spi_bus_reg(runner: CheckRunner, check: Check, node: Node) -> None:
    parent = node.parent
    if parent is None or parent.bus is not SPI_BUS:
        return
    if parent.get_property("spi-slave") is not None:
        return

    prop = node.get_property("reg")
    if prop is None or not len(prop.val):
        runner.fail(check, node, "missing or empty reg property")
        return

    unit_addr = f"{_words(prop, 1)[0]:x}"
    if node.unitname != unit_addr:
        runner.fail(
            check, node, f'SPI bus unit address format error, expected "{unit_addr}"'
        )


# Generic unit address


def _check_unit_address_format(runner: CheckRunner, check: Check, node: Node) -> None:
    if _parent_bus(node) is not None:
        return
    unitname = node.unitname
    if not unitname:
        return
    if unitname.startswith("0x"):
        runner.fail(check, node, 'unit name should not have leading "0x"')
        unitname = unitname[2:]
    if (
        len(unitname) > 1
        and unitname[0] == "0"
        and unitname[1] in string.hexdigits
    ):
        runner.fail(check, node, "unit name should not have leading 0s")


def register(registry: CheckRegistry) -> None:
    """Add the bus checks; the structural checks must already be registered."""
    addr_size_cells = registry.get("addr_size_cells")
    reg_format = registry.get("reg_format")
    device_type_is_string = registry.get("device_type_is_string")
    compatible_is_string_list = registry.get("compatible_is_string_list")
    node_name_format = registry.get("node_name_format")

    def warning(name, fn, *prereqs):
        return Check(name=name, fn=fn, warn=True, prereqs=list(prereqs))

    pci_bridge = warning(
        "pci_bridge", _check_pci_bridge, device_type_is_string, addr_size_cells
    )
    simple_bus_bridge = warning(
        "simple_bus_bridge",
        _check_simple_bus_bridge,
        addr_size_cells,
        compatible_is_string_list,
    )
    i2c_bus_bridge = warning("i2c_bus_bridge", _check_i2c_bus_bridge, addr_size_cells)
    spi_bus_bridge = warning("spi_bus_bridge", _check_spi_bus_bridge, addr_size_cells)

    for check in (
        warning(
            "unit_address_format",
            _check_unit_address_format,
            node_name_format,
            pci_bridge,
            simple_bus_bridge,
        ),
        pci_bridge,
        warning("pci_device_reg", _check_pci_device_reg, reg_format, pci_bridge),
        warning(
            "pci_device_bus_num", _check_pci_device_bus_num, reg_format, pci_bridge
        ),
        simple_bus_bridge,
        warning(
            "simple_bus_reg", _check_simple_bus_reg, reg_format, simple_bus_bridge
        ),
        i2c_bus_bridge,
        warning("i2c_bus_reg", _check_i2c_bus_reg, reg_format, i2c_bus_bridge),
        spi_bus_bridge,
        warning("spi_bus_reg", _check_spi_bus_reg, reg_format, spi_bus_bridge),
    ):
        registry.add(check)