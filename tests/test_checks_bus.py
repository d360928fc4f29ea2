import pytest

from devtree import checks_bus, checks_structural
from devtree.checkbase import CheckRegistry, CheckRunner, CheckStatus
from devtree.data import Data
from devtree.tree import DtInfo, Node, Property


def cells(*values):
    data = Data()
    for value in values:
        data.append_cell(value)
    return data


def text(value):
    return Data(bytearray(value.encode() + b"\0"))


def make_node(name, props=(), children=()):
    node = Node(name=name)
    for prop_name, value in props:
        node.add_property(Property(prop_name, value))
    for child in children:
        node.add_child(child)
    return node


def make_registry():
    registry = CheckRegistry()
    checks_structural.register(registry)
    checks_bus.register(registry)
    return registry


def run(root, name):
    registry = make_registry()
    runner = CheckRunner(DtInfo(root), stream=None)
    runner.run(registry.get(name))
    return runner, registry.get(name)


def texts(runner):
    return [m.text for m in runner.messages]


def pci_tree(node_name="pci@0", child=None, extra=()):
    props = [
        ("device_type", text("pci")),
        ("#address-cells", cells(3)),
        ("#size-cells", cells(2)),
        ("ranges", Data()),
        *extra,
    ]
    pci = make_node(node_name, props, [child] if child else [])
    return make_node("", children=[pci]), pci


def test_register_needs_structural_checks():
    with pytest.raises(KeyError):
        checks_bus.register(CheckRegistry())


def test_registered_names():
    registry = make_registry()
    for name in (
        "pci_bridge",
        "pci_device_reg",
        "pci_device_bus_num",
        "simple_bus_bridge",
        "simple_bus_reg",
        "i2c_bus_bridge",
        "i2c_bus_reg",
        "spi_bus_bridge",
        "spi_bus_reg",
        "unit_address_format",
    ):
        assert name in registry


def test_pci_bridge_recognised():
    root, pci = pci_tree()
    runner, check = run(root, "pci_bridge")
    assert check.status is CheckStatus.PASSED
    assert pci.bus is checks_bus.PCI_BUS
    assert pci.bus.name == "PCI"


def test_pci_bridge_bad_name():
    root, _ = pci_tree("bridge@0")
    runner, check = run(root, "pci_bridge")
    assert check.status is CheckStatus.FAILED
    assert 'node name is not "pci" or "pcie"' in texts(runner)


def test_pci_bridge_bus_range_order():
    root, _ = pci_tree(extra=[("bus-range", cells(3, 1))])
    runner, _ = run(root, "pci_bridge")
    assert "1st cell must be less than or equal to 2nd cell" in texts(runner)


def test_pci_bridge_bus_range_size():
    root, _ = pci_tree(extra=[("bus-range", cells(0))])
    runner, _ = run(root, "pci_bridge")
    assert texts(runner) == ["value must be 2 cells"]


def test_pci_device_reg_matches():
    child = make_node("dev@1", [("reg", cells(0x0800, 0, 0, 0, 0))])
    root, _ = pci_tree(child=child)
    runner, check = run(root, "pci_device_reg")
    assert check.status is CheckStatus.PASSED
    assert runner.messages == []


def test_pci_device_bus_num_out_of_range():
    child = make_node("dev@1", [("reg", cells(0x00020800, 0, 0, 0, 0))])
    root, _ = pci_tree(child=child, extra=[("bus-range", cells(0, 1))])
    runner, check = run(root, "pci_device_bus_num")
    assert check.status is CheckStatus.FAILED
    assert texts(runner) == ["PCI bus number 2 out of range, expected (0 - 1)"]


def test_pci_bridge_prereq_failure():
    pci = make_node(
        "pci@0",
        [("device_type", cells(1)), ("ranges", Data())],
    )
    root = make_node("", children=[pci])
    runner, check = run(root, "pci_bridge")
    assert check.status is CheckStatus.PREREQ
    assert "Failed prerequisite 'device_type_is_string'" in texts(runner)


def simple_bus_tree(child):
    soc = make_node(
        "soc",
        [
            ("compatible", text("simple-bus")),
            ("#address-cells", cells(1)),
            ("#size-cells", cells(1)),
            ("ranges", Data()),
        ],
        [child],
    )
    return make_node("", children=[soc]), soc


def test_simple_bus_reg_ok():
    root, soc = simple_bus_tree(make_node("dev@1000", [("reg", cells(0x1000, 0x10))]))
    runner, check = run(root, "simple_bus_reg")
    assert soc.bus is checks_bus.SIMPLE_BUS
    assert check.status is CheckStatus.PASSED


def test_simple_bus_reg_mismatch():
    root, _ = simple_bus_tree(make_node("dev@100", [("reg", cells(0x1000, 0x10))]))
    runner, _ = run(root, "simple_bus_reg")
    assert texts(runner) == [
        'simple-bus unit address format error, expected "1000"'
    ]


def test_simple_bus_missing_reg():
    root, _ = simple_bus_tree(make_node("dev"))
    runner, _ = run(root, "simple_bus_reg")
    assert texts(runner) == ["missing or empty reg/ranges property"]


def i2c_tree(*children, size_cells=0):
    bus = make_node(
        "i2c",
        [("#address-cells", cells(1)), ("#size-cells", cells(size_cells))],
        children,
    )
    return make_node("", children=[bus]), bus


def test_i2c_bus_reg_ok():
    root, bus = i2c_tree(make_node("eeprom@50", [("reg", cells(0x50))]))
    runner, check = run(root, "i2c_bus_reg")
    assert bus.bus is checks_bus.I2C_BUS
    assert check.status is CheckStatus.PASSED


def test_i2c_bus_reg_seven_bit_limit():
    root, _ = i2c_tree(make_node("dev@80", [("reg", cells(0x80))]))
    runner, check = run(root, "i2c_bus_reg")
    assert check.status is CheckStatus.FAILED
    assert len(runner.messages) == 1
    assert runner.messages[0].text.startswith("I2C address must be less than 7-bits")


def test_i2c_bus_reg_missing():
    root, _ = i2c_tree(make_node("dev"))
    runner, _ = run(root, "i2c_bus_reg")
    assert texts(runner) == ["missing or empty reg property"]


def test_i2c_bridge_size_cells():
    root, _ = i2c_tree(make_node("dev@50", [("reg", cells(0x50))]), size_cells=1)
    runner, _ = run(root, "i2c_bus_bridge")
    assert texts(runner) == ["incorrect #size-cells for I2C bus"]


def test_spi_bridge_detected_by_child_property():
    flash = make_node("flash@0", [("reg", cells(0)), ("spi-max-frequency", cells(1))])
    ctrl = make_node(
        "ctrl@0",
        [
            ("reg", cells(0, 0, 0)),
            ("#address-cells", cells(1)),
            ("#size-cells", cells(0)),
        ],
        [flash],
    )
    root = make_node("", children=[ctrl])
    runner, _ = run(root, "spi_bus_bridge")
    assert ctrl.bus is checks_bus.SPI_BUS
    assert texts(runner) == ["node name for SPI buses should be 'spi'"]


def test_spi_bridge_bad_size_cells():
    spi = make_node(
        "spi",
        [("#address-cells", cells(1)), ("#size-cells", cells(1))],
        [make_node("flash@0", [("reg", cells(0, 0))])],
    )
    root = make_node("", children=[spi])
    runner, _ = run(root, "spi_bus_bridge")
    assert texts(runner) == ["incorrect #size-cells for SPI bus"]


def test_spi_bus_reg_mismatch():
    spi = make_node(
        "spi",
        [("#address-cells", cells(1)), ("#size-cells", cells(0))],
        [make_node("flash@3", [("reg", cells(2))])],
    )
    root = make_node("", children=[spi])
    runner, _ = run(root, "spi_bus_reg")
    assert texts(runner) == ['SPI bus unit address format error, expected "2"']


@pytest.mark.parametrize(
    "name, expected",
    [
        ("dev@0x10", ['unit name should not have leading "0x"']),
        ("dev@010", ["unit name should not have leading 0s"]),
        ("dev@10", []),
        ("dev@0", []),
    ],
)
def test_unit_address_format(name, expected):
    root = make_node("", children=[make_node(name)])
    runner, _ = run(root, "unit_address_format")
    assert texts(runner) == expected