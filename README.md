# devtree

An in-memory device tree model with property value handling, and a set of
structural, style and bus checks that can be run over a tree.

## Modules

- `devtree.data`: `Data` is a property value. It is a `bytearray` together
  with an ordered list of `Marker`s. Each marker has an offset, a
  `MarkerType` and an optional reference string. Mutating methods change the
  value in place and return it, so calls chain:
  `append`, `append_integer` (8, 16, 32 or 64 bits, big-endian),
  `append_cell`, `append_addr`, `append_byte`, `append_re`,
  `append_zeroes`, `append_align`, `add_marker`, `insert_at_marker` and
  `merge`. `merge` keeps the other value's markers, shifted by the current
  length. `Data.from_file` reads a binary stream, optionally up to a maximum
  length. `is_one_string` tells whether the value is exactly one
  NUL-terminated string.
- `devtree.tree`: `Node`, `Property`, `Bus` and `DtInfo`, plus lookups:
  `get_node_by_path`, `get_node_by_label`, `get_property_by_label`,
  `get_marker_label`, `get_node_by_phandle` and `get_node_by_ref`.
  `get_node_phandle` returns a node's phandle. If the node has none, it
  allocates the lowest unused one and adds a `phandle` property.
  `phandle_is_valid` rejects 0 and 0xffffffff.
  A `Node` deleted with `Node.delete()` stays in its parent's list, but
  `children`, `properties` and `walk()` skip it.
- `devtree.checkbase`: `Check`, `CheckStatus`, `CheckMessage`, `CheckRegistry`
  and `CheckRunner`. `CheckRunner.run(check)` first runs the check's
  prerequisites, then the check itself over every live node. It returns
  `True` if an error-level check did not pass. Each diagnostic is recorded in
  `runner.messages`. It is also written to `runner.stream` (stderr by
  default; pass `stream=None` to keep it silent). `quiet=1` suppresses
  warnings and `quiet=2` suppresses errors as well.
- `devtree.checks_structural`: `register(registry)` adds the node and property
  name checks, duplicate name and label checks, the `name` property check and
  string and cell type checks. It also adds `addr_size_cells`, `reg_format`,
  `ranges_format` and `dma_ranges_format`, the unit address vs. `reg` checks,
  the `/chosen` and `/aliases` checks, and the style checks such as
  `avoid_default_addr_size` and `unique_unit_address`.
- `devtree.checks_bus`: `register(registry)` adds the PCI, simple-bus, I2C and
  SPI bridge and unit address checks, and `unit_address_format`. It looks up
  checks from `checks_structural` as prerequisites, so register that module
  first.

## Installation

```
pip install .
```

## Example

```python
from devtree import checks_bus, checks_structural
from devtree.checkbase import CheckRegistry, CheckRunner
from devtree.data import Data
from devtree.tree import DtInfo, Node, Property

root = Node("")
root.add_property(Property("#address-cells", Data().append_cell(1)))
root.add_property(Property("#size-cells", Data().append_cell(0)))
cpu = root.add_child(Node("cpu@0"))
cpu.add_property(Property("reg", Data().append_cell(0)))

registry = CheckRegistry()
checks_structural.register(registry)
checks_bus.register(registry)

runner = CheckRunner(DtInfo(root), stream=None)
failed = [check.name for check in registry if check.enabled and runner.run(check)]
for message in runner.messages:
    print(message, end="")
```

A check runs only if its `warn` or `error` flag is set. Some checks are
registered with both flags off, for example `node_name_chars_strict`,
`property_name_chars_strict`, `unique_unit_address_if_enabled` and
`always_fail`. To turn one on, set its flag yourself:
`registry.get("node_name_chars_strict").warn = True`.
`registry.dependents(check)` lists the checks that name a given check as a
prerequisite.

## What this package does not do

- It does not read or write device tree source or flattened blobs. You build
  trees in code with `Node`, `Property` and `Data`.
- It has no checks that resolve phandle or path references, and no checks for
  explicit phandles, phandle-argument properties (`clocks`, `gpios`, ...),
  interrupts or graph ports and endpoints.
- It has no single entry point that builds the full check table or parses
  enable/disable options by name. It also has no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```