import io

import pytest

from devtree.checkbase import (
    Check,
    CheckMessage,
    CheckRegistry,
    CheckRunner,
    CheckStatus,
    is_multiple_of,
)
from devtree.data import Data
from devtree.tree import DtInfo, Node, Property


def make_tree():
    root = Node("")
    soc = root.add_child(Node("soc"))
    uart = soc.add_child(Node("uart@100"))
    uart.add_property(Property("status", Data(bytearray(b"okay\0"))))
    return root, soc, uart


def make_runner(root, quiet=0, outname="-"):
    return CheckRunner(DtInfo(root, outname=outname), quiet=quiet, stream=io.StringIO())


def always_fail(runner, check, node):
    runner.fail(check, node, "always_fail check")


@pytest.mark.parametrize(
    "multiple,divisor,expected",
    [(0, 0, True), (4, 0, False), (8, 4, True), (6, 4, False), (0, 4, True)],
)
def test_is_multiple_of(multiple, divisor, expected):
    assert is_multiple_of(multiple, divisor) is expected


def test_passing_check_visits_every_node():
    root, soc, uart = make_tree()
    seen = []
    check = Check("visit", lambda r, c, n: seen.append(n), error=True)
    runner = make_runner(root)
    assert runner.run(check) is False
    assert check.status is CheckStatus.PASSED
    assert seen == [root, soc, uart]
    assert runner.messages == []


def test_deleted_children_are_skipped():
    root, soc, uart = make_tree()
    soc.delete()
    seen = []
    check = Check("visit", lambda r, c, n: seen.append(n), warn=True)
    make_runner(root).run(check)
    assert seen == [root]


def test_failing_error_check_reports_error():
    root, _, _ = make_tree()
    check = Check("always_fail", always_fail, error=True)
    runner = make_runner(root)
    assert runner.run(check) is True
    assert check.status is CheckStatus.FAILED
    assert str(runner.messages[0]) == "<stdout>: ERROR (always_fail): /: always_fail check\n"
    assert runner.stream.getvalue().startswith(str(runner.messages[0]))


def test_failing_warning_check_is_not_an_error():
    root, _, _ = make_tree()
    check = Check("always_fail", always_fail, warn=True)
    runner = make_runner(root, outname="out.dtb")
    assert runner.run(check) is False
    assert check.status is CheckStatus.FAILED
    assert runner.messages[0].location == "out.dtb"
    assert "Warning (always_fail)" in str(runner.messages[0])


def test_fail_prop_message_names_property():
    root, _, uart = make_tree()
    prop = uart.get_property("status")

    def fn(runner, check, node):
        if node is uart:
            runner.fail_prop(check, node, prop, "bad")

    check = Check("propcheck", fn, warn=True)
    runner = make_runner(root)
    runner.run(check)
    assert [m.prop_name for m in runner.messages] == ["status"]
    assert "/soc/uart@100:status: bad" in str(runner.messages[0])


def test_source_positions_and_also_defined():
    root = Node("", srcpos=("a.dts:1", "b.dts:7"))

    def fn(runner, check, node):
        runner.fail(check, node, "oops")

    runner = make_runner(root)
    runner.run(Check("c", fn, error=True))
    msg = runner.messages[0]
    assert msg.location == "a.dts:1"
    assert msg.also_defined == ("b.dts:7",)
    assert str(msg).endswith("  also defined at b.dts:7\n")


def test_quiet_suppresses_messages_but_not_status():
    root, _, _ = make_tree()
    warn = Check("w", always_fail, warn=True)
    err = Check("e", always_fail, error=True)
    runner = make_runner(root, quiet=2)
    assert runner.run(warn) is False
    assert runner.run(err) is True
    assert runner.messages == []
    assert err.status is CheckStatus.FAILED


def test_failed_prerequisite_blocks_check():
    root, _, _ = make_tree()
    calls = []
    base = Check("base", always_fail, warn=True)
    dependent = Check("dep", lambda r, c, n: calls.append(n), warn=True, prereqs=[base])
    runner = make_runner(root)
    runner.run(dependent)
    assert dependent.status is CheckStatus.PREREQ
    assert calls == []
    assert any(m.text == "Failed prerequisite 'base'" for m in runner.messages)


def test_check_runs_only_once():
    root, _, _ = make_tree()
    calls = []
    check = Check("once", lambda r, c, n: calls.append(n), warn=True)
    runner = make_runner(root)
    runner.run(check)
    first = len(calls)
    runner.run(check)
    assert len(calls) == first


def test_circular_prerequisites_raise():
    root, _, _ = make_tree()
    a = Check("a", warn=True)
    b = Check("b", warn=True, prereqs=[a])
    a.prereqs.append(b)
    with pytest.raises(RuntimeError):
        make_runner(root).run(a)
    assert a.inprogress is False


def test_registry_lookup_and_dependents():
    registry = CheckRegistry()
    base = registry.add(Check("base"))
    dep = registry.add(Check("dep", prereqs=[base]))
    registry.add(Check("other"))
    assert registry.get("dep") is dep
    assert list(registry.dependents(base)) == [dep]
    assert [c.name for c in registry] == ["base", "dep", "other"]
    assert "other" in registry
    assert len(registry) == 3


def test_registry_errors():
    registry = CheckRegistry()
    registry.add(Check("x"))
    with pytest.raises(ValueError):
        registry.add(Check("x"))
    with pytest.raises(KeyError):
        registry.get("missing")


def test_message_without_node():
    msg = CheckMessage(check="c", error=False, location="<stdout>", text="hello")
    assert str(msg) == "<stdout>: Warning (c): hello\n"