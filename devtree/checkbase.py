"""Check objects, their registry and the engine that runs them over a tree."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, TextIO

from devtree.tree import DtInfo, Node, Property


class CheckStatus(enum.Enum):
    """Outcome of a check so far."""

    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


CheckFn = Callable[["CheckRunner", "Check", Node], None]


@dataclass(eq=False)
class Check:
    """A named test applied to every node, with prerequisites and a level."""

    name: str
    fn: CheckFn | None = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: list[Check] = field(default_factory=list)
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False

    @property
    def enabled(self) -> bool:
        return self.warn or self.error


@dataclass(frozen=True)
class CheckMessage:
    """One diagnostic produced by a check."""

    check: str
    error: bool
    location: str
    text: str
    node_path: str | None = None
    prop_name: str | None = None
    also_defined: tuple[str, ...] = ()

    def __str__(self) -> str:
        level = "ERROR" if self.error else "Warning"
        out = f"{self.location}: {level} ({self.check}): "
        if self.node_path is not None:
            if self.prop_name is not None:
                out += f"{self.node_path}:{self.prop_name}: "
            else:
                out += f"{self.node_path}: "
        out += self.text + "\n"
        for pos in self.also_defined:
            out += f"  also defined at {pos}\n"
        return out


class CheckRegistry:
    """An ordered table of checks, looked up by name."""

    def __init__(self) -> None:
        self._checks: dict[str, Check] = {}

    def add(self, check: Check) -> Check:
        if check.name in self._checks:
            raise ValueError(f"check {check.name!r} already registered")
        self._checks[check.name] = check
        return check

    def get(self, name: str) -> Check:
        try:
            return self._checks[name]
        except KeyError:
            raise KeyError(name) from None

    def dependents(self, check: Check) -> Iterator[Check]:
        """Checks that list ``check`` among their prerequisites."""
        for candidate in self._checks.values():
            if any(prq is check for prq in candidate.prereqs):
                yield candidate

    def __iter__(self) -> Iterator[Check]:
        return iter(list(self._checks.values()))

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, name: object) -> bool:
        return name in self._checks


def is_multiple_of(multiple: int, divisor: int) -> bool:
    if divisor == 0:
        return multiple == 0
    return multiple % divisor == 0


@dataclass
class CheckRunner:
    """Runs checks over one tree and reports what they find."""

    dti: DtInfo
    quiet: int = 0
    stream: TextIO | None = field(default_factory=lambda: sys.stderr)
    messages: list[CheckMessage] = field(default_factory=list)

    def _emit(
        self,
        check: Check,
        node: Node | None,
        prop: Property | None,
        text: str,
    ) -> None:
        if not (check.warn and self.quiet < 1) and not (check.error and self.quiet < 2):
            return

        pos: str | None = None
        if prop is not None and prop.srcpos:
            pos = prop.srcpos[0]
        elif node is not None and node.srcpos:
            pos = node.srcpos[0]

        if pos is not None:
            location = pos
        elif self.dti.outname == "-":
            location = "<stdout>"
        else:
            location = self.dti.outname

        also: tuple[str, ...] = ()
        if prop is None and pos is not None and node is not None:
            also = tuple(node.srcpos[1:])

        message = CheckMessage(
            check=check.name,
            error=check.error,
            location=location,
            text=text,
            node_path=node.fullpath if node is not None else None,
            prop_name=prop.name if (node is not None and prop is not None) else None,
            also_defined=also,
        )
        self.messages.append(message)
        if self.stream is not None:
            self.stream.write(str(message))

    def fail(self, check: Check, node: Node | None, message: str) -> None:
        """Mark the check failed and report against a node."""
        check.status = CheckStatus.FAILED
        self._emit(check, node, None, message)

    def fail_prop(
        self, check: Check, node: Node | None, prop: Property | None, message: str
    ) -> None:
        """Mark the check failed and report against a node's property."""
        check.status = CheckStatus.FAILED
        self._emit(check, node, prop, message)

    def _visit(self, check: Check, node: Node) -> None:
        if check.fn is not None:
            check.fn(self, check, node)
        for child in node.all_children:
            if not child.deleted:
                self._visit(check, child)

    def run(self, check: Check) -> bool:
        """Run a check and its prerequisites; True if an error-level check failed."""
        if check.inprogress:
            raise RuntimeError(f"circular prerequisite involving check {check.name!r}")

        error = False
        if check.status is CheckStatus.UNCHECKED:
            check.inprogress = True
            try:
                for prq in check.prereqs:
                    if not error:
                        error = self.run(prq)
                    if prq.status is not CheckStatus.PASSED:
                        check.status = CheckStatus.PREREQ
                        self._emit(
                            check, None, None, f"Failed prerequisite '{prq.name}'"
                        )
                if check.status is CheckStatus.UNCHECKED:
                    self._visit(check, self.dti.dt)
                    if check.status is CheckStatus.UNCHECKED:
                        check.status = CheckStatus.PASSED
            finally:
                check.inprogress = False

        if check.status is not CheckStatus.PASSED and check.error:
            error = True
        return error