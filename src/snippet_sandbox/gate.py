"""Textual deny-pattern gate applied to source before anything is spawned.

This is a deterrent, not a containment boundary. A regex scan cannot see
through alternate spellings, indirect imports (``getattr(__builtins__, ...)``)
or encoded strings, so anything that gets past it still runs with the full
privileges of the service user. Real isolation needs an OS-level boundary
around the child process.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from .constraints import DEFAULT_BLOCKED_MODULES

DENIED_MESSAGE = "Code contains potentially dangerous operations"


@dataclass(frozen=True, slots=True)
class GateRule:
    """One deny pattern and the construct class it reports.

    Example:
        ```python
        rule = GateRule("dynamic evaluation", re.compile(r"\\beval\\s*\\("))
        ```
    """

    construct: str
    pattern: re.Pattern[str]


@dataclass(frozen=True, slots=True)
class Allowed:
    """Verdict for source that matched no deny rule.

    Example:
        ```python
        verdict = Allowed()
        ```
    """

    allowed = True


@dataclass(frozen=True, slots=True)
class Denied:
    """Verdict for source that matched a deny rule.

    Example:
        ```python
        verdict = Denied(reason="...", construct="dynamic evaluation", match="eval(", line=3)
        ```
    """

    reason: str
    construct: str
    match: str
    line: int

    allowed = False


Verdict = Allowed | Denied


def _module_alternation(modules: Iterable[str]) -> str:
    """Build a regex alternation of escaped module names, longest first.

    Example:
        ```python
        alt = _module_alternation(["os", "subprocess"])
        ```
    """
    names = sorted({m.strip() for m in modules if m.strip()}, key=len, reverse=True)
    return "|".join(re.escape(name) for name in names)


def build_rules(blocked_modules: Sequence[str] = DEFAULT_BLOCKED_MODULES) -> tuple[GateRule, ...]:
    """Build the ordered deny rules for a set of blocked modules.

    Order matters: the first matching rule names the denial.

    Example:
        ```python
        rules = build_rules(["os", "sys", "subprocess"])
        ```
    """
    rules: list[GateRule] = []
    modules = _module_alternation(blocked_modules)
    if modules:
        # `import a, os as b` and `import os.path` both count.
        rules.append(
            GateRule(
                "process or system module import",
                re.compile(
                    rf"\bimport\s+(?:[\w.]+(?:\s+as\s+\w+)?\s*,\s*)*(?:{modules})\b"
                ),
            )
        )
        rules.append(
            GateRule(
                "process or system module import",
                re.compile(rf"\bfrom\s+(?:{modules})(?:\.[\w.]+)?\s+import\b"),
            )
        )
    rules.extend(
        [
            GateRule("filesystem access", re.compile(r"\bopen\s*\(")),
            GateRule("reflective import", re.compile(r"__import__")),
            GateRule("reflective import", re.compile(r"\bimportlib\b")),
            GateRule("dynamic evaluation", re.compile(r"\beval\s*\(")),
            GateRule("dynamic evaluation", re.compile(r"\bexec\s*\(")),
            GateRule("dynamic evaluation", re.compile(r"\bcompile\s*\(")),
        ]
    )
    return tuple(rules)


class StaticGate:
    """Scan source text against ordered deny rules; the first match wins.

    Example:
        ```python
        gate = StaticGate()
        verdict = gate.evaluate("print('hello')")
        ```
    """

    def __init__(self, rules: Sequence[GateRule] | None = None) -> None:
        """Create a gate with explicit rules or the default rule set.

        Example:
            ```python
            gate = StaticGate(build_rules(["os"]))
            ```
        """
        self._rules = tuple(rules) if rules is not None else build_rules()

    @classmethod
    def for_modules(cls, blocked_modules: Sequence[str]) -> "StaticGate":
        """Create a gate that blocks the given module names.

        Example:
            ```python
            gate = StaticGate.for_modules(constraints.blocked_modules)
            ```
        """
        return cls(build_rules(blocked_modules))

    @property
    def rules(self) -> tuple[GateRule, ...]:
        """Return the rules in evaluation order.

        Example:
            ```python
            first = gate.rules[0]
            ```
        """
        return self._rules

    def evaluate(self, code: str) -> Verdict:
        """Return `Allowed` or `Denied` for the given source text.

        Example:
            ```python
            verdict = gate.evaluate("eval('1 + 1')")
            assert not verdict.allowed
            ```
        """
        for rule in self._rules:
            found = rule.pattern.search(code)
            if found is None:
                continue
            line = code.count("\n", 0, found.start()) + 1
            return Denied(
                reason=f"{DENIED_MESSAGE}: {rule.construct}",
                construct=rule.construct,
                match=found.group(0),
                line=line,
            )
        return Allowed()
