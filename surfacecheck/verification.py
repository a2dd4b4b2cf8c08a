"""
Assertion predicates.

A predicate is evaluated against the live TargetHandle and returns an
AssertOutcome. Predicates never wait: the retry engine re-evaluates them until
they hold or time out.

    from surfacecheck.verification import is_visible, url_includes

    await wait_for(is_visible("div", text="Purchase successful!"), target, timeout_ms=10000)
    await wait_for(url_includes("/orders"), target)
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .target import Locator

if TYPE_CHECKING:
    from .models import Command
    from .target import ElementRef, TargetHandle


@dataclass
class AssertOutcome:
    passed: bool
    reason: str = ""
    expected: Any = None
    actual: Any = None
    details: dict[str, Any] = field(default_factory=dict)


CheckFn = Callable[["TargetHandle"], Awaitable[AssertOutcome]]


@dataclass(frozen=True)
class Predicate:
    """A labelled, re-evaluable check against current surface state."""

    label: str
    check: CheckFn
    locator: Locator | None = None

    async def __call__(self, target: TargetHandle) -> AssertOutcome:
        return await self.check(target)


def _loc(locator: Locator | str, text: str | None, index: int | None) -> Locator:
    if isinstance(locator, Locator):
        return locator
    return Locator(selector=locator, text=text, index=index)


def _first(refs: list[ElementRef]) -> ElementRef | None:
    return refs[0] if refs else None


def exists(locator: Locator | str, *, text: str | None = None, index: int | None = None) -> Predicate:
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        refs = await target.query(loc)
        return AssertOutcome(
            passed=bool(refs),
            reason="" if refs else f"no element matches {loc}",
            expected="exists",
            actual=f"{len(refs)} match(es)",
            details={"selector": str(loc), "count": len(refs)},
        )

    return Predicate(label=f"exists({loc})", check=check, locator=loc)


def not_exists(locator: Locator | str, *, text: str | None = None, index: int | None = None) -> Predicate:
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        refs = await target.query(loc)
        return AssertOutcome(
            passed=not refs,
            reason="" if not refs else f"{len(refs)} element(s) still match {loc}",
            expected="not exists",
            actual=f"{len(refs)} match(es)",
            details={"selector": str(loc), "count": len(refs)},
        )

    return Predicate(label=f"not_exists({loc})", check=check, locator=loc)


def is_visible(locator: Locator | str, *, text: str | None = None, index: int | None = None) -> Predicate:
    """Every matched element is visible (and at least one matched)."""
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        refs = await target.query(loc)
        if not refs:
            return AssertOutcome(
                passed=False,
                reason=f"no element matches {loc}",
                expected="visible",
                actual="missing",
                details={"selector": str(loc), "count": 0},
            )
        hidden = [r for r in refs if not r.visible]
        return AssertOutcome(
            passed=not hidden,
            reason="" if not hidden else f"{len(hidden)} of {len(refs)} match(es) hidden",
            expected="visible",
            actual="visible" if not hidden else "hidden",
            details={"selector": str(loc), "count": len(refs)},
        )

    return Predicate(label=f"is_visible({loc})", check=check, locator=loc)


def not_visible(locator: Locator | str, *, text: str | None = None, index: int | None = None) -> Predicate:
    """No matched element is visible. An absent element counts as not visible."""
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        refs = await target.query(loc)
        shown = [r for r in refs if r.visible]
        return AssertOutcome(
            passed=not shown,
            reason="" if not shown else f"{len(shown)} match(es) still visible",
            expected="hidden",
            actual="visible" if shown else ("hidden" if refs else "missing"),
            details={"selector": str(loc), "count": len(refs)},
        )

    return Predicate(label=f"not_visible({loc})", check=check, locator=loc)


def contains_text(
    locator: Locator | str, expected: str, *, text: str | None = None, index: int | None = None
) -> Predicate:
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        el = _first(await target.query(loc))
        actual = el.text if el is not None else None
        ok = actual is not None and expected in actual
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"text of {loc} does not contain {expected!r}",
            expected=expected,
            actual=actual,
            details={"selector": str(loc)},
        )

    return Predicate(label=f"contains_text({loc}, {expected!r})", check=check, locator=loc)


def value_equals(
    locator: Locator | str, expected: str, *, text: str | None = None, index: int | None = None
) -> Predicate:
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        el = _first(await target.query(loc))
        actual = el.value if el is not None else None
        ok = el is not None and actual == expected
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"value of {loc} is {actual!r}",
            expected=expected,
            actual=actual,
            details={"selector": str(loc)},
        )

    return Predicate(label=f"value_equals({loc}, {expected!r})", check=check, locator=loc)


def css_equals(
    locator: Locator | str,
    prop: str,
    expected: str,
    *,
    text: str | None = None,
    index: int | None = None,
) -> Predicate:
    """Computed style ``prop`` of the first match equals ``expected``."""
    loc = _loc(locator, text, index)

    async def check(target: TargetHandle) -> AssertOutcome:
        el = _first(await target.query(loc))
        actual = el.style.get(prop) if el is not None else None
        ok = actual is not None and str(actual).strip() == str(expected).strip()
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"{prop} of {loc} is {actual!r}",
            expected=expected,
            actual=actual,
            details={"selector": str(loc), "property": prop},
        )

    return Predicate(label=f"css_equals({loc}, {prop}={expected!r})", check=check, locator=loc)


def count_equals(locator: Locator | str, expected: int, *, text: str | None = None) -> Predicate:
    loc = _loc(locator, text, None)

    async def check(target: TargetHandle) -> AssertOutcome:
        n = len(await target.query(loc))
        return AssertOutcome(
            passed=n == expected,
            reason="" if n == expected else f"{n} match(es) for {loc}",
            expected=expected,
            actual=n,
            details={"selector": str(loc)},
        )

    return Predicate(label=f"count_equals({loc}, {expected})", check=check, locator=loc)


def count_greater_than(locator: Locator | str, threshold: int, *, text: str | None = None) -> Predicate:
    loc = _loc(locator, text, None)

    async def check(target: TargetHandle) -> AssertOutcome:
        n = len(await target.query(loc))
        return AssertOutcome(
            passed=n > threshold,
            reason="" if n > threshold else f"only {n} match(es) for {loc}",
            expected=f"> {threshold}",
            actual=n,
            details={"selector": str(loc)},
        )

    return Predicate(label=f"count_greater_than({loc}, {threshold})", check=check, locator=loc)


def url_includes(fragment: str) -> Predicate:
    async def check(target: TargetHandle) -> AssertOutcome:
        url = await target.current_url()
        ok = fragment in (url or "")
        return AssertOutcome(
            passed=ok,
            reason="" if ok else f"url does not include {fragment!r}",
            expected=fragment,
            actual=url,
        )

    return Predicate(label=f"url_includes({fragment!r})", check=check)


def build_predicate(command: Command) -> Predicate:
    """Map an ``assert`` command record onto a predicate."""
    name = command.assertion
    loc = Locator(selector=command.locator or "", text=command.text, index=command.index)
    if name == "exists":
        return exists(loc)
    if name == "not_exists":
        return not_exists(loc)
    if name == "visible":
        return is_visible(loc)
    if name == "not_visible":
        return not_visible(loc)
    if name == "text":
        return contains_text(loc, str(command.expected))
    if name == "value":
        return value_equals(loc, str(command.expected))
    if name == "css":
        return css_equals(loc, str(command.property), str(command.expected))
    if name == "count":
        return count_equals(loc, int(command.expected))
    if name == "count_gt":
        return count_greater_than(loc, int(command.expected))
    if name == "url_includes":
        return url_includes(str(command.expected))
    raise ValueError(f"Unknown assertion {name!r}")
