"""Semantic version parsing, ordering and range matching."""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import Iterable

import semantic_version

from .errors import MalformedVersionError

_HYPHEN_RANGE_RE = re.compile(r"^\s*([0-9A-Za-z.\-+]+)\s+-\s+([0-9A-Za-z.\-+]+)\s*$")
_MINOR_X_RE = re.compile(r"^\s*(\d+)\.(\d+)\.x\s*$")
_MAJOR_X_RE = re.compile(r"^\s*(\d+)(?:\.x)?\s*$")


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    # numeric identifiers sort below alphanumeric ones
    if identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemanticVersion:
    """A parsed version with a total order.

    Ordering follows SemVer 2.0 precedence (a pre-release sorts below its
    release). Build metadata, which SemVer ignores for precedence, is used as
    the final tie-break: a version without build metadata sorts first, then
    build identifiers are compared like pre-release identifiers, and the
    normalized text breaks any remaining tie.
    """

    text: str
    value: semantic_version.Version = field(repr=False)

    @property
    def major(self) -> int:
        return self.value.major

    @property
    def minor(self) -> int:
        return self.value.minor

    @property
    def patch(self) -> int:
        return self.value.patch

    @property
    def prerelease(self) -> tuple[str, ...]:
        return tuple(self.value.prerelease)

    @property
    def build(self) -> tuple[str, ...]:
        return tuple(self.value.build)

    @property
    def sort_key(self) -> tuple:
        return (
            self.major,
            self.minor,
            self.patch,
            0 if self.prerelease else 1,
            tuple(_identifier_key(item) for item in self.prerelease),
            tuple(_identifier_key(item) for item in self.build),
            # "+01" and "+1" differ only in text
            str(self.value),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __lt__(self, other: SemanticVersion) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self.sort_key < other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __str__(self) -> str:
        return self.text

    def satisfies(self, pattern: str) -> bool:
        return satisfies(self, pattern)


def parse(text: str) -> SemanticVersion:
    raw = (text or "").strip()
    candidate = raw[1:] if raw[:1] in ("v", "V") else raw
    try:
        value = semantic_version.Version(candidate)
    except ValueError as exc:
        raise MalformedVersionError(f"invalid semantic version: {text!r}") from exc
    return SemanticVersion(text=raw, value=value)


def is_valid(text: str) -> bool:
    try:
        parse(text)
    except MalformedVersionError:
        return False
    return True


def compare(a: str | SemanticVersion, b: str | SemanticVersion) -> int:
    left = a if isinstance(a, SemanticVersion) else parse(a)
    right = b if isinstance(b, SemanticVersion) else parse(b)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def _normalize_spec(pattern: str) -> str:
    """Rewrite hyphen and x-ranges into SimpleSpec comparator form."""
    m = _HYPHEN_RANGE_RE.match(pattern)
    if m:
        return f">={m.group(1)},<={m.group(2)}"
    lowered = pattern.replace("*", "x").lower()
    m = _MINOR_X_RE.match(lowered)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        return f">={major}.{minor}.0,<{major}.{minor + 1}.0"
    m = _MAJOR_X_RE.match(lowered)
    if m:
        major = int(m.group(1))
        return f">={major}.0.0,<{major + 1}.0.0"
    return pattern


@functools.lru_cache(maxsize=256)
def _compile_spec(pattern: str) -> semantic_version.NpmSpec | semantic_version.SimpleSpec | None:
    expression = pattern.strip() or "*"
    try:
        return semantic_version.NpmSpec(expression)
    except ValueError:
        pass
    try:
        return semantic_version.SimpleSpec(_normalize_spec(expression))
    except ValueError:
        return None


def satisfies(version: str | SemanticVersion, pattern: str) -> bool:
    """Return True when ``version`` matches the range expression ``pattern``.

    Never raises: an invalid version or pattern simply does not match.
    """
    try:
        parsed = version if isinstance(version, SemanticVersion) else parse(version)
    except MalformedVersionError:
        return False
    spec = _compile_spec(pattern or "")
    if spec is None:
        return False
    return bool(spec.match(parsed.value))


def matches(version: str, pattern: str) -> bool:
    """Verbatim equality or range satisfaction."""
    return version == pattern or satisfies(version, pattern)


def max_version(versions: Iterable[str]) -> str | None:
    best: SemanticVersion | None = None
    for text in versions:
        try:
            parsed = parse(text)
        except MalformedVersionError:
            continue
        if best is None or parsed > best:
            best = parsed
    return best.text if best is not None else None
