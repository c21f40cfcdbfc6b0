"""Library for parsing semantic versions and version constraints.

Versions are parsed leniently: a leading `v` is allowed and a missing minor or
patch component is treated as zero, so `v1.2` is read as `1.2.0`. Precedence
follows the semantic versioning rules implemented by the `semver` library, where
build metadata does not affect ordering.

Constraints use the syntax common to chart and image tooling:

```
>= 1.2.3, < 2.0.0     # AND, comma or whitespace separated
^1.2 || ~2.0.1        # OR
1.2.x                 # wildcard, same as >= 1.2.0, < 1.3.0
1.0.0 - 1.4.0         # inclusive hyphen range
```

A pre-release version only satisfies a constraint group when one of the terms
of that group itself names a pre-release.
"""

from dataclasses import dataclass
import logging
import re

import semver

__all__ = [
    "ParsedVersion",
    "Constraint",
    "parse_version",
]

_LOGGER = logging.getLogger(__name__)


_VERSION_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*))?"
    r"(?:\.(?P<patch>0|[1-9]\d*))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_PARTIAL_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_TERM_RE = re.compile(r"^(?P<op>\^|~>|~|>=|=>|<=|=<|!=|>|<|=)?\s*(?P<version>\S+)$")

_WILDCARDS = {"x", "X", "*"}

_OPERATORS = {"^", "~", "~>", ">=", "=>", "<=", "=<", "!=", ">", "<", "="}


@dataclass(frozen=True)
class ParsedVersion:
    """A raw version string along with its parsed semantic version."""

    raw: str
    version: semver.Version


def parse_version(raw: str) -> semver.Version | None:
    """Parse a version string leniently, returning None when it is not semver."""
    if not (match := _VERSION_RE.match(raw.strip())):
        return None
    try:
        return semver.Version(
            int(match.group("major")),
            int(match.group("minor") or 0),
            int(match.group("patch") or 0),
            prerelease=match.group("prerelease"),
            build=match.group("build"),
        )
    except ValueError:
        return None


@dataclass(frozen=True)
class _Range:
    """A contiguous range of versions, optionally negated."""

    lower: semver.Version | None = None
    lower_inclusive: bool = True
    upper: semver.Version | None = None
    upper_inclusive: bool = False
    negate: bool = False
    prerelease: bool = False

    def contains(self, version: semver.Version) -> bool:
        inside = True
        if self.lower is not None:
            cmp = version.compare(self.lower)
            inside = cmp >= 0 if self.lower_inclusive else cmp > 0
        if inside and self.upper is not None:
            cmp = version.compare(self.upper)
            inside = cmp <= 0 if self.upper_inclusive else cmp < 0
        return not inside if self.negate else inside


@dataclass(frozen=True)
class _Partial:
    """A version in a constraint, where trailing components may be omitted."""

    major: int | None
    minor: int | None
    patch: int | None
    prerelease: str | None

    @classmethod
    def parse(cls, raw: str) -> "_Partial":
        if not (match := _PARTIAL_RE.match(raw)):
            raise ValueError(f"Invalid version '{raw}' in constraint")
        parts: list[int | None] = []
        wildcard = False
        for key in ("major", "minor", "patch"):
            value = match.group(key)
            if value is None or value in _WILDCARDS:
                wildcard = True
            if wildcard:
                parts.append(None)
            else:
                parts.append(int(value))
        prerelease = match.group("prerelease")
        if prerelease and wildcard:
            raise ValueError(f"Invalid version '{raw}' in constraint")
        return cls(parts[0], parts[1], parts[2], prerelease)

    @property
    def is_wildcard(self) -> bool:
        return self.patch is None

    def floor(self) -> semver.Version:
        """Smallest version matched by this partial version."""
        return semver.Version(
            self.major or 0,
            self.minor or 0,
            self.patch or 0,
            prerelease=self.prerelease,
        )

    def ceiling(self) -> semver.Version | None:
        """Exclusive upper bound of a wildcard partial version."""
        if self.major is None:
            return None
        if self.minor is None:
            return semver.Version(self.major + 1, 0, 0)
        return semver.Version(self.major, self.minor + 1, 0)


def _parse_term(term: str) -> _Range:
    if not (match := _TERM_RE.match(term)):
        raise ValueError(f"Invalid constraint term '{term}'")
    op = match.group("op") or "="
    partial = _Partial.parse(match.group("version"))
    floor = partial.floor()
    prerelease = partial.prerelease is not None

    if op in ("=", "!="):
        if partial.is_wildcard:
            bounds = _Range(lower=floor, upper=partial.ceiling())
        else:
            bounds = _Range(lower=floor, upper=floor, upper_inclusive=True)
        return _Range(
            lower=bounds.lower,
            upper=bounds.upper,
            upper_inclusive=bounds.upper_inclusive,
            negate=op == "!=",
            prerelease=prerelease,
        )
    if op == ">":
        if partial.is_wildcard:
            if (ceiling := partial.ceiling()) is None:
                # Nothing is greater than every version
                return _Range(negate=True)
            return _Range(lower=ceiling, prerelease=prerelease)
        return _Range(lower=floor, lower_inclusive=False, prerelease=prerelease)
    if op in (">=", "=>"):
        return _Range(lower=floor, prerelease=prerelease)
    if op == "<":
        return _Range(upper=floor, prerelease=prerelease)
    if op in ("<=", "=<"):
        if partial.is_wildcard:
            return _Range(upper=partial.ceiling(), prerelease=prerelease)
        return _Range(upper=floor, upper_inclusive=True, prerelease=prerelease)
    if op in ("~", "~>"):
        major = partial.major or 0
        if partial.minor is None:
            upper = semver.Version(major + 1, 0, 0)
        else:
            upper = semver.Version(major, partial.minor + 1, 0)
        return _Range(lower=floor, upper=upper, prerelease=prerelease)
    # Caret: changes that do not modify the left-most non-zero component.
    major = partial.major or 0
    if major > 0 or partial.minor is None:
        upper = semver.Version(major + 1, 0, 0)
    elif (partial.minor or 0) > 0 or partial.patch is None:
        upper = semver.Version(0, (partial.minor or 0) + 1, 0)
    else:
        upper = semver.Version(0, 0, (partial.patch or 0) + 1)
    return _Range(lower=floor, upper=upper, prerelease=prerelease)


def _tokenize_group(group: str) -> list[str]:
    """Split an AND group into terms, joining operators with their versions."""
    tokens = [tok for tok in re.split(r"[\s,]+", group.strip()) if tok]
    terms: list[str] = []
    idx = 0
    while idx < len(tokens):
        token = tokens[idx]
        if idx + 2 < len(tokens) and tokens[idx + 1] == "-":
            terms.append(f"{token} - {tokens[idx + 2]}")
            idx += 3
            continue
        if token in _OPERATORS:
            if idx + 1 >= len(tokens):
                raise ValueError(f"Invalid constraint term '{token}'")
            terms.append(f"{token}{tokens[idx + 1]}")
            idx += 2
            continue
        terms.append(token)
        idx += 1
    return terms


def _parse_group(group: str) -> list[_Range]:
    ranges: list[_Range] = []
    for term in _tokenize_group(group):
        if " - " in term:
            low, high = term.split(" - ", 1)
            lower = _Partial.parse(low)
            upper = _Partial.parse(high)
            ranges.append(
                _Range(lower=lower.floor(), prerelease=lower.prerelease is not None)
            )
            if upper.is_wildcard:
                ranges.append(_Range(upper=upper.ceiling()))
            else:
                ranges.append(
                    _Range(
                        upper=upper.floor(),
                        upper_inclusive=True,
                        prerelease=upper.prerelease is not None,
                    )
                )
            continue
        ranges.append(_parse_term(term))
    if not ranges:
        raise ValueError("Empty constraint group")
    return ranges


class Constraint:
    """A parsed version constraint expression."""

    def __init__(self, raw: str, groups: list[list[_Range]]) -> None:
        self.raw = raw
        self._groups = groups

    @classmethod
    def parse(cls, raw: str) -> "Constraint":
        """Parse a constraint expression, raising ValueError if it is malformed."""
        if not raw.strip():
            raise ValueError("Empty constraint")
        groups = [_parse_group(group) for group in raw.split("||")]
        return cls(raw, groups)

    def check(self, version: semver.Version) -> bool:
        """Return True if the version satisfies the constraint."""
        for group in self._groups:
            if version.prerelease and not any(r.prerelease for r in group):
                continue
            if all(r.contains(version) for r in group):
                return True
        return False

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"Constraint({self.raw!r})"
