"""Composer version parsing and ordering.

Versions are compared on their numeric components first, then on stability
(dev < alpha < beta < RC < stable < patch), then on the pre-release number.
Strings that cannot be parsed (branch aliases such as ``dev-main``) always
sort after every parseable version and keep their insertion order.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

BRANCH_PLACEHOLDER = 9999999

_STABILITY_RANK = {
    "dev": 0,
    "alpha": 1,
    "beta": 2,
    "rc": 3,
    "stable": 4,
    "patch": 5,
}

_STABILITY_ALIASES = {
    "a": "alpha",
    "b": "beta",
    "p": "patch",
    "pl": "patch",
}

_VERSION_RE = re.compile(
    r"^v?(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:[._-]?(?P<stability>stable|beta|b|rc|alpha|a|patch|pl|p)(?:[._-]?(?P<pre>\d+))?)?"
    r"(?P<dev>[._-]?dev)?$",
    re.IGNORECASE,
)

_BRANCH_RE = re.compile(r"^v?(?P<numbers>\d+(?:\.(?:\d+|[x*]))*)[._-]?(?:x-)?dev$", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedVersion:
    numbers: Tuple[int, int, int, int]
    stability: str
    pre: int

    @property
    def normalized(self) -> str:
        base = ".".join(str(n) for n in self.numbers)
        if self.stability == "stable":
            return base
        if self.stability == "dev":
            return f"{base}-dev"
        suffix = "RC" if self.stability == "rc" else self.stability
        return f"{base}-{suffix}{self.pre or ''}"

    def precedence(self) -> Tuple[int, int, int, int, int, int]:
        return self.numbers + (_STABILITY_RANK[self.stability], self.pre)


def _pad(parts: List[int]) -> Tuple[int, int, int, int]:
    parts = (parts + [0, 0, 0, 0])[:4]
    return parts[0], parts[1], parts[2], parts[3]


def parse_version(version: str) -> Optional[ParsedVersion]:
    """Parse a Composer version string, or return None if it is not one."""
    if not version:
        return None
    version = version.strip()

    match = _VERSION_RE.match(version)
    if match:
        numbers = _pad([int(n) for n in match.group("numbers").split(".")])
        stability = (match.group("stability") or "stable").lower()
        stability = _STABILITY_ALIASES.get(stability, stability)
        if match.group("dev"):
            stability = "dev"
        pre = int(match.group("pre")) if match.group("pre") else 0
        return ParsedVersion(numbers=numbers, stability=stability, pre=pre)

    # Numbered branches: 1.x-dev, 2.1.x-dev, 3.*-dev
    match = _BRANCH_RE.match(version)
    if match:
        raw = match.group("numbers")
        parts: List[int] = []
        for piece in raw.split("."):
            parts.append(BRANCH_PLACEHOLDER if piece in ("x", "X", "*") else int(piece))
        while len(parts) < 4:
            parts.append(BRANCH_PLACEHOLDER)
        return ParsedVersion(numbers=_pad(parts), stability="dev", pre=0)

    return None


def normalize_version(version: str) -> str:
    """Return Composer's ``version_normalized`` form.

    Branch names (``dev-main``) and anything unparseable are returned
    unchanged.
    """
    parsed = parse_version(version)
    if parsed is None:
        return version
    return parsed.normalized


def is_dev_version(version: str) -> bool:
    return version.startswith("dev-") or version.endswith("-dev")


def clean_tag(tag: str) -> Optional[str]:
    """Turn a git tag into a Composer version (``v1.2.3`` -> ``1.2.3``).

    Returns None for tags that are not versions.
    """
    tag = tag.strip()
    if parse_version(tag) is None or is_dev_version(tag):
        return None
    return tag[1:] if tag[:1] in ("v", "V") else tag


def sort_versions(items: Iterable[T], key: Callable[[T], str] = str) -> List[T]:
    """Sort items by version, highest precedence first.

    Unparseable versions go last in their original order; ties between
    equal precedences keep insertion order as well.
    """
    def sort_key(entry: Tuple[int, T]):
        index, item = entry
        parsed = parse_version(key(item))
        if parsed is None:
            return (1, (), index)
        return (0, tuple(-n for n in parsed.precedence()), index)

    return [item for _, item in sorted(enumerate(items), key=sort_key)]
