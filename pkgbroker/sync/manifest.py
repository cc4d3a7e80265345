"""Helpers for turning upstream Composer metadata into discovered versions."""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urljoin

from pkgbroker.sync.base import DiscoveredVersion

logger = logging.getLogger(__name__)

UNSET = "__unset"

# Fields Composer iterates over; an "__unset" marker must become [] there
LIST_FIELDS = {
    "require",
    "require-dev",
    "suggest",
    "provide",
    "replace",
    "conflict",
    "autoload",
    "autoload-dev",
    "extra",
    "bin",
    "license",
    "authors",
    "keywords",
    "repositories",
    "include-path",
}

PACKAGE_NAME_RE = re.compile(r"^[a-z0-9]([_.-]?[a-z0-9]+)*/[a-z0-9](([_.]|-{1,2})?[a-z0-9]+)*$")


def is_valid_package_name(name: Any) -> bool:
    return isinstance(name, str) and bool(PACKAGE_NAME_RE.match(name))


def sanitize_metadata(metadata: Any) -> Any:
    """Remove ``__unset`` markers that break Composer clients."""
    if isinstance(metadata, list):
        return [sanitize_metadata(item) for item in metadata]
    if not isinstance(metadata, dict):
        return metadata

    sanitized = {}
    for key, value in metadata.items():
        if value == UNSET:
            if key in LIST_FIELDS:
                sanitized[key] = []
            continue
        sanitized[key] = sanitize_metadata(value)
    return sanitized


def valid_source(source: Any) -> Optional[Dict[str, Any]]:
    """Return ``source`` if it is a usable vcs source block, else None."""
    if not isinstance(source, dict):
        return None
    if not isinstance(source.get("type"), str) or not isinstance(source.get("url"), str):
        return None
    return source


def expand_minified(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Expand a ``composer/2.0`` minified version list.

    Each entry only carries the keys that changed from the previous one;
    ``__unset`` removes a key.
    """
    expanded = []
    current: Dict[str, Any] = {}
    for entry in versions:
        if not isinstance(entry, dict):
            continue
        for key, value in entry.items():
            if value == UNSET:
                current.pop(key, None)
            else:
                current[key] = value
        expanded.append(dict(current))
    return expanded


def iter_versions(versions: Any) -> Iterator[Tuple[str, Dict[str, Any]]]:
    """Yield (version, metadata) from a list (p2) or dict (v1) version map."""
    if isinstance(versions, list):
        for metadata in versions:
            if isinstance(metadata, dict) and metadata.get("version"):
                yield str(metadata["version"]), metadata
    elif isinstance(versions, dict):
        for key, metadata in versions.items():
            if isinstance(metadata, dict):
                yield str(metadata.get("version") or key), metadata


def resolve_url(base_url: str, raw_url: Optional[str]) -> Optional[str]:
    """Resolve a URL found in an upstream document against the repository URL.

    Handles absolute, protocol-relative, root-relative and relative URLs.
    """
    if not raw_url or not isinstance(raw_url, str):
        return None
    base_url = base_url.rstrip("/")

    if raw_url.startswith(("http://", "https://")):
        return raw_url
    if raw_url.startswith("//"):
        return f"https:{raw_url}"
    return urljoin(base_url + "/", raw_url)


def parse_time(value: Any) -> Optional[datetime]:
    """Parse a Composer ``time`` value into a naive UTC datetime."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Ignoring unparseable release time {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def default_dist_reference(name: str, version: str) -> str:
    """Reference used when upstream gives none (Composer needs one to lock)."""
    return f"{name.replace('/', '-')}-{version}"[:40]


def discovered_from_metadata(
    name: str,
    version: str,
    metadata: Dict[str, Any],
    base_url: str,
) -> DiscoveredVersion:
    """Build a DiscoveredVersion from one upstream version object."""
    metadata = sanitize_metadata(metadata)
    dist = metadata.get("dist") if isinstance(metadata.get("dist"), dict) else {}
    dist_url = resolve_url(base_url, dist.get("url"))
    if dist_url is None:
        logger.warning(f"No dist URL available for {name} {version}")

    manifest = {
        key: value
        for key, value in metadata.items()
        if key not in ("name", "version", "version_normalized", "dist", "source", "time")
    }

    return DiscoveredVersion(
        name=name.lower(),
        version=version,
        dist_url=dist_url,
        dist_type=dist.get("type") or "zip",
        dist_reference=dist.get("reference") or None,
        dist_shasum=dist.get("shasum") or None,
        source=valid_source(metadata.get("source")),
        released_at=parse_time(metadata.get("time")),
        manifest=manifest,
    )


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a path glob into a regex.

    ``**/`` matches zero or more directories, ``*`` and ``?`` stay within
    one path segment and ``{a,b}`` is an alternation.
    """
    i = 0
    out = []
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "{":
            end = pattern.find("}", i)
            if end == -1:
                out.append(re.escape(char))
            else:
                options = pattern[i + 1:end].split(",")
                out.append("(?:" + "|".join(re.escape(option) for option in options) + ")")
                i = end + 1
                continue
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def path_matches(path: str, pattern: str) -> bool:
    return bool(glob_to_regex(pattern.lstrip("/")).match(path.lstrip("/")))
