import re
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml  # type: ignore
import yaml.constructor

from musched.domain.constants import HEADER_COMMENT_PREFIXES, HEADER_SCAN_LINES, MAX_PRIORITY, MIN_PRIORITY
from musched.domain.errors import MissingMetadataError
from musched.domain.models import CardMeta, OpenDocument, Presentation, RunCommand

# ---------- Durations ----------

DURATION_UNITS = {
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "M": timedelta(weeks=4),
    "y": timedelta(weeks=4 * 12),
}

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([mhdwMy])\s*$")


def parse_duration(s: str) -> timedelta:
    """Parse `<integer><unit>`, unit one of m, h, d, w, M (4 weeks), y (48 weeks)."""
    m = _DURATION_RE.match(s)
    if not m:
        raise ValueError(f"invalid duration {s!r}; expected e.g. 10m, 1d, 2w")
    return int(m.group(1)) * DURATION_UNITS[m.group(2)]


def format_duration(d: timedelta) -> str:
    """Render a duration as `1y 2M 3w 4d 5h 6m`, omitting zero parts."""
    minutes = int(d.total_seconds() // 60)
    if minutes <= 0:
        return "0"

    parts = []
    for unit in ("y", "M", "w", "d", "h", "m"):
        size = int(DURATION_UNITS[unit].total_seconds() // 60)
        n, minutes = divmod(minutes, size)
        if n:
            parts.append(f"{n}{unit}")
    return " ".join(parts)


# ---------- Header helpers ----------


class UniqueKeyLoader(yaml.SafeLoader):
    """Custom YAML loader that forbids duplicate keys."""

    def construct_mapping(self, node, deep=False):
        mapping = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in mapping:
                raise yaml.constructor.ConstructorError(
                    None, None, f"found duplicate key '{key}'", key_node.start_mark
                )
            mapping.add(key)
        return super().construct_mapping(node, deep)


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str] | None:
    """Parse a YAML frontmatter block delimited by `---` lines.

    Returns None when the text does not open with `---`.
    Raises yaml.YAMLError on malformed YAML.
    """
    # Handle potential BOM (Byte Order Mark)
    text = text.lstrip("\ufeff")
    lines = text.split("\n")

    if not lines or lines[0].strip() != "---":
        return None

    end = None
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            end = i
            break
    if end is None:
        raise yaml.YAMLError("frontmatter is not closed by '---'")

    raw = "\n".join(lines[1:end])
    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    meta = yaml.load(raw, Loader=UniqueKeyLoader) or {}
    if not isinstance(meta, dict):
        raise yaml.YAMLError("frontmatter is not a mapping")
    return meta, "\n".join(lines[end + 1 :])


def parse_plain_header(text: str) -> dict[str, str]:
    """Read leading `key: value` lines, optionally behind a comment marker.

    The header ends at the first blank line or the first line that is not a
    key-value pair. Keys are lower-cased; a repeated key raises ValueError.
    """
    header: dict[str, str] = {}
    for line in text.lstrip("\ufeff").splitlines()[:HEADER_SCAN_LINES]:
        stripped = line.strip()
        for prefix in HEADER_COMMENT_PREFIXES:
            if stripped.startswith(prefix):
                stripped = stripped[len(prefix) :].strip()
                break
        if not stripped or ":" not in stripped:
            break
        key, _, value = stripped.partition(":")
        key = key.strip().lower()
        if not key or " " in key:
            break
        if key in header:
            raise ValueError(f"duplicate header key '{key}'")
        header[key] = value.strip()
    return header


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(v) for v in value if v is not None]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def parse_tags(value: Any) -> tuple[str, ...]:
    """Ordered, deduplicated, case-sensitive tag names."""
    return tuple(dict.fromkeys(_split_list(value)))


def parse_priority(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("priority must be an integer 1-5")
    try:
        priority = int(str(value).strip())
    except ValueError:
        raise ValueError(f"priority {value!r} is not an integer") from None
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValueError(f"invalid priority value {priority}; must be {MIN_PRIORITY}-{MAX_PRIORITY}")
    return priority


def parse_card_header(text: str, path: Path) -> CardMeta:
    """
    Parse the header of a card source file.

    The header is either YAML frontmatter or leading `key: value` lines.
    Required: `tags` (comma-separated) and `priority` (1-5).
    Optional: `max_interval` (duration), `pdf` (comma-separated paths relative
    to the card file) and `sh` (a shell command).

    Raises:
        MissingMetadataError: a required field is absent or invalid.
    """
    try:
        parsed = parse_frontmatter(text)
        meta: dict[str, Any] = parsed[0] if parsed is not None else parse_plain_header(text)
    except (yaml.YAMLError, ValueError) as e:
        raise MissingMetadataError(path, f"unreadable header: {e}") from e

    meta = {str(k).lower(): v for k, v in meta.items()}

    if "tags" not in meta:
        raise MissingMetadataError(path, "missing 'tags' field")
    tags = parse_tags(meta["tags"])
    if not tags:
        raise MissingMetadataError(path, "'tags' field is empty")

    if "priority" not in meta:
        raise MissingMetadataError(path, "missing 'priority' field")
    try:
        priority = parse_priority(meta["priority"])
    except ValueError as e:
        raise MissingMetadataError(path, str(e)) from e

    max_interval = None
    if meta.get("max_interval"):
        try:
            max_interval = parse_duration(str(meta["max_interval"]))
        except ValueError as e:
            raise MissingMetadataError(path, str(e)) from e

    presentations: list[Presentation] = [
        OpenDocument(path.parent / p) for p in _split_list(meta.get("pdf"))
    ]
    if meta.get("sh"):
        presentations.append(RunCommand(str(meta["sh"])))

    return CardMeta(
        tags=tags,
        priority=priority,
        max_interval=max_interval,
        presentations=tuple(presentations),
    )
