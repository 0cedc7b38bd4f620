"""
On-disk cache of the tag registry (`<deck>/.mu/familiarity.yaml`).

The cache is disposable: card histories are the source of truth and
TagRegistry.rebuild() regenerates it.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from musched.application.config import SchedulingParams
from musched.application.tag_registry import TagRegistry
from musched.domain.errors import CorruptStateError, StateWriteError
from musched.domain.models import TagFamiliarity
from musched.infrastructure.utils.fs import atomic_write_text

logger = logging.getLogger(__name__)

CACHE_VERSION = 2


class FamiliarityCache:
    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self, params: SchedulingParams) -> TagRegistry | None:
        """
        Read the cached registry, or None when there is no cache yet.

        Raises:
            CorruptStateError: the cache exists but cannot be decoded.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptStateError(self.path, str(e)) from e

        try:
            data = yaml.safe_load(raw)
            if not isinstance(data, dict):
                raise TypeError("cache is not a mapping")
            records = {}
            for tag, entry in (data.get("tags") or {}).items():
                records[str(tag)] = TagFamiliarity(
                    tag=str(tag),
                    familiarity=float(entry["familiarity"]),
                    samples=int(entry.get("samples", 0)),
                    last_updated=_parse_dt(entry.get("last_updated")),
                )
            reviews_seen = int(data.get("reviews_seen", 0))
            digest = data.get("source_digest")
        except (yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptStateError(self.path, str(e)) from e

        logger.debug(f"Loaded familiarity for {len(records)} tags from {self.path}")
        return TagRegistry(
            params,
            records,
            reviews_seen=reviews_seen,
            source_digest=str(digest) if digest is not None else None,
        )

    def save(self, registry: TagRegistry) -> None:
        """
        Atomically write the registry.

        Raises:
            StateWriteError: the write failed; the previous cache is unchanged.
        """
        data: dict[str, Any] = {
            "version": CACHE_VERSION,
            "reviews_seen": registry.reviews_seen,
            "source_digest": registry.source_digest,
            "tags": {
                tag: {
                    "familiarity": rec.familiarity,
                    "samples": rec.samples,
                    "last_updated": rec.last_updated.isoformat() if rec.last_updated else None,
                }
                for tag, rec in sorted(registry.records.items())
            },
        }
        try:
            atomic_write_text(self.path, yaml.safe_dump(data, sort_keys=False, allow_unicode=True))
        except OSError as e:
            raise StateWriteError(self.path, e) from e


def _parse_dt(value: Any) -> datetime | None:
    if value is None:
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
