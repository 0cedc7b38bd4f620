from unittest.mock import patch

import pytest

from musched.application.tag_registry import TagRegistry
from musched.domain.errors import CorruptStateError, StateWriteError
from musched.domain.models import Grade
from musched.infrastructure.familiarity_cache import FamiliarityCache


@pytest.fixture
def cache(tmp_path):
    return FamiliarityCache(tmp_path / ".mu" / "familiarity.yaml")


def test_missing_cache_loads_as_none(cache, params):
    assert cache.load(params) is None


def test_round_trip(cache, params, now):
    registry = TagRegistry(params)
    registry.apply(["Fact", "Algebra"], Grade.GOOD, now)
    registry.apply(["Fact"], Grade.FAIL, now)
    registry.source_digest = "abc123"

    cache.save(registry)
    loaded = cache.load(params)

    assert loaded.records == registry.records
    assert loaded.reviews_seen == 2
    assert loaded.source_digest == "abc123"


def test_cache_without_digest_loads_with_none(cache, params):
    cache.path.parent.mkdir(parents=True)
    cache.path.write_text("reviews_seen: 0\ntags: {}\n")

    assert cache.load(params).source_digest is None


@pytest.mark.parametrize(
    "content",
    [
        "- not\n- a mapping\n",
        "tags:\n  Fact: {samples: 2}\n",
        "tags:\n  Fact: {familiarity: high}\n",
        "tags: [unclosed\n",
    ],
)
def test_corrupt_cache(cache, params, content):
    cache.path.parent.mkdir(parents=True)
    cache.path.write_text(content)

    with pytest.raises(CorruptStateError):
        cache.load(params)


def test_save_failure(cache, params):
    with patch("musched.infrastructure.utils.fs.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(StateWriteError):
            cache.save(TagRegistry(params))
