"""Tests for cache key generation."""

from tripnotes.cache.keys import CacheKeys


class TestCacheKeys:
    """Test cache key generation."""

    def test_fragment_keys(self) -> None:
        """Fragment keys follow trip:{entity}:{version}:{id}."""
        keys = CacheKeys("v3")

        assert keys.metadata("t1") == "trip:meta:v3:t1"
        assert keys.day("d1") == "trip:day:v3:d1"
        assert keys.activity("a1") == "trip:activity:v3:a1"

    def test_trip_level_keys(self) -> None:
        """Whole-trip, shape and freshness keys share the namespace."""
        keys = CacheKeys("v3")

        assert keys.full_trip("t1") == "trip:full:v3:t1"
        assert keys.structure("t1") == "trip:structure:v3:t1"
        assert keys.stale("t1") == "trip:stale:v3:t1"

    def test_version_bump_changes_every_key(self) -> None:
        """A new cache version never collides with the old one."""
        old, new = CacheKeys("v3"), CacheKeys("v4")

        assert old.day("d1") != new.day("d1")
        assert new.day("d1") == "trip:day:v4:d1"

    def test_default_version_from_settings(self) -> None:
        """Without an explicit version the configured one is used."""
        assert CacheKeys().version == "v3"

    def test_parse_valid_key(self) -> None:
        """Valid key is parsed correctly."""
        result = CacheKeys.parse_key("trip:activity:v3:a-1:b")

        assert result is not None
        assert result["prefix"] == "trip"
        assert result["entity"] == "activity"
        assert result["version"] == "v3"
        assert result["identifier"] == "a-1:b"

    def test_parse_invalid_key_returns_none(self) -> None:
        """Invalid key returns None."""
        assert CacheKeys.parse_key("invalid") is None
        assert CacheKeys.parse_key("other:meta:v3:t1") is None
