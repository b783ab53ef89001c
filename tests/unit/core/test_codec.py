"""Tests for the KV payload codec."""

from datetime import UTC, datetime

import orjson
import pytest

from tests.factories import make_activity, make_day, make_gem, make_metadata
from tripnotes.core.canonicalize import canonical_bytes, decode_fragment, encode_fragment
from tripnotes.core.model import Activity, Trip, TripMetadata


class TestEncodeFragment:
    """Fragments are stored as camelCase JSON."""

    def test_uses_aliases_and_keeps_nulls(self) -> None:
        payload = orjson.loads(encode_fragment(make_metadata(description=None)))

        assert payload["creatorId"] == "u1"
        assert payload["priceCents"] == 2500
        assert "description" in payload and payload["description"] is None

    def test_datetimes_are_iso_utc(self) -> None:
        payload = orjson.loads(encode_fragment(make_metadata()))
        assert payload["createdAt"] == "2026-03-01T09:30:00Z"

    def test_gems_nested_in_activity(self) -> None:
        activity = make_activity("a1", "d1", gems=[make_gem("g1", "a1")])
        payload = orjson.loads(encode_fragment(activity))
        assert payload["gems"][0]["gemType"] == "tip"


class TestDecodeFragment:
    """Stored payloads parse back into models."""

    def test_round_trip_trip(self) -> None:
        trip = Trip.from_parts(
            make_metadata(published_at=datetime(2026, 5, 1, tzinfo=UTC)),
            [make_day("d1", activities=[make_activity("a1", "d1")])],
        )

        assert decode_fragment(Trip, encode_fragment(trip)) == trip

    def test_accepts_bytes(self) -> None:
        raw = encode_fragment(make_activity("a1", "d1")).encode()
        assert decode_fragment(Activity, raw).id == "a1"

    def test_invalid_json_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode_fragment(TripMetadata, "{not json")

    def test_wrong_shape_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode_fragment(TripMetadata, '{"id": "t1"}')


class TestCanonicalBytes:
    def test_non_string_keys(self) -> None:
        assert canonical_bytes({1: "a"}) == b'{"1":"a"}'
