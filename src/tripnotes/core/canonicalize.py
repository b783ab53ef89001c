from __future__ import annotations

from typing import Any, TypeVar

import orjson
from pydantic import BaseModel

ORJSON_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_UTC_Z

ModelT = TypeVar("ModelT", bound=BaseModel)


def canonical_bytes(data: Any) -> bytes:
    """Return canonical JSON bytes for already-validated data."""
    return orjson.dumps(data, option=ORJSON_OPTIONS)


def encode_fragment(model: BaseModel) -> str:
    """Serialize a fragment for the KV store.

    None-valued fields are kept so optional fields round-trip as null.
    """
    payload = model.model_dump(mode="json", by_alias=True)
    return canonical_bytes(payload).decode("utf-8")


def decode_fragment(model_type: type[ModelT], raw: str | bytes) -> ModelT:
    """Parse a KV value back into ``model_type``."""
    return model_type.model_validate(orjson.loads(raw))
