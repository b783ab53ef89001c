"""Fragment identifiers.

A fragment id is either provisional (assigned by the editor before the
fragment has been saved) or durable (assigned by the store). The editor
marks provisional ids with a ``temp-`` prefix; that convention is only
interpreted here, once, when raw input is parsed.
"""

from __future__ import annotations

from typing import Annotated, Any, Final, Literal, Union

from pydantic import BaseModel, BeforeValidator

from tripnotes.errors import UnresolvedProvisionalIdError

PROVISIONAL_PREFIX: Final[str] = "temp-"


class Provisional(BaseModel):
    """Editor-assigned placeholder id for a fragment not yet persisted."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["provisional"] = "provisional"
    local_id: str

    def __str__(self) -> str:
        return self.local_id


class Durable(BaseModel):
    """Store-assigned id of a persisted fragment."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["durable"] = "durable"
    store_id: str

    def __str__(self) -> str:
        return self.store_id


def parse_fragment_id(value: Any) -> Any:
    """Turn a raw editor string into a tagged id.

    Already-tagged values (models or dicts) pass through unchanged.
    """
    if isinstance(value, str):
        if not value:
            raise ValueError("empty fragment id")
        if value.startswith(PROVISIONAL_PREFIX):
            return Provisional(local_id=value)
        return Durable(store_id=value)
    return value


FragmentId = Annotated[Union[Provisional, Durable], BeforeValidator(parse_fragment_id)]


class IdRemap:
    """Provisional -> durable mapping built up while a bundle is persisted."""

    def __init__(self) -> None:
        self._durable: dict[Provisional, Durable] = {}

    def bind(self, provisional: Provisional, store_id: str) -> Durable:
        durable = Durable(store_id=store_id)
        self._durable[provisional] = durable
        return durable

    def resolve(self, fragment_id: Provisional | Durable) -> str:
        """Return the store id for ``fragment_id``.

        Raises:
            UnresolvedProvisionalIdError: provisional id with no binding yet.
        """
        if isinstance(fragment_id, Durable):
            return fragment_id.store_id
        durable = self._durable.get(fragment_id)
        if durable is None:
            raise UnresolvedProvisionalIdError(fragment_id.local_id)
        return durable.store_id

    def as_dict(self) -> dict[str, str]:
        """Local id -> store id, for returning to the editor."""
        return {p.local_id: d.store_id for p, d in self._durable.items()}

    def __len__(self) -> int:
        return len(self._durable)
