from __future__ import annotations

from dataclasses import dataclass

from tripnotes.config import Settings, settings


@dataclass(frozen=True)
class TtlPolicy:
    """TTL classes in seconds.

    ``structural`` applies to idle day/activity entries, ``active_edit`` to
    entries written while the editor is changing them.
    """

    metadata: int = 3600
    structural: int = 1800
    active_edit: int = 300
    whole_document: int = 900
    structure: int = 3600

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> TtlPolicy:
        config = config or settings
        return cls(
            metadata=config.ttl_metadata,
            structural=config.ttl_structural,
            active_edit=config.ttl_active_edit,
            whole_document=config.ttl_whole_document,
            structure=config.ttl_structure,
        )

    @property
    def freshness_marker(self) -> int:
        # The marker must outlive every whole-trip entry it guards
        return max(self.whole_document, self.structure)
