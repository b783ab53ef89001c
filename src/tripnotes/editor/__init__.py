"""Editor-facing write path.

Applies change bundles and single-field edits to the store, then propagates
them to the component cache, the structure index and the freshness marker.
"""

from tripnotes.editor.orchestrator import (
    ITEM_FIELDS,
    SECTION_FIELDS,
    SaveResult,
    WriteThroughOrchestrator,
)

__all__ = [
    "WriteThroughOrchestrator",
    "SaveResult",
    "ITEM_FIELDS",
    "SECTION_FIELDS",
]
