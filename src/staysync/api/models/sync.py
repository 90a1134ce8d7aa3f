"""Request models for the sync trigger endpoint."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SyncRequest(BaseModel):
    """Body of ``POST /api/sync``.

    Exactly one of ``property_id`` or ``all`` selects what to sync.
    """

    model_config = ConfigDict(extra="forbid")

    property_id: str | None = Field(default=None, min_length=1)
    all: bool = False
    debug: bool = False

    def property_ids(self) -> list[str] | None:
        """Resolve the selection; ``None`` means every active source."""
        if self.all and self.property_id is not None:
            raise ValueError("Pass either 'property_id' or 'all', not both")
        if self.all:
            return None
        if self.property_id is None:
            raise ValueError("Either 'property_id' or 'all' must be provided")
        return [self.property_id]
