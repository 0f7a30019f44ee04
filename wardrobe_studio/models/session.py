"""Studio session state for the two-phase workflow."""

from datetime import datetime
from pydantic import BaseModel, Field, computed_field

from .tryon import TryOnParams, TryOnResult


class SessionTimestamps(BaseModel):
    preview: datetime | None = None
    finalized: datetime | None = None


class StudioSession(BaseModel):
    """Client-held state for one studio interaction. Never persisted."""

    preview_results: list[TryOnResult] = Field(default_factory=list)
    selected_index: int | None = None
    final_result: TryOnResult | None = None
    seeds: list[int] = Field(default_factory=list)
    params: TryOnParams | None = None
    timestamps: SessionTimestamps = Field(default_factory=SessionTimestamps)

    @computed_field
    @property
    def selected_result(self) -> TryOnResult | None:
        """The preview candidate the user picked, if any."""
        if self.selected_index is None:
            return None
        return self.preview_results[self.selected_index]
