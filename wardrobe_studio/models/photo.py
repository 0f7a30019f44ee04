"""Photo quality analysis models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

PhotoKind = Literal["actor", "garment"]


class Severity(str, Enum):
    """Ordered quality level: pass < warn < fail."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def worst(cls, severities) -> "Severity":
        """Highest severity in an iterable, PASS when empty."""
        return max(severities, key=lambda s: s.rank, default=cls.PASS)


_SEVERITY_RANK = {Severity.PASS: 0, Severity.WARN: 1, Severity.FAIL: 2}


class PhotoIssue(BaseModel):
    """A single detected problem with an uploaded photo."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable key, e.g. 'blur-severe'")
    severity: Severity
    message: str
    fix: str = Field(description="What the user can do about it")
    metric: float | None = None


class PhotoAnalysisPartial(BaseModel):
    """Unscored output of one heuristic side (client or server)."""

    issues: list[PhotoIssue] = Field(default_factory=list)
    metrics: dict[str, float] | None = None


class PhotoAnalysisResult(BaseModel):
    """Combined, scored analysis. Recomputed per upload, never mutated."""

    model_config = ConfigDict(frozen=True)

    kind: PhotoKind
    score: int = Field(ge=0, le=100)
    status: Severity
    issues: list[PhotoIssue] = Field(default_factory=list)
    client_metrics: dict[str, float] | None = None
    server_metrics: dict[str, float] | None = None
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0"

    def issue(self, issue_id: str) -> PhotoIssue | None:
        return next((i for i in self.issues if i.id == issue_id), None)
