from __future__ import annotations

from datetime import date, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator

from searchpulse.models.opportunity import OPPORTUNITY_TYPES
from searchpulse.services.detection import thresholds


class AnalysisWindow(BaseModel):
    """Detection window ending at ``as_of``; the declining split is fixed to 7 vs 8-28 days back."""

    model_config = ConfigDict(frozen=True)

    as_of: date
    window_days: int = Field(default=28, ge=thresholds.OLDER_WINDOW_START_DAYS)

    @property
    def date_from(self) -> date:
        return self.as_of - timedelta(days=self.window_days)

    @property
    def date_to(self) -> date:
        return self.as_of

    @property
    def recent_from(self) -> date:
        return self.as_of - timedelta(days=thresholds.RECENT_WINDOW_DAYS)

    @property
    def recent_to(self) -> date:
        return self.as_of - timedelta(days=1)

    @property
    def older_from(self) -> date:
        return self.as_of - timedelta(days=thresholds.OLDER_WINDOW_START_DAYS)

    @property
    def older_to(self) -> date:
        return self.as_of - timedelta(days=thresholds.OLDER_WINDOW_END_DAYS)


class OpportunityCandidate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    keyword: str = Field(min_length=1)
    opportunity_type: str
    score: float = Field(ge=0, le=thresholds.MAX_SCORE)
    current_position: float | None = None
    current_ctr: float | None = None
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    position_change: float | None = None
    suggested_action: str
    page_url: str | None = None
    content_id: str | None = None

    @field_validator("opportunity_type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        if value not in OPPORTUNITY_TYPES:
            raise ValueError(f"Unknown opportunity type: {value}")
        return value
