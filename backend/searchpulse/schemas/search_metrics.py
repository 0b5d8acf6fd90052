import datetime as dt
from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator


class _MetricRowIn(BaseModel):
    clicks: int = Field(ge=0)
    impressions: int = Field(ge=0)
    ctr: float
    position: float
    date: dt.date

    @model_validator(mode="after")
    def normalize_metrics(self) -> "_MetricRowIn":
        self.ctr = max(0.0, min(float(self.ctr), 1.0))
        self.position = max(1.0, float(self.position))
        if self.impressions < self.clicks:
            self.impressions = self.clicks
        return self


class QueryMetricIn(_MetricRowIn):
    keyword: str = Field(min_length=1, max_length=500)


class PageMetricIn(_MetricRowIn):
    url: str = Field(min_length=1, max_length=500)
    content_id: str | None = None


class OpportunityOut(BaseModel):
    id: str
    keyword: str
    page_url: str | None
    content_id: str | None
    opportunity_type: str
    score: float
    current_position: float | None
    current_ctr: float | None
    impressions: int
    clicks: int
    position_change: float | None
    suggested_action: str
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SyncTriggerIn(BaseModel):
    date_from: date | None = None
    date_to: date | None = None

    @model_validator(mode="after")
    def validate_range(self) -> "SyncTriggerIn":
        if (self.date_from is None) != (self.date_to is None):
            raise ValueError("date_from and date_to must be provided together.")
        if self.date_from is not None and self.date_to is not None and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to.")
        return self
