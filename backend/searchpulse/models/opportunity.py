import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from searchpulse.db.base import Base

OPPORTUNITY_TYPE_QUICK_WIN = "quick_win"
OPPORTUNITY_TYPE_LOW_CTR = "low_ctr"
OPPORTUNITY_TYPE_DECLINING = "declining"
OPPORTUNITY_TYPE_CONTENT_GAP = "content_gap"
OPPORTUNITY_TYPES = (
    OPPORTUNITY_TYPE_QUICK_WIN,
    OPPORTUNITY_TYPE_LOW_CTR,
    OPPORTUNITY_TYPE_DECLINING,
    OPPORTUNITY_TYPE_CONTENT_GAP,
)

OPPORTUNITY_STATUS_ACTIVE = "active"
OPPORTUNITY_STATUS_DISMISSED = "dismissed"


class Opportunity(Base):
    __tablename__ = "search_opportunities"
    __table_args__ = (
        UniqueConstraint("keyword", "opportunity_type", name="uq_search_opportunities_keyword_type"),
        Index("ix_search_opportunities_status_type_score", "status", "opportunity_type", "score"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    keyword: Mapped[str] = mapped_column(String(500), nullable=False)
    page_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    content_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    opportunity_type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_position: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    position_change: Mapped[float | None] = mapped_column(Float, nullable=True)
    suggested_action: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=OPPORTUNITY_STATUS_ACTIVE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
