import uuid
import datetime as dt
from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from searchpulse.db.base import Base


class QueryMetric(Base):
    __tablename__ = "search_query_metrics"
    __table_args__ = (
        UniqueConstraint("keyword", "date", name="uq_search_query_metrics_keyword_date"),
        CheckConstraint("clicks >= 0", name="ck_search_query_metrics_clicks_non_negative"),
        CheckConstraint("impressions >= clicks", name="ck_search_query_metrics_impressions_gte_clicks"),
        CheckConstraint("ctr >= 0 AND ctr <= 1", name="ck_search_query_metrics_ctr_range"),
        CheckConstraint("position >= 1", name="ck_search_query_metrics_position_min"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    keyword: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ctr: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position: Mapped[float] = mapped_column(Float, nullable=False, default=1.0, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))


class PageMetric(Base):
    __tablename__ = "search_page_metrics"
    __table_args__ = (
        UniqueConstraint("url", "date", name="uq_search_page_metrics_url_date"),
        CheckConstraint("clicks >= 0", name="ck_search_page_metrics_clicks_non_negative"),
        CheckConstraint("impressions >= clicks", name="ck_search_page_metrics_impressions_gte_clicks"),
        CheckConstraint("ctr >= 0 AND ctr <= 1", name="ck_search_page_metrics_ctr_range"),
        CheckConstraint("position >= 1", name="ck_search_page_metrics_position_min"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    url: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    content_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    clicks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    impressions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ctr: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
