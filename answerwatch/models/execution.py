from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from answerwatch.db.base import Base, JsonType


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Execution(Base):
    """One attempt of one prompt against one platform on one calendar day."""

    __tablename__ = "prompt_executions"
    __table_args__ = (
        UniqueConstraint("business_id", "prompt_id", "platform_id", "execution_date", name="uq_execution_day"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prompt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    platform_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("business_platforms.id", ondelete="CASCADE"), nullable=False, index=True
    )
    execution_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ExecutionStatus.PENDING.value, nullable=False)

    # Raw answer
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Analysis (text-verified)
    brand_mentions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    competitors_mentioned: Mapped[list | None] = mapped_column(JsonType, nullable=True)  # ["Tailscale", ...]
    mention_analysis: Mapped[dict | None] = mapped_column(JsonType, nullable=True)  # rankings, sentiments, ...
    analysis_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)  # 0-100

    # Metrics
    business_visibility: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0 | 1
    competitor_visibilities: Mapped[dict | None] = mapped_column(JsonType, nullable=True)  # {"Tailscale": 1}
    share_of_voice: Mapped[float | None] = mapped_column(Float, nullable=True)  # percent, 1 decimal
    competitor_share_of_voice: Mapped[dict | None] = mapped_column(JsonType, nullable=True)

    # Main query usage
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Relationships
    prompt: Mapped["Prompt"] = relationship("Prompt", back_populates="executions")  # noqa: F821
    sources: Mapped[list["ExecutionSource"]] = relationship(
        "ExecutionSource",
        back_populates="execution",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExecutionSource.id",
    )


class ExecutionSource(Base):
    """A citation found in one execution's answer. Replaced wholesale on re-analysis."""

    __tablename__ = "execution_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    execution_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("prompt_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), default="Other"
    )  # You | Competitor | Corporate | Reference | Editorial | UGC | Institutional | Other
    page_type: Mapped[str] = mapped_column(String(30), default="Other")  # Article | Comparison | Listicle | ...
    citations: Mapped[int] = mapped_column(Integer, default=1)
    associated_brands: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    execution: Mapped[Execution] = relationship("Execution", back_populates="sources")
