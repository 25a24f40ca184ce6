from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from answerwatch.db.base import Base


class Platform(Base):
    """One configured AI provider + model + credential for a business.

    Rows are replaced rather than edited, so executions always refer to the
    exact configuration that produced them.
    """

    __tablename__ = "business_platforms"
    __table_args__ = (UniqueConstraint("business_id", "platform_key", name="uq_business_platform"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    platform_key: Mapped[str] = mapped_column(String(50), nullable=False)  # chatgpt | claude | gemini | grok | perplexity
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)  # overrides the registry default
    api_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)  # Fernet-encrypted
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    business: Mapped["Business"] = relationship("Business", back_populates="platforms")  # noqa: F821
