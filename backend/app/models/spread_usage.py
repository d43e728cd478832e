"""
Spread usage database model.

Records which spread layouts a user has tried (feeds spread achievements).
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.reading_enums import SpreadType


class SpreadUsage(Base):
    """First use of a spread type by a user."""
    __tablename__ = "spread_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "spread_type", name="uq_spread_usage_user_spread"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    spread_type = Column(Enum(SpreadType), nullable=False)
    first_used_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SpreadUsage(user={self.user_id}, spread='{self.spread_type.value}')>"
