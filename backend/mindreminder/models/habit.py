from sqlalchemy import Column, String, Integer, Date, DateTime, Boolean, Text, ForeignKey, UniqueConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from mindreminder.db.base import Base
import uuid


class MicroAction(Base):
    """A small recurring habit owned by one user"""
    __tablename__ = "micro_actions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="other")
    duration = Column(String(50), nullable=True)
    frequency = Column(String(50), nullable=True)
    time_of_day = Column(String(20), nullable=True)
    habit_stack = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Derived from the completion log; only the tracker writes these
    current_streak = Column(Integer, nullable=False, default=0)
    best_streak = Column(Integer, nullable=False, default=0)
    total_completions = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    completions = relationship(
        "MicroActionCompletion",
        back_populates="micro_action",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_micro_actions_user_active", "user_id", "is_active"),
    )

    def __repr__(self):
        return f"<MicroAction(title='{self.title}', current_streak={self.current_streak})>"


class MicroActionCompletion(Base):
    """One day's completion of a micro-action"""
    __tablename__ = "micro_action_completions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    micro_action_id = Column(String, ForeignKey("micro_actions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    completion_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), server_default=func.now())

    micro_action = relationship("MicroAction", back_populates="completions")

    __table_args__ = (
        UniqueConstraint("micro_action_id", "completion_date", name="uq_completion_per_day"),
        Index("ix_completions_user_date", "user_id", "completion_date"),
    )

    def __repr__(self):
        return f"<MicroActionCompletion(micro_action_id='{self.micro_action_id}', date='{self.completion_date}')>"
