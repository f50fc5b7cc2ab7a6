from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey, UniqueConstraint, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from mindreminder.db.base import Base
import uuid

FRIEND_STATUSES = ("pending", "accepted", "blocked")
NOTIFICATION_TYPES = ("friend_request", "friend_accepted", "reminder_shared")


class Friend(Base):
    """
    One direction of a friendship

    A request is a single pending row from sender to recipient. Accepting it
    adds the reverse row so each side lists the other by user_id.
    """
    __tablename__ = "friends"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    friend_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, accepted, blocked
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", foreign_keys=[user_id])
    friend = relationship("User", foreign_keys=[friend_id])

    __table_args__ = (
        UniqueConstraint("user_id", "friend_id", name="uq_friend_pair"),
    )

    def __repr__(self):
        return f"<Friend(user_id='{self.user_id}', friend_id='{self.friend_id}', status='{self.status}')>"


class SharedReminder(Base):
    __tablename__ = "shared_reminders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    reminder_id = Column(String, ForeignKey("reminders.id", ondelete="CASCADE"), nullable=False)
    shared_by = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False)
    shared_with = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    reminder = relationship("Reminder")
    sharer = relationship("User", foreign_keys=[shared_by])


class FriendNotification(Base):
    __tablename__ = "friend_notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    from_user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=True)
    type = Column(String(30), nullable=False)  # friend_request, friend_accepted, reminder_shared
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
