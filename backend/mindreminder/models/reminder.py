from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from mindreminder.db.base import Base
import uuid


class Reminder(Base):
    __tablename__ = "reminders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    scheduled_time = Column(DateTime(timezone=True), nullable=True)
    location = Column(String, nullable=True)
    recurrence = Column(String(20), nullable=True)  # daily, weekly, monthly
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    user = relationship("User")

    def __repr__(self):
        return f"<Reminder(title='{self.title[:30]}', scheduled_time='{self.scheduled_time}')>"
