from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from mindreminder.db.base import Base


class Profile(Base):
    """Public profile details kept apart from the auth identity"""
    __tablename__ = "profiles"

    id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), primary_key=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    bio = Column(Text, nullable=True)
    profile_image_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", backref="profile")


class UserSettings(Base):
    """Notification and display preferences, one row per user"""
    __tablename__ = "user_settings"

    user_id = Column(String, ForeignKey("app_user.id", ondelete="CASCADE"), primary_key=True)

    # Notifications
    push_enabled = Column(Boolean, default=True)
    email_enabled = Column(Boolean, default=False)
    sound_enabled = Column(Boolean, default=True)
    vibration_enabled = Column(Boolean, default=True)
    quiet_hours = Column(Boolean, default=False)
    quiet_start = Column(String(5), nullable=True)  # HH:MM
    quiet_end = Column(String(5), nullable=True)

    # Preferences
    timezone = Column(String(64), nullable=True)  # IANA name; also the habit day boundary
    theme = Column(String(20), default="system")
    language = Column(String(10), default="en")
    reminder_style = Column(String(20), default="gentle")
    default_reminder_time = Column(String(5), nullable=True)
    week_starts_on = Column(String(10), default="monday")
    date_format = Column(String(20), default="MM/dd/yyyy")
    time_format = Column(String(5), default="12h")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", backref="settings")
