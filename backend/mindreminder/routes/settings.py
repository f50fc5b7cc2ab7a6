from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
import logging
import re
import pytz

from mindreminder.core.config import settings
from mindreminder.core.deps import get_current_user
from mindreminder.db.session import get_db
from mindreminder.models.user import User
from mindreminder.models.profile import Profile, UserSettings

logger = logging.getLogger(__name__)

router = APIRouter()

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

SETTINGS_FIELDS = (
    "push_enabled", "email_enabled", "sound_enabled", "vibration_enabled",
    "quiet_hours", "quiet_start", "quiet_end", "timezone", "theme", "language",
    "reminder_style", "default_reminder_time", "week_starts_on", "date_format",
    "time_format",
)

PROFILE_FIELDS = ("first_name", "last_name", "bio")


def default_settings() -> Dict[str, Any]:
    return {
        "push_enabled": True,
        "email_enabled": False,
        "sound_enabled": True,
        "vibration_enabled": True,
        "quiet_hours": False,
        "timezone": settings.default_timezone,
        "theme": "system",
        "language": "en",
        "reminder_style": "gentle",
        "week_starts_on": "monday",
        "date_format": "MM/dd/yyyy",
        "time_format": "12h",
    }


class SettingsResponse(BaseModel):
    # Profile
    first_name: str
    last_name: str
    email: str
    bio: str

    # Notifications
    push_enabled: bool
    email_enabled: bool
    sound_enabled: bool
    vibration_enabled: bool
    quiet_hours: bool
    quiet_start: Optional[str] = None
    quiet_end: Optional[str] = None

    # Preferences
    timezone: str
    theme: str
    language: str
    reminder_style: str
    default_reminder_time: Optional[str] = None
    week_starts_on: str
    date_format: str
    time_format: str


class SettingsUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = None

    push_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    sound_enabled: Optional[bool] = None
    vibration_enabled: Optional[bool] = None
    quiet_hours: Optional[bool] = None
    quiet_start: Optional[str] = None
    quiet_end: Optional[str] = None

    timezone: Optional[str] = None
    theme: Optional[str] = None
    language: Optional[str] = None
    reminder_style: Optional[str] = None
    default_reminder_time: Optional[str] = None
    week_starts_on: Optional[str] = None
    date_format: Optional[str] = None
    time_format: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @field_validator("quiet_start", "quiet_end", "default_reminder_time")
    @classmethod
    def _clock_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v != "" and not TIME_PATTERN.match(v):
            raise ValueError("Time must be in HH:MM format")
        return v or None

    @field_validator("time_format")
    @classmethod
    def _time_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ("12h", "24h"):
            raise ValueError("time_format must be '12h' or '24h'")
        return v


def _get_or_create_settings(db: Session, user: User) -> UserSettings:
    row = db.query(UserSettings).filter(UserSettings.user_id == user.id).first()
    if row is None:
        row = UserSettings(user_id=user.id, **default_settings())
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info(f"Created default settings for user {user.id}")
    return row


def _merged_response(user: User, profile: Optional[Profile], row: UserSettings) -> SettingsResponse:
    values = default_settings()
    for field in SETTINGS_FIELDS:
        value = getattr(row, field)
        if value is not None:
            values[field] = value

    return SettingsResponse(
        first_name=(profile.first_name if profile and profile.first_name else "User"),
        last_name=(profile.last_name if profile and profile.last_name else ""),
        email=user.email,
        bio=(profile.bio if profile and profile.bio else ""),
        **values
    )


@router.get("/", response_model=SettingsResponse)
async def get_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Profile and preferences as one object, creating defaults on first read"""
    try:
        row = _get_or_create_settings(db, current_user)
        profile = db.query(Profile).filter(Profile.id == current_user.id).first()
        return _merged_response(current_user, profile, row)
    except Exception as e:
        logger.error(f"Failed to load settings for user {current_user.id}: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to load settings")


@router.put("/", response_model=SettingsResponse)
async def update_settings(
    payload: SettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upsert preferences and update profile names in one commit"""
    updates = payload.model_dump(exclude_unset=True)

    try:
        row = db.query(UserSettings).filter(UserSettings.user_id == current_user.id).first()
        if row is None:
            row = UserSettings(user_id=current_user.id, **default_settings())
            db.add(row)

        for field in SETTINGS_FIELDS:
            if field in updates:
                value = updates[field]
                # Booleans and required preferences cannot be cleared
                if value is None and field not in ("quiet_start", "quiet_end", "default_reminder_time"):
                    continue
                setattr(row, field, value)

        profile = db.query(Profile).filter(Profile.id == current_user.id).first()
        profile_updates = {k: updates[k] for k in PROFILE_FIELDS if k in updates}
        if profile_updates:
            if profile is None:
                profile = Profile(id=current_user.id)
                db.add(profile)
            for field, value in profile_updates.items():
                setattr(profile, field, value)

        db.commit()
        db.refresh(row)
        if profile is not None:
            db.refresh(profile)

        logger.info(f"Updated settings for user {current_user.id}: {sorted(updates)}")
        return _merged_response(current_user, profile, row)

    except Exception as e:
        logger.error(f"Failed to save settings for user {current_user.id}: {e}")
        db.rollback()
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save settings")
