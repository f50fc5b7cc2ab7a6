from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, timezone
from mindreminder.core.deps import get_current_user
from mindreminder.db.session import get_db
from mindreminder.models.user import User
from mindreminder.models.reminder import Reminder
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

RECURRENCE_VALUES = ("daily", "weekly", "monthly")


class ReminderCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    location: Optional[str] = None
    recurrence: Optional[str] = None
    is_active: bool = True


class ReminderUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    location: Optional[str] = None
    recurrence: Optional[str] = None
    is_active: Optional[bool] = None


class ReminderResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    image: Optional[str]
    scheduled_time: Optional[str]
    location: Optional[str]
    recurrence: Optional[str]
    is_active: bool
    created_at: Optional[str]
    updated_at: Optional[str]


class RemindersListResponse(BaseModel):
    reminders: List[ReminderResponse]
    total: int
    page: int
    per_page: int


def _ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_recurrence(recurrence: Optional[str]) -> None:
    if recurrence is not None and recurrence not in RECURRENCE_VALUES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid recurrence. Must be one of: {', '.join(RECURRENCE_VALUES)}"
        )


def _reminder_response(reminder: Reminder) -> ReminderResponse:
    return ReminderResponse(
        id=str(reminder.id),
        title=reminder.title,
        description=reminder.description,
        image=reminder.image,
        scheduled_time=reminder.scheduled_time.isoformat() if reminder.scheduled_time else None,
        location=reminder.location,
        recurrence=reminder.recurrence,
        is_active=bool(reminder.is_active),
        created_at=reminder.created_at.isoformat() if reminder.created_at else None,
        updated_at=reminder.updated_at.isoformat() if reminder.updated_at else None
    )


def _get_owned_reminder(db: Session, reminder_id: str, user: User) -> Reminder:
    reminder = db.query(Reminder).filter(
        Reminder.id == reminder_id,
        Reminder.user_id == user.id
    ).first()

    if not reminder:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reminder not found"
        )
    return reminder


@router.get("/", response_model=RemindersListResponse)
async def list_reminders(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    active: Optional[bool] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List user's reminders with pagination and filtering"""

    try:
        query = db.query(Reminder).filter(Reminder.user_id == current_user.id)

        if active is not None:
            query = query.filter(Reminder.is_active == active)

        total = query.count()

        offset = (page - 1) * per_page
        reminders = query.order_by(Reminder.created_at.desc(), Reminder.id).offset(offset).limit(per_page).all()

        return RemindersListResponse(
            reminders=[_reminder_response(r) for r in reminders],
            total=total,
            page=page,
            per_page=per_page
        )

    except Exception as e:
        logger.error(f"Failed to list reminders: {e}")
        raise HTTPException(status_code=500, detail="Failed to retrieve reminders")


@router.post("/", response_model=ReminderResponse, status_code=status.HTTP_201_CREATED)
async def create_reminder(
    reminder_data: ReminderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new reminder"""

    if not reminder_data.title.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    _check_recurrence(reminder_data.recurrence)

    try:
        reminder = Reminder(
            user_id=current_user.id,
            title=reminder_data.title.strip(),
            description=reminder_data.description or None,
            image=reminder_data.image or None,
            scheduled_time=_ensure_aware(reminder_data.scheduled_time),
            location=reminder_data.location or None,
            recurrence=reminder_data.recurrence,
            is_active=reminder_data.is_active
        )

        db.add(reminder)
        db.commit()
        db.refresh(reminder)

        return _reminder_response(reminder)

    except Exception as e:
        logger.error(f"Failed to create reminder: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to create reminder")


@router.get("/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(
    reminder_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a specific reminder"""

    return _reminder_response(_get_owned_reminder(db, reminder_id, current_user))


@router.patch("/{reminder_id}", response_model=ReminderResponse)
async def update_reminder(
    reminder_id: str,
    reminder_update: ReminderUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a reminder"""

    try:
        reminder = _get_owned_reminder(db, reminder_id, current_user)
        updates = reminder_update.model_dump(exclude_unset=True)

        if "title" in updates:
            if not updates["title"] or not updates["title"].strip():
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
            reminder.title = updates["title"].strip()

        if "recurrence" in updates:
            _check_recurrence(updates["recurrence"])
            reminder.recurrence = updates["recurrence"]

        if "scheduled_time" in updates:
            reminder.scheduled_time = _ensure_aware(updates["scheduled_time"])

        for field in ("description", "image", "location"):
            if field in updates:
                setattr(reminder, field, updates[field] or None)

        if updates.get("is_active") is not None:
            reminder.is_active = updates["is_active"]

        db.commit()
        db.refresh(reminder)

        return _reminder_response(reminder)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update reminder: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to update reminder")


@router.post("/{reminder_id}/toggle", response_model=ReminderResponse)
async def toggle_reminder(
    reminder_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Flip a reminder between active and paused"""

    try:
        reminder = _get_owned_reminder(db, reminder_id, current_user)
        reminder.is_active = not reminder.is_active
        db.commit()
        db.refresh(reminder)

        return _reminder_response(reminder)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to toggle reminder: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to toggle reminder")


@router.delete("/{reminder_id}")
async def delete_reminder(
    reminder_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a reminder"""

    try:
        reminder = _get_owned_reminder(db, reminder_id, current_user)

        db.delete(reminder)
        db.commit()

        return {"message": "Reminder deleted successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to delete reminder: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to delete reminder")
