from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr
from typing import Any, Dict, Iterable, List, Optional, Tuple
from mindreminder.core.deps import get_current_user
from mindreminder.db.session import get_db
from mindreminder.models.user import User
from mindreminder.models.profile import Profile
from mindreminder.models.reminder import Reminder
from mindreminder.models.friend import Friend, SharedReminder, FriendNotification
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

NOTIFICATION_LIMIT = 50
SEARCH_LIMIT = 10


class FriendRequestCreate(BaseModel):
    friend_email: EmailStr


class PersonResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    profile_image: Optional[str]


class FriendResponse(BaseModel):
    id: str
    friend_id: str
    status: str
    created_at: Optional[str]
    friend: PersonResponse


class FriendRequestResponse(BaseModel):
    id: str
    from_user_id: str
    to_user_id: str
    status: str
    created_at: Optional[str]
    sender: PersonResponse


class ShareReminderCreate(BaseModel):
    reminder_id: str
    friend_id: str
    message: Optional[str] = None


class SharedReminderResponse(BaseModel):
    id: str
    reminder_id: str
    shared_by: str
    shared_with: str
    message: Optional[str]
    is_read: bool
    created_at: Optional[str]
    reminder_title: Optional[str]
    reminder_description: Optional[str]
    reminder_image: Optional[str]
    sharer: PersonResponse


class NotificationResponse(BaseModel):
    id: str
    from_user_id: Optional[str]
    type: str
    title: str
    message: str
    is_read: bool
    metadata: Dict[str, Any]
    created_at: Optional[str]


class UnreadCountResponse(BaseModel):
    count: int


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _people(db: Session, user_ids: Iterable[str]) -> Dict[str, PersonResponse]:
    """Users and their profiles for a set of ids, in one query"""
    ids = set(user_ids)
    if not ids:
        return {}

    rows: List[Tuple[User, Optional[Profile]]] = db.query(User, Profile).outerjoin(
        Profile, Profile.id == User.id
    ).filter(User.id.in_(ids)).all()

    return {
        user.id: PersonResponse(
            id=user.id,
            email=user.email,
            first_name=profile.first_name if profile else None,
            last_name=profile.last_name if profile else None,
            profile_image=profile.profile_image_url if profile else None
        )
        for user, profile in rows
    }


def _display_name(person: Optional[PersonResponse]) -> str:
    if person is None:
        return "Someone"
    name = f"{person.first_name or ''} {person.last_name or ''}".strip()
    return name or person.email


def _link_between(db: Session, user_id: str, other_id: str) -> List[Friend]:
    return db.query(Friend).filter(
        or_(
            and_(Friend.user_id == user_id, Friend.friend_id == other_id),
            and_(Friend.user_id == other_id, Friend.friend_id == user_id)
        )
    ).all()


def _notify(db: Session, user_id: str, from_user_id: str, kind: str, title: str,
            message: str, details: Optional[Dict[str, Any]] = None) -> None:
    db.add(FriendNotification(
        user_id=user_id,
        from_user_id=from_user_id,
        type=kind,
        title=title,
        message=message,
        details=details or {}
    ))


def _get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _get_pending_request(db: Session, request_id: str, user: User) -> Friend:
    request = db.query(Friend).filter(
        Friend.id == request_id,
        Friend.friend_id == user.id,
        Friend.status == "pending"
    ).first()

    if not request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend request not found")
    return request


def _request_response(db: Session, request: Friend) -> FriendRequestResponse:
    return FriendRequestResponse(
        id=request.id,
        from_user_id=request.user_id,
        to_user_id=request.friend_id,
        status=request.status,
        created_at=_iso(request.created_at),
        sender=_people(db, [request.user_id])[request.user_id]
    )


# ----------------------------------------------------------------------
# Friends
# ----------------------------------------------------------------------

@router.get("/", response_model=List[FriendResponse])
async def list_friends(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Accepted friends, newest first"""

    try:
        rows = db.query(Friend).filter(
            Friend.user_id == current_user.id,
            Friend.status == "accepted"
        ).order_by(Friend.created_at.desc(), Friend.id).all()

        people = _people(db, (row.friend_id for row in rows))
        return [
            FriendResponse(
                id=row.id,
                friend_id=row.friend_id,
                status=row.status,
                created_at=_iso(row.created_at),
                friend=people[row.friend_id]
            )
            for row in rows
            if row.friend_id in people
        ]

    except Exception as e:
        logger.error(f"Failed to list friends: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch friends")


@router.post("/", response_model=FriendRequestResponse, status_code=status.HTTP_201_CREATED)
async def send_friend_request(
    payload: FriendRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Send a friend request to the user registered with friend_email"""

    recipient = db.query(User).filter(User.email == payload.friend_email.lower()).first()
    if not recipient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found with that email address")
    if recipient.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot send a friend request to yourself")

    statuses = {row.status for row in _link_between(db, current_user.id, recipient.id)}
    if "blocked" in statuses:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot send friend request to this user")
    if "accepted" in statuses:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You are already friends with this user")
    if "pending" in statuses:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Friend request already sent")

    try:
        request = Friend(user_id=current_user.id, friend_id=recipient.id, status="pending")
        db.add(request)
        db.flush()

        sender = _people(db, [current_user.id]).get(current_user.id)
        _notify(
            db, recipient.id, current_user.id, "friend_request",
            "Friend Request",
            f"{_display_name(sender)} sent you a friend request"
        )
        db.commit()
        db.refresh(request)

        logger.info(f"User {current_user.id} sent friend request {request.id} to {recipient.id}")
        return _request_response(db, request)

    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Friend request already sent")
    except Exception as e:
        logger.error(f"Failed to send friend request: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to send friend request")


@router.get("/requests", response_model=List[FriendRequestResponse])
async def list_friend_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Pending requests addressed to the current user"""

    try:
        rows = db.query(Friend).filter(
            Friend.friend_id == current_user.id,
            Friend.status == "pending"
        ).order_by(Friend.created_at.desc(), Friend.id).all()

        people = _people(db, (row.user_id for row in rows))
        return [
            FriendRequestResponse(
                id=row.id,
                from_user_id=row.user_id,
                to_user_id=row.friend_id,
                status=row.status,
                created_at=_iso(row.created_at),
                sender=people[row.user_id]
            )
            for row in rows
            if row.user_id in people
        ]

    except Exception as e:
        logger.error(f"Failed to list friend requests: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch friend requests")


@router.post("/requests/{request_id}/accept", response_model=FriendResponse)
async def accept_friend_request(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Accept a pending request and add the reverse friendship row"""

    try:
        request = _get_pending_request(db, request_id, current_user)
        request.status = "accepted"

        reverse = db.query(Friend).filter(
            Friend.user_id == current_user.id,
            Friend.friend_id == request.user_id
        ).first()
        if reverse is None:
            reverse = Friend(user_id=current_user.id, friend_id=request.user_id, status="accepted")
            db.add(reverse)
        else:
            reverse.status = "accepted"

        people = _people(db, [current_user.id, request.user_id])
        _notify(
            db, request.user_id, current_user.id, "friend_accepted",
            "Friend Request Accepted",
            f"{_display_name(people.get(current_user.id))} accepted your friend request"
        )
        db.commit()
        db.refresh(reverse)

        logger.info(f"User {current_user.id} accepted friend request {request_id}")
        return FriendResponse(
            id=reverse.id,
            friend_id=reverse.friend_id,
            status=reverse.status,
            created_at=_iso(reverse.created_at),
            friend=people[request.user_id]
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to accept friend request: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to accept friend request")


@router.post("/requests/{request_id}/decline")
async def decline_friend_request(
    request_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        request = _get_pending_request(db, request_id, current_user)
        db.delete(request)
        db.commit()

        return {"message": "Friend request declined"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to decline friend request: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to decline friend request")


@router.get("/search", response_model=List[PersonResponse])
async def search_users(
    email: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Users whose email contains the search text"""

    try:
        ids = [
            row.id
            for row in db.query(User.id).filter(
                User.email.ilike(f"%{email.strip()}%"),
                User.id != current_user.id
            ).order_by(User.email).limit(SEARCH_LIMIT).all()
        ]
        people = _people(db, ids)
        return [people[user_id] for user_id in ids if user_id in people]

    except Exception as e:
        logger.error(f"Failed to search users: {e}")
        raise HTTPException(status_code=500, detail="Failed to search users")


@router.delete("/{friend_id}")
async def remove_friend(
    friend_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Remove a friendship in both directions; blocks are left in place"""

    try:
        rows = [row for row in _link_between(db, current_user.id, friend_id) if row.status != "blocked"]
        if not rows:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend not found")

        for row in rows:
            db.delete(row)
        db.commit()

        logger.info(f"User {current_user.id} removed friend {friend_id}")
        return {"message": "Friend removed successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to remove friend: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to remove friend")


@router.post("/{friend_id}/block")
async def block_user(
    friend_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Block a user, ending any friendship or pending request between the two"""

    if friend_id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot block yourself")

    try:
        _get_user(db, friend_id)

        own = None
        for row in _link_between(db, current_user.id, friend_id):
            if row.user_id == current_user.id:
                own = row
            elif row.status != "blocked":
                db.delete(row)

        if own is None:
            own = Friend(user_id=current_user.id, friend_id=friend_id)
            db.add(own)
        own.status = "blocked"
        db.commit()

        logger.info(f"User {current_user.id} blocked {friend_id}")
        return {"message": "User blocked"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to block user: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to block user")


# ----------------------------------------------------------------------
# Reminder sharing
# ----------------------------------------------------------------------

@router.post("/shared", response_model=SharedReminderResponse, status_code=status.HTTP_201_CREATED)
async def share_reminder(
    payload: ShareReminderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Share one of the current user's reminders with an accepted friend"""

    reminder = db.query(Reminder).filter(
        Reminder.id == payload.reminder_id,
        Reminder.user_id == current_user.id
    ).first()
    if not reminder:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")

    friendship = db.query(Friend).filter(
        Friend.user_id == current_user.id,
        Friend.friend_id == payload.friend_id,
        Friend.status == "accepted"
    ).first()
    if not friendship:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Reminders can only be shared with friends")

    try:
        shared = SharedReminder(
            reminder_id=reminder.id,
            shared_by=current_user.id,
            shared_with=payload.friend_id,
            message=payload.message or None
        )
        db.add(shared)

        sharer = _people(db, [current_user.id])[current_user.id]
        _notify(
            db, payload.friend_id, current_user.id, "reminder_shared",
            "Reminder Shared",
            f"{_display_name(sharer)} shared a reminder: \"{reminder.title}\"",
            {"reminder_id": reminder.id, "shared_reminder_message": payload.message}
        )
        db.commit()
        db.refresh(shared)

        logger.info(f"User {current_user.id} shared reminder {reminder.id} with {payload.friend_id}")
        return SharedReminderResponse(
            id=shared.id,
            reminder_id=reminder.id,
            shared_by=shared.shared_by,
            shared_with=shared.shared_with,
            message=shared.message,
            is_read=bool(shared.is_read),
            created_at=_iso(shared.created_at),
            reminder_title=reminder.title,
            reminder_description=reminder.description,
            reminder_image=reminder.image,
            sharer=sharer
        )

    except Exception as e:
        logger.error(f"Failed to share reminder: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to share reminder")


@router.get("/shared", response_model=List[SharedReminderResponse])
async def list_shared_reminders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Reminders friends have shared with the current user, newest first"""

    try:
        rows = db.query(SharedReminder, Reminder).outerjoin(
            Reminder, Reminder.id == SharedReminder.reminder_id
        ).filter(
            SharedReminder.shared_with == current_user.id
        ).order_by(SharedReminder.created_at.desc(), SharedReminder.id).all()

        people = _people(db, (shared.shared_by for shared, _ in rows))
        return [
            SharedReminderResponse(
                id=shared.id,
                reminder_id=shared.reminder_id,
                shared_by=shared.shared_by,
                shared_with=shared.shared_with,
                message=shared.message,
                is_read=bool(shared.is_read),
                created_at=_iso(shared.created_at),
                reminder_title=reminder.title if reminder else None,
                reminder_description=reminder.description if reminder else None,
                reminder_image=reminder.image if reminder else None,
                sharer=people[shared.shared_by]
            )
            for shared, reminder in rows
            if shared.shared_by in people
        ]

    except Exception as e:
        logger.error(f"Failed to list shared reminders: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch shared reminders")


@router.post("/shared/{shared_id}/read")
async def mark_shared_reminder_read(
    shared_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        shared = db.query(SharedReminder).filter(
            SharedReminder.id == shared_id,
            SharedReminder.shared_with == current_user.id
        ).first()
        if not shared:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Shared reminder not found")

        shared.is_read = True
        db.commit()
        return {"message": "Shared reminder marked as read"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to mark shared reminder read: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to update shared reminder")


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------

@router.get("/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        rows = db.query(FriendNotification).filter(
            FriendNotification.user_id == current_user.id
        ).order_by(FriendNotification.created_at.desc(), FriendNotification.id).limit(NOTIFICATION_LIMIT).all()

        return [
            NotificationResponse(
                id=row.id,
                from_user_id=row.from_user_id,
                type=row.type,
                title=row.title,
                message=row.message,
                is_read=bool(row.is_read),
                metadata=row.details or {},
                created_at=_iso(row.created_at)
            )
            for row in rows
        ]

    except Exception as e:
        logger.error(f"Failed to list notifications: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch notifications")


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def unread_notification_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        count = db.query(FriendNotification).filter(
            FriendNotification.user_id == current_user.id,
            FriendNotification.is_read.is_(False)
        ).count()
        return UnreadCountResponse(count=count)

    except Exception as e:
        logger.error(f"Failed to count notifications: {e}")
        raise HTTPException(status_code=500, detail="Failed to count notifications")


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        notification = db.query(FriendNotification).filter(
            FriendNotification.id == notification_id,
            FriendNotification.user_id == current_user.id
        ).first()
        if not notification:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

        notification.is_read = True
        db.commit()
        return {"message": "Notification marked as read"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to mark notification read: {e}")
        db.rollback()
        raise HTTPException(status_code=500, detail="Failed to update notification")
