from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from typing import List, Optional, NoReturn
from datetime import date
import logging

from mindreminder.core.deps import get_current_user, get_tracker
from mindreminder.models.user import User
from mindreminder.models.habit import MicroAction, MicroActionCompletion
from mindreminder.services.habit_tracker import HabitCompletionTracker
from mindreminder.services.habit_errors import (
    HabitTrackerError,
    NotFound,
    Forbidden,
    AlreadyCompleted,
    NotCompletedToday,
    HabitInactive,
    InvalidCompletionDay,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
    AlreadyCompleted: status.HTTP_409_CONFLICT,
    NotCompletedToday: status.HTTP_409_CONFLICT,
    HabitInactive: status.HTTP_409_CONFLICT,
    InvalidCompletionDay: status.HTTP_400_BAD_REQUEST,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class MicroActionCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = "other"
    duration: Optional[str] = None
    frequency: Optional[str] = None
    time_of_day: Optional[str] = None
    habit_stack: Optional[str] = None
    is_active: bool = True


class MicroActionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    duration: Optional[str] = None
    frequency: Optional[str] = None
    time_of_day: Optional[str] = None
    habit_stack: Optional[str] = None
    is_active: Optional[bool] = None


class MicroActionResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    category: str
    duration: Optional[str]
    frequency: Optional[str]
    time_of_day: Optional[str]
    habit_stack: Optional[str]
    is_active: bool
    current_streak: int
    best_streak: int
    total_completions: int
    completed_today: Optional[bool] = None
    created_at: Optional[str]
    updated_at: Optional[str]


class CompletionCreate(BaseModel):
    note: Optional[str] = None
    day: Optional[date] = None


class CompletionResponse(BaseModel):
    id: str
    micro_action_id: str
    completion_date: str
    notes: Optional[str]
    completed_at: Optional[str]


class StreakResponse(BaseModel):
    habit_id: str
    current_streak: int
    best_streak: int
    total_completions: int
    completed_today: bool
    last_completed: Optional[str]
    as_of: str


class StatsResponse(BaseModel):
    total_active: int
    completed_today: int
    current_streaks: List[int]
    weekly_completions: int


def _raise_http(e: HabitTrackerError) -> NoReturn:
    status_code = ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=status_code, detail={"code": e.code, "message": str(e)})


def _micro_action_response(habit: MicroAction, completed_today: Optional[bool] = None) -> MicroActionResponse:
    return MicroActionResponse(
        id=habit.id,
        title=habit.title,
        description=habit.description,
        category=habit.category,
        duration=habit.duration,
        frequency=habit.frequency,
        time_of_day=habit.time_of_day,
        habit_stack=habit.habit_stack,
        is_active=bool(habit.is_active),
        current_streak=habit.current_streak or 0,
        best_streak=habit.best_streak or 0,
        total_completions=habit.total_completions or 0,
        completed_today=completed_today,
        created_at=habit.created_at.isoformat() if habit.created_at else None,
        updated_at=habit.updated_at.isoformat() if habit.updated_at else None
    )


def _completion_response(completion: MicroActionCompletion) -> CompletionResponse:
    return CompletionResponse(
        id=completion.id,
        micro_action_id=completion.micro_action_id,
        completion_date=completion.completion_date.isoformat(),
        notes=completion.notes,
        completed_at=completion.completed_at.isoformat() if completion.completed_at else None
    )


@router.get("/", response_model=List[MicroActionResponse])
async def list_micro_actions(
    include_inactive: bool = Query(False),
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """List micro-actions with whether each was completed today"""
    try:
        if include_inactive:
            statuses = tracker.list_habits_with_today_status(current_user.id, include_inactive=True)
        else:
            statuses = tracker.list_active_habits_with_today_status(current_user.id)
    except HabitTrackerError as e:
        _raise_http(e)

    return [_micro_action_response(s.habit, s.completed_today) for s in statuses]


@router.post("/", response_model=MicroActionResponse, status_code=status.HTTP_201_CREATED)
async def create_micro_action(
    payload: MicroActionCreate,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Create a new micro-action"""
    try:
        habit = tracker.create_habit(current_user.id, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HabitTrackerError as e:
        _raise_http(e)

    return _micro_action_response(habit, completed_today=False)


@router.get("/stats", response_model=StatsResponse)
async def get_micro_action_stats(
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Dashboard counters for the current user"""
    try:
        stats = tracker.get_stats(current_user.id)
    except HabitTrackerError as e:
        _raise_http(e)

    return StatsResponse(
        total_active=stats.total_active,
        completed_today=stats.completed_today,
        current_streaks=stats.current_streaks,
        weekly_completions=stats.weekly_completions
    )


@router.get("/{habit_id}", response_model=MicroActionResponse)
async def get_micro_action(
    habit_id: str,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    try:
        habit = tracker.get_habit(current_user.id, habit_id)
        snapshot = tracker.get_streak_snapshot(current_user.id, habit_id)
    except HabitTrackerError as e:
        _raise_http(e)

    return _micro_action_response(habit, snapshot.completed_today)


@router.patch("/{habit_id}", response_model=MicroActionResponse)
async def update_micro_action(
    habit_id: str,
    payload: MicroActionUpdate,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Update a micro-action's details; streak counters are not editable"""
    try:
        habit = tracker.update_habit(current_user.id, habit_id, payload.model_dump(exclude_unset=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except HabitTrackerError as e:
        _raise_http(e)

    return _micro_action_response(habit)


@router.delete("/{habit_id}")
async def delete_micro_action(
    habit_id: str,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Delete a micro-action and its completion history"""
    try:
        tracker.delete_habit(current_user.id, habit_id)
    except HabitTrackerError as e:
        _raise_http(e)

    return {"message": "Micro-action deleted successfully"}


@router.post("/{habit_id}/complete", response_model=StreakResponse, status_code=status.HTTP_201_CREATED)
async def complete_micro_action(
    habit_id: str,
    payload: Optional[CompletionCreate] = None,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Mark a micro-action complete for today (or a past day)"""
    payload = payload or CompletionCreate()
    try:
        tracker.complete_habit(current_user.id, habit_id, day=payload.day, note=payload.note)
        snapshot = tracker.get_streak_snapshot(current_user.id, habit_id)
    except HabitTrackerError as e:
        _raise_http(e)

    return _streak_response(snapshot)


@router.delete("/{habit_id}/complete", response_model=StreakResponse)
async def uncomplete_micro_action(
    habit_id: str,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Undo today's completion"""
    try:
        tracker.uncomplete_habit(current_user.id, habit_id)
        snapshot = tracker.get_streak_snapshot(current_user.id, habit_id)
    except HabitTrackerError as e:
        _raise_http(e)

    return _streak_response(snapshot)


@router.get("/{habit_id}/streak", response_model=StreakResponse)
async def get_micro_action_streak(
    habit_id: str,
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    try:
        snapshot = tracker.get_streak_snapshot(current_user.id, habit_id)
    except HabitTrackerError as e:
        _raise_http(e)

    return _streak_response(snapshot)


@router.get("/{habit_id}/history", response_model=List[CompletionResponse])
async def get_micro_action_history(
    habit_id: str,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user: User = Depends(get_current_user),
    tracker: HabitCompletionTracker = Depends(get_tracker)
):
    """Completion records for a micro-action, newest first"""
    if start and end and start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start must not be after end")

    try:
        completions = tracker.get_history(current_user.id, habit_id, start=start, end=end)
    except HabitTrackerError as e:
        _raise_http(e)

    return [_completion_response(c) for c in completions]


def _streak_response(snapshot) -> StreakResponse:
    return StreakResponse(
        habit_id=snapshot.habit_id,
        current_streak=snapshot.current_streak,
        best_streak=snapshot.best_streak,
        total_completions=snapshot.total_completions,
        completed_today=snapshot.completed_today,
        last_completed=snapshot.last_completed.isoformat() if snapshot.last_completed else None,
        as_of=snapshot.as_of.isoformat()
    )
