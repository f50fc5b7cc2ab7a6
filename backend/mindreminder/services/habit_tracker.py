"""
Habit Completion Tracker - Daily completion log and streak counters for micro-actions

"Today" is the user's calendar date in the timezone stored in their
settings (falling back to settings.default_timezone), computed from a UTC
clock. Completion dates are stored as plain DATE values and compared as such.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, date, timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging
import pytz

from mindreminder.core.config import settings
from mindreminder.models.habit import MicroAction, MicroActionCompletion
from mindreminder.models.profile import UserSettings
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
from mindreminder.services.habit_streaks import HabitStreakCalculator

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title", "description", "category", "duration", "frequency",
    "time_of_day", "habit_stack", "is_active",
)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


@dataclass
class StreakSnapshot:
    habit_id: str
    current_streak: int
    best_streak: int
    total_completions: int
    completed_today: bool
    last_completed: Optional[date]
    as_of: date


@dataclass
class HabitTodayStatus:
    habit: MicroAction
    completed_today: bool


@dataclass
class HabitStats:
    total_active: int
    completed_today: int
    current_streaks: List[int]
    weekly_completions: int


class HabitCompletionTracker:
    """Owns the completion log and keeps each micro-action's counters consistent with it"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utc_now

    # ------------------------------------------------------------------
    # Day boundary
    # ------------------------------------------------------------------

    def user_timezone(self, user_id: str):
        tz_name = self.db.query(UserSettings.timezone).filter(
            UserSettings.user_id == user_id
        ).scalar()

        for candidate in (tz_name, settings.default_timezone):
            if not candidate:
                continue
            try:
                return pytz.timezone(candidate)
            except pytz.UnknownTimeZoneError:
                logger.warning(f"Unknown timezone '{candidate}' for user {user_id}, falling back")

        return pytz.UTC

    def today_for(self, user_id: str) -> date:
        now = self.clock()
        if now.tzinfo is None:
            now = pytz.UTC.localize(now)
        return now.astimezone(self.user_timezone(user_id)).date()

    @staticmethod
    def earliest_backfill_day(today: date) -> date:
        window = max(0, settings.completion_backfill_days)
        if today.toordinal() - date.min.toordinal() <= window:
            return date.min
        return today - timedelta(days=window)

    # ------------------------------------------------------------------
    # Micro-action CRUD
    # ------------------------------------------------------------------

    def create_habit(self, user_id: str, title: str, **fields: Any) -> MicroAction:
        if not title or not title.strip():
            raise ValueError("Title is required")

        with self._store_errors("create micro-action"):
            habit = MicroAction(
                user_id=user_id,
                title=title.strip(),
                description=fields.get("description"),
                category=fields.get("category") or "other",
                duration=fields.get("duration"),
                frequency=fields.get("frequency"),
                time_of_day=fields.get("time_of_day"),
                habit_stack=fields.get("habit_stack"),
                is_active=fields.get("is_active", True),
                current_streak=0,
                best_streak=0,
                total_completions=0,
            )
            self.db.add(habit)
            self.db.commit()
            self.db.refresh(habit)

        logger.info(f"Created micro-action {habit.id} for user {user_id}")
        return habit

    def get_habit(self, user_id: str, habit_id: str) -> MicroAction:
        with self._store_errors("load micro-action"):
            return self._get_owned_habit(user_id, habit_id)

    def list_habits(self, user_id: str, include_inactive: bool = False) -> List[MicroAction]:
        with self._store_errors("list micro-actions"):
            query = self.db.query(MicroAction).filter(MicroAction.user_id == user_id)
            if not include_inactive:
                query = query.filter(MicroAction.is_active.is_(True))
            return query.order_by(MicroAction.created_at.desc(), MicroAction.id).all()

    def update_habit(self, user_id: str, habit_id: str, updates: Dict[str, Any]) -> MicroAction:
        """Apply field edits; streak counters are never editable here"""
        if "title" in updates and (not updates["title"] or not str(updates["title"]).strip()):
            raise ValueError("Title is required")

        with self._store_errors("update micro-action"):
            habit = self._get_owned_habit(user_id, habit_id)
            for field in EDITABLE_FIELDS:
                if field in updates:
                    value = updates[field]
                    if value is None and field in ("category", "is_active"):
                        continue
                    if field == "title":
                        value = value.strip()
                    setattr(habit, field, value)
            self.db.commit()
            self.db.refresh(habit)

        return habit

    def delete_habit(self, user_id: str, habit_id: str) -> None:
        with self._store_errors("delete micro-action"):
            habit = self._get_owned_habit(user_id, habit_id)
            self.db.delete(habit)
            self.db.commit()

        logger.info(f"Deleted micro-action {habit_id} for user {user_id}")

    # ------------------------------------------------------------------
    # Completion log
    # ------------------------------------------------------------------

    def complete_habit(
        self,
        user_id: str,
        habit_id: str,
        day: Optional[date] = None,
        note: Optional[str] = None
    ) -> MicroActionCompletion:
        """
        Record a completion for day (defaults to the user's today)

        The record insert and the counter update commit together. A second
        completion for the same day raises AlreadyCompleted, whether it is
        caught by the lookup or by the unique constraint.
        """
        with self._store_errors("complete micro-action"):
            habit = self._get_owned_habit(user_id, habit_id, for_update=True)
            if not habit.is_active:
                raise HabitInactive(habit_id=habit_id)

            today = self.today_for(user_id)
            day = day or today
            if day > today:
                raise InvalidCompletionDay(
                    f"Cannot complete {day.isoformat()}, today is {today.isoformat()}",
                    habit_id=habit_id,
                )
            earliest = self.earliest_backfill_day(today)
            if day < earliest:
                raise InvalidCompletionDay(
                    f"Cannot complete {day.isoformat()}, backfill is limited to {earliest.isoformat()}",
                    habit_id=habit_id,
                )

            if self._completion_for(habit_id, user_id, day) is not None:
                logger.info(f"Micro-action {habit_id} already completed on {day}")
                raise AlreadyCompleted(habit_id=habit_id)

            completion = MicroActionCompletion(
                micro_action_id=habit_id,
                user_id=user_id,
                completion_date=day,
                notes=note or None,
            )
            self.db.add(completion)
            try:
                self.db.flush()
            except IntegrityError as e:
                # Lost the race against a concurrent completion of the same day
                self.db.rollback()
                logger.info(f"Micro-action {habit_id} completion for {day} rejected by unique constraint")
                raise AlreadyCompleted(habit_id=habit_id) from e

            dates = self._completion_dates(habit_id, user_id)
            current, best = HabitStreakCalculator.update_streak_after_completion(
                habit.best_streak or 0, dates, day
            )
            habit.current_streak = current
            habit.best_streak = best
            habit.total_completions = (habit.total_completions or 0) + 1

            self.db.commit()
            self.db.refresh(completion)

        logger.info(
            f"✅ Micro-action {habit_id} completed on {day}: "
            f"streak {current}, best {best}, total {habit.total_completions}"
        )
        return completion

    def uncomplete_habit(self, user_id: str, habit_id: str, day: Optional[date] = None) -> MicroAction:
        """
        Remove today's completion and recompute the streak from the remaining log

        Past days cannot be reversed. best_streak is left untouched.
        """
        with self._store_errors("uncomplete micro-action"):
            habit = self._get_owned_habit(user_id, habit_id, for_update=True)

            today = self.today_for(user_id)
            day = day or today
            if day != today:
                raise NotCompletedToday(
                    f"Only today's completion can be undone ({today.isoformat()})",
                    habit_id=habit_id,
                )

            completion = self._completion_for(habit_id, user_id, day)
            if completion is None:
                raise NotCompletedToday(habit_id=habit_id)

            self.db.delete(completion)
            self.db.flush()

            dates = self._completion_dates(habit_id, user_id)
            habit.current_streak = HabitStreakCalculator.recompute_after_uncompletion(dates, day)
            habit.total_completions = max(0, (habit.total_completions or 0) - 1)

            self.db.commit()
            self.db.refresh(habit)

        logger.info(
            f"Micro-action {habit_id} uncompleted for {day}: "
            f"streak {habit.current_streak}, total {habit.total_completions}"
        )
        return habit

    def get_streak_snapshot(self, user_id: str, habit_id: str) -> StreakSnapshot:
        with self._store_errors("read streak"):
            habit = self._get_owned_habit(user_id, habit_id)
            today = self.today_for(user_id)

            last_completed = self.db.query(func.max(MicroActionCompletion.completion_date)).filter(
                MicroActionCompletion.micro_action_id == habit_id,
                MicroActionCompletion.user_id == user_id
            ).scalar()

            return StreakSnapshot(
                habit_id=habit.id,
                current_streak=habit.current_streak or 0,
                best_streak=habit.best_streak or 0,
                total_completions=habit.total_completions or 0,
                completed_today=self._completion_for(habit_id, user_id, today) is not None,
                last_completed=last_completed,
                as_of=today,
            )

    def list_active_habits_with_today_status(self, user_id: str) -> List[HabitTodayStatus]:
        return self.list_habits_with_today_status(user_id, include_inactive=False)

    def list_habits_with_today_status(self, user_id: str, include_inactive: bool = False) -> List[HabitTodayStatus]:
        """Habits joined with today's completions using two queries regardless of habit count"""
        habits = self.list_habits(user_id, include_inactive=include_inactive)

        with self._store_errors("list today's completions"):
            today = self.today_for(user_id)
            completed_ids = {
                row.micro_action_id
                for row in self.db.query(MicroActionCompletion.micro_action_id).filter(
                    MicroActionCompletion.user_id == user_id,
                    MicroActionCompletion.completion_date == today
                ).all()
            }

        return [HabitTodayStatus(habit=habit, completed_today=habit.id in completed_ids) for habit in habits]

    def get_history(
        self,
        user_id: str,
        habit_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[MicroActionCompletion]:
        with self._store_errors("read completion history"):
            self._get_owned_habit(user_id, habit_id)

            query = self.db.query(MicroActionCompletion).filter(
                MicroActionCompletion.micro_action_id == habit_id,
                MicroActionCompletion.user_id == user_id
            )
            if start:
                query = query.filter(MicroActionCompletion.completion_date >= start)
            if end:
                query = query.filter(MicroActionCompletion.completion_date <= end)

            return query.order_by(MicroActionCompletion.completion_date.desc()).all()

    def get_stats(self, user_id: str) -> HabitStats:
        """Dashboard counters across all of a user's micro-actions"""
        with self._store_errors("read micro-action stats"):
            today = self.today_for(user_id)
            week_start = today - timedelta(days=6)

            streaks = [
                row.current_streak or 0
                for row in self.db.query(MicroAction.current_streak).filter(
                    MicroAction.user_id == user_id,
                    MicroAction.is_active.is_(True)
                ).all()
            ]

            completed_today = self.db.query(func.count(MicroActionCompletion.id)).filter(
                MicroActionCompletion.user_id == user_id,
                MicroActionCompletion.completion_date == today
            ).scalar()

            weekly = self.db.query(func.count(MicroActionCompletion.id)).filter(
                MicroActionCompletion.user_id == user_id,
                MicroActionCompletion.completion_date >= week_start,
                MicroActionCompletion.completion_date <= today
            ).scalar()

        return HabitStats(
            total_active=len(streaks),
            completed_today=completed_today or 0,
            current_streaks=streaks,
            weekly_completions=weekly or 0,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _store_errors(self, action: str):
        try:
            yield
        except HabitTrackerError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to {action}: {e}")
            raise StoreUnavailable(f"Failed to {action}") from e

    def _get_owned_habit(self, user_id: str, habit_id: str, for_update: bool = False) -> MicroAction:
        query = self.db.query(MicroAction).filter(
            MicroAction.id == habit_id,
            MicroAction.user_id == user_id
        )
        if for_update:
            query = query.with_for_update()

        habit = query.first()
        if habit is not None:
            return habit

        # Only the id is probed so another user's row is never loaded
        exists = self.db.query(MicroAction.id).filter(MicroAction.id == habit_id).first()
        if exists is not None:
            logger.warning(f"User {user_id} denied access to micro-action {habit_id}")
            raise Forbidden(habit_id=habit_id)
        raise NotFound(habit_id=habit_id)

    def _completion_for(self, habit_id: str, user_id: str, day: date) -> Optional[MicroActionCompletion]:
        return self.db.query(MicroActionCompletion).filter(
            MicroActionCompletion.micro_action_id == habit_id,
            MicroActionCompletion.user_id == user_id,
            MicroActionCompletion.completion_date == day
        ).first()

    def _completion_dates(self, habit_id: str, user_id: str) -> set:
        return {
            row.completion_date
            for row in self.db.query(MicroActionCompletion.completion_date).filter(
                MicroActionCompletion.micro_action_id == habit_id,
                MicroActionCompletion.user_id == user_id
            ).all()
        }
