"""
Habit tracker error taxonomy
"""


class HabitTrackerError(Exception):
    """Base class for every failure the habit tracker reports"""
    code = "habit_tracker_error"

    def __init__(self, message: str = None, habit_id: str = None):
        self.habit_id = habit_id
        super().__init__(message or self.__class__.__doc__)


class NotFound(HabitTrackerError):
    """Micro-action or completion record not found"""
    code = "not_found"


class Forbidden(HabitTrackerError):
    """Micro-action belongs to another user"""
    code = "forbidden"


class AlreadyCompleted(HabitTrackerError):
    """Micro-action already completed for this day"""
    code = "already_completed"


class NotCompletedToday(HabitTrackerError):
    """No completion recorded for today"""
    code = "not_completed_today"


class HabitInactive(HabitTrackerError):
    """Micro-action is inactive"""
    code = "habit_inactive"


class InvalidCompletionDay(HabitTrackerError):
    """Completion day is in the future"""
    code = "invalid_completion_day"


class StoreUnavailable(HabitTrackerError):
    """Database operation failed"""
    code = "store_unavailable"
