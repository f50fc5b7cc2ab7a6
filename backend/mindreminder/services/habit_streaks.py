"""
Habit Streak Service - Streak arithmetic over a micro-action's completion dates
"""

from datetime import date, timedelta
from typing import Iterable, Tuple


class HabitStreakCalculator:
    """Calculates streak counters from the set of days a habit was completed"""

    @staticmethod
    def streak_ending_at(completion_dates: Iterable[date], end_date: date) -> int:
        """
        Count consecutive completed days walking backwards from end_date

        Returns 0 when end_date itself was not completed.
        """
        dates = completion_dates if isinstance(completion_dates, (set, frozenset)) else set(completion_dates)

        streak = 0
        current_date = end_date
        while current_date in dates:
            streak += 1
            if current_date == date.min:
                break
            current_date -= timedelta(days=1)

        return streak

    @staticmethod
    def run_containing(completion_dates: Iterable[date], day: date) -> int:
        """Length of the contiguous run of completed days that includes day"""
        dates = completion_dates if isinstance(completion_dates, (set, frozenset)) else set(completion_dates)
        if day not in dates:
            return 0

        backwards = HabitStreakCalculator.streak_ending_at(dates, day)

        forwards = 0
        current_date = day
        while current_date < date.max and current_date + timedelta(days=1) in dates:
            forwards += 1
            current_date += timedelta(days=1)

        return backwards + forwards

    @staticmethod
    def update_streak_after_completion(
        best_streak: int,
        completion_dates: Iterable[date],
        new_completion_date: date
    ) -> Tuple[int, int]:
        """
        Update streak counters after a new completion

        Args:
            best_streak: Stored best streak before the completion
            completion_dates: All completion dates, including new_completion_date
            new_completion_date: The day just completed

        Returns:
            (new_current_streak, new_best_streak)
        """
        dates = set(completion_dates)
        dates.add(new_completion_date)

        # Current streak always ends at the most recent completion, so a
        # backfilled day only moves it when it bridges into that run
        latest = max(dates)
        new_current = HabitStreakCalculator.streak_ending_at(dates, latest)

        new_best = max(
            best_streak,
            new_current,
            HabitStreakCalculator.run_containing(dates, new_completion_date),
        )

        return new_current, new_best

    @staticmethod
    def recompute_after_uncompletion(
        completion_dates: Iterable[date],
        removed_date: date
    ) -> int:
        """
        Current streak after removing the completion for removed_date

        Walks backwards from the day before removed_date over the remaining
        completions.
        """
        dates = set(completion_dates)
        dates.discard(removed_date)
        if removed_date == date.min:
            return 0
        return HabitStreakCalculator.streak_ending_at(dates, removed_date - timedelta(days=1))

