"""
Tests for the habit completion tracker: daily uniqueness, streak counters,
ownership isolation and atomicity of the completion write.
"""

import pytest
from datetime import date, timedelta
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from mindreminder.core.config import settings
from mindreminder.models import MicroActionCompletion, UserSettings
from mindreminder.services.habit_tracker import HabitCompletionTracker
from mindreminder.services.habit_errors import (
    NotFound,
    Forbidden,
    AlreadyCompleted,
    NotCompletedToday,
    HabitInactive,
    InvalidCompletionDay,
    StoreUnavailable,
)

MONDAY = date(2024, 1, 1)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)
THURSDAY = MONDAY + timedelta(days=3)


def counters(tracker, user, habit):
    snapshot = tracker.get_streak_snapshot(user.id, habit.id)
    return {
        "current": snapshot.current_streak,
        "best": snapshot.best_streak,
        "total": snapshot.total_completions,
    }


def completion_count(db, habit):
    db.expire_all()
    return db.query(MicroActionCompletion).filter(MicroActionCompletion.micro_action_id == habit.id).count()


class TestCompleteHabit:

    def test_new_habit_starts_with_zero_counters(self, tracker, user, habit):
        assert counters(tracker, user, habit) == {"current": 0, "best": 0, "total": 0}
        assert tracker.get_streak_snapshot(user.id, habit.id).completed_today is False

    def test_end_to_end_week(self, tracker, clock, user, habit):
        clock.set_day(MONDAY)
        tracker.complete_habit(user.id, habit.id)
        assert counters(tracker, user, habit) == {"current": 1, "best": 1, "total": 1}

        clock.set_day(TUESDAY)
        tracker.complete_habit(user.id, habit.id)
        assert counters(tracker, user, habit) == {"current": 2, "best": 2, "total": 2}

        # Wednesday skipped
        clock.set_day(THURSDAY)
        tracker.complete_habit(user.id, habit.id)
        assert counters(tracker, user, habit) == {"current": 1, "best": 2, "total": 3}

    def test_three_consecutive_days(self, tracker, clock, user, habit):
        for day in (MONDAY, TUESDAY, WEDNESDAY):
            clock.set_day(day)
            tracker.complete_habit(user.id, habit.id)

        assert counters(tracker, user, habit)["current"] == 3

    def test_gap_resets_streak_to_one(self, tracker, clock, user, habit):
        clock.set_day(MONDAY)
        tracker.complete_habit(user.id, habit.id)
        clock.set_day(WEDNESDAY)
        tracker.complete_habit(user.id, habit.id)

        assert counters(tracker, user, habit)["current"] == 1

    def test_second_completion_same_day_is_rejected(self, tracker, db, user, habit):
        tracker.complete_habit(user.id, habit.id, note="first")

        with pytest.raises(AlreadyCompleted) as exc_info:
            tracker.complete_habit(user.id, habit.id, note="second")

        assert exc_info.value.code == "already_completed"
        assert counters(tracker, user, habit) == {"current": 1, "best": 1, "total": 1}
        assert completion_count(db, habit) == 1

    def test_explicit_day_defaults_and_backfill(self, tracker, clock, user, habit):
        clock.set_day(WEDNESDAY)
        completion = tracker.complete_habit(user.id, habit.id)
        assert completion.completion_date == WEDNESDAY

        tracker.complete_habit(user.id, habit.id, day=TUESDAY)
        assert counters(tracker, user, habit) == {"current": 2, "best": 2, "total": 2}

    def test_future_day_is_rejected(self, tracker, db, user, habit):
        with pytest.raises(InvalidCompletionDay):
            tracker.complete_habit(user.id, habit.id, day=TUESDAY)

        assert completion_count(db, habit) == 0

    def test_backfill_outside_window_is_rejected(self, tracker, db, user, habit, monkeypatch):
        monkeypatch.setattr(settings, "completion_backfill_days", 30)

        for day in (date.min, MONDAY - timedelta(days=31)):
            with pytest.raises(InvalidCompletionDay):
                tracker.complete_habit(user.id, habit.id, day=day)

        tracker.complete_habit(user.id, habit.id, day=MONDAY - timedelta(days=30))
        assert completion_count(db, habit) == 1
        assert counters(tracker, user, habit) == {"current": 1, "best": 1, "total": 1}

    def test_earliest_backfill_day_is_clamped_to_calendar_start(self, monkeypatch):
        monkeypatch.setattr(settings, "completion_backfill_days", 10)
        assert HabitCompletionTracker.earliest_backfill_day(date(1, 1, 5)) == date.min
        assert HabitCompletionTracker.earliest_backfill_day(MONDAY) == MONDAY - timedelta(days=10)

    def test_inactive_habit_cannot_be_completed(self, tracker, user, habit):
        tracker.update_habit(user.id, habit.id, {"is_active": False})

        with pytest.raises(HabitInactive):
            tracker.complete_habit(user.id, habit.id)

    def test_other_user_is_forbidden_and_nothing_is_written(self, tracker, db, user, other_user, habit):
        with pytest.raises(Forbidden):
            tracker.complete_habit(other_user.id, habit.id)

        assert completion_count(db, habit) == 0
        assert counters(tracker, user, habit) == {"current": 0, "best": 0, "total": 0}

    def test_unknown_habit_is_not_found(self, tracker, user):
        with pytest.raises(NotFound):
            tracker.complete_habit(user.id, "does-not-exist")

    def test_note_is_stored(self, tracker, user, habit):
        completion = tracker.complete_habit(user.id, habit.id, note="felt great")
        assert completion.notes == "felt great"


class TestConcurrentCompletion:

    def test_losing_writer_sees_already_completed(self, session_factory, clock, user, habit, monkeypatch):
        first = HabitCompletionTracker(session_factory(), clock=clock)
        second = HabitCompletionTracker(session_factory(), clock=clock)

        # Both requests pass the lookup before either inserts
        monkeypatch.setattr(second, "_completion_for", lambda *args, **kwargs: None)

        first.complete_habit(user.id, habit.id)
        with pytest.raises(AlreadyCompleted):
            second.complete_habit(user.id, habit.id)

        monkeypatch.undo()
        reader = HabitCompletionTracker(session_factory(), clock=clock)
        assert counters(reader, user, habit) == {"current": 1, "best": 1, "total": 1}
        assert len(reader.get_history(user.id, habit.id)) == 1

    def test_store_failure_leaves_no_partial_write(self, tracker, db, user, habit, monkeypatch):
        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is gone"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(StoreUnavailable):
            tracker.complete_habit(user.id, habit.id)
        monkeypatch.undo()

        assert completion_count(db, habit) == 0
        assert counters(tracker, user, habit) == {"current": 0, "best": 0, "total": 0}


class TestUncompleteHabit:

    def test_recomputes_run_ending_yesterday(self, tracker, clock, user, habit):
        clock.set_day(WEDNESDAY)
        tracker.complete_habit(user.id, habit.id, day=MONDAY)
        tracker.complete_habit(user.id, habit.id, day=TUESDAY)
        tracker.complete_habit(user.id, habit.id)
        assert counters(tracker, user, habit) == {"current": 3, "best": 3, "total": 3}

        tracker.uncomplete_habit(user.id, habit.id)

        assert counters(tracker, user, habit) == {"current": 2, "best": 3, "total": 2}
        assert tracker.get_streak_snapshot(user.id, habit.id).completed_today is False

    def test_streak_drops_to_zero_without_yesterday(self, tracker, clock, user, habit):
        clock.set_day(WEDNESDAY)
        tracker.complete_habit(user.id, habit.id, day=MONDAY)
        tracker.complete_habit(user.id, habit.id)

        tracker.uncomplete_habit(user.id, habit.id)

        assert counters(tracker, user, habit) == {"current": 0, "best": 1, "total": 1}

    def test_requires_completion_today(self, tracker, user, habit):
        with pytest.raises(NotCompletedToday):
            tracker.uncomplete_habit(user.id, habit.id)

    def test_past_days_cannot_be_reversed(self, tracker, db, clock, user, habit):
        clock.set_day(TUESDAY)
        tracker.complete_habit(user.id, habit.id, day=MONDAY)

        with pytest.raises(NotCompletedToday):
            tracker.uncomplete_habit(user.id, habit.id, day=MONDAY)

        assert completion_count(db, habit) == 1

    def test_other_user_is_forbidden(self, tracker, db, user, other_user, habit):
        tracker.complete_habit(user.id, habit.id)

        with pytest.raises(Forbidden):
            tracker.uncomplete_habit(other_user.id, habit.id)

        assert completion_count(db, habit) == 1

    def test_best_streak_never_decreases(self, tracker, clock, user, habit):
        best_seen = []
        for day in (MONDAY, TUESDAY, WEDNESDAY):
            clock.set_day(day)
            tracker.complete_habit(user.id, habit.id)
            best_seen.append(counters(tracker, user, habit)["best"])

        tracker.uncomplete_habit(user.id, habit.id)
        best_seen.append(counters(tracker, user, habit)["best"])

        clock.set_day(THURSDAY + timedelta(days=3))
        tracker.complete_habit(user.id, habit.id)
        best_seen.append(counters(tracker, user, habit)["best"])
        tracker.uncomplete_habit(user.id, habit.id)
        best_seen.append(counters(tracker, user, habit)["best"])

        assert best_seen == sorted(best_seen)
        assert best_seen[-1] == 3
        assert counters(tracker, user, habit)["current"] == 0

    def test_total_completions_accounting(self, tracker, clock, user, habit):
        completed = 0
        uncompleted = 0
        for offset in range(6):
            clock.set_day(MONDAY + timedelta(days=offset))
            tracker.complete_habit(user.id, habit.id)
            completed += 1
            if offset % 2:
                tracker.uncomplete_habit(user.id, habit.id)
                uncompleted += 1

        snapshot = counters(tracker, user, habit)
        assert snapshot["total"] == completed - uncompleted
        assert snapshot["best"] >= snapshot["current"]
        assert snapshot["total"] >= snapshot["current"]


class TestDayBoundary:

    def test_defaults_to_utc(self, tracker, clock, user):
        clock.set_day(MONDAY, hour=23)
        assert tracker.today_for(user.id) == MONDAY

    def test_uses_user_timezone(self, tracker, db, clock, user):
        db.add(UserSettings(user_id=user.id, timezone="Pacific/Auckland"))
        db.commit()

        # 12:00 UTC on Monday is already Tuesday in Auckland
        clock.set_day(MONDAY, hour=12)
        assert tracker.today_for(user.id) == TUESDAY

    def test_west_of_utc_is_still_previous_day(self, tracker, db, clock, user, habit):
        db.add(UserSettings(user_id=user.id, timezone="America/Los_Angeles"))
        db.commit()

        clock.set_day(TUESDAY, hour=3)
        completion = tracker.complete_habit(user.id, habit.id)
        assert completion.completion_date == MONDAY

    def test_unknown_timezone_falls_back_to_default(self, tracker, db, clock, user):
        db.add(UserSettings(user_id=user.id, timezone="Mars/Olympus_Mons"))
        db.commit()

        clock.set_day(MONDAY, hour=23)
        assert tracker.today_for(user.id) == MONDAY


class TestHabitQueries:

    def test_today_status_lists_active_habits_only(self, tracker, user, other_user, habit):
        stretched = tracker.create_habit(user.id, "Stretch for two minutes")
        paused = tracker.create_habit(user.id, "Journal", is_active=False)
        tracker.create_habit(other_user.id, "Someone else's habit")

        tracker.complete_habit(user.id, habit.id)

        statuses = {s.habit.id: s.completed_today for s in tracker.list_active_habits_with_today_status(user.id)}
        assert statuses == {habit.id: True, stretched.id: False}
        assert paused.id not in statuses

        everything = tracker.list_habits_with_today_status(user.id, include_inactive=True)
        assert {s.habit.id for s in everything} == {habit.id, stretched.id, paused.id}

    def test_today_status_query_count_does_not_grow_with_habits(self, tracker, engine, user):
        user_id = user.id
        statements = []

        def count_statement(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        tracker.create_habit(user_id, "One")
        event.listen(engine, "before_cursor_execute", count_statement)
        try:
            tracker.list_active_habits_with_today_status(user_id)
            with_one = len(statements)
        finally:
            event.remove(engine, "before_cursor_execute", count_statement)

        for i in range(5):
            tracker.create_habit(user_id, f"Habit {i}")

        statements.clear()
        event.listen(engine, "before_cursor_execute", count_statement)
        try:
            result = tracker.list_active_habits_with_today_status(user_id)
            with_six = len(statements)
        finally:
            event.remove(engine, "before_cursor_execute", count_statement)

        assert len(result) == 6
        assert with_six == with_one

    def test_history_is_filtered_and_newest_first(self, tracker, clock, user, habit):
        clock.set_day(THURSDAY)
        for day in (MONDAY, TUESDAY, THURSDAY):
            tracker.complete_habit(user.id, habit.id, day=day)

        history = tracker.get_history(user.id, habit.id)
        assert [c.completion_date for c in history] == [THURSDAY, TUESDAY, MONDAY]

        window = tracker.get_history(user.id, habit.id, start=TUESDAY, end=WEDNESDAY)
        assert [c.completion_date for c in window] == [TUESDAY]

    def test_history_of_other_users_habit_is_forbidden(self, tracker, other_user, habit):
        with pytest.raises(Forbidden):
            tracker.get_history(other_user.id, habit.id)

    def test_stats(self, tracker, clock, user, habit):
        second = tracker.create_habit(user.id, "Read a page")
        clock.set_day(THURSDAY + timedelta(days=7))
        today = tracker.today_for(user.id)

        tracker.complete_habit(user.id, habit.id, day=today - timedelta(days=10))
        tracker.complete_habit(user.id, habit.id, day=today - timedelta(days=1))
        tracker.complete_habit(user.id, habit.id)
        tracker.complete_habit(user.id, second.id)

        stats = tracker.get_stats(user.id)
        assert stats.total_active == 2
        assert stats.completed_today == 2
        assert sorted(stats.current_streaks) == [1, 2]
        assert stats.weekly_completions == 3

    def test_snapshot_reports_last_completed(self, tracker, clock, user, habit):
        clock.set_day(WEDNESDAY)
        tracker.complete_habit(user.id, habit.id, day=MONDAY)

        snapshot = tracker.get_streak_snapshot(user.id, habit.id)
        assert snapshot.last_completed == MONDAY
        assert snapshot.as_of == WEDNESDAY
        assert snapshot.completed_today is False


class TestHabitCrud:

    def test_blank_title_is_rejected(self, tracker, user):
        with pytest.raises(ValueError):
            tracker.create_habit(user.id, "   ")

    def test_update_cannot_touch_counters(self, tracker, user, habit):
        tracker.complete_habit(user.id, habit.id)

        updated = tracker.update_habit(user.id, habit.id, {
            "title": "  Drink two glasses  ",
            "current_streak": 50,
            "best_streak": 50,
            "total_completions": 50,
        })

        assert updated.title == "Drink two glasses"
        assert counters(tracker, user, habit) == {"current": 1, "best": 1, "total": 1}

    def test_update_by_other_user_is_forbidden(self, tracker, other_user, habit):
        with pytest.raises(Forbidden):
            tracker.update_habit(other_user.id, habit.id, {"title": "Hijacked"})

    def test_delete_removes_completions(self, tracker, db, user, habit):
        tracker.complete_habit(user.id, habit.id)
        habit_id = habit.id

        tracker.delete_habit(user.id, habit_id)

        db.expire_all()
        assert db.query(MicroActionCompletion).filter(
            MicroActionCompletion.micro_action_id == habit_id
        ).count() == 0
        with pytest.raises(NotFound):
            tracker.get_habit(user.id, habit_id)
