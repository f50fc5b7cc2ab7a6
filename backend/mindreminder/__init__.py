"""MindReMinder API: reminders, micro-action habits and completion streaks."""

__version__ = "1.0.0"
