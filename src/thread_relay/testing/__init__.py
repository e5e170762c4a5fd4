"""Reusable deterministic test helpers."""

from .time_control import SleepRecorder, SteppingClock, fixed_now, sequenced_now

__all__ = ["SleepRecorder", "SteppingClock", "fixed_now", "sequenced_now"]
