"""streakd - distraction streak daemon."""

__version__ = "0.1.0"
