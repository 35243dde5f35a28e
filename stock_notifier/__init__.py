"""
Live stock notifier package.

This package contains modules for following the shop stock feed (a
websocket stream with a REST fallback poller), deciding which stock
changes are worth an alert, and fanning those alerts out to Messenger
subscribers.
"""

__version__ = "1.1.0"

__all__ = [
    "config",
    "connection",
    "db",
    "differ",
    "dispatcher",
    "evaluator",
    "feed",
    "main",
    "monitor",
    "notifier",
    "ratelimit",
    "scheduler",
    "stock",
    "utils",
]
