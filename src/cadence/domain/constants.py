"""Centralized constants for the Cadence scheduler.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Learning / relearning ----------
LEARNING_STEPS_MINUTES = [20, 60]
RELEARNING_STEPS_MINUTES = [20]
GRADUATE_INTERVAL_DAYS = 1

# ---------- Ease factor ----------
DEFAULT_EASE_FACTOR = 2.5
MIN_EASE_FACTOR = 1.3
MAX_EASE_FACTOR = 2.5
EASE_FACTOR_UP = 0.1
EASE_FACTOR_DOWN = 0.2

# ---------- Session queue ----------
MIN_SESSION_SIZE = 3
CARD_HISTORY_LIMIT = 10
ATTEMPT_RETENTION_DAYS = 7

# ---------- Due summary buckets ----------
SOON_WINDOW_MINUTES = 15
NEXT_HOUR_WINDOW_MINUTES = 60

# ---------- Storage ----------
DEFAULT_DATABASE_NAME = "cadence.sqlite3"
BUSY_TIMEOUT_MS = 5000
