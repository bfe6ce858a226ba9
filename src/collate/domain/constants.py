"""Centralized constants for the Collate application.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Ratings ----------
MIN_RATING = 1
MAX_RATING = 5
WEAK_RATING_THRESHOLD = 2  # latest rating at or below this is "weak"

# ---------- Mastery ----------
MASTERY_STREAK = 3  # consecutive 5s required to master a card
MASTERY_HIGH_THRESHOLD = 80
MASTERY_MEDIUM_THRESHOLD = 60

# Fixed review schedule: rating -> days until next review
REVIEW_INTERVAL_DAYS = {1: 1, 2: 1, 3: 3, 4: 7, 5: 30}

# ---------- Session ----------
PACING_DELAY = 0.3  # seconds between an accepted rating and advancing
REQUEUE_RATING_THRESHOLD = 2
REQUEUE_MIN_REMAINING = 3
REQUEUE_BASE_FRACTION = 0.6
REQUEUE_JITTER_FRACTION = 0.4

# ---------- Pre-study ----------
CARD_LIMIT_PRESETS = (10, 25, 50)

# ---------- Analytics ----------
MASTERY_HISTORY_DAYS = 30
HEATMAP_WEEKS = 12
HEATMAP_MAX_INTENSITY = 4
UNCATEGORIZED_TOPIC = "uncategorized"

# ---------- Card Store / HTTP ----------
REQUEST_TIMEOUT = 30.0

# ---------- Server ----------
SESSION_IDLE_TTL = 3600.0  # seconds an untouched session stays in the registry
