"""Centralized constants for musched.

All magic numbers and scheduling defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Ease ----------
DEFAULT_EASE = 2.5
MIN_EASE = 1.3

# Added to the ease of a Review card, indexed by grade (fail..easy).
DEFAULT_EASE_DELTAS = (-0.20, -0.15, 0.0, 0.10, 0.15)

# Multiply Review intervals, indexed by grade (fail..easy) and by priority (1..5).
DEFAULT_SCORE_MODIFIERS = (1.0, 0.7, 1.0, 1.2, 1.4)
DEFAULT_PRIORITY_MODIFIERS = (3.0, 2.0, 1.0, 0.5, 0.3)

# ---------- Learning ladder ----------
# Minutes. The last step is the interval a card graduates with.
DEFAULT_LEARNING_STEPS_MINUTES = (10, 24 * 60, 3 * 24 * 60)
MIN_INTERVAL_MINUTES = 10
MIN_INTERVAL_INCREASE_MINUTES = 24 * 60
MAX_INTERVAL_DAYS = 50

# ---------- Tag familiarity ----------
FAMILIARITY_LEARNING_RATE = 0.1
FAMILIARITY_TARGET_SCALE = 5.0
FAMILIARITY_MULTIPLIER_MIN = 0.8
FAMILIARITY_MULTIPLIER_MAX = 1.3

# ---------- Statistics ----------
# Recency-weighted retention: each grade pulls the average toward its score.
DESIRED_RETENTION_RATE = 0.82
RETENTION_SCORE_WEIGHT = 0.05
RETENTION_SCORES = (0.0, 0.95, 1.0, 1.02, 1.05)

# ---------- Card header ----------
MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3
HEADER_SCAN_LINES = 40
HEADER_COMMENT_PREFIXES = ("%", "#", "//", ";")

# ---------- Deck layout ----------
STATE_DIR_NAME = ".mu"
CARD_STATE_SUBDIR = "cards"
STATE_SUFFIX = ".yaml"
TEMP_SUFFIX = ".tmp"
FAMILIARITY_CACHE_FILE = "familiarity.yaml"
CONFIG_FILE = "config.toml"
INHERIT_KEY = "inherit"
DEFAULT_CARD_SUFFIXES = (".card", ".md")

# ---------- Session ----------
POSTPONE_MINUTES = 24 * 60
