"""
Relationship Trajectory Configuration.

Central configuration for all thresholds used in:
- Time-series bucketing
- Trajectory (velocity / cadence) calculation
- Health classification and scoring
- Commitment extraction and fulfillment detection
- Contact noise filtering

Edit this file to tune relationship health behavior.
"""

# =============================================================================
# TIME SERIES
# =============================================================================

DEFAULT_BUCKET_DAYS = 7            # Monday-anchored weekly windows
MAX_RESPONSE_GAP_MINUTES = 7 * 24 * 60  # Longer gaps are not treated as replies


# =============================================================================
# TRAJECTORY
# =============================================================================

VELOCITY_WINDOW = 8                # Most recent windows used for the velocity slope
MIN_POINTS_FOR_ACCELERATION = 6
DEFAULT_CONTACT_FREQUENCY_DAYS = 30
MIN_CONTACT_FREQUENCY_DAYS = 1
MAX_CONTACT_FREQUENCY_DAYS = 180   # 6 months
DEFAULT_INITIATION_RATIO = 0.5


# =============================================================================
# HEALTH CLASSIFICATION
# =============================================================================
# Evaluated top to bottom; first match wins.

MIN_POINTS_FOR_CLASSIFICATION = 3  # Fewer points -> "new"
DORMANT_FREQUENCY_MULTIPLIER = 3   # Dormant after 3x the normal gap...
DORMANT_MAX_DAYS = 90              # ...or 90 days, whichever is smaller

AT_RISK_VELOCITY = -0.3            # With an overdue outbound commitment
THRIVING_VELOCITY = 0.5
THRIVING_MIN_WEEKLY = 2
STRONG_VELOCITY = 0.2
STRONG_MIN_WEEKLY = 1
STABLE_VELOCITY_BAND = 0.2         # |velocity| <= band
DECAYING_VELOCITY = -0.5


# =============================================================================
# HEALTH SCORE
# =============================================================================
# score = 50 + velocity + recency + activity - commitments, then status caps

BASE_SCORE = 50
VELOCITY_SCORE_MULTIPLIER = 20
VELOCITY_SCORE_CAP = 20

RECENT_CONTACT_BONUS = 10          # More recent than normal cadence
OVERDUE_CONTACT_PENALTY = 10       # 1.5x - 2x the normal cadence
WAY_OVERDUE_CONTACT_PENALTY = 20   # Beyond 2x
OVERDUE_RATIO = 1.5
WAY_OVERDUE_RATIO = 2.0

HIGH_ACTIVITY_WEEKLY = 3
HIGH_ACTIVITY_BONUS = 10
LOW_ACTIVITY_WEEKLY = 0.5
LOW_ACTIVITY_PENALTY = 10

OVERDUE_COMMITMENT_PENALTY = 10

DORMANT_SCORE_CEILING = 20
AT_RISK_SCORE_CEILING = 30
THRIVING_SCORE_FLOOR = 80


# =============================================================================
# PREDICTION
# =============================================================================

DEFAULT_PREDICTION_DAYS = 30
CONFIDENCE_POINTS_TARGET = 20      # Data points for full confidence
MIN_PREDICTION_CONFIDENCE = 0.3
MAX_PREDICTION_CONFIDENCE = 0.95
HIGH_URGENCY_DORMANT_DAYS = 14
MEDIUM_URGENCY_DORMANT_DAYS = 30


# =============================================================================
# COMMITMENTS
# =============================================================================

MIN_COMMITMENT_CONFIDENCE = 0.6
MIN_BODY_LENGTH = 50
MAX_PROMPT_BODY_CHARS = 3000
SUBJECT_MATCH_PREFIX = 20
TEXT_MATCH_PREFIX = 30

BOILERPLATE_MARKERS = (
    "unsubscribe",
    "automated message",
    "do not reply",
)

FULFILLMENT_INDICATORS = (
    "attached",
    "here is",
    "here's",
    "as promised",
    "as discussed",
    "following up",
    "sent",
    "completed",
    "done",
)


# =============================================================================
# AGGREGATION
# =============================================================================

TREND_VELOCITY_THRESHOLD = 0.2     # |velocity| above this counts as growing/decaying
GOING_DORMANT_ALERT_DAYS = 14


# =============================================================================
# NOISE FILTERING
# =============================================================================
# Fragments matched against both the local part and the domain

DEFAULT_EXCLUDED_DOMAINS = [
    "noreply",
    "no-reply",
    "notifications",
    "mailer-daemon",
    "postmaster",
    "support",
    "hello",
    "info",
    "newsletter",
    "updates",
    "donotreply",
]

# Case-insensitive regexes matched against the full address
DEFAULT_EXCLUDED_PATTERNS = [
    r"noreply",
    r"no-reply",
    r"notifications?@",
    r"newsletter",
    r"unsubscribe",
    r"automated",
]

# Trailing TLDs stripped when inferring a company from a domain
COMPANY_TLD_PATTERN = r"\.(com|org|net|io|co|ai|app|dev|tech)$"
COMPANY_CCTLD_PATTERN = r"\.(co\.[a-z]{2})$"
