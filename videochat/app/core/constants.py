"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Account statuses / roles
# ---------------------------------------------------------------------------
USER_STATUSES = ("active", "suspended", "banned")
ROLE_USER = "user"
ROLE_ADMIN = "admin"

# ---------------------------------------------------------------------------
# Payment / commission statuses
# ---------------------------------------------------------------------------
PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"

COMMISSION_PENDING = "pending"
COMMISSION_PAID = "paid"

# ---------------------------------------------------------------------------
# Voting results / moderation log types
# ---------------------------------------------------------------------------
VOTING_EXPELLED = "expelled"
VOTING_FAILED = "failed"

LOG_VOTING_STARTED = "voting_started"
LOG_USER_EXPELLED = "user_expelled"
LOG_VOTING_CANCELLED = "voting_cancelled"
LOG_STATUS_TYPES = {
    "active": "user_activated",
    "suspended": "user_suspended",
    "banned": "user_banned",
}

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")

# ---------------------------------------------------------------------------
# Room limits
# ---------------------------------------------------------------------------
MIN_ROOM_PARTICIPANTS = 2
MAX_ROOM_PARTICIPANTS = 10

TX_HASH_MIN_LENGTH = 10
TX_HASH_MAX_LENGTH = 200
