# videochat/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and the commission and moderation rules testable.
"""

from videochat.app.services.network import (
    NetworkResolver,
    NetworkNode,
    SponsorCycleError,
)
from videochat.app.services.commissions import (
    CommissionEngine,
    CommissionSchedule,
    PaymentNotFoundError,
    PayerMismatchError,
    PaymentNotCompletedError,
    CommissionsAlreadyDistributedError,
)
from videochat.app.services.users import (
    UserService,
    UserNotFoundError,
    SponsorNotFoundError,
    UserExistsError,
    InvalidStatusError,
    AdminRequiredError,
)
from videochat.app.services.payments import (
    PaymentService,
    PaymentResult,
    MembershipPolicy,
    InvalidCurrencyError,
    InvalidAmountError,
    InvalidTransactionHashError,
    DuplicateTransactionError,
    PaymentAlreadyCompletedError,
)
from videochat.app.services.presence import RoomNotFoundError, NotInRoomError
from videochat.app.services.moderation import (
    ModerationService,
    ModerationPolicy,
    CastVoteResult,
    required_votes,
    SelfTargetError,
    RoomInactiveError,
    TargetNotInRoomError,
    InsufficientParticipantsError,
    VotingAlreadyOpenError,
    CooldownActiveError,
    VotingNotFoundError,
    VotingCompletedError,
    AlreadyVotedError,
)
from videochat.app.services.rooms import (
    RoomService,
    MembershipRequiredError,
    AccountInactiveError,
    RoomClosedError,
    RoomFullError,
    AlreadyInRoomError,
    ExpelledFromRoomError,
    NotRoomCreatorError,
)
from videochat.app.services.mlm_reports import MLMReportService, InvalidLevelError

__all__ = [
    # Network
    "NetworkResolver",
    "NetworkNode",
    "SponsorCycleError",
    # Commissions
    "CommissionEngine",
    "CommissionSchedule",
    "PaymentNotFoundError",
    "PayerMismatchError",
    "PaymentNotCompletedError",
    "CommissionsAlreadyDistributedError",
    # Users
    "UserService",
    "UserNotFoundError",
    "SponsorNotFoundError",
    "UserExistsError",
    "InvalidStatusError",
    "AdminRequiredError",
    # Payments
    "PaymentService",
    "PaymentResult",
    "MembershipPolicy",
    "InvalidCurrencyError",
    "InvalidAmountError",
    "InvalidTransactionHashError",
    "DuplicateTransactionError",
    "PaymentAlreadyCompletedError",
    # Rooms
    "RoomService",
    "RoomNotFoundError",
    "NotInRoomError",
    "MembershipRequiredError",
    "AccountInactiveError",
    "RoomClosedError",
    "RoomFullError",
    "AlreadyInRoomError",
    "ExpelledFromRoomError",
    "NotRoomCreatorError",
    # Moderation
    "ModerationService",
    "ModerationPolicy",
    "CastVoteResult",
    "required_votes",
    "SelfTargetError",
    "RoomInactiveError",
    "TargetNotInRoomError",
    "InsufficientParticipantsError",
    "VotingAlreadyOpenError",
    "CooldownActiveError",
    "VotingNotFoundError",
    "VotingCompletedError",
    "AlreadyVotedError",
    # Reports
    "MLMReportService",
    "InvalidLevelError",
]
