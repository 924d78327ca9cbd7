"""
Tests for the voting threshold and voting window helpers (services.moderation).

Pure functions, no database.
"""
import pytest
from datetime import datetime, timedelta

from videochat.app.models.moderation import Voting
from videochat.app.services.moderation import ModerationPolicy, ModerationService, required_votes


# --- required_votes ---


@pytest.mark.parametrize("participants,expected", [
    (2, 2),
    (3, 2),
    (4, 3),
    (5, 3),
    (10, 6),
])
def test_required_votes_is_strict_majority(participants, expected):
    """floor(n / 2) + 1 of the members present at creation."""
    assert required_votes(participants) == expected


def test_required_votes_never_exceeds_participants():
    for n in range(2, 11):
        assert required_votes(n) <= n
        assert required_votes(n) * 2 > n


# --- voting window ---


def _voting(created_at: datetime) -> Voting:
    return Voting(room_id=1, initiator_id=1, target_id=2, reason="x", required_votes=2,
                  total_participants=3, is_completed=False, created_at=created_at)


def test_expires_after_configured_duration():
    """Window end is created_at + voting_duration."""
    service = ModerationService(session=None, policy=ModerationPolicy(voting_duration=timedelta(minutes=3)))
    created = datetime(2026, 1, 1, 12, 0, 0)
    assert service.expires_at(_voting(created)) == datetime(2026, 1, 1, 12, 3, 0)


def test_window_boundary_counts_as_expired():
    """At exactly expires_at the voting is over."""
    service = ModerationService(session=None)
    created = datetime(2026, 1, 1, 12, 0, 0)
    voting = _voting(created)

    assert service.is_expired(voting, created + timedelta(minutes=9, seconds=59)) is False
    assert service.is_expired(voting, created + timedelta(minutes=10)) is True
