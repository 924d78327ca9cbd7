# videochat/app/services/moderation.py
"""
Room moderation: expulsion votings decided by the members present.

A voting is OPEN until it either reaches quorum (result "expelled") or its
window elapses (result "failed"). Completion always goes through one
conditional UPDATE on the voting row, so only one caller ever applies the
expulsion side effects.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import (
    LOG_USER_EXPELLED,
    LOG_VOTING_CANCELLED,
    LOG_VOTING_STARTED,
    VOTING_EXPELLED,
    VOTING_FAILED,
)
from videochat.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from videochat.app.core.logging import get_logger
from videochat.app.core.metrics import votes_cast_total, votings_completed_total, votings_started_total
from videochat.app.models.moderation import Expulsion, ModerationLog, Vote, Voting
from videochat.app.models.room import Room, RoomMember
from videochat.app.services.presence import NotInRoomError, count_present, get_open_membership, get_room

logger = get_logger(__name__)


def required_votes(participants: int) -> int:
    """Strict majority of the participants present when the voting opened."""
    return participants // 2 + 1


class SelfTargetError(ConflictError):
    def __init__(self, message: str = "You cannot vote against yourself"):
        super().__init__(message)


class RoomInactiveError(ConflictError):
    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} is closed")


class TargetNotInRoomError(ValidationError):
    def __init__(self, target_id: int):
        super().__init__(f"User {target_id} is not in the room")


class InsufficientParticipantsError(ConflictError):
    def __init__(self, required: int):
        super().__init__(f"At least {required} participants are needed to start a voting")


class VotingAlreadyOpenError(ConflictError):
    def __init__(self):
        super().__init__("A voting against this user is already in progress")


class CooldownActiveError(ConflictError):
    def __init__(self, seconds_left: int):
        self.seconds_left = seconds_left
        super().__init__(f"You can start another voting in {seconds_left} seconds")


class VotingNotFoundError(NotFoundError):
    def __init__(self, voting_id: int):
        super().__init__(f"Voting {voting_id} not found")


class VotingCompletedError(ConflictError):
    def __init__(self, voting_id: int):
        super().__init__(f"Voting {voting_id} is already completed")


class AlreadyVotedError(ConflictError):
    def __init__(self):
        super().__init__("You have already voted")


@dataclass(frozen=True)
class ModerationPolicy:
    voting_duration: timedelta = timedelta(minutes=10)
    cooldown: timedelta = timedelta(minutes=5)
    cooldown_scope: str = "global"  # global | room
    min_participants: int = 2

    @classmethod
    def from_settings(cls, settings) -> "ModerationPolicy":
        return cls(
            voting_duration=timedelta(minutes=settings.VOTING_DURATION_MINUTES),
            cooldown=timedelta(minutes=settings.VOTE_COOLDOWN_MINUTES),
            cooldown_scope=settings.VOTE_COOLDOWN_SCOPE,
            min_participants=settings.MIN_PARTICIPANTS_FOR_VOTING,
        )


@dataclass
class CastVoteResult:
    vote: Vote
    current_votes: int
    required_votes: int
    resolved: bool
    expulsion: Optional[Expulsion] = None


class ModerationService:
    """Voting state machine. Caller must commit the session after each mutating call."""

    def __init__(self, session: AsyncSession, policy: Optional[ModerationPolicy] = None):
        self.session = session
        self.policy = policy or ModerationPolicy()

    def expires_at(self, voting: Voting) -> datetime:
        return voting.created_at + self.policy.voting_duration

    def is_expired(self, voting: Voting, now: datetime) -> bool:
        return now >= self.expires_at(voting)

    async def _get_voting_for_update(self, voting_id: int) -> Voting:
        result = await self.session.execute(
            select(Voting)
            .where(Voting.id == voting_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        voting = result.scalar_one_or_none()
        if not voting:
            raise VotingNotFoundError(voting_id)
        return voting

    async def _count_votes(self, voting_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Vote.id)).where(Vote.voting_id == voting_id)
        )
        return result.scalar_one()

    async def complete_voting(self, voting_id: int, result: str, now: datetime) -> bool:
        """
        Compare-and-swap OPEN -> COMPLETED(result).

        Returns False when the voting was already completed by someone else;
        the caller must then leave the voting alone.
        """
        outcome = await self.session.execute(
            update(Voting)
            .where(Voting.id == voting_id, Voting.is_completed.is_(False))
            .values(is_completed=True, result=result, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            return False
        await self.session.get(Voting, voting_id, populate_existing=True)
        return True

    async def _check_cooldown(self, initiator_id: int, room_id: int, now: datetime) -> None:
        query = select(func.max(Voting.created_at)).where(Voting.initiator_id == initiator_id)
        if self.policy.cooldown_scope == "room":
            query = query.where(Voting.room_id == room_id)
        last_started = (await self.session.execute(query)).scalar_one_or_none()
        if last_started is None:
            return
        elapsed = now - last_started
        if elapsed < self.policy.cooldown:
            left = self.policy.cooldown - elapsed
            raise CooldownActiveError(int(left.total_seconds()) + 1)

    async def _fail_stale_for_target(self, room_id: int, target_id: int, now: datetime) -> int:
        cutoff = now - self.policy.voting_duration
        result = await self.session.execute(
            update(Voting)
            .where(
                Voting.room_id == room_id,
                Voting.target_id == target_id,
                Voting.is_completed.is_(False),
                Voting.created_at <= cutoff,
            )
            .values(is_completed=True, result=VOTING_FAILED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            votings_completed_total.labels(result=VOTING_FAILED).inc(result.rowcount)
        return result.rowcount

    async def start_voting(self, room_id: int, initiator_id: int, target_id: int, reason: str) -> Voting:
        """
        Open an expulsion voting against a member of the room.

        The threshold is fixed from the members present right now; later
        joins and leaves do not move it.

        Raises:
            SelfTargetError, RoomNotFoundError, RoomInactiveError,
            NotInRoomError, TargetNotInRoomError, InsufficientParticipantsError,
            VotingAlreadyOpenError, CooldownActiveError
        """
        if initiator_id == target_id:
            raise SelfTargetError("You cannot start a voting against yourself")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required")

        room = await get_room(self.session, room_id, for_update=True)
        if not room.is_active:
            raise RoomInactiveError(room_id)
        if not await get_open_membership(self.session, room_id, initiator_id):
            raise NotInRoomError(room_id)
        if not await get_open_membership(self.session, room_id, target_id):
            raise TargetNotInRoomError(target_id)

        participants = await count_present(self.session, room_id)
        if participants < self.policy.min_participants:
            raise InsufficientParticipantsError(self.policy.min_participants)

        now = utcnow()
        await self._fail_stale_for_target(room_id, target_id, now)

        open_voting = await self.session.execute(
            select(Voting.id).where(
                Voting.room_id == room_id,
                Voting.target_id == target_id,
                Voting.is_completed.is_(False),
            )
        )
        if open_voting.first():
            raise VotingAlreadyOpenError()

        await self._check_cooldown(initiator_id, room_id, now)

        voting = Voting(
            room_id=room_id,
            initiator_id=initiator_id,
            target_id=target_id,
            reason=reason,
            required_votes=required_votes(participants),
            total_participants=participants,
            is_completed=False,
            created_at=now,
        )
        self.session.add(voting)
        try:
            await self.session.flush()
        except IntegrityError:
            raise VotingAlreadyOpenError()

        self.session.add(ModerationLog(
            type=LOG_VOTING_STARTED,
            room_id=room_id,
            initiator_id=initiator_id,
            target_id=target_id,
            details=f"Voting started against user {target_id}: {reason}",
            meta={
                "voting_id": voting.id,
                "required_votes": voting.required_votes,
                "total_participants": participants,
            },
        ))
        room.total_votings = (room.total_votings or 0) + 1
        room.last_activity = now
        await self.session.flush()

        votings_started_total.inc()
        logger.info(
            "Voting started",
            voting_id=voting.id,
            room_id=room_id,
            initiator_id=initiator_id,
            target_id=target_id,
            required_votes=voting.required_votes,
        )
        return voting

    async def cast_vote(self, voting_id: int, voter_id: int, reason: Optional[str] = None) -> CastVoteResult:
        """
        Record a ballot and expel the target when it completes the quorum.

        The vote and the expulsion live in one transaction: when another
        caller completes the voting first, VotingCompletedError is raised
        and the caller's rollback discards this vote too.

        Raises:
            VotingNotFoundError, VotingCompletedError, NotInRoomError,
            SelfTargetError, AlreadyVotedError
        """
        room_id = (await self.session.execute(
            select(Voting.room_id).where(Voting.id == voting_id)
        )).scalar_one_or_none()
        if room_id is None:
            raise VotingNotFoundError(voting_id)
        # Room before voting, the same lock order as leave_room and start_voting
        await get_room(self.session, room_id, for_update=True)
        voting = await self._get_voting_for_update(voting_id)
        now = utcnow()
        # Past the window counts as completed even before the sweep runs
        if voting.is_completed or self.is_expired(voting, now):
            raise VotingCompletedError(voting_id)
        if not await get_open_membership(self.session, voting.room_id, voter_id):
            raise NotInRoomError(voting.room_id)
        if voter_id == voting.target_id:
            raise SelfTargetError()

        already = await self.session.execute(
            select(Vote.id).where(Vote.voting_id == voting_id, Vote.voter_id == voter_id)
        )
        if already.first():
            raise AlreadyVotedError()

        vote = Vote(voting_id=voting_id, voter_id=voter_id, reason=reason, created_at=now)
        self.session.add(vote)
        try:
            await self.session.flush()
        except IntegrityError:
            raise AlreadyVotedError()
        votes_cast_total.inc()

        tally = await self._count_votes(voting_id)
        if tally < voting.required_votes:
            logger.info("Vote cast", voting_id=voting_id, voter_id=voter_id, votes=tally, required=voting.required_votes)
            return CastVoteResult(vote=vote, current_votes=tally, required_votes=voting.required_votes, resolved=False)

        expulsion = await self._expel(voting, tally, now)
        return CastVoteResult(
            vote=vote,
            current_votes=tally,
            required_votes=voting.required_votes,
            resolved=True,
            expulsion=expulsion,
        )

    async def _expel(self, voting: Voting, tally: int, now: datetime) -> Expulsion:
        if not await self.complete_voting(voting.id, VOTING_EXPELLED, now):
            logger.warning("Voting completed concurrently", voting_id=voting.id)
            raise VotingCompletedError(voting.id)

        voters = await self.session.execute(
            select(Vote.voter_id).where(Vote.voting_id == voting.id).order_by(Vote.created_at, Vote.id)
        )
        expelled_by = list(voters.scalars().all())

        expulsion = Expulsion(
            voting_id=voting.id,
            user_id=voting.target_id,
            room_id=voting.room_id,
            reason=voting.reason,
            expelled_by=expelled_by,
            created_at=now,
        )
        self.session.add(expulsion)

        closed = 0
        membership = await get_open_membership(self.session, voting.room_id, voting.target_id)
        if membership:
            membership.left_at = now
            closed = 1
        await self.session.execute(
            update(Room)
            .where(Room.id == voting.room_id)
            .values(
                total_expulsions=Room.total_expulsions + 1,
                current_participants=Room.current_participants - closed,
                last_activity=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        self.session.add(ModerationLog(
            type=LOG_USER_EXPELLED,
            room_id=voting.room_id,
            initiator_id=voting.initiator_id,
            target_id=voting.target_id,
            details=f"User {voting.target_id} expelled by voting {voting.id}",
            meta={
                "voting_id": voting.id,
                "votes": tally,
                "required_votes": voting.required_votes,
                "expelled_by": expelled_by,
            },
        ))
        await self.session.flush()

        votings_completed_total.labels(result=VOTING_EXPELLED).inc()
        logger.info(
            "User expelled",
            voting_id=voting.id,
            room_id=voting.room_id,
            target_id=voting.target_id,
            votes=tally,
        )
        return expulsion

    async def expire_stale_votings(self, now: Optional[datetime] = None) -> int:
        """
        Fail every open voting whose window has elapsed.

        Pure timeout: no expulsion, no membership change, no log entry.
        Returns the number of votings failed.
        """
        now = now or utcnow()
        cutoff = now - self.policy.voting_duration
        result = await self.session.execute(
            update(Voting)
            .where(Voting.is_completed.is_(False), Voting.created_at <= cutoff)
            .values(is_completed=True, result=VOTING_FAILED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        expired = result.rowcount
        if expired:
            votings_completed_total.labels(result=VOTING_FAILED).inc(expired)
            logger.info("Stale votings expired", count=expired)
        return expired

    async def cancel_open_votings(
        self,
        room_id: int,
        details: str,
        target_id: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> List[Voting]:
        """Fail open votings of a room (optionally only those against target_id)."""
        query = select(Voting).where(Voting.room_id == room_id, Voting.is_completed.is_(False))
        if target_id is not None:
            query = query.where(Voting.target_id == target_id)
        votings = list((await self.session.execute(query)).scalars().all())

        now = utcnow()
        cancelled: List[Voting] = []
        for voting in votings:
            if not await self.complete_voting(voting.id, VOTING_FAILED, now):
                continue
            self.session.add(ModerationLog(
                type=LOG_VOTING_CANCELLED,
                room_id=room_id,
                initiator_id=actor_id,
                target_id=voting.target_id,
                details=details,
                meta={"voting_id": voting.id},
            ))
            cancelled.append(voting)

        if cancelled:
            await self.session.flush()
            votings_completed_total.labels(result=VOTING_FAILED).inc(len(cancelled))
            logger.info("Votings cancelled", room_id=room_id, count=len(cancelled), target_id=target_id)
        return cancelled

    async def get_active_votings(self, room_id: int, requester_id: int) -> List[Dict[str, Any]]:
        """Open votings still inside their window, oldest first, with the current tally."""
        await get_room(self.session, room_id)
        if not await get_open_membership(self.session, room_id, requester_id):
            raise NotInRoomError(room_id)

        now = utcnow()
        cutoff = now - self.policy.voting_duration
        tally = (
            select(Vote.voting_id, func.count(Vote.id).label("votes"))
            .group_by(Vote.voting_id)
            .subquery()
        )
        voted = select(Vote.voting_id).where(Vote.voter_id == requester_id)
        result = await self.session.execute(
            select(Voting, func.coalesce(tally.c.votes, 0), Voting.id.in_(voted))
            .outerjoin(tally, tally.c.voting_id == Voting.id)
            .where(
                Voting.room_id == room_id,
                Voting.is_completed.is_(False),
                Voting.created_at > cutoff,
            )
            .order_by(Voting.created_at, Voting.id)
        )

        return [
            {
                "id": voting.id,
                "room_id": voting.room_id,
                "initiator_id": voting.initiator_id,
                "target_id": voting.target_id,
                "reason": voting.reason,
                "required_votes": voting.required_votes,
                "total_participants": voting.total_participants,
                "current_votes": votes,
                "has_voted": bool(has_voted),
                "created_at": voting.created_at,
                "expires_at": self.expires_at(voting),
            }
            for voting, votes, has_voted in result.all()
        ]

    async def get_room_logs(self, room_id: int, limit: int = 50, offset: int = 0) -> List[ModerationLog]:
        await get_room(self.session, room_id)
        result = await self.session.execute(
            select(ModerationLog)
            .where(ModerationLog.room_id == room_id)
            .order_by(ModerationLog.created_at.desc(), ModerationLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_logs(self, log_type: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[ModerationLog]:
        query = select(ModerationLog)
        if log_type:
            query = query.where(ModerationLog.type == log_type)
        result = await self.session.execute(
            query.order_by(ModerationLog.created_at.desc(), ModerationLog.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all())

    async def get_user_expulsions(self, user_id: int) -> List[Expulsion]:
        result = await self.session.execute(
            select(Expulsion)
            .where(Expulsion.user_id == user_id)
            .order_by(Expulsion.created_at.desc(), Expulsion.id.desc())
        )
        return list(result.scalars().all())
