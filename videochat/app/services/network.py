# videochat/app/services/network.py
"""
Sponsor network traversal.

The sponsor links form a forest: every user points at most at one sponsor,
set once at registration. Commission distribution walks it upwards,
downline reports walk it downwards level by level.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.exceptions import InvariantError
from videochat.app.core.logging import get_logger
from videochat.app.models.user import User

logger = get_logger(__name__)


class SponsorCycleError(InvariantError):
    def __init__(self, user_id: int):
        super().__init__(f"Sponsor chain of user {user_id} contains a cycle")


@dataclass
class NetworkNode:
    """A downline member with the members they sponsored."""
    user: User
    level: int
    children: List["NetworkNode"] = field(default_factory=list)


class NetworkResolver:
    """Walks the sponsor forest up and down a bounded number of levels."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def iter_upline(self, user_id: int, max_levels: int) -> AsyncIterator[Tuple[int, User]]:
        """
        Yield (level, sponsor) pairs starting with the immediate sponsor (level 1).

        Stops after max_levels, at a user without sponsor, or at a sponsor
        reference that no longer resolves to a user. Every call starts a
        fresh walk.
        """
        current = await self.session.get(User, user_id)
        if current is None:
            return
        seen = {current.id}

        for level in range(1, max_levels + 1):
            if current.sponsor_id is None:
                return
            sponsor = await self.session.get(User, current.sponsor_id)
            if sponsor is None:
                # Orphaned reference: the chain ends here
                logger.warning(
                    "Sponsor reference does not resolve",
                    user_id=current.id,
                    sponsor_id=current.sponsor_id,
                )
                return
            if sponsor.id in seen:
                logger.error("Sponsor cycle detected", user_id=user_id, repeated_id=sponsor.id)
                raise SponsorCycleError(user_id)
            seen.add(sponsor.id)
            yield level, sponsor
            current = sponsor

    async def upward_chain(self, user_id: int, max_levels: int) -> List[Tuple[int, User]]:
        """Materialized iter_upline."""
        return [pair async for pair in self.iter_upline(user_id, max_levels)]

    async def downward_subtree(self, user_id: int, max_levels: int) -> Dict[int, List[User]]:
        """
        Breadth-first expansion of the downline.

        Returns {level: [users]} for every non-empty level up to max_levels;
        level 1 holds the direct referrals.
        """
        levels: Dict[int, List[User]] = {}
        frontier: Sequence[int] = [user_id]

        for level in range(1, max_levels + 1):
            result = await self.session.execute(
                select(User)
                .where(User.sponsor_id.in_(frontier))
                .order_by(User.created_at.desc(), User.id.desc())
            )
            users = list(result.scalars().all())
            if not users:
                break
            levels[level] = users
            frontier = [u.id for u in users]

        return levels

    async def network_size(self, user_id: int, max_levels: int) -> int:
        """Count of all downline members within max_levels, loading ids only."""
        total = 0
        frontier: Sequence[int] = [user_id]

        for _ in range(max_levels):
            result = await self.session.execute(
                select(User.id).where(User.sponsor_id.in_(frontier))
            )
            ids = list(result.scalars().all())
            if not ids:
                break
            total += len(ids)
            frontier = ids

        return total

    async def count_direct_referrals(self, user_id: int, active_since: Optional[datetime] = None) -> int:
        """Direct referrals, optionally only those whose membership expires after active_since."""
        query = select(func.count(User.id)).where(User.sponsor_id == user_id)
        if active_since is not None:
            query = query.where(User.membership_expiry > active_since)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def build_tree(self, user_id: int, max_levels: int) -> List[NetworkNode]:
        """Nest downward_subtree into sponsor -> children nodes."""
        levels = await self.downward_subtree(user_id, max_levels)
        nodes_by_user: Dict[int, NetworkNode] = {}
        roots: List[NetworkNode] = []

        for level in sorted(levels):
            for user in levels[level]:
                node = NetworkNode(user=user, level=level)
                nodes_by_user[user.id] = node
                if level == 1:
                    roots.append(node)
                else:
                    nodes_by_user[user.sponsor_id].children.append(node)

        return roots
