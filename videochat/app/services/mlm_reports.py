# videochat/app/services/mlm_reports.py
"""
Read-only MLM reports: downline tree, per-level listings, commission
statistics and earnings breakdowns.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from videochat.app.core.clock import utcnow
from videochat.app.core.constants import COMMISSION_PAID, ONE_CENT, ZERO
from videochat.app.core.exceptions import ValidationError
from videochat.app.models.payment import MLMCommission, Payment
from videochat.app.models.user import User
from videochat.app.services.network import NetworkNode, NetworkResolver
from videochat.app.services.users import UserNotFoundError


class InvalidLevelError(ValidationError):
    def __init__(self, depth: int):
        super().__init__(f"Level must be between 1 and {depth}")


def _member_summary(user: User, now: datetime) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "has_active_membership": user.has_active_membership(now),
        "membership_expiry": user.membership_expiry,
        "created_at": user.created_at,
    }


def _node_to_dict(node: NetworkNode, now: datetime) -> Dict[str, Any]:
    data = _member_summary(node.user, now)
    data["level"] = node.level
    data["children"] = [_node_to_dict(child, now) for child in node.children]
    return data


class MLMReportService:
    def __init__(self, session: AsyncSession, depth: int = 6):
        self.session = session
        self.depth = depth
        self.network = NetworkResolver(session)

    async def _ensure_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if not user:
            raise UserNotFoundError(user_id)
        return user

    def _paid_to(self, user_id: int):
        return (MLMCommission.to_user_id == user_id, MLMCommission.status == COMMISSION_PAID)

    async def get_network_tree(self, user_id: int, depth: Optional[int] = None) -> List[Dict[str, Any]]:
        await self._ensure_user(user_id)
        depth = min(depth or self.depth, self.depth)
        now = utcnow()
        roots = await self.network.build_tree(user_id, depth)
        return [_node_to_dict(node, now) for node in roots]

    async def get_users_at_level(
        self, user_id: int, level: int, page: int = 1, limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        """One page of the downline at `level`, newest first, with the level total."""
        if level < 1 or level > self.depth:
            raise InvalidLevelError(self.depth)
        await self._ensure_user(user_id)

        levels = await self.network.downward_subtree(user_id, level)
        members = levels.get(level, [])
        now = utcnow()
        start = (page - 1) * limit
        return [_member_summary(u, now) for u in members[start:start + limit]], len(members)

    async def get_stats(self, user_id: int) -> Dict[str, Any]:
        await self._ensure_user(user_id)
        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        direct = await self.network.count_direct_referrals(user_id)
        active = await self.network.count_direct_referrals(user_id, active_since=now)
        network_size = await self.network.network_size(user_id, self.depth)

        total_count, total_amount = (await self.session.execute(
            select(func.count(MLMCommission.id), func.sum(MLMCommission.amount)).where(*self._paid_to(user_id))
        )).one()
        monthly_count, monthly_amount = (await self.session.execute(
            select(func.count(MLMCommission.id), func.sum(MLMCommission.amount)).where(
                *self._paid_to(user_id), MLMCommission.created_at >= month_start
            )
        )).one()

        by_level = {
            level: (count, amount)
            for level, count, amount in (await self.session.execute(
                select(MLMCommission.level, func.count(MLMCommission.id), func.sum(MLMCommission.amount))
                .where(*self._paid_to(user_id))
                .group_by(MLMCommission.level)
            )).all()
        }

        level_statistics = []
        for level in range(1, self.depth + 1):
            count, amount = by_level.get(level, (0, None))
            amount = Decimal(amount) if amount is not None else ZERO
            average = (amount / count).quantize(ONE_CENT) if count else ZERO
            level_statistics.append({
                "level": level,
                "commissions_earned": amount,
                "commissions_count": count,
                "average_commission": average,
            })

        return {
            "direct_referrals_count": direct,
            "total_network_size": network_size,
            "active_referrals_count": active,
            "conversion_rate": round(active * 100 / direct) if direct else 0,
            "total_commissions_earned": total_amount if total_amount is not None else ZERO,
            "total_commissions_count": total_count,
            "monthly_commissions_earned": monthly_amount if monthly_amount is not None else ZERO,
            "monthly_commissions_count": monthly_count,
            "level_statistics": level_statistics,
        }

    async def get_commission_history(
        self, user_id: int, page: int = 1, limit: int = 20
    ) -> Tuple[List[Dict[str, Any]], int]:
        await self._ensure_user(user_id)
        total = (await self.session.execute(
            select(func.count(MLMCommission.id)).where(MLMCommission.to_user_id == user_id)
        )).scalar_one()

        result = await self.session.execute(
            select(MLMCommission, User.username, Payment.currency)
            .join(User, User.id == MLMCommission.from_user_id)
            .join(Payment, Payment.id == MLMCommission.payment_id)
            .where(MLMCommission.to_user_id == user_id)
            .order_by(MLMCommission.created_at.desc(), MLMCommission.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = [
            {
                "id": c.id,
                "level": c.level,
                "amount": c.amount,
                "status": c.status,
                "payment_id": c.payment_id,
                "currency": currency,
                "from_user_id": c.from_user_id,
                "from_username": username,
                "created_at": c.created_at,
            }
            for c, username, currency in result.all()
        ]
        return items, total

    async def get_earnings_report(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Paid commissions grouped by level, by month (latest 12) and by downline member (top 10)."""
        await self._ensure_user(user_id)
        conditions = list(self._paid_to(user_id))
        if start is not None:
            conditions.append(MLMCommission.created_at >= start)
        if end is not None:
            conditions.append(MLMCommission.created_at <= end)

        by_level = [
            {"level": level, "total_amount": amount, "commission_count": count}
            for level, count, amount in (await self.session.execute(
                select(MLMCommission.level, func.count(MLMCommission.id), func.sum(MLMCommission.amount))
                .where(*conditions)
                .group_by(MLMCommission.level)
                .order_by(MLMCommission.level)
            )).all()
        ]

        # Month buckets are computed in Python so the query stays portable
        months: Dict[str, Dict[str, Any]] = {}
        rows = await self.session.execute(
            select(MLMCommission.amount, MLMCommission.created_at)
            .where(*conditions)
            .order_by(MLMCommission.created_at.desc())
            .limit(1000)
        )
        for amount, created_at in rows.all():
            key = created_at.strftime("%Y-%m")
            bucket = months.setdefault(key, {"month": key, "total_amount": ZERO, "commission_count": 0})
            bucket["total_amount"] += Decimal(amount)
            bucket["commission_count"] += 1
        by_month = sorted(months.values(), key=lambda m: m["month"], reverse=True)[:12]

        earned = func.sum(MLMCommission.amount).label("earned")
        top = [
            {"user_id": uid, "username": username, "total_amount": amount, "commission_count": count}
            for uid, username, count, amount in (await self.session.execute(
                select(MLMCommission.from_user_id, User.username, func.count(MLMCommission.id), earned)
                .join(User, User.id == MLMCommission.from_user_id)
                .where(*conditions)
                .group_by(MLMCommission.from_user_id, User.username)
                .order_by(earned.desc())
                .limit(10)
            )).all()
        ]

        total_amount = sum((Decimal(row["total_amount"]) for row in by_level), ZERO)
        total_count = sum(row["commission_count"] for row in by_level)
        return {
            "total_earnings": total_amount,
            "total_commissions": total_count,
            "average_commission": (total_amount / total_count).quantize(ONE_CENT) if total_count else ZERO,
            "commissions_by_level": by_level,
            "commissions_by_month": by_month,
            "top_referrals": top,
        }

    async def get_referral_info(self, user_id: int) -> Dict[str, Any]:
        """The referral code is the username, which is what registration accepts as sponsor_code."""
        user = await self._ensure_user(user_id)
        return {
            "referral_code": user.username,
            "total_referrals": await self.network.count_direct_referrals(user_id),
        }
