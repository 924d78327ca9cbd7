import asyncio
from sqlalchemy import text

from videochat.app.core.base import Base
from videochat.app.core.database import engine, async_session
from videochat.app.core.settings import get_settings
from videochat.app.models import user, payment, room, moderation  # noqa: F401
from videochat.app.services.commissions import CommissionSchedule
from videochat.app.services.payments import MembershipPolicy, PaymentService
from videochat.app.services.rooms import RoomService
from videochat.app.services.users import UserService

TABLES = [
    'moderation_logs', 'expulsions', 'votes', 'votings', 'room_members',
    'rooms', 'mlm_commissions', 'payments', 'users',
]

ROOMS = [
    ("Software Development", "Programming", "Languages, tools and code review"),
    ("Digital Business", "Online business", "Starting and growing online projects"),
    ("Marketing and Sales", "Marketing", "Campaigns, funnels and outreach"),
    ("Investing", "Personal finance", "Savings, markets and risk"),
]


async def _buy_membership(service: PaymentService, user_id: int, tx: str) -> None:
    policy = service.policy
    await service.process_payment(user_id, policy.price, policy.currencies[0], tx)


async def reset_and_seed():
    print("Dropping tables...")
    async with engine.begin() as conn:
        for table in TABLES:
            await conn.execute(text(f"DROP TABLE IF EXISTS {table} CASCADE;"))
        await conn.run_sync(Base.metadata.create_all)
    print("Schema created.")

    settings = get_settings()
    async with async_session() as session:
        users = UserService(session)
        payments = PaymentService(
            session,
            MembershipPolicy.from_settings(settings),
            CommissionSchedule.from_settings(settings),
        )

        # Payments run top-down so every sponsor is already a member when their downline pays
        demo = await users.register_user("demouser", "demo@example.com", "Demo", "User")
        await _buy_membership(payments, demo.id, "0xseed-demo-0001")

        level1 = []
        for i in range(1, 4):
            u = await users.register_user(f"level1user{i}", f"l1u{i}@example.com", "Level1", f"User{i}", "demouser")
            await _buy_membership(payments, u.id, f"0xseed-l1-{i:04d}")
            level1.append(u)

        for i, sponsor in enumerate(level1, start=1):
            for j in range(1, 3):
                u = await users.register_user(
                    f"level2user{i}{j}", f"l2u{i}{j}@example.com", "Level2", f"User{i}{j}", sponsor.username
                )
                await _buy_membership(payments, u.id, f"0xseed-l2-{i}{j:03d}")

        # Registered but never paid
        for i in range(1, 3):
            await users.register_user(
                f"inactiveuser{i}", f"inactive{i}@example.com", "Inactive", f"User{i}", level1[0].username
            )

        rooms = RoomService(session)
        for name, topic, description in ROOMS:
            await rooms.create_room(demo.id, name, topic, description)

        await session.commit()
    print("Demo data loaded.")


if __name__ == "__main__":
    asyncio.run(reset_and_seed())
