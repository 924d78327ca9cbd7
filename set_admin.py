import asyncio
import sys

from sqlalchemy import select

from videochat.app.core.constants import ROLE_ADMIN
from videochat.app.core.database import async_session
from videochat.app.models.user import User


async def make_admin(username: str) -> bool:
    async with async_session() as session:
        user = (await session.execute(select(User).where(User.username == username))).scalar_one_or_none()
        if not user:
            print(f"User '{username}' not found. Register the account first.")
            return False

        user.role = ROLE_ADMIN
        await session.commit()
        print(f"User '{username}' (id {user.id}) is now an admin.")
        return True


if __name__ == "__main__":
    name = sys.argv[1] if len(sys.argv) > 1 else input("Username to promote: ").strip()
    if not asyncio.run(make_admin(name)):
        sys.exit(1)
