"""Promote an existing account to the admin role.

Usage: python scripts/setup_admin.py --email owner@example.com
"""

import argparse
import asyncio
import os
import sys

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func, update

from database import async_session_maker, engine
from models.user import ROLE_ADMIN, ROLE_USER, User


async def set_role(email: str, role: str) -> bool:
    async with async_session_maker() as session:
        result = await session.execute(
            update(User).where(func.lower(User.email) == email.strip().lower()).values(role=role)
        )
        await session.commit()
        updated = result.rowcount == 1
    await engine.dispose()
    return updated


def main() -> int:
    parser = argparse.ArgumentParser(description="Set the role of an account.")
    parser.add_argument("--email", required=True, help="Email of the account to update")
    parser.add_argument("--revoke", action="store_true", help="Demote the account back to a regular user")
    args = parser.parse_args()

    role = ROLE_USER if args.revoke else ROLE_ADMIN
    if not asyncio.run(set_role(args.email, role)):
        print(f"❌ No account found for {args.email}")
        return 1
    print(f"✅ {args.email} is now {role}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
