"""Create a user in the UniDiploma database.

Accounts are never self-registered: staff, verifiers and ministry agents
are created by an operator with this script.

Usage:
    python scripts/create_user.py <email> <password> <role> [first_name] [last_name]

Roles: admin, university_staff, verifier, esu_staff
"""

import asyncio
import sys

from sqlalchemy import select

from unidiploma.auth.service import hash_password
from unidiploma.database import async_session
from unidiploma.models.enums import UserRole
from unidiploma.models.user import User


async def create_user(
    email: str,
    password: str,
    role: UserRole,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    email = email.strip().lower()
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            raise ValueError(f"User with email '{email}' already exists.")

        user = User(
            email=email,
            password_hash=hash_password(password),
            role=role,
            first_name=first_name,
            last_name=last_name,
            is_active=True,
        )
        db.add(user)
        await db.commit()
        return user


def main() -> None:
    if len(sys.argv) not in (4, 5, 6):
        print(__doc__)
        sys.exit(1)

    email, password, role_name = sys.argv[1:4]
    try:
        role = UserRole(role_name)
    except ValueError:
        print(f"Error: unknown role '{role_name}'. Use one of: {', '.join(r.value for r in UserRole)}")
        sys.exit(1)
    if len(password) < 8:
        print("Error: password must be at least 8 characters long.")
        sys.exit(1)

    first_name = sys.argv[4] if len(sys.argv) > 4 else None
    last_name = sys.argv[5] if len(sys.argv) > 5 else None
    try:
        user = asyncio.run(create_user(email, password, role, first_name, last_name))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"User created successfully: {user.email} ({role.value}, id={user.id})")


if __name__ == "__main__":
    main()
