"""Issue an API key for a user (admin scope by default) and print it once."""
from __future__ import annotations

import argparse

from sqlalchemy import select

from app.db import init_engine, session_scope
from app.models.api_key import ApiKey, ApiScope
from app.models.user import User
from app.utils.apikey import gen_key


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("email", help="email of the user the key acts for")
    parser.add_argument("--name", default=None, help="unique key name (defaults to the generated prefix)")
    parser.add_argument("--scope", choices=[scope.value for scope in ApiScope], default=ApiScope.admin.value)
    args = parser.parse_args()

    init_engine()
    raw_token, prefix, key_hash = gen_key()
    with session_scope() as db:
        user = db.scalars(select(User).where(User.email == args.email)).first()
        if user is None:
            raise SystemExit(f"No user with email {args.email}")
        api_key = ApiKey(
            name=args.name or prefix,
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope(args.scope),
            user_id=user.id,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print("API key created; it will not be shown again.")
        print(f"    Authorization: Bearer {raw_token}")
        print(f"(DB id: {api_key.id}, scope: {api_key.scope.value}, user: {user.email})")
        print("==========================================")


if __name__ == "__main__":
    main()
