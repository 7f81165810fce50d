#!/usr/bin/env python3
"""
Create a staff account from the command line.

Usage:
    python scripts/create_admin_user.py --email ops@acme.in --name "Ops Admin" --password 'S3cret!'
    python scripts/create_admin_user.py --email rm@acme.in --name "Priya Shah" --password 'S3cret!' \\
        --role "Project Manager" --phone 9876543210
"""

import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from khareedo import models  # noqa: F401
from khareedo.core.database import Base, get_engine, get_session_local
from khareedo.core.errors import AppError
from khareedo.core.security import ROLE_SUPER_ADMIN, hash_password
from khareedo.models.user import User
from khareedo.services import accounts
from khareedo.services.roles import get_role_or_error, seed_roles


def main():
    parser = argparse.ArgumentParser(description="Create a staff user")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--name", required=True, help="Full name")
    parser.add_argument("--password", required=True, help="Initial password (min 6 chars)")
    parser.add_argument("--role", default=ROLE_SUPER_ADMIN, help="Role name")
    parser.add_argument("--phone", type=str, help="10-digit phone number")
    parser.add_argument("--country-code", default="+91")
    parser.add_argument("--update", action="store_true",
                        help="Reset password and role when the email already exists")

    args = parser.parse_args()

    if len(args.password) < 6:
        print("Error: password must be at least 6 characters")
        sys.exit(1)

    Base.metadata.create_all(bind=get_engine())
    db = get_session_local()()

    try:
        seed_roles(db)
        if args.phone:
            accounts.ensure_phone(args.phone, args.country_code)
        role = get_role_or_error(db, args.role)
        email = accounts.normalize_email(args.email)

        user = db.query(User).filter(User.email == email).first()
        if user is not None and not args.update:
            print(f"User {email} already exists (use --update to reset it)")
            sys.exit(1)

        existed = user is not None
        if user is None:
            user = User(email=email, country_code=args.country_code)
            db.add(user)
        user.set_name(*accounts.split_name(args.name))
        user.password_hash = hash_password(args.password)
        user.role_id = role.id
        if args.phone:
            user.phone_number = args.phone
        db.commit()

        print(f"{'Updated' if existed else 'Created'} {role.name}: {email} ({user.id})")

    except AppError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
