#!/usr/bin/env python3
"""
Create the default roles (Super Admin, Project Manager, CRM Manager, Agent, User).

Safe to run repeatedly: existing roles are left untouched.

Usage:
    python scripts/seed_roles.py
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from khareedo import models  # noqa: F401
from khareedo.core.database import Base, get_engine, get_session_local
from khareedo.services.roles import seed_roles


def main():
    Base.metadata.create_all(bind=get_engine())
    db = get_session_local()()
    try:
        result = seed_roles(db)
    finally:
        db.close()

    if result["created"]:
        print(f"Created roles: {', '.join(result['created'])}")
    else:
        print(f"All default roles already exist ({result['existing']} roles in database)")


if __name__ == "__main__":
    main()
