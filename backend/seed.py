"""
Seed roles and a handful of demo accounts.
Run from backend/: python seed.py
"""
import os
import sys
sys.path.insert(0, os.path.dirname(__file__))

from portal_auth import create_app, db
from portal_auth.models.user import (
    User, Role, SYSTEM_ADMIN, CUSTOMER_ADMIN, PROVIDER_GROUP_ADMIN, BASIC_USER,
)

ROLES = [
    (SYSTEM_ADMIN, 'Full administrative access'),
    (CUSTOMER_ADMIN, 'Administers one customer organisation'),
    (PROVIDER_GROUP_ADMIN, 'Administers one provider group'),
    (BASIC_USER, 'Standard portal user'),
]

# username, display name, roles
DEMO_USERS = [
    ('admin', 'System Administrator', [SYSTEM_ADMIN]),
    ('alice', 'Alice Example', [BASIC_USER]),
    ('bob', 'Bob Example', [PROVIDER_GROUP_ADMIN]),
    ('carol', 'Carol Example', [CUSTOMER_ADMIN]),
]


def seed():
    app = create_app()
    password = os.getenv('SEED_PASSWORD')
    if not password:
        raise RuntimeError('SEED_PASSWORD environment variable is required')

    with app.app_context():
        roles = {}
        for name, description in ROLES:
            roles[name] = Role.get_or_create(name, description)
        db.session.commit()
        print(f"Roles seeded: {Role.query.count()} total.\n")

        for username, name, role_names in DEMO_USERS:
            if User.find_by_username(username):
                print(f"  User '{username}' already exists, skipping.")
                continue
            user = User(username=username, name=name, email=f'{username}@portal.local')
            user.set_password(password)
            user.roles = [roles[r] for r in role_names]
            db.session.add(user)
            db.session.commit()
            print(f"  Created user '{username}' (id={user.id}, roles={', '.join(role_names)})")

        print("\nDone.")


if __name__ == "__main__":
    seed()
