# make_admin.py
# Usage: python make_admin.py <username>

import sys

from app import create_app
from extensions import get_engine
from matrix.entities import MemberRole


def make_admin(username):
    app = create_app()
    with app.app_context():
        engine = get_engine()
        member = engine.find_by_username(username)
        if member is None:
            raise SystemExit(f"No member with username {username!r} found.")

        if member.is_admin:
            print(f"Member id={member.id} ({member.username}) is already admin.")
            return

        print(f"Found member id={member.id}, username={member.username}. Promoting to admin...")
        engine.assign_role(member.id, MemberRole.ADMIN)

        if not engine.outbox.flush(timeout=30):
            print("Remote store did not answer in time; the role is saved locally only.")
        elif engine.outbox.failures():
            print(f"Remote update failed: {engine.outbox.failures()[-1].message}")
        print(f"Member (id={member.id}, username={member.username}) is now admin.")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        raise SystemExit("Usage: python make_admin.py <username>")
    make_admin(sys.argv[1])
