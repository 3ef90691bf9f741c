import sys

from crimedesk import db


def promote(username: str) -> bool:
    """Give an existing account the admin role. Returns False if no such user."""
    db.init_db()
    with db.get_conn() as conn:
        user = db.find_user(conn, username.strip().lower())
        if not user:
            return False
        db.set_user_role(conn, user['id'], 'admin')
        db.insert_activity(conn, None, 'cli', 'role_updated', f"user {user['id']} -> admin")
    return True


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: python -m crimedesk.tools.promote_admin <username>")
        sys.exit(1)
    if promote(sys.argv[1]):
        print(f"Promoted '{sys.argv[1]}' to admin.")
    else:
        print(f"No user named '{sys.argv[1]}' in {db.DB_PATH}.")
        sys.exit(1)
