"""Script to create a portal user, optionally enrolling a TOTP authenticator."""
import argparse
import sys

from parishgate.db.session import SessionLocal
from parishgate.models.user import UserRole
from parishgate.services.auth import create_user, get_user_by_email
from parishgate.services.identity import enroll_totp, provisioning_uri


def main():
    parser = argparse.ArgumentParser(description="Create a parish portal user")
    parser.add_argument("--email", required=True, help="Sign-in email address")
    parser.add_argument("--password", required=True, help="Initial password")
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument(
        "--role",
        choices=[role.value for role in UserRole],
        default=UserRole.PARISHIONER.value,
    )
    parser.add_argument("--mfa", action="store_true", help="Enroll a TOTP authenticator")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        existing = get_user_by_email(db, args.email)
        if existing:
            print(f"User '{args.email}' already exists.")
            sys.exit(1)

        user = create_user(db, args.email, args.password, role=args.role, full_name=args.name)
        print(f"Created user '{user.email}' with ID {user.id}")

        if args.mfa:
            secret = enroll_totp(db, user)
            print(f"Authenticator URI: {provisioning_uri(user, secret)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
