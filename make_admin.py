# make_admin.py
# Usage: python make_admin.py --email admin@example.com --name "Portal Admin" [--password ...]
import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from app import create_app
from extensions import db
from models import Role, User
from utils import validate_password


def make_admin(email, full_name=None, password=None):
    """Promote an existing user to admin, or create one. Returns the user."""
    email = email.strip().lower()
    user = User.query.filter_by(email=email).first()

    if user:
        print(f"Found user id={user.id}, email={user.email}. Promoting to admin...")
    else:
        print(f"No user with email {email} found - creating a new admin.")
        if not password:
            raise ValueError("A password is required to create a new admin")
        ok, errors = validate_password(password)
        if not ok:
            raise ValueError("; ".join(errors))

        user = User(email=email, full_name=full_name or email.split("@")[0], role=Role.ADMIN.value)
        user.set_password(password)
        db.session.add(user)

    user.role = Role.ADMIN.value
    user.is_active = True

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise

    print(f"User (id={user.id}, email={user.email}) is now admin.")
    return user


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create or promote a portal administrator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default=None)
    parser.add_argument("--password", default=None, help="prompted for when omitted and the user is new")
    args = parser.parse_args(argv)

    app = create_app()
    with app.app_context():
        db.create_all()
        password = args.password
        if not password and not User.query.filter_by(email=args.email.strip().lower()).first():
            password = getpass.getpass("Password for the new admin: ")
        try:
            make_admin(args.email, args.name, password)
        except ValueError as e:
            print(f"Error: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
