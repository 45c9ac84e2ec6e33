"""
Admin tooling for the catalogue database.
Usage:
  python -m catalogue.manage init-db
  python -m catalogue.manage create-admin --username admin --email admin@example.com --password secret
  python -m catalogue.manage reset-password --email someone@example.com --password newsecret
  python -m catalogue.manage hash-password secret

Commands use the same SQLALCHEMY_DATABASE_URL as the API server unless
--db-url is given.
"""
import argparse
import logging
import sys

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from catalogue import models
from catalogue.auth import get_user_by_email, hash_password
from catalogue.models import Role
from catalogue.storage import SessionLocal, engine, engine_options

logger = logging.getLogger(__name__)


def _session_factory(db_url=None):
    if not db_url:
        return engine, SessionLocal
    custom_engine = create_engine(db_url, **engine_options(db_url))
    return custom_engine, sessionmaker(autocommit=False, autoflush=False, bind=custom_engine)


def init_db(bind):
    models.Base.metadata.create_all(bind=bind)
    print("Tables created")
    return 0


def create_admin(db, username, email, password):
    user = get_user_by_email(db, email)
    if user is None:
        user = models.User(
            username=username,
            email=email,
            password=hash_password(password),
            role=Role.ADMIN.value,
        )
        db.add(user)
        db.commit()
        print(f"Created new admin user: {username} <{email}>")
        return 0

    user.password = hash_password(password)
    user.role = Role.ADMIN.value
    db.commit()
    print(f"Updated existing user '{user.username}' to admin and set new password")
    return 0


def reset_password(db, email, password):
    user = get_user_by_email(db, email)
    if user is None:
        print(f"No user found for email: {email}")
        return 1
    user.password = hash_password(password)
    db.commit()
    print(f"Password reset for user '{user.username}'")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Library catalogue admin tooling")
    parser.add_argument("--db-url", help="optional database URL overriding SQLALCHEMY_DATABASE_URL")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="create the database tables")

    admin = commands.add_parser("create-admin", help="create an admin or promote an existing user")
    admin.add_argument("--username", "-u", required=True)
    admin.add_argument("--email", "-e", required=True)
    admin.add_argument("--password", "-p", required=True)

    reset = commands.add_parser("reset-password", help="set a new password for a user")
    reset.add_argument("--email", "-e", required=True)
    reset.add_argument("--password", "-p", required=True)

    hasher = commands.add_parser("hash-password", help="print a bcrypt hash for a password")
    hasher.add_argument("password")

    args = parser.parse_args(argv)

    if args.command == "hash-password":
        print(hash_password(args.password))
        return 0

    bind, session_factory = _session_factory(args.db_url)
    try:
        if args.command == "init-db":
            return init_db(bind)

        models.Base.metadata.create_all(bind=bind)
        db = session_factory()
        try:
            if args.command == "create-admin":
                return create_admin(db, args.username.strip(), args.email.strip(), args.password)
            return reset_password(db, args.email.strip(), args.password)
        finally:
            db.close()
    finally:
        if args.db_url:
            bind.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        sys.exit(main())
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
