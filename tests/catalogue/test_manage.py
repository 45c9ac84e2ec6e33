from catalogue import auth, manage
from catalogue.models import Role, User

from conftest import SQLALCHEMY_DATABASE_URL, STUDENT_PASSWORD


def test_hash_password(capsys):
    assert manage.main(["hash-password", "secret"]) == 0
    hashed = capsys.readouterr().out.strip()
    assert auth.verify_password("secret", hashed)


def test_create_admin(db_session):
    code = manage.main(
        [
            "--db-url", SQLALCHEMY_DATABASE_URL,
            "create-admin", "-u", "root", "-e", "root@example.com", "-p", "rootpass",
        ]
    )
    assert code == 0

    user = db_session.query(User).filter(User.email == "root@example.com").one()
    assert user.role == Role.ADMIN
    assert auth.verify_password("rootpass", user.password)


def test_create_admin_promotes_existing_user(db_session, test_student):
    manage.main(
        [
            "--db-url", SQLALCHEMY_DATABASE_URL,
            "create-admin", "-u", "ignored", "-e", "STUDENT@example.com", "-p", "newpass",
        ]
    )

    db_session.expire_all()
    user = db_session.get(User, test_student.id)
    assert user.role == Role.ADMIN
    assert user.username == "student"
    assert auth.verify_password("newpass", user.password)


def test_reset_password(db_session, test_student):
    assert auth.verify_password(STUDENT_PASSWORD, test_student.password)

    code = manage.main(
        ["--db-url", SQLALCHEMY_DATABASE_URL, "reset-password", "-e", test_student.email, "-p", "changed"]
    )
    assert code == 0

    db_session.expire_all()
    user = db_session.get(User, test_student.id)
    assert auth.verify_password("changed", user.password)
    assert user.role == Role.STUDENT


def test_reset_password_unknown_user():
    code = manage.main(
        ["--db-url", SQLALCHEMY_DATABASE_URL, "reset-password", "-e", "ghost@example.com", "-p", "x"]
    )
    assert code == 1
