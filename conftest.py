import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from catalogue import auth
from catalogue.main import app, get_db
from catalogue.models import Base, Book, Borrow, Role, User
from catalogue.schemas import TokenClaim
from catalogue.storage import engine_options

# File-backed SQLite so that threaded tests share one database
SQLALCHEMY_DATABASE_URL = os.getenv("TEST_DB_URL", "sqlite:///./test.db")

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, **engine_options(SQLALCHEMY_DATABASE_URL, timeout=5)
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STUDENT_PASSWORD = "studentpass"
ADMIN_PASSWORD = "adminpass"


@pytest.fixture(scope="function", autouse=True)
def create_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


@pytest.fixture(scope="module")
def client():
    app.state.testing = True
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.state.testing = False
    app.dependency_overrides.clear()


def make_user(db_session, username, email, password, role=Role.STUDENT):
    user = User(
        username=username,
        email=email,
        password=auth.hash_password(password),
        role=role.value,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def claim_for(user):
    return TokenClaim(id=user.id, role=user.role)


def auth_header(user):
    return {"Authorization": f"Bearer {auth.create_access_token(user)}"}


@pytest.fixture(scope="function")
def test_student(db_session):
    return make_user(db_session, "student", "student@example.com", STUDENT_PASSWORD)


@pytest.fixture(scope="function")
def other_student(db_session):
    return make_user(db_session, "other", "other@example.com", STUDENT_PASSWORD)


@pytest.fixture(scope="function")
def test_admin(db_session):
    return make_user(db_session, "admin", "admin@example.com", ADMIN_PASSWORD, Role.ADMIN)


@pytest.fixture(scope="function")
def test_book(db_session):
    book = Book(
        title="Test Book",
        author="Test Author",
        isbn="1234567890",
        category="Test Category",
    )
    db_session.add(book)
    db_session.commit()
    db_session.refresh(book)
    return book


@pytest.fixture(scope="function")
def catalogue_books(db_session):
    books = [
        Book(title="Dune", author="Frank Herbert", isbn="9780441013593", category="Science Fiction"),
        Book(title="Emma", author="Jane Austen", isbn="9780141439587", category="Classics"),
        Book(title="Dune Messiah", author="Frank Herbert", isbn="9780593098233", category="Science Fiction"),
    ]
    db_session.add_all(books)
    db_session.commit()
    for book in books:
        db_session.refresh(book)
    return books


def open_borrows(db_session, book_id):
    db_session.expire_all()
    return (
        db_session.query(Borrow)
        .filter(Borrow.book_id == book_id, Borrow.return_date.is_(None))
        .count()
    )
