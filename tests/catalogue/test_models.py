import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from datetime import date, timedelta

from catalogue.models import Borrow, User, Book, Role


def test_user_model(db_session: Session, test_student: User):
    assert test_student.username == "student"
    assert test_student.email == "student@example.com"
    assert test_student.role == Role.STUDENT
    assert test_student.password != "studentpass"


def test_book_model(db_session: Session, test_book: Book):
    assert test_book.title == "Test Book"
    assert test_book.author == "Test Author"
    assert test_book.isbn == "1234567890"
    assert test_book.category == "Test Category"
    assert not hasattr(test_book, "available")


def test_duplicate_isbn_rejected(db_session: Session, test_book: Book):
    db_session.add(Book(title="Copy", author="Someone", isbn=test_book.isbn))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_borrow_model(db_session: Session, test_student: User, test_book: Book):
    borrow_date = date(2024, 3, 1)
    borrow = Borrow(
        user_id=test_student.id,
        book_id=test_book.id,
        borrow_date=borrow_date,
        due_date=borrow_date + timedelta(days=15),
    )

    db_session.add(borrow)
    db_session.commit()
    db_session.refresh(borrow)

    assert borrow.user_id == test_student.id
    assert borrow.book_id == test_book.id
    assert borrow.due_date == date(2024, 3, 16)
    assert borrow.return_date is None
    assert borrow.is_open


def test_second_open_borrow_rejected(db_session: Session, test_student: User, test_book: Book):
    today = date.today()
    db_session.add(
        Borrow(user_id=test_student.id, book_id=test_book.id, borrow_date=today, due_date=today)
    )
    db_session.commit()

    db_session.add(
        Borrow(user_id=test_student.id, book_id=test_book.id, borrow_date=today, due_date=today)
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_returned_borrows_do_not_block(db_session: Session, test_student: User, test_book: Book):
    today = date.today()
    db_session.add_all(
        [
            Borrow(
                user_id=test_student.id,
                book_id=test_book.id,
                borrow_date=today,
                due_date=today,
                return_date=today,
            ),
            Borrow(
                user_id=test_student.id,
                book_id=test_book.id,
                borrow_date=today,
                due_date=today,
                return_date=today,
            ),
            Borrow(user_id=test_student.id, book_id=test_book.id, borrow_date=today, due_date=today),
        ]
    )
    db_session.commit()
    db_session.refresh(test_book)

    assert len(test_book.borrows) == 3
    assert [b.is_open for b in test_book.borrows].count(True) == 1


def test_user_book_relationship(db_session: Session, test_student: User, test_book: Book):
    today = date.today()
    borrow = Borrow(
        user_id=test_student.id,
        book_id=test_book.id,
        borrow_date=today,
        due_date=today + timedelta(days=15),
    )

    db_session.add(borrow)
    db_session.commit()
    db_session.refresh(test_student)
    db_session.refresh(test_book)

    assert len(test_student.borrows) == 1
    assert test_student.borrows[0].book_id == test_book.id
    assert len(test_book.borrows) == 1
    assert test_book.borrows[0].user_id == test_student.id
