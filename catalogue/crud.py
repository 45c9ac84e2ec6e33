from datetime import datetime, timedelta, timezone, date
import logging
from sqlalchemy import exists
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Optional

from catalogue import models, schemas
from catalogue.auth import require_role
from catalogue.models import LOAN_PERIOD_DAYS, Role
from exceptions.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "Book is not available (currently borrowed)"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _available():
    """Derived availability: true while the book has no open borrow."""
    open_borrow = exists().where(
        models.Borrow.book_id == models.Book.id,
        models.Borrow.return_date.is_(None),
    )
    return (~open_borrow).label("available")


def _book_schema(book: models.Book, available: bool) -> schemas.BookSchema:
    book_dict = {c.name: getattr(book, c.name) for c in book.__table__.columns}
    book_dict["available"] = bool(available)
    return schemas.BookSchema(**book_dict)


def _borrow_schema(borrow: models.Borrow, title: str, author: str) -> schemas.BorrowSchema:
    borrow_dict = {c.name: getattr(borrow, c.name) for c in borrow.__table__.columns}
    return schemas.BorrowSchema(**borrow_dict, title=title, author=author)


def _clean_book_fields(item: schemas.BookCreate) -> dict:
    fields = {
        "title": (item.title or "").strip(),
        "author": (item.author or "").strip(),
        "isbn": (item.isbn or "").strip(),
    }
    if not all(fields.values()):
        raise ValidationError("Title, author, and ISBN are required")
    fields["category"] = (item.category or "").strip() or None
    return fields


def _isbn_taken(db: Session, isbn: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(models.Book.id).filter(models.Book.isbn == isbn)
    if exclude_id is not None:
        query = query.filter(models.Book.id != exclude_id)
    return query.first() is not None


def filter_books(
    db: Session,
    title: Optional[str] = None,
    author: Optional[str] = None,
    category: Optional[str] = None,
) -> List[schemas.BookSchema]:
    try:
        query = db.query(models.Book, _available())
        if title:
            query = query.filter(models.Book.title.ilike(f"%{title}%"))
        if author:
            query = query.filter(models.Book.author.ilike(f"%{author}%"))
        if category:
            query = query.filter(models.Book.category.ilike(f"%{category}%"))
        rows = query.order_by(models.Book.id).all()
    except SQLAlchemyError as e:
        raise ServiceUnavailable("filter", str(e))
    return [_book_schema(book, available) for book, available in rows]


def get_book(db: Session, book_id: int) -> schemas.BookSchema:
    try:
        row = (
            db.query(models.Book, _available())
            .filter(models.Book.id == book_id)
            .first()
        )
    except SQLAlchemyError as e:
        raise ServiceUnavailable("fetch", str(e))
    if row is None:
        raise NotFoundError(f"Book with id {book_id} not found")
    book, available = row
    return _book_schema(book, available)


def create_book(db: Session, claim: schemas.TokenClaim, item: schemas.BookCreate) -> schemas.BookSchema:
    require_role(claim, Role.ADMIN)
    fields = _clean_book_fields(item)
    try:
        if _isbn_taken(db, fields["isbn"]):
            raise ConflictError("ISBN already exists")
        db_item = models.Book(**fields)
        db.add(db_item)
        db.commit()
        db.refresh(db_item)
    except IntegrityError:
        db.rollback()
        raise ConflictError("ISBN already exists")
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("create", str(e))

    logger.info(f"Book {db_item.id} added by user {claim.id}")
    return _book_schema(db_item, available=True)


def update_book(
    db: Session, claim: schemas.TokenClaim, book_id: int, item: schemas.BookUpdate
) -> schemas.BookSchema:
    require_role(claim, Role.ADMIN)
    fields = _clean_book_fields(item)
    try:
        book = db.get(models.Book, book_id)
        if book is None:
            raise NotFoundError(f"Book with id {book_id} not found")
        if _isbn_taken(db, fields["isbn"], exclude_id=book_id):
            raise ConflictError("ISBN already exists")
        for key, value in fields.items():
            setattr(book, key, value)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("ISBN already exists")
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("update", str(e))

    logger.info(f"Book {book_id} updated by user {claim.id}")
    return get_book(db, book_id)


def delete_book(db: Session, claim: schemas.TokenClaim, book_id: int) -> None:
    """Delete a book together with its whole borrow history."""
    require_role(claim, Role.ADMIN)
    try:
        book = db.get(models.Book, book_id)
        if book is None:
            raise NotFoundError(f"Book with id {book_id} not found")
        removed = (
            db.query(models.Borrow)
            .filter(models.Borrow.book_id == book_id)
            .delete(synchronize_session=False)
        )
        db.delete(book)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("delete", str(e))

    logger.info(f"Book {book_id} deleted by user {claim.id} ({removed} borrow records removed)")


def borrow_book(db: Session, claim: schemas.TokenClaim, book_id: Optional[int]) -> schemas.BorrowSchema:
    require_role(claim, Role.STUDENT)
    if not book_id:
        raise ValidationError("Book ID is required")

    try:
        book = db.get(models.Book, book_id)
        if book is None:
            raise NotFoundError(f"Book with id {book_id} not found")

        open_borrow = (
            db.query(models.Borrow.id)
            .filter(
                models.Borrow.book_id == book_id,
                models.Borrow.return_date.is_(None),
            )
            .first()
        )
        if open_borrow is not None:
            raise ConflictError(NOT_AVAILABLE)

        borrow_date = _today()
        borrow = models.Borrow(
            user_id=claim.id,
            book_id=book_id,
            borrow_date=borrow_date,
            due_date=borrow_date + timedelta(days=LOAN_PERIOD_DAYS),
        )
        db.add(borrow)
        db.commit()
        db.refresh(borrow)
    except IntegrityError:
        # the open-borrow unique index rejected a concurrent borrower
        db.rollback()
        raise ConflictError(NOT_AVAILABLE)
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("borrow", str(e))

    logger.info(f"User {claim.id} borrowed book {book_id} (borrow {borrow.id}, due {borrow.due_date})")
    return _borrow_schema(borrow, book.title, book.author)


def return_book(db: Session, claim: schemas.TokenClaim, borrow_id: int) -> None:
    try:
        borrow = (
            db.query(models.Borrow)
            .filter(
                models.Borrow.id == borrow_id,
                models.Borrow.return_date.is_(None),
            )
            .first()
        )
        if borrow is None:
            raise NotFoundError("Borrow record not found or already returned")

        if claim.role != Role.ADMIN and borrow.user_id != claim.id:
            raise ForbiddenError("You can only return your own books")

        updated = (
            db.query(models.Borrow)
            .filter(
                models.Borrow.id == borrow_id,
                models.Borrow.return_date.is_(None),
            )
            .update({models.Borrow.return_date: _today()}, synchronize_session=False)
        )
        if updated == 0:
            # returned by a concurrent request in the meantime
            db.rollback()
            raise NotFoundError("Borrow record not found or already returned")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise ServiceUnavailable("return", str(e))

    logger.info(f"Borrow {borrow_id} returned by user {claim.id}")


def get_user_borrows(db: Session, claim: schemas.TokenClaim) -> List[schemas.BorrowSchema]:
    try:
        rows = (
            db.query(models.Borrow, models.Book.title, models.Book.author)
            .join(models.Book, models.Borrow.book_id == models.Book.id)
            .filter(models.Borrow.user_id == claim.id)
            .order_by(models.Borrow.borrow_date.desc(), models.Borrow.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        raise ServiceUnavailable("fetch", str(e))
    return [_borrow_schema(borrow, title, author) for borrow, title, author in rows]
