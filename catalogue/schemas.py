from datetime import date
from pydantic import BaseModel, Field
from typing import Optional

from catalogue.models import Role

# Largest id the store's 64-bit integer columns can hold
MAX_ID = 2**63 - 1


# Requests. Fields are optional here so that missing input is reported by the
# services as a ValidationError instead of a schema error.


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class BookCreate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None


class BookUpdate(BookCreate):
    pass


class BorrowRequest(BaseModel):
    book_id: Optional[int] = Field(None, ge=1, le=MAX_ID)


class BookFilterParams(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    author: Optional[str] = Field(None, max_length=255)
    category: Optional[str] = Field(None, max_length=100)


# Responses


class MessageResponse(BaseModel):
    message: str


class TokenResponse(BaseModel):
    token: str
    role: Role


class TokenClaim(BaseModel):
    """Identity carried inside a session token."""

    id: int
    role: Role


class BookBase(BaseModel):
    title: str
    author: str
    isbn: str
    category: Optional[str] = None


class BookSchema(BookBase):
    id: int
    available: bool

    class Config:
        from_attributes = True


class BookMessage(MessageResponse):
    book: BookSchema


class BorrowSchema(BaseModel):
    id: int
    user_id: int
    book_id: int
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    title: Optional[str] = None
    author: Optional[str] = None

    class Config:
        from_attributes = True


class BorrowMessage(MessageResponse):
    borrow: BorrowSchema
