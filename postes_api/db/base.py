"""Declarative base shared by every ORM model."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    # Models annotate Column attributes with plain Python types
    __allow_unmapped__ = True


# Upper bound of an INTEGER primary key column
MAX_INTEGER_ID = 2**31 - 1
