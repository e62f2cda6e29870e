import datetime as dt
from typing import Optional

from sqlmodel import Field, SQLModel


class SoftDeletable(SQLModel):
    # Set instead of deleting the row; the bridge reports this as a soft remove.
    deleted_at: Optional[dt.datetime] = Field(default=None)

    def soft_delete(self) -> None:
        """Mark the row deleted as of now. Timestamps are always timezone-aware UTC."""
        self.deleted_at = dt.datetime.now(dt.timezone.utc)


class Person(SoftDeletable, table=True):
    __tablename__ = "person"  # type: ignore (shut up pyright)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)


class Company(SoftDeletable, table=True):
    __tablename__ = "company"  # type: ignore (shut up pyright)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
