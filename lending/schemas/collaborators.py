from typing import Optional
from pydantic import AliasChoices, BaseModel, Field


class ItemRecord(BaseModel):
    """Catalog view of an item; accepts both snake_case and the catalog's camelCase."""

    id: int = Field(validation_alias=AliasChoices("id", "bookId"))
    available_copies: int = Field(validation_alias=AliasChoices("available_copies", "availableCopies"))
    total_copies: int = Field(default=0, validation_alias=AliasChoices("total_copies", "totalCopies"))
    title: Optional[str] = None


class MemberRecord(BaseModel):
    id: int = Field(validation_alias=AliasChoices("id", "memberId"))
    status: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
