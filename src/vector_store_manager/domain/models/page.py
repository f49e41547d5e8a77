from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    data: list[T] = field(default_factory=list)
    first_id: str = ""
    last_id: str = ""
    has_more: bool = False


@dataclass(slots=True)
class DeletedObject:
    id: str
    object: str
    deleted: bool = True
