from typing import Generic, List, TypeVar

from fastapi import Query
from pydantic import BaseModel

T = TypeVar("T")


class PaginationParams(BaseModel):
    page: int = 1
    size: int = 20


def common_pagination_parameters(
    page: int = Query(1, ge=1, description="Page number (starting from 1)"),
    size: int = Query(20, ge=1, le=100, description="Number of items per page"),
) -> PaginationParams:
    return PaginationParams(page=page, size=size)


class PaginatedResponse(BaseModel, Generic[T]):
    """
    One page of an ordered list.

    Attributes:
        items (List[T]): The items of the current page.
        total (int): The total number of items across all pages.
        page (int): The current page number (1-indexed).
        size (int): The number of items per page.
        pages (int): The total number of pages.
    """
    items: List[T]
    total: int
    page: int
    size: int
    pages: int

    @classmethod
    def create(cls, data: List[T], params: PaginationParams) -> "PaginatedResponse[T]":
        pages = (len(data) + params.size - 1) // params.size
        return cls(
            items=paginate(data, params.page, params.size),
            total=len(data),
            page=params.page,
            size=params.size,
            pages=pages,
        )


def paginate(data: List[T], page: int, size: int) -> List[T]:
    start = (page - 1) * size
    end = start + size
    return data[start:end]
