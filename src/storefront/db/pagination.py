"""Page/size/sort handling for list queries"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Query

from storefront.errors import ValidationFailed


@dataclass(frozen=True)
class PageRequest:
    """Zero-based page request with an optional ``field[,asc|desc]`` sort"""

    page: int = 0
    size: int = 20
    sort: Optional[str] = None

    @property
    def offset(self) -> int:
        return self.page * self.size

    def sort_order(self, default_field: str) -> Tuple[str, bool]:
        """Return (field, descending)"""
        if not self.sort:
            return default_field, True

        field, _, direction = self.sort.partition(",")
        direction = direction.strip().lower() or "asc"
        if direction not in ("asc", "desc"):
            raise ValidationFailed(f"Invalid sort direction: {direction}")
        return field.strip(), direction == "desc"


def paginate(
    query: Query,
    model,
    page_request: PageRequest,
    sortable: Iterable[str],
    default_sort: str = "created_at"
) -> Tuple[List, int]:
    """Apply sorting and paging to ``query``; return (items, total)"""
    field, descending = page_request.sort_order(default_sort)
    if field not in set(sortable):
        raise ValidationFailed(f"Cannot sort by {field}")

    column = getattr(model, field)
    total = query.count()
    items = (
        query.order_by(column.desc() if descending else column.asc(), model.id.asc())
        .offset(page_request.offset)
        .limit(page_request.size)
        .all()
    )
    return items, total
