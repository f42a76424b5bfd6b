"""
Shared endpoint helpers: pagination and serialization.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Query, Request, Response
from fastapi.encoders import jsonable_encoder

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


@dataclass
class Page:
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def page_params(
    page: int = Query(1, ge=1, description="1-based page number"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, description=f"Page size (max {MAX_PER_PAGE})"),
) -> Page:
    return Page(page=page, per_page=min(per_page, MAX_PER_PAGE))


def filters_of(**values: Optional[Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def set_page_headers(request: Request, response: Response, page: Page, total: int) -> None:
    """Set ``X-Total-Count`` and a ``Link`` header with rel="first" and, when more rows exist, rel="next"."""
    first = request.url.include_query_params(page=1, per_page=page.per_page)
    links = [f'<{first}>; rel="first"']
    if page.page * page.per_page < total:
        following = request.url.include_query_params(page=page.page + 1, per_page=page.per_page)
        links.append(f'<{following}>; rel="next"')
    response.headers["Link"] = ", ".join(links)
    response.headers["X-Total-Count"] = str(total)


def serialize(obj: Any) -> Any:
    """JSON-ready form of an entity, a service dataclass or a list of them."""
    if isinstance(obj, list):
        return [serialize(o) for o in obj]
    if hasattr(obj, "to_dict"):
        return jsonable_encoder(obj.to_dict())
    if dataclasses.is_dataclass(obj):
        return jsonable_encoder(dataclasses.asdict(obj))
    return jsonable_encoder(obj)
