"""HAL-style ``_links`` for list and item responses."""
from __future__ import annotations

from urllib.parse import quote

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def clamp_limit(limit: int | None) -> int:
    if not limit:
        return DEFAULT_PAGE_SIZE
    return min(max(limit, 1), MAX_PAGE_SIZE)


def link(href: str, rel: str) -> dict[str, str]:
    return {"href": href, "rel": rel}


def pagination_links(
    base_path: str,
    limit: int,
    request_token: str | None = None,
    next_token: str | None = None,
) -> dict[str, dict[str, str]]:
    """self/first links for a collection page, plus next when another page exists."""
    limit_param = f"limit={limit}"
    self_query = (
        f"{limit_param}&nextToken={quote(request_token, safe='')}"
        if request_token
        else limit_param
    )
    links = {
        "self": link(f"{base_path}?{self_query}", "self"),
        "first": link(f"{base_path}?{limit_param}", "first"),
    }
    if next_token:
        links["next"] = link(
            f"{base_path}?{limit_param}&nextToken={quote(next_token, safe='')}", "next"
        )
    return links
