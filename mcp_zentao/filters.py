"""Helpers that normalize loosely-typed ZenTao payloads and narrow them down.

ZenTao wraps lists differently depending on the endpoint and version
(``{"projects": [...]}``, ``{"data": [...]}`` or a bare array) and returns user
references either as account strings or as expanded user objects. Everything
here works on plain ``dict``/``list`` JSON so it can be applied to any of them.
"""

import re
from collections.abc import Iterable, Sequence
from html.parser import HTMLParser
from typing import Any

from .models import ProductNotFoundError

IDENTITY_KEYS = ("account", "name", "realname", "realName", "username", "user", "id")
PROJECT_ROLE_FIELDS = ("PM", "PO", "QD", "RD", "openedBy", "lastEditedBy", "assignedTo")
PROJECT_TEAM_FIELD = "teamMembers"
BUG_ASSIGNEE_FIELDS = ("assignedTo", "assignedToName", "assignedToRealname")
DEFAULT_BUG_STATUS = "active"

_HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def extract_list(payload: Any, keys: Sequence[str] = ()) -> list[Any]:
    """Return the list carried by ``payload``.

    Precedence: the payload itself when it is a list, then each of ``keys`` in
    order, then ``data``. Anything else yields an empty list.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in (*keys, "data"):
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []


def normalize_identity(value: Any) -> list[str]:
    """Collect lower-cased identity strings from an account string or user object."""
    if value is None or value == "" or isinstance(value, bool):
        return []
    if isinstance(value, str | int | float):
        raw = [str(value)]
    elif isinstance(value, dict):
        raw = [str(value[key]) for key in IDENTITY_KEYS if value.get(key) is not None]
    else:
        return []
    return [v for v in (item.strip().lower() for item in raw) if v]


def _lower(value: Any) -> str:
    return str(value or "").strip().lower()


def matches_keyword(text: Any, keyword: str | None) -> bool:
    """Case-insensitive substring match; an empty keyword matches everything."""
    if not keyword:
        return True
    return keyword.lower() in str(text or "").lower()


def matches_status(record: dict[str, Any], status: str | None, *, all_statuses: bool = False) -> bool:
    if all_statuses or not status:
        return True
    return _lower(record.get("status") or record.get("state")) == status.strip().lower()


def _identities(values: Iterable[Any]) -> set[str]:
    found: set[str] = set()
    for value in values:
        found.update(normalize_identity(value))
    return found


def project_involves(project: dict[str, Any], account: str) -> bool:
    """Whether ``account`` holds a role in, or is a team member of, ``project``."""
    account_lower = _lower(account)
    if not account_lower:
        return True
    if account_lower in _identities(project.get(field) for field in PROJECT_ROLE_FIELDS):
        return True
    team = project.get(PROJECT_TEAM_FIELD)
    if not isinstance(team, list):
        return False
    return any(account_lower in normalize_identity(member) for member in team)


def bug_assigned_to(bug: dict[str, Any], account: str) -> bool:
    account_lower = _lower(account)
    if not account_lower:
        return True
    return account_lower in _identities(bug.get(field) for field in BUG_ASSIGNEE_FIELDS)


def filter_projects(
    projects: Iterable[dict[str, Any]], account: str, keyword: str | None = None, limit: int | None = None
) -> list[dict[str, Any]]:
    """Projects matching ``keyword`` on name that involve ``account``, truncated to ``limit``."""
    matched = [p for p in projects if matches_keyword(p.get("name"), keyword) and project_involves(p, account)]
    return matched if limit is None else matched[:limit]


def filter_products(
    products: Iterable[dict[str, Any]], keyword: str | None = None, limit: int | None = None
) -> list[dict[str, Any]]:
    matched = [p for p in products if matches_keyword(p.get("name"), keyword)]
    return matched if limit is None else matched[:limit]


def effective_bug_status(status: str | None, *, all_statuses: bool) -> str | None:
    """Status a bug listing filters on: the given one, else ``active`` unless all statuses are wanted."""
    if all_statuses:
        return None
    return status or DEFAULT_BUG_STATUS


def filter_bugs(
    bugs: Iterable[dict[str, Any]],
    account: str,
    keyword: str | None = None,
    status: str | None = None,
    *,
    all_statuses: bool = False,
) -> list[dict[str, Any]]:
    """Bugs assigned to ``account`` whose title matches ``keyword`` and whose status matches.

    ``status`` is compared as given; callers wanting the active-only default pass
    it through ``effective_bug_status`` first.
    """
    return [
        bug
        for bug in bugs
        if bug_assigned_to(bug, account)
        and matches_keyword(bug.get("title") or bug.get("name"), keyword)
        and matches_status(bug, status, all_statuses=all_statuses)
    ]


def resolve_product(candidates: list[dict[str, Any]], name: str) -> dict[str, Any]:
    """Pick the product called ``name`` out of keyword search results.

    An exact case-insensitive name match wins; otherwise a single candidate is
    accepted as is.

    Raises:
        ProductNotFoundError: No candidate, or several candidates without an exact match
    """
    wanted = name.strip().lower()
    for product in candidates:
        if _lower(product.get("name")) == wanted:
            return product
    if len(candidates) == 1:
        return candidates[0]
    raise ProductNotFoundError(name, candidates)


class _ImageSourceParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.sources: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag != "img":
            return
        for name, value in attrs:
            if name == "src" and value:
                self.sources.append(value.strip())
                break


def extract_image_links(html: str | None) -> list[str]:
    """Return the http(s) ``<img>`` sources of ``html`` in document order.

    ``data:`` URIs and relative sources are skipped.
    """
    if not html:
        return []
    parser = _ImageSourceParser()
    parser.feed(html)
    parser.close()
    return [src for src in parser.sources if _HTTP_URL_RE.match(src)]
