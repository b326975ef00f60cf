"""ZenTao RESTful API v1 client with an in-memory token cache."""

import json
import logging
import re
import threading
from typing import Any
from urllib.parse import urlencode

import requests  # type: ignore[import-untyped]
from requests.structures import CaseInsensitiveDict  # type: ignore[import-untyped]

from . import config as config_module
from .filters import (
    effective_bug_status,
    extract_image_links,
    extract_list,
    filter_bugs,
    filter_products,
    filter_projects,
    resolve_product,
)
from .models import ApiResponse, AuthenticationError, RequestError, ZenTaoConfig

logger = logging.getLogger(__name__)

API_PREFIX = "/api.php/v1/"
TOKEN_PATH = "tokens"  # noqa: S105
TOKEN_HEADER = "Token"  # noqa: S105
JSON_CONTENT_TYPE = "application/json"

PRODUCT_LOOKUP_LIMIT = 50

_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TokenCache:
    """Holds the ZenTao session token and logs in when it is missing.

    Staleness is not tracked; a caller that sees an authentication failure asks
    for ``force_refresh``.
    """

    def __init__(self, config: ZenTaoConfig, session: requests.Session, token: str | None = None) -> None:
        """Initialize the cache.

        Args:
            config: Resolved connection settings
            session: HTTP session used for the login exchange
            token: Token to seed the cache with (defaults to ``config.token``)
        """
        self._config = config
        self._session = session
        self._token = token if token is not None else config.token
        self._lock = threading.Lock()

    @property
    def token(self) -> str | None:
        return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None

    def get_token(self, force_refresh: bool = False) -> str:
        """Return the cached token, logging in first when needed.

        Raises:
            ConfigurationError: A required setting is missing
            AuthenticationError: The login exchange failed
        """
        with self._lock:
            if self._token and not force_refresh:
                return self._token
            self._config.require()
            self._token = self._login()
            return self._token

    def _login(self) -> str:
        url = f"{self._config.base_url}{API_PREFIX}{TOKEN_PATH}"
        response = self._session.request(
            "POST",
            url,
            headers={"Content-Type": JSON_CONTENT_TYPE},
            data=json.dumps({"account": self._config.account, "password": self._config.password}),
            timeout=self._config.timeout,
        )
        text = response.text
        if not _is_success(response.status_code):
            raise AuthenticationError(f"Token request failed: {response.status_code} {text}")
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise AuthenticationError("Token response is not valid JSON") from e
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token:
            raise AuthenticationError("Token missing in response")
        logger.info("Obtained ZenTao token for account %s", self._config.account)
        return str(token)


class ZenTaoClient:
    """Thin wrapper around the ZenTao RESTful API v1 (``api.php/v1``)."""

    def __init__(
        self,
        config: ZenTaoConfig | None = None,
        session: requests.Session | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection settings; resolved from the environment when omitted
            session: HTTP session to use; a new ``requests.Session`` when omitted
            token_cache: Token cache to share; a fresh one bound to this session when omitted
        """
        self.config = config if config is not None else config_module.resolve()
        self.session = session if session is not None else requests.Session()
        self.tokens = token_cache if token_cache is not None else TokenCache(self.config, self.session)

    @property
    def account(self) -> str:
        return self.config.account

    def get_token(self, force_refresh: bool = False) -> str:
        return self.tokens.get_token(force_refresh)

    def build_url(self, path: str, query: dict[str, Any] | None = None) -> str:
        """Resolve ``path`` against the API root and append ``query``.

        Absolute ``http(s)://`` paths are used verbatim. ``None`` query values are dropped.
        """
        if _ABSOLUTE_URL_RE.match(path):
            url = path
        else:
            relative = path[1:] if path.startswith("/") else path
            url = f"{self.config.base_url}{API_PREFIX}{relative}"
        if not query:
            return url
        encoded = urlencode([(key, _query_value(value)) for key, value in query.items() if value is not None])
        return f"{url}?{encoded}" if encoded else url

    def request(
        self,
        path: str,
        method: str = "GET",
        query: dict[str, Any] | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
        force_token_refresh: bool = False,
    ) -> ApiResponse:
        """Perform an authenticated call.

        Caller headers are applied after ``Content-Type`` and ``Token`` and win on collision.

        Raises:
            ConfigurationError: A required setting is missing
            AuthenticationError: No token could be obtained
            RequestError: ZenTao answered with a non-2xx status
        """
        self.config.require()
        token = self.tokens.get_token(force_token_refresh)
        url = self.build_url(path, query)

        merged: CaseInsensitiveDict = CaseInsensitiveDict({"Content-Type": JSON_CONTENT_TYPE, TOKEN_HEADER: token})
        if headers:
            overridden = [key for key in headers if key.lower() in ("content-type", TOKEN_HEADER.lower())]
            if overridden:
                logger.warning("Caller headers override default headers: %s", ", ".join(overridden))
            merged.update(headers)

        logger.debug("%s %s", method.upper(), url)
        response = self.session.request(
            method.upper(),
            url,
            headers=dict(merged),
            data=json.dumps(body) if body is not None else None,
            timeout=self.config.timeout,
        )
        text = response.text
        try:
            data: Any = json.loads(text)
        except ValueError:
            data = text

        if not _is_success(response.status_code):
            raise RequestError(response.status_code, text, getattr(response, "reason", None))

        return ApiResponse(status_code=response.status_code, headers=dict(response.headers), data=data)

    # ==================== PROJECTS & PRODUCTS ====================

    def list_my_projects(self, keyword: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Projects where the configured account holds a role or is on the team."""
        response = self.request("projects", query={"page": 1, "limit": limit})
        projects = extract_list(response.data, ["projects"])
        return filter_projects(projects, self.account, keyword, limit)

    def search_products(self, keyword: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        response = self.request("products", query={"page": 1, "limit": limit, "keywords": keyword})
        products = extract_list(response.data, ["products"])
        return filter_products(products, keyword, limit)

    def find_product(self, name: str) -> dict[str, Any]:
        """Resolve a product by name.

        Raises:
            ProductNotFoundError: Zero or several products match
        """
        candidates = self.search_products(keyword=name, limit=PRODUCT_LOOKUP_LIMIT)
        return resolve_product(candidates, name)

    # ==================== BUGS ====================

    def list_my_bugs(
        self,
        product_id: int,
        keyword: str | None = None,
        status: str | None = None,
        all_statuses: bool = False,
        limit: int = 20,
        page: int = 1,
    ) -> tuple[list[dict[str, Any]], Any]:
        """Fetch one page of a product's bugs and keep those assigned to the configured account.

        Returns:
            Tuple of (matching bugs, raw response payload)
        """
        response = self.request(
            "bugs",
            query={"page": page, "limit": limit, "product": product_id, "keywords": keyword},
        )
        bugs = extract_list(response.data, ["bugs"])
        wanted_status = effective_bug_status(status, all_statuses=all_statuses)
        matched = filter_bugs(bugs, self.account, keyword, wanted_status, all_statuses=all_statuses)
        return matched, response.data

    def get_bug(self, bug_id: int | str) -> dict[str, Any]:
        """Bug detail with ``stepsHtml`` and the image links found in it as ``stepsImages``."""
        response = self.request(f"bugs/{bug_id}")
        bug = response.data if isinstance(response.data, dict) else {}
        steps_html = bug.get("steps") or bug.get("stepsHtml") or ""
        return {**bug, "stepsHtml": steps_html, "stepsImages": extract_image_links(steps_html)}

    def resolve_bug(self, bug_id: int, comment: str | None = None, resolution: str = "fixed") -> ApiResponse:
        body: dict[str, Any] = {"resolution": resolution}
        if comment is not None:
            body["comment"] = comment
        return self.request(f"bugs/{bug_id}/resolve", method="POST", body=body)
