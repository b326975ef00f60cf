"""ZenTao MCP Server implementation."""

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import requests  # type: ignore[import-untyped]
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from starlette.requests import Request
from starlette.responses import JSONResponse

from .client import ZenTaoClient
from .config import resolve as resolve_config
from .filters import DEFAULT_BUG_STATUS, extract_list, matches_status
from .models import (
    BugStats,
    CallParams,
    GetBugDetailParams,
    GetBugStatsParams,
    GetMyBugParams,
    GetMyBugsParams,
    GetNextBugParams,
    GetTokenParams,
    ListMyProjectsParams,
    MarkBugResolvedParams,
    ResponseFormat,
    SearchProductsParams,
    ZenTaoConfig,
    ZenTaoError,
)

# Configure logging
logger = logging.getLogger(__name__)

# Constants
CHARACTER_LIMIT = 25000  # Maximum response size per MCP best practices
BUG_PAGE_SIZE = 20
DEFAULT_MAX_BUG_PAGES = 10
BUG_STATS_FETCH_LIMIT = 200
PROJECT_RESOURCE_LIMIT = 100
PAGE_SUMMARY_KEYS = ("page", "total", "limit")

ENDPOINT_INDEX = """ZenTao RESTful API v1 (api.php/v1)
- Token: POST /tokens { account, password } -> { token }
- Departments: GET /departments, GET /departments/{id}
- Users: GET /users, GET /users/{id}, PUT /users/{id}, DELETE /users/{id}, POST /users
- Program: GET /programs, POST /programs, PUT /programs/{id}, GET /programs/{id}, DELETE /programs/{id}
- Products: GET /products, POST /products, GET /products/{id}, PUT /products/{id}, DELETE /products/{id}
- Product Plans: GET /products/{productID}/plans, POST /products/{productID}/plans, GET/PUT/DELETE /productplans/{id}, relations: POST/DELETE /productplans/{id}/stories, /productplans/{id}/bugs
- Releases: GET /products/{productID}/releases, GET /projects/{projectID}/releases
- Stories: GET /stories?product= /project= /execution=, POST /stories, GET/PUT/DELETE /stories/{id}, POST /stories/{id}/close
- Projects: GET /projects, POST /projects, GET/PUT/DELETE /projects/{id}
- Builds/Versions: GET /projects/{id}/builds, GET /executions/{id}/builds, POST /builds, GET/PUT/DELETE /builds/{id}
- Executions: GET /projects/{id}/executions, POST /executions, GET/PUT/DELETE /executions/{id}
- Tasks: GET /executions/{id}/tasks, POST /tasks, GET/PUT/DELETE /tasks/{id}, state: start/pause/continue/finish/close, logs: POST /tasks/{id}/efforts, GET /tasks/{id}/efforts
- Bugs: GET /products/{id}/bugs, POST /bugs, GET/PUT/DELETE /bugs/{id}, state: confirm/close/activate/resolve
- Cases: GET /products/{id}/cases, POST /cases, GET/PUT/DELETE /cases/{id}, POST /cases/{id}/results
- Test Runs: GET /testsuites/{id}/runs, GET /projects/{id}/testtasks, GET /testtasks/{id}
- Feedback: POST /feedback, PUT /feedback/{id}/assign, PUT /feedback/{id}/close, DELETE /feedback/{id}, PUT /feedback/{id}, GET /feedback/{id}, GET /feedback
- Tickets: GET /tickets, GET /tickets/{id}, PUT /tickets/{id}, POST /tickets, DELETE /tickets/{id}

Docs index: https://www.zentao.net/book/api.html (RESTful v1 section 2.x)."""


# Tool annotation constants
def _read_only_annotations(title: str) -> ToolAnnotations:
    """Create read-only tool annotations with title."""
    return ToolAnnotations(
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
        title=title,
    )


def _write_annotations(title: str) -> ToolAnnotations:
    """Create write tool annotations with title."""
    return ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
        title=title,
    )


def _destructive_write_annotations(title: str) -> ToolAnnotations:
    """Create destructive write tool annotations with title."""
    return ToolAnnotations(
        readOnlyHint=False,
        destructiveHint=True,
        idempotentHint=False,
        openWorldHint=True,
        title=title,
    )


def _display(value: object) -> str:
    """Render a ZenTao field that may be an account string or an expanded user object.

    Args:
        value: The value to render (dict, scalar, or None)

    Returns:
        A readable name or "N/A"
    """
    if isinstance(value, dict):
        for key in ("realname", "realName", "account", "name", "id"):
            if value.get(key):
                return str(value[key])
        return "N/A"
    if value is None or value == "":
        return "N/A"
    return str(value)


def _bug_id(bug: dict[str, Any]) -> Any:
    return bug.get("id") or bug.get("bugId")


def _summarize_page(raw: Any) -> dict[str, Any]:
    """Reduce a raw ZenTao list payload to its paging fields."""
    summary = {key: raw[key] for key in PAGE_SUMMARY_KEYS if key in raw} if isinstance(raw, dict) else {}
    summary["omitted"] = True
    return summary


def _serialize_json(obj: Any, *, use_compact: bool = False) -> str:
    """Serialize JSON object with appropriate formatting.

    Args:
        obj: Object to serialize
        use_compact: If True, use compact format; otherwise use indented format

    Returns:
        JSON string
    """
    if use_compact:
        return json.dumps(obj, separators=(",", ":"), default=str, ensure_ascii=False)
    return json.dumps(obj, indent=2, default=str, ensure_ascii=False)


def _find_list_key(obj: dict[str, Any]) -> str | None:
    """Return the first top-level key holding a list."""
    for key, value in obj.items():
        if isinstance(value, list):
            return key
    return None


def _find_max_items_for_limit(
    obj: dict[str, Any], key: str, original_items: list[Any], limit: int, *, use_compact: bool
) -> int:
    """Binary search to find max items that fit under limit.

    Args:
        obj: JSON object to truncate
        key: Key of the list being shrunk
        original_items: Original list
        limit: Character limit
        use_compact: Whether to use compact JSON format

    Returns:
        Maximum number of items that fit
    """
    left, right = 0, len(original_items)
    while left < right:
        mid = (left + right + 1) // 2
        obj[key] = original_items[:mid]
        if len(_serialize_json(obj, use_compact=use_compact)) <= limit:
            left = mid
        else:
            right = mid - 1
    return left


def _truncate_json_response(content: str, obj: dict[str, Any], key: str, limit: int) -> str:
    """Truncate JSON response preserving validity.

    Args:
        content: Original content string
        obj: Parsed JSON object
        key: Key of the list to shrink
        limit: Character limit

    Returns:
        Truncated JSON string
    """
    original_size = len(content)
    use_compact = original_size > limit * 1.2

    original_items = obj[key]
    max_items = _find_max_items_for_limit(obj, key, original_items, limit, use_compact=use_compact)
    obj[key] = original_items[:max_items]

    meta = obj.setdefault("_meta", {})
    meta.update(
        {
            "truncated": True,
            "original_size": original_size,
            "original_count": len(original_items),
            "limit": limit,
            "note": "Response truncated; lower the limit or add a keyword filter.",
        }
    )

    # Ensure final JSON (including metadata) fits under limit
    json_str = _serialize_json(obj, use_compact=use_compact)
    while obj[key] and len(json_str) > limit:
        obj[key].pop()
        json_str = _serialize_json(obj, use_compact=use_compact)

    return json_str


def _truncate_text_response(content: str, limit: int) -> str:
    """Truncate plaintext/markdown response with warning.

    Args:
        content: Original content
        limit: Character limit

    Returns:
        Truncated content with warning message
    """
    truncated = content[:limit]
    truncated += "\n\n⚠️ **Response Truncated**\n"
    truncated += f"Response size ({len(content)} chars) exceeds limit ({limit} chars).\n"
    truncated += "Lower the limit or add a keyword filter to see the rest."
    return truncated


def truncate_response(content: str, limit: int = CHARACTER_LIMIT) -> str:
    """Truncate response with helpful message if over limit.

    JSON objects holding a top-level list stay valid: the list is shrunk and a
    ``_meta`` block is added. Anything else gets a plaintext truncation warning.

    Args:
        content: The content to potentially truncate
        limit: Maximum character limit (default: CHARACTER_LIMIT)

    Returns:
        Original content if under limit, truncated content otherwise
    """
    if len(content) <= limit:
        return content

    if content.lstrip().startswith("{"):
        try:
            obj = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug("Failed to parse/truncate JSON response: %s", e, exc_info=True)
        else:
            key = _find_list_key(obj) if isinstance(obj, dict) else None
            if key is not None:
                return _truncate_json_response(content, obj, key, limit)

    return _truncate_text_response(content, limit)


def _format_projects_markdown(projects: list[dict[str, Any]], query_info: str) -> str:
    """Format projects as markdown for human readability.

    Args:
        projects: Projects to format
        query_info: Description of the query

    Returns:
        Markdown-formatted string
    """
    lines = [f"# Projects: {query_info}", ""]
    lines.append(f"Found {len(projects)} project(s)")
    lines.append("")

    for project in projects:
        lines.append(f"## {project.get('name') or 'Unnamed project'}")
        lines.append(f"- **ID**: {project.get('id', 'N/A')}")
        lines.append(f"- **Status**: {_display(project.get('status'))}")
        lines.append(f"- **PM**: {_display(project.get('PM'))}")
        if project.get("begin") or project.get("end"):
            lines.append(f"- **Schedule**: {project.get('begin') or '?'} → {project.get('end') or '?'}")
        lines.append("")

    return "\n".join(lines)


def _format_products_markdown(products: list[dict[str, Any]], query_info: str) -> str:
    lines = [f"# Products: {query_info}", ""]
    lines.append(f"Found {len(products)} product(s)")
    lines.append("")

    for product in products:
        lines.append(f"- **{product.get('name') or 'Unnamed product'}** (ID: {product.get('id', 'N/A')})")

    return "\n".join(lines)


def _format_bugs_markdown(bugs: list[dict[str, Any]], query_info: str) -> str:
    """Format bugs as markdown for human readability.

    Args:
        bugs: Bugs to format
        query_info: Description of the query

    Returns:
        Markdown-formatted string
    """
    lines = [f"# Bugs: {query_info}", ""]
    lines.append(f"Found {len(bugs)} bug(s)")
    lines.append("")

    for bug in bugs:
        lines.append(f"## Bug #{_bug_id(bug)} - {bug.get('title') or bug.get('name') or 'Untitled'}")
        lines.append(f"- **Status**: {_display(bug.get('status') or bug.get('state'))}")
        lines.append(f"- **Severity**: {_display(bug.get('severity'))}")
        lines.append(f"- **Priority**: {_display(bug.get('pri'))}")
        lines.append(f"- **Assigned To**: {_display(bug.get('assignedTo'))}")
        lines.append(f"- **Opened**: {_display(bug.get('openedDate'))}")
        lines.append("")

    return "\n".join(lines)


def _handle_api_error(e: Exception, context: str = "operation") -> str:
    """Format errors with actionable guidance for LLM agents.

    Args:
        e: The exception that occurred
        context: Description of what was being attempted

    Returns:
        Formatted error message with guidance
    """
    error_msg = str(e).lower()

    if "missing zentao_" in error_msg:
        return f"Error: Configuration incomplete for {context}. {e}"

    if "token" in error_msg and ("missing" in error_msg or "request failed" in error_msg):
        return f"Error: Login failed for {context}. Check ZENTAO_ACCOUNT and ZENTAO_PASSWORD."

    if "unauthorized" in error_msg or "401" in error_msg:
        return f"Error: Authentication failed for {context}. The token may have expired; retry with a forced refresh."

    if "forbidden" in error_msg or "403" in error_msg:
        return f"Error: Permission denied for {context}. Your account lacks access to this resource."

    if "not found" in error_msg or "404" in error_msg:
        return f"Error: Resource not found during {context}. Please verify the ID is correct and you have access."

    if "timeout" in error_msg:
        return f"Error: Request timeout during {context}. The server may be slow - try again or reduce the scope."

    if "connection" in error_msg or "network" in error_msg:
        return f"Error: Network issue during {context}. Check ZENTAO_BASE_URL is correct and the server is reachable."

    # Generic error with type information
    return f"Error during {context}: {type(e).__name__} - {e}"


def _format_config_report(config: ZenTaoConfig, token_cached: bool) -> str:
    """List which settings are present; values are never included."""
    lines = [f"{name}: {'set' if present else 'missing'}" for name, present in config.presence().items()]
    lines.append(f"ZENTAO_TOKEN: {'set (cached)' if token_cached else 'not cached'}")
    return "\n".join(lines)


class ZenTaoMCPServer:
    """ZenTao MCP Server with proper client lifecycle management."""

    def __init__(self, host: str = "127.0.0.1", port: int = 8000) -> None:
        """Initialize the server.

        Args:
            host: Host to bind for HTTP transport (default: 127.0.0.1)
            port: Port to bind for HTTP transport (default: 8000)
        """
        self.client: ZenTaoClient | None = None
        # Create FastMCP with lifespan configured
        self.mcp = FastMCP("zentao_mcp", host=host, port=port, lifespan=self._create_lifespan())
        self._setup_tools()
        self._setup_resources()

    def _create_lifespan(self) -> Any:
        """Create the lifespan context manager for the server."""

        @asynccontextmanager
        async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
            """Initialize resources on startup and cleanup on shutdown."""
            await self.initialize()
            try:
                yield
            finally:
                if self.client is not None:
                    self.client.session.close()
                    self.client = None
                    logger.info("ZenTao client cleaned up")

        return lifespan

    def get_client(self) -> ZenTaoClient:
        """Get the ZenTao client, ensuring it's initialized."""
        if not self.client:
            raise RuntimeError("ZenTao client not initialized")
        return self.client

    async def initialize(self) -> None:
        """Resolve configuration and build the ZenTao client on server startup.

        Missing settings are only reported here; they fail the first authenticated call.
        """
        config = resolve_config()
        missing = [name for name, present in config.presence().items() if not present]
        if missing:
            logger.warning("ZenTao configuration incomplete, missing: %s", ", ".join(missing))

        try:
            self.client = ZenTaoClient(config)
        except Exception:
            logger.exception("Failed to initialize ZenTao client")
            raise
        logger.info("ZenTao client initialized for %s", config.base_url or "<unset base URL>")

    def _setup_tools(self) -> None:
        """Register all tools with the MCP server."""
        self._setup_api_tools()
        self._setup_project_tools()
        self._setup_bug_tools()

    def _setup_api_tools(self) -> None:
        """Register the token and generic call tools."""

        @self.mcp.tool(annotations=_read_only_annotations("Get ZenTao Token"))
        def zentao_get_token(params: GetTokenParams) -> str:
            """Fetch a ZenTao session token via POST /tokens using ZENTAO_ACCOUNT/ZENTAO_PASSWORD.

            Args:
                params (GetTokenParams): Validated parameters containing:
                    - force_refresh (bool): Ignore the cached token and log in again (default: False)

            Returns:
                str: "token=<value>"

            Examples:
                - Use when: A call failed with 401 -> force_refresh=True
                - Don't use when: Calling the API (zentao_call attaches the token itself)

            Note:
                The token is cached in memory for the lifetime of the server.
            """
            client = self.get_client()
            return f"token={client.get_token(params.force_refresh)}"

        @self.mcp.tool(annotations=_destructive_write_annotations("Call ZenTao API"))
        def zentao_call(params: CallParams) -> str:
            """Call any ZenTao RESTful API v1 endpoint (api.php/v1) with the Token header attached.

            Args:
                params (CallParams): Validated parameters containing:
                    - path (str): Relative path such as /projects or projects/1, or an absolute URL (required)
                    - method (str): GET, POST, PUT, PATCH or DELETE (default: GET)
                    - query (dict | None): Query parameters; null values are dropped
                    - body (dict | None): JSON request body
                    - force_token_refresh (bool): Log in again before the request (default: False)

            Returns:
                str: JSON response envelope:

                ```json
                {
                    "status_code": 200,
                    "headers": {"Content-Type": "application/json"},
                    "data": {"page": 1, "total": 3, "projects": [...]}
                }
                ```

            Examples:
                - Use when: "List departments" -> path="/departments"
                - Use when: "Close story 12" -> path="stories/12/close", method="POST"
                - Don't use when: Listing your own projects or bugs (use the dedicated tools)

            Error Handling:
                - Raises RequestError with status and body for non-2xx responses
                - Non-JSON bodies are returned as raw text in "data"
                - See the zentao://endpoints resource for the endpoint summary
            """
            client = self.get_client()
            response = client.request(
                params.path,
                method=params.method.value,
                query=params.query,
                body=params.body,
                force_token_refresh=params.force_token_refresh,
            )
            return truncate_response(_serialize_json(response.model_dump()))

    def _setup_project_tools(self) -> None:
        """Register project and product tools."""

        @self.mcp.tool(annotations=_read_only_annotations("List My Projects"))
        def zentao_list_my_projects(params: ListMyProjectsParams) -> str:
            """List projects related to the configured account (PM/PO/QD/RD/opened/edited/assigned/team).

            Args:
                params (ListMyProjectsParams): Validated parameters containing:
                    - keyword (str | None): Filter by project name keyword
                    - limit (int): Maximum projects, 1-500 (default: 50)
                    - response_format (ResponseFormat): "json" (default) or "markdown"

            Returns:
                str: {"projects": [...]} in JSON, or a markdown listing

            Examples:
                - Use when: "What projects am I on?"
                - Use when: "Find my payment project" -> keyword="payment"
            """
            client = self.get_client()
            projects = client.list_my_projects(keyword=params.keyword, limit=params.limit)

            if params.response_format == ResponseFormat.MARKDOWN:
                query_info = f"keyword='{params.keyword}'" if params.keyword else f"account '{client.account}'"
                result = _format_projects_markdown(projects, query_info)
            else:
                result = _serialize_json({"projects": projects})

            return truncate_response(result)

        @self.mcp.tool(annotations=_read_only_annotations("Search Products"))
        def zentao_search_products(params: SearchProductsParams) -> str:
            """Search products by keyword; returns a short list of products.

            Args:
                params (SearchProductsParams): Validated parameters containing:
                    - keyword (str | None): Keyword to match product name
                    - limit (int): Maximum products, 1-500 (default: 20)
                    - response_format (ResponseFormat): "json" (default) or "markdown"

            Returns:
                str: {"products": [...]} in JSON, or a markdown listing

            Note:
                Use the product 'id' from the results for zentao_get_my_bugs and zentao_get_next_bug.
            """
            client = self.get_client()
            products = client.search_products(keyword=params.keyword, limit=params.limit)

            if params.response_format == ResponseFormat.MARKDOWN:
                query_info = f"keyword='{params.keyword}'" if params.keyword else "All products"
                result = _format_products_markdown(products, query_info)
            else:
                result = _serialize_json({"products": products})

            return truncate_response(result)

    def _find_first_bug(
        self,
        client: ZenTaoClient,
        product_id: int,
        keyword: str | None,
        status: str | None,
        *,
        all_statuses: bool = False,
        max_pages: int = DEFAULT_MAX_BUG_PAGES,
    ) -> dict[str, Any] | None:
        """Scan pages of a product's bugs for the first one assigned to the configured account.

        Args:
            client: ZenTao client instance
            product_id: Product to scan
            keyword: Optional title keyword
            status: Optional status filter
            all_statuses: Accept every status
            max_pages: Pages of BUG_PAGE_SIZE bugs to scan at most

        Returns:
            Bug detail of the first match, or None
        """
        for page in range(1, max_pages + 1):
            bugs, raw = client.list_my_bugs(
                product_id,
                keyword=keyword,
                status=status,
                all_statuses=all_statuses,
                limit=BUG_PAGE_SIZE,
                page=page,
            )
            if bugs:
                return client.get_bug(_bug_id(bugs[0]))
            if len(extract_list(raw, ["bugs"])) < BUG_PAGE_SIZE:
                return None

        logger.warning(
            "No matching bug in the first %d page(s) of product %s; later pages were not scanned",
            max_pages,
            product_id,
        )
        return None

    def _setup_bug_tools(self) -> None:
        """Register bug tools."""

        @self.mcp.tool(annotations=_read_only_annotations("Get My Bug"))
        def zentao_get_my_bug(params: GetMyBugParams) -> str:
            """Get the first bug assigned to me in a product looked up by name, with full detail.

            Args:
                params (GetMyBugParams): Validated parameters containing:
                    - product_name (str): Product name to match (required)
                    - keyword (str | None): Keyword filter on bug title
                    - status (str | None): Status filter (default: active)
                    - all_statuses (bool): Include bugs in every status (default: False)

            Returns:
                str: {"product": {"id", "name"}, "bug": {..., "stepsHtml", "stepsImages"}}
                     or a message when no bug matches

            Error Handling:
                - Raises ProductNotFoundError when no product, or several products without an
                  exact name match, are found; the message lists "id:name" candidates
            """
            client = self.get_client()
            product = client.find_product(params.product_name)
            if product.get("id") is None:
                name = product.get("name") or params.product_name
                raise ZenTaoError(f'Product "{name}" has no id in the ZenTao response')
            bug = self._find_first_bug(
                client,
                product["id"],
                params.keyword,
                params.status,
                all_statuses=params.all_statuses,
            )
            if bug is None:
                label = "matching" if params.all_statuses else (params.status or DEFAULT_BUG_STATUS)
                return f'No {label} bugs assigned to {client.account or "me"} in product "{product.get("name")}"'

            return truncate_response(
                _serialize_json({"product": {"id": product.get("id"), "name": product.get("name")}, "bug": bug})
            )

        @self.mcp.tool(annotations=_read_only_annotations("Get My Bugs"))
        def zentao_get_my_bugs(params: GetMyBugsParams) -> str:
            """List bugs assigned to me under a product. Defaults to active bugs only.

            Args:
                params (GetMyBugsParams): Validated parameters containing:
                    - product_id (int): Product ID (required)
                    - keyword (str | None): Keyword filter on bug title
                    - status (str | None): Status filter (default: active)
                    - all_statuses (bool): Include bugs in every status (default: False)
                    - limit (int): Bugs fetched from ZenTao, 1-500 (default: 20)
                    - response_format (ResponseFormat): "json" (default) or "markdown"

            Returns:
                str: {"bugs": [...], "raw": <ZenTao payload>} in JSON, or a markdown listing

            Note:
                Filtering happens after fetching one page of `limit` bugs; use zentao_get_next_bug
                to scan further pages.
            """
            client = self.get_client()
            bugs, raw = client.list_my_bugs(
                params.product_id,
                keyword=params.keyword,
                status=params.status,
                all_statuses=params.all_statuses,
                limit=params.limit,
            )

            if params.response_format == ResponseFormat.MARKDOWN:
                result = _format_bugs_markdown(bugs, f"product {params.product_id}, assigned to {client.account}")
            else:
                result = _serialize_json({"bugs": bugs, "raw": raw})
                if len(result) > CHARACTER_LIMIT:
                    # drop the unfiltered page before any matched bug
                    result = _serialize_json({"bugs": bugs, "raw": _summarize_page(raw)})

            return truncate_response(result)

        @self.mcp.tool(annotations=_read_only_annotations("Get Next Bug"))
        def zentao_get_next_bug(params: GetNextBugParams) -> str:
            """Get the next active bug assigned to me under a product (first match), with full detail.

            Args:
                params (GetNextBugParams): Validated parameters containing:
                    - product_id (int): Product ID (required)
                    - keyword (str | None): Keyword filter on bug title
                    - status (str | None): Status filter (default: active)
                    - max_pages (int): Pages of 20 bugs to scan, 1-100 (default: 10)

            Returns:
                str: {"bug": {..., "stepsHtml", "stepsImages"}} or a message when nothing matches

            Note:
                Bugs beyond max_pages pages are not scanned; raise max_pages for large products.
            """
            client = self.get_client()
            bug = self._find_first_bug(
                client, params.product_id, params.keyword, params.status, max_pages=params.max_pages
            )
            if bug is None:
                label = params.status or DEFAULT_BUG_STATUS
                return f"No {label} bugs assigned to {client.account or 'me'} found under product {params.product_id}"

            return truncate_response(_serialize_json({"bug": bug}))

        @self.mcp.tool(annotations=_read_only_annotations("Get Bug Statistics"))
        def zentao_get_bug_stats(params: GetBugStatsParams) -> BugStats:
            """Get counts of bugs assigned to me under a product (total and active).

            Args:
                params (GetBugStatsParams): Validated parameters containing:
                    - product_id (int): Product ID (required)
                    - active_only (bool): Only count active bugs (default: False)

            Returns:
                BugStats: {"product_id": 1, "total": 12, "active": 5}

            Note:
                Counts are taken from the first 200 bugs of the product.
            """
            client = self.get_client()
            bugs, _ = client.list_my_bugs(
                params.product_id,
                all_statuses=not params.active_only,
                limit=BUG_STATS_FETCH_LIMIT,
            )
            active = sum(1 for bug in bugs if matches_status(bug, DEFAULT_BUG_STATUS))
            logger.info("Bug stats for product %s: total=%d active=%d", params.product_id, len(bugs), active)
            return BugStats(product_id=params.product_id, total=len(bugs), active=active)

        @self.mcp.tool(annotations=_read_only_annotations("Get Bug Detail"))
        def zentao_get_bug_detail(params: GetBugDetailParams) -> str:
            """Get bug detail by ID; image URLs in the steps HTML are extracted into stepsImages.

            Args:
                params (GetBugDetailParams): Validated parameters containing:
                    - bug_id (int): Bug ID (required)

            Returns:
                str: {"bug": {..., "stepsHtml": "<p>...</p>", "stepsImages": ["https://..."]}}
            """
            client = self.get_client()
            bug = client.get_bug(params.bug_id)
            return truncate_response(_serialize_json({"bug": bug}))

        @self.mcp.tool(annotations=_write_annotations("Mark Bug Resolved"))
        def zentao_mark_bug_resolved(params: MarkBugResolvedParams) -> str:
            """Mark a bug as resolved (resolution=fixed by default).

            Args:
                params (MarkBugResolvedParams): Validated parameters containing:
                    - bug_id (int): Bug ID (required)
                    - comment (str | None): Resolution comment
                    - resolution (str): Resolution type (default: "fixed")

            Returns:
                str: JSON response envelope of POST bugs/{id}/resolve
            """
            client = self.get_client()
            response = client.resolve_bug(params.bug_id, comment=params.comment, resolution=params.resolution)
            logger.info("Resolved bug %s as %s", params.bug_id, params.resolution)
            return _serialize_json(response.model_dump())

    def _setup_resources(self) -> None:
        """Register all resources with the MCP server."""

        @self.mcp.resource("zentao://endpoints", name="endpoints", mime_type="text/plain")
        def get_endpoints_resource() -> str:
            """ZenTao RESTful v1 endpoints summary."""
            return ENDPOINT_INDEX

        @self.mcp.resource("zentao://config", name="config", mime_type="text/plain")
        def get_config_resource() -> str:
            """Current ZenTao configuration state (variable names only, never values)."""
            if self.client is not None:
                return _format_config_report(self.client.config, bool(self.client.tokens.token))
            # environment only; reading the dotenv and shell files would write into os.environ
            return _format_config_report(resolve_config(paths=[]), token_cached=False)

        @self.mcp.resource("zentao://projects", name="projects", mime_type="application/json")
        def get_projects_resource() -> str:
            """Projects related to the configured account."""
            client = self.get_client()
            try:
                projects = client.list_my_projects(limit=PROJECT_RESOURCE_LIMIT)
            except (requests.exceptions.RequestException, ZenTaoError) as e:
                return _handle_api_error(e, context="listing projects")
            return truncate_response(_serialize_json({"projects": projects}))


# Create the server instance with host/port from environment
# This allows HTTP transport to bind to the configured address
_host = os.getenv("MCP_HOST", "127.0.0.1")
_port = int(os.getenv("MCP_PORT", "8000"))
server = ZenTaoMCPServer(host=_host, port=_port)

# Export the MCP server instance
mcp = server.mcp


# Health check endpoint for HTTP transport
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:  # noqa: ARG001
    """Health check endpoint for HTTP transport.

    Args:
        request: The incoming HTTP request (required by FastMCP).

    Returns:
        JSONResponse with health status.
    """
    return JSONResponse({"status": "healthy", "transport": "http"})


def _configure_logging() -> None:
    """Configure logging from environment variable.

    Reads LOG_LEVEL environment variable (default: INFO) and configures
    the root logger. Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL.
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

    if log_level_str not in valid_levels:
        invalid_level = log_level_str  # Store before resetting
        log_level_str = "INFO"
        logger.warning(
            "Invalid LOG_LEVEL '%s', defaulting to INFO. Valid values: %s",
            invalid_level,
            ", ".join(sorted(valid_levels)),
        )

    log_level = getattr(logging, log_level_str)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Add handler if none exists
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root_logger.addHandler(handler)


def main() -> None:
    """Main entry point for the server."""
    _configure_logging()
    mcp.run()
