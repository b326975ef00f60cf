"""Pydantic models and exceptions for ZenTao entities."""

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


class StrictBaseModel(BaseModel):
    """Base model with strict validation that forbids extra fields.

    This ensures that typos or incorrect field names in request parameters
    are caught early with clear validation errors rather than being silently ignored.
    String fields are automatically stripped of leading/trailing whitespace.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class ResponseFormat(str, Enum):
    """Output format for tool responses.

    Attributes:
        MARKDOWN: Human-readable markdown format
        JSON: Machine-readable JSON format
    """

    MARKDOWN = "markdown"
    JSON = "json"


def _normalize_upper(v: str) -> str:
    if isinstance(v, str):
        return v.upper()
    return v


def _normalize_format(v: str) -> str:
    """Normalize response format to lowercase."""
    if isinstance(v, str):
        return v.lower()
    return v


ResponseFormatInput = Annotated[ResponseFormat, BeforeValidator(_normalize_format)]


class HttpMethod(str, Enum):
    """HTTP verbs accepted by the generic call tool."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


HttpMethodInput = Annotated[HttpMethod, BeforeValidator(_normalize_upper)]


# ==================== ERRORS ====================


class ZenTaoError(Exception):
    """Base class for failures raised while talking to ZenTao."""


class ConfigurationError(ZenTaoError):
    """Raised when a required setting is absent."""


class AuthenticationError(ZenTaoError):
    """Raised when the login exchange fails or returns no token."""


class RequestError(ZenTaoError):
    """Raised when ZenTao answers with a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by ZenTao
        body: Raw response body text
    """

    def __init__(self, status_code: int, body: str, reason: str | None = None) -> None:
        """Initialize the exception with the response details."""
        self.status_code = status_code
        self.body = body
        self.message = f"Request failed {status_code}: {body or reason or 'unknown'}"
        super().__init__(self.message)


class ProductNotFoundError(ZenTaoError, LookupError):
    """Raised when a product name resolves to zero or several products.

    Attributes:
        query: The product name that was looked up
        candidates: Products returned by the keyword search
    """

    def __init__(self, query: str, candidates: list[dict[str, Any]]) -> None:
        """Initialize the exception with the candidate list."""
        self.query = query
        self.candidates = candidates
        if not candidates:
            self.message = f'No product matched "{query}"'
        else:
            names = ", ".join(f"{p.get('id')}:{p.get('name')}" for p in candidates)
            self.message = f'Multiple products matched "{query}", please specify one of: {names}'
        super().__init__(self.message)

    @property
    def candidate_names(self) -> list[str]:
        return [str(p.get("name") or "") for p in self.candidates]


# ==================== CONFIGURATION ====================


class ZenTaoConfig(BaseModel):
    """Resolved connection settings, immutable once built."""

    model_config = ConfigDict(frozen=True)

    base_url: str = ""
    account: str = ""
    password: str = Field(default="", repr=False)
    token: str | None = Field(default=None, repr=False)
    timeout: float | None = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Drop one trailing slash so paths can be joined safely."""
        return v[:-1] if v.endswith("/") else v

    def require(self) -> None:
        """Raise ConfigurationError naming the first missing required setting."""
        if not self.base_url:
            raise ConfigurationError("Missing ZENTAO_BASE_URL")
        if not self.account:
            raise ConfigurationError("Missing ZENTAO_ACCOUNT")
        if not self.password:
            raise ConfigurationError("Missing ZENTAO_PASSWORD")

    @property
    def is_complete(self) -> bool:
        return bool(self.base_url and self.account and self.password)

    def presence(self) -> dict[str, bool]:
        """Report which variables are set, without exposing their values."""
        return {
            "ZENTAO_BASE_URL": bool(self.base_url),
            "ZENTAO_ACCOUNT": bool(self.account),
            "ZENTAO_PASSWORD": bool(self.password),
        }


# ==================== HTTP ====================


class ApiResponse(BaseModel):
    """Normalized result of an authenticated ZenTao call."""

    status_code: int = Field(description="HTTP status code")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers as received")
    data: Any = Field(default=None, description="Parsed JSON body, or the raw text when it is not JSON")


# ==================== TOOL PARAMETERS ====================


class GetTokenParams(StrictBaseModel):
    """Get token request parameters."""

    force_refresh: bool = Field(default=False, description="Ignore the cached token and log in again")


class CallParams(StrictBaseModel):
    """Generic API call parameters."""

    path: str = Field(min_length=1, description="Relative path, e.g. /projects or projects/1, or an absolute URL")
    method: HttpMethodInput = Field(default=HttpMethod.GET, description="HTTP verb")
    query: dict[str, Any] | None = Field(default=None, description="Query parameters; null values are dropped")
    body: dict[str, Any] | None = Field(default=None, description="JSON request body")
    force_token_refresh: bool = Field(default=False, description="Refresh the token before the request")


class ListMyProjectsParams(StrictBaseModel):
    """List projects related to the configured account."""

    keyword: str | None = Field(None, description="Filter by project name keyword")
    limit: int = Field(default=50, ge=1, le=500, description="Maximum projects to return (1-500)")
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.JSON, description="Output format: \"json\" (default) or \"markdown\""
    )


class SearchProductsParams(StrictBaseModel):
    """Search products by keyword."""

    keyword: str | None = Field(None, description="Keyword to match product name")
    limit: int = Field(default=20, ge=1, le=500, description="Maximum products to return (1-500)")
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.JSON, description="Output format: \"json\" (default) or \"markdown\""
    )


class GetMyBugParams(StrictBaseModel):
    """Get the first bug assigned to the configured account in a named product."""

    product_name: str = Field(min_length=1, description="Product name to match")
    keyword: str | None = Field(None, description="Keyword filter on bug title")
    status: str | None = Field(None, description="Status filter (e.g. active)")
    all_statuses: bool = Field(default=False, description="Include bugs in every status")


class GetMyBugsParams(StrictBaseModel):
    """List bugs assigned to the configured account under a product."""

    product_id: int = Field(gt=0, description="Product ID")
    keyword: str | None = Field(None, description="Keyword filter on bug title")
    status: str | None = Field(None, description="Status filter (e.g. active)")
    all_statuses: bool = Field(default=False, description="Include bugs in every status")
    limit: int = Field(default=20, ge=1, le=500, description="Maximum bugs to fetch (1-500)")
    response_format: ResponseFormatInput = Field(
        default=ResponseFormat.JSON, description="Output format: \"json\" (default) or \"markdown\""
    )


class GetNextBugParams(StrictBaseModel):
    """Find the next bug assigned to the configured account under a product."""

    product_id: int = Field(gt=0, description="Product ID")
    keyword: str | None = Field(None, description="Keyword filter on bug title")
    status: str | None = Field(None, description="Status filter (e.g. active)")
    max_pages: int = Field(default=10, ge=1, le=100, description="Maximum pages of 20 bugs to scan (1-100)")


class GetBugStatsParams(StrictBaseModel):
    """Bug statistics request parameters."""

    product_id: int = Field(gt=0, description="Product ID")
    active_only: bool = Field(default=False, description="Only count active bugs")


class GetBugDetailParams(StrictBaseModel):
    """Bug detail request parameters."""

    bug_id: int = Field(gt=0, description="Bug ID")


class MarkBugResolvedParams(StrictBaseModel):
    """Resolve bug request parameters."""

    bug_id: int = Field(gt=0, description="Bug ID")
    comment: str | None = Field(None, description="Resolution comment", max_length=10000)
    resolution: str = Field(default="fixed", description="Resolution type (fixed, bydesign, duplicate, ...)")


# ==================== RESULTS ====================


class BugStats(BaseModel):
    """Counts of bugs assigned to the configured account."""

    product_id: int = Field(description="Product the counts belong to")
    total: int = Field(description="Number of bugs assigned to the account")
    active: int = Field(description="Number of those bugs in the active status")
