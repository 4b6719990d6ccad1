"""
Custom error classes for HubSpot Deal Analytics.
Structured error handling with error codes across all modules.

Hierarchy:
    AnalyticsError
    ├── APIError
    │   ├── APIRateLimitError
    │   └── APIAuthError
    ├── DataError
    │   ├── ConfigError
    │   └── DataFetchError
    └── ReportError

Skippable data-quality issues (a deal in an unmonitored stage, a missing
close date) are not exceptions: analyzers return a SkippedDeal instead.
"""


class AnalyticsError(Exception):
    """Base exception for all deal analytics errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- API Errors ---

class APIError(AnalyticsError):
    """Base class for external API errors."""

    def __init__(self, message: str, code: str = "API_ERROR",
                 status_code: int = None, url: str = None, **kwargs):
        self.status_code = status_code
        self.url = url
        details = {"status_code": status_code, "url": url, **kwargs}
        super().__init__(message, code=code, details=details)


class APIRateLimitError(APIError):
    """Rate limit exceeded."""

    def __init__(self, url: str, retry_after: int = None):
        msg = f"Rate limit exceeded: {url}"
        if retry_after:
            msg += f" (retry after {retry_after}s)"
        super().__init__(
            msg, code="API_RATE_LIMIT", status_code=429, url=url,
            retry_after=retry_after,
        )


class APIAuthError(APIError):
    """Authentication or authorization failure."""

    def __init__(self, url: str, status_code: int = 401):
        super().__init__(
            f"Authentication failed: {url}",
            code="API_AUTH_FAILED", url=url, status_code=status_code,
        )


# --- Data Errors ---

class DataError(AnalyticsError):
    """Base class for data processing errors."""
    pass


class ConfigError(DataError):
    """Engine configuration is unusable."""

    def __init__(self, message: str, config_path: str = None, field: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"config_path": config_path, "field": field},
        )


class DataFetchError(DataError):
    """Failed to fetch or load data from a collaborator."""

    def __init__(self, message: str, source: str = None):
        super().__init__(
            message, code="DATA_FETCH_FAILED", details={"source": source},
        )


# --- Report Errors ---

class ReportError(AnalyticsError):
    """A report could not be built or exported."""

    def __init__(self, report_type: str, message: str):
        super().__init__(
            f"{report_type} report: {message}",
            code="REPORT_FAILED", details={"report_type": report_type},
        )
