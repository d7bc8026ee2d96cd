class MarketplaceError(Exception):
    """Base for failures surfaced by the meshok.net session layer."""

    def __init__(self, message: str, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class MarketplaceTimeoutError(MarketplaceError):
    """Transport failure (timeout, connection reset) that outlived every retry."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Request to {url} timed out after {attempts} attempts", url)
        self.attempts = attempts


class MarketplaceHTTPError(MarketplaceError):
    """Upstream kept answering with a non-success status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"Request to {url} failed with status code {status_code}", url)
        self.status_code = status_code


class MarketplaceBlockedError(MarketplaceHTTPError):
    """Upstream kept answering 403 Forbidden (anti-bot block)."""


class MarketplaceResponseError(MarketplaceError):
    """Response body could not be parsed into the expected payload."""


class MarketplaceRequestError(MarketplaceError):
    """Request failed outside transport and status handling (redirect loop, undecodable body)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Request to {url} failed: {reason}", url)
        self.reason = reason
