from typing import Any, Dict, List, Optional


class SyncError(Exception):
    """Base exception for all sync-related errors."""
    pass


class ConfigurationError(SyncError):
    """Raised when required settings (credentials, store) are missing."""
    pass


class InputFileError(SyncError):
    """Raised when the supplier file cannot be read or parsed."""
    pass


class RowTransformError(SyncError):
    """Raised when a single supplier row cannot be mapped to a product."""

    def __init__(self, sku: str, message: str):
        self.sku = sku
        super().__init__(f"{sku}: {message}")


class ShopifyAPIError(SyncError):
    """Raised when Shopify API calls fail."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 errors: Optional[List[Dict[str, Any]]] = None, step: Optional[str] = None):
        self.status_code = status_code
        self.errors = errors or []
        self.step = step
        super().__init__(message)


class ShopifyRateLimitError(ShopifyAPIError):
    """Raised when Shopify keeps throttling after all retries."""
    pass


class ShopifyDuplicateError(ShopifyAPIError):
    """Raised when a handle or SKU is already taken in the store."""
    pass


class ShopifyUserError(ShopifyAPIError):
    """Raised when a mutation returns userErrors."""
    pass


THROTTLED_CODES = {"THROTTLED", "MAX_COST_EXCEEDED"}
DUPLICATE_CODES = {"TAKEN", "DUPLICATE", "HANDLE_NOT_UNIQUE", "SKU_NOT_UNIQUE"}


def classify_graphql_errors(errors: List[Dict[str, Any]], step: Optional[str] = None) -> ShopifyAPIError:
    """Map top-level GraphQL ``errors`` to an exception using ``extensions.code``."""
    codes = {str((e.get('extensions') or {}).get('code') or '').upper() for e in errors}
    message = "; ".join(str(e.get('message', 'Unknown error')) for e in errors)
    if codes & THROTTLED_CODES:
        return ShopifyRateLimitError(message, errors=errors, step=step)
    return ShopifyAPIError(message, errors=errors, step=step)


def classify_user_errors(user_errors: List[Dict[str, Any]], step: Optional[str] = None) -> ShopifyUserError:
    """Map mutation ``userErrors`` to an exception using their ``code`` field."""
    codes = {str(e.get('code') or '').upper() for e in user_errors}
    message = "; ".join(
        f"{'.'.join(str(f) for f in (e.get('field') or []))}: {e.get('message', '')}".lstrip(': ')
        for e in user_errors
    )
    if codes & DUPLICATE_CODES:
        return ShopifyDuplicateError(message, errors=user_errors, step=step)
    return ShopifyUserError(message, errors=user_errors, step=step)


def classify_http_error(status_code: int, body: str, step: Optional[str] = None) -> ShopifyAPIError:
    if status_code == 429:
        return ShopifyRateLimitError(f"HTTP 429: {body}", status_code=status_code, step=step)
    if status_code == 422:
        return ShopifyUserError(f"HTTP 422: {body}", status_code=status_code, step=step)
    return ShopifyAPIError(f"HTTP {status_code}: {body}", status_code=status_code, step=step)
