from typing import Any, Optional, Union


def gid_to_numeric_id(gid: Optional[str]) -> Optional[int]:
    """Convert Shopify GraphQL GID (e.g., gid://shopify/Product/123) to numeric id."""
    if not gid or not isinstance(gid, str):
        return None
    try:
        return int(gid.rsplit('/', 1)[-1])
    except ValueError:
        return None


def to_gid(resource: str, value: Union[str, int, None]) -> Optional[str]:
    """Build a GID from a numeric id; values that already are GIDs pass through."""
    if value is None or value == '':
        return None
    s = str(value).strip()
    if s.startswith('gid://'):
        return s
    return f"gid://shopify/{resource}/{s}"


def dig(data: Any, *keys: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing or null."""
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
