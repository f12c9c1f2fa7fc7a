from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import bleach


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied search string.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    # bleach escapes what it keeps; searches compare against raw text
    val = val.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&")
    return val.strip()


def like_pattern(query: str) -> str:
    """Substring LIKE pattern with the wildcards in `query` matched literally (escape='\\')."""
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def round_amount(value: Decimal) -> Decimal:
    # Business rule: money rounded to 2 decimals
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
