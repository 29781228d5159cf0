"""Text sanitization for diner-supplied free text."""

import html


def sanitize_text(value: str | None) -> str | None:
    """HTML-escape user text (special instructions, feedback comments).

    Staff dashboards render these strings, so they are escaped once on the
    way in. Surrounding whitespace is dropped and blank strings become None
    so that "" and "   " merge with "no instructions" in the cart.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        # Left for the field type check to reject
        return value
    value = value.strip()
    if not value:
        return None
    return html.escape(value, quote=True)
