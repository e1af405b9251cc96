"""
Session cookie rendering and parsing.

The identity assertion travels in the ``idToken`` cookie and the renewal
credential in ``refreshToken``. Both are ``HttpOnly``, ``SameSite=Lax`` and
scoped to ``Path=/``; ``Secure`` is only set in production so local
development can run over plain HTTP.

Cookie values are split at the first ``=`` only: a value containing ``=``
is returned intact. JWTs are ``=``-free, so token consumers treat such a
value as malformed rather than trusting it.
"""

from typing import List, Optional

ID_TOKEN_COOKIE = "idToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

# Must match the user pool token lifetimes
ID_TOKEN_MAX_AGE = 3600  # 1 hour
REFRESH_TOKEN_MAX_AGE = 604800  # 7 days


def _cookie_attributes(secure: bool) -> str:
    return f"HttpOnly; {'Secure; ' if secure else ''}SameSite=Lax; Path=/"


def render_cookie(name: str, value: str, max_age: int, secure: bool) -> str:
    """Render a single ``Set-Cookie`` header value."""
    return f"{name}={value}; {_cookie_attributes(secure)}; Max-Age={max_age}"


def render_session_cookies(
    id_token: str,
    refresh_token: str,
    secure: bool,
    id_token_max_age: int = ID_TOKEN_MAX_AGE,
    refresh_token_max_age: int = REFRESH_TOKEN_MAX_AGE
) -> List[str]:
    """
    Render the two session cookies.

    Args:
        id_token: Identity assertion
        refresh_token: Renewal credential
        secure: Whether to add the ``Secure`` attribute (production only)
        id_token_max_age: Lifetime of the identity assertion cookie in seconds
        refresh_token_max_age: Lifetime of the renewal credential cookie in seconds

    Returns:
        List of two ``Set-Cookie`` header values
    """
    return [
        render_cookie(ID_TOKEN_COOKIE, id_token, id_token_max_age, secure),
        render_cookie(REFRESH_TOKEN_COOKIE, refresh_token, refresh_token_max_age, secure),
    ]


def render_expired_cookies(secure: bool) -> List[str]:
    """Render both session cookies emptied with ``Max-Age=0`` for logout."""
    return [
        render_cookie(ID_TOKEN_COOKIE, "", 0, secure),
        render_cookie(REFRESH_TOKEN_COOKIE, "", 0, secure),
    ]


def extract_cookie(cookie_header: Optional[str], name: str) -> Optional[str]:
    """
    Extract a named cookie value from a ``Cookie`` request header.

    The first segment whose name equals ``name`` exactly wins.

    Args:
        cookie_header: Raw ``Cookie`` header, e.g. ``"a=1; idToken=xyz"``
        name: Cookie name to look for

    Returns:
        Cookie value (possibly empty), or None if the cookie is absent
    """
    if not cookie_header:
        return None

    for segment in cookie_header.split(";"):
        segment = segment.strip()
        cookie_name, sep, value = segment.partition("=")
        if sep and cookie_name == name:
            return value

    return None
