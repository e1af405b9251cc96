# Utilities module

from .cookies import (
    ID_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    extract_cookie,
    render_expired_cookies,
    render_session_cookies,
)
from .phone import is_e164, mask_phone

__all__ = [
    "ID_TOKEN_COOKIE",
    "REFRESH_TOKEN_COOKIE",
    "extract_cookie",
    "render_expired_cookies",
    "render_session_cookies",
    "is_e164",
    "mask_phone",
]
