"""
WhatsApp and maps deep links for subcontractor dispatch.

Numbers are normalized to the 11-digit US form WhatsApp expects
(``1`` + area code + number).  The client platform is an explicit input;
user-agent sniffing belongs to the HTTP layer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from app.core.dispatch.domain import ClientPlatform
from app.core.dispatch.messages import digits_only, encode_uri_component, google_maps_link, waze_link
from app.core.errors import InvalidPhoneFormat

WEB_LINK_PREFIX = "https://wa.me/"
APP_LINK_PREFIX = "whatsapp://send?phone="

# How long a mobile client waits for the app to open before trying the web link
FALLBACK_DELAY_MS = {
    ClientPlatform.IOS: 2000,
    ClientPlatform.ANDROID: 1500,
}

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class PhoneCheck:
    is_valid: bool
    cleaned: str
    formatted: str
    whatsapp_ready: str


@dataclass(frozen=True)
class DispatchLinks:
    """``primary`` is opened first; ``fallback`` (if any) after ``fallback_delay_ms``."""
    primary: str
    fallback: Optional[str]
    fallback_delay_ms: int
    web_link: str


def check_phone(raw: str) -> PhoneCheck:
    """Pre-dispatch validation: only 10 digits or 11 digits with a leading 1 pass."""
    cleaned = digits_only(raw)
    if len(cleaned) == 10:
        formatted = f"({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
        return PhoneCheck(True, cleaned, formatted, "1" + cleaned)
    if len(cleaned) == 11 and cleaned.startswith("1"):
        formatted = f"+1 ({cleaned[1:4]}) {cleaned[4:7]}-{cleaned[7:]}"
        return PhoneCheck(True, cleaned, formatted, cleaned)
    return PhoneCheck(False, cleaned, raw, "")


def normalize_messaging_phone(raw: str) -> str:
    """
    Normalize to 11 digits starting with ``1``.

    10 digits get a ``1`` prepended; 11 digits with another leading digit
    have it replaced by ``1``.

    Raises:
        InvalidPhoneFormat: the result is not 11 digits starting with 1.
    """
    cleaned = digits_only(raw)
    if len(cleaned) == 10:
        normalized = "1" + cleaned
    elif len(cleaned) == 11 and not cleaned.startswith("1"):
        normalized = "1" + cleaned[1:]
    else:
        normalized = cleaned

    if len(normalized) != 11 or not normalized.startswith("1"):
        raise InvalidPhoneFormat(raw)
    return normalized


def collapse_whitespace(message: str) -> str:
    return _WHITESPACE.sub(" ", message).strip()


def _encode_text(message: str) -> str:
    return quote(collapse_whitespace(message), safe="-_.!~*'()")


def to_messaging_deep_link(phone: str, message: str) -> str:
    return f"{WEB_LINK_PREFIX}{normalize_messaging_phone(phone)}?text={_encode_text(message)}"


def to_app_deep_link(phone: str, message: str) -> str:
    return f"{APP_LINK_PREFIX}{normalize_messaging_phone(phone)}&text={_encode_text(message)}"


def build_dispatch_links(phone: str, message: str, platform: ClientPlatform) -> DispatchLinks:
    """
    Mobile clients try the app scheme first and fall back to the web link;
    desktop clients go straight to WhatsApp Web.

    Raises:
        InvalidPhoneFormat: see ``normalize_messaging_phone``.
    """
    web_link = to_messaging_deep_link(phone, message)
    if platform == ClientPlatform.DESKTOP:
        return DispatchLinks(primary=web_link, fallback=None, fallback_delay_ms=0, web_link=web_link)

    return DispatchLinks(
        primary=to_app_deep_link(phone, message),
        fallback=web_link,
        fallback_delay_ms=FALLBACK_DELAY_MS[platform],
        web_link=web_link,
    )


# ---------------------------------------------------------------------------
# Navigation to the job address
# ---------------------------------------------------------------------------

GOOGLE_MAPS_APP_PREFIX = "comgooglemaps://?q="
WAZE_APP_PREFIX = "waze://?q="
APPLE_MAPS_PREFIX = "maps://?q="
ANDROID_GEO_PREFIX = "geo:0,0?q="
NAVIGATION_FALLBACK_DELAY_MS = 1500


@dataclass(frozen=True)
class NavigationLink:
    app: str
    primary: str
    fallback: Optional[str]
    fallback_delay_ms: int
    web_link: str


def _app_or_web(app: str, app_link: str, web_link: str, mobile: bool) -> NavigationLink:
    if not mobile:
        return NavigationLink(app=app, primary=web_link, fallback=None, fallback_delay_ms=0, web_link=web_link)
    return NavigationLink(
        app=app,
        primary=app_link,
        fallback=web_link,
        fallback_delay_ms=NAVIGATION_FALLBACK_DELAY_MS,
        web_link=web_link,
    )


def build_navigation_links(address: str, platform: ClientPlatform) -> list[NavigationLink]:
    """
    Map links for ``address``, in display order.

    Google Maps and Waze are offered everywhere: native scheme first on
    mobile, web only on desktop.  iOS adds Apple Maps and Android adds the
    system ``geo:`` handler, neither with a fallback.
    """
    address = address.strip()
    if not address:
        return []

    encoded = encode_uri_component(address)
    google_web = google_maps_link(address)
    mobile = platform != ClientPlatform.DESKTOP

    links = [
        _app_or_web("google_maps", GOOGLE_MAPS_APP_PREFIX + encoded, google_web, mobile),
        _app_or_web("waze", WAZE_APP_PREFIX + encoded, waze_link(address), mobile),
    ]
    if platform == ClientPlatform.IOS:
        links.append(NavigationLink("apple_maps", APPLE_MAPS_PREFIX + encoded, None, 0, google_web))
    elif platform == ClientPlatform.ANDROID:
        links.append(NavigationLink("device_default", ANDROID_GEO_PREFIX + encoded, None, 0, google_web))
    return links
