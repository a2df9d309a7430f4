# tests/test_deeplinks.py
"""Tests for app/core/dispatch/deeplinks.py: phone normalization and WhatsApp links."""
from __future__ import annotations

import pytest

from app.core.dispatch.deeplinks import (
    build_dispatch_links,
    build_navigation_links,
    check_phone,
    normalize_messaging_phone,
    to_app_deep_link,
    to_messaging_deep_link,
)
from app.core.dispatch.domain import ClientPlatform
from app.core.errors import InvalidPhoneFormat, ValidationError


class TestNormalizeMessagingPhone:
    @pytest.mark.parametrize("raw", ["5551234567", "(555) 123-4567", "555.123.4567"])
    def test_ten_digits_get_country_code(self, raw):
        assert normalize_messaging_phone(raw) == "15551234567"

    def test_eleven_digits_with_one_unchanged(self):
        assert normalize_messaging_phone("+1 (555) 123-4567") == "15551234567"

    def test_eleven_digits_leading_digit_replaced(self):
        assert normalize_messaging_phone("25551234567") == "15551234567"

    @pytest.mark.parametrize("raw", ["", "12345", "555123456789", "call me"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidPhoneFormat) as exc_info:
            normalize_messaging_phone(raw)
        assert exc_info.value.phone == raw
        assert exc_info.value.detail == f"Invalid phone number format: {raw}. Expected US format."

    def test_invalid_phone_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            normalize_messaging_phone("123")


class TestDeepLinks:
    def test_web_link_collapses_and_encodes(self):
        link = to_messaging_deep_link("5551234567", "  Hello   there\n\nJob-1 (test)!  ")
        assert link == "https://wa.me/15551234567?text=Hello%20there%20Job-1%20(test)!"

    def test_app_link(self):
        link = to_app_deep_link("5551234567", "Hi & bye")
        assert link == "whatsapp://send?phone=15551234567&text=Hi%20%26%20bye"

    def test_emoji_is_percent_encoded(self):
        link = to_messaging_deep_link("5551234567", "🔧 NEW JOB")
        assert link.endswith("?text=%F0%9F%94%A7%20NEW%20JOB")


class TestBuildDispatchLinks:
    def test_ios_prefers_app_with_2s_fallback(self):
        links = build_dispatch_links("5551234567", "Hi", ClientPlatform.IOS)
        assert links.primary == "whatsapp://send?phone=15551234567&text=Hi"
        assert links.fallback == "https://wa.me/15551234567?text=Hi"
        assert links.fallback_delay_ms == 2000
        assert links.web_link == links.fallback

    def test_android_fallback_delay(self):
        links = build_dispatch_links("5551234567", "Hi", ClientPlatform.ANDROID)
        assert links.primary.startswith("whatsapp://send?")
        assert links.fallback_delay_ms == 1500

    def test_desktop_opens_web_directly(self):
        links = build_dispatch_links("5551234567", "Hi", ClientPlatform.DESKTOP)
        assert links.primary == "https://wa.me/15551234567?text=Hi"
        assert links.fallback is None
        assert links.fallback_delay_ms == 0

    def test_bad_phone_raises(self):
        with pytest.raises(InvalidPhoneFormat):
            build_dispatch_links("911", "Hi", ClientPlatform.IOS)


class TestCheckPhone:
    def test_ten_digits(self):
        check = check_phone("555-123-4567")
        assert check.is_valid
        assert check.cleaned == "5551234567"
        assert check.formatted == "(555) 123-4567"
        assert check.whatsapp_ready == "15551234567"

    def test_eleven_digits(self):
        check = check_phone("15551234567")
        assert check.is_valid
        assert check.formatted == "+1 (555) 123-4567"
        assert check.whatsapp_ready == "15551234567"

    def test_invalid_keeps_raw(self):
        check = check_phone("25551234567")
        assert not check.is_valid
        assert check.formatted == "25551234567"
        assert check.whatsapp_ready == ""


class TestBuildNavigationLinks:
    def test_desktop_gets_web_links_only(self):
        links = build_navigation_links("5 Elm Rd", ClientPlatform.DESKTOP)
        assert [(n.app, n.primary, n.fallback) for n in links] == [
            ("google_maps", "https://www.google.com/maps/search/?api=1&query=5%20Elm%20Rd", None),
            ("waze", "https://waze.com/ul?q=5%20Elm%20Rd", None),
        ]

    def test_mobile_tries_native_apps_first(self):
        links = build_navigation_links("5 Elm Rd", ClientPlatform.ANDROID)
        google, waze, default = links
        assert google.primary == "comgooglemaps://?q=5%20Elm%20Rd"
        assert google.fallback == google.web_link
        assert waze.primary == "waze://?q=5%20Elm%20Rd"
        assert waze.fallback_delay_ms == 1500
        assert default.app == "device_default"
        assert default.primary == "geo:0,0?q=5%20Elm%20Rd"
        assert default.fallback is None

    def test_ios_adds_apple_maps(self):
        links = build_navigation_links("5 Elm Rd", ClientPlatform.IOS)
        assert links[-1].app == "apple_maps"
        assert links[-1].primary == "maps://?q=5%20Elm%20Rd"

    def test_blank_address(self):
        assert build_navigation_links("   ", ClientPlatform.IOS) == []
