"""
Tests for bearer-token resolution and the image model adapters.

Network calls are replaced by monkeypatched requests functions.

Run locally:
    python -m pytest propertyperfect/tests/test_providers.py -v
"""

from __future__ import annotations

import base64
import socket

import pytest
import requests

from propertyperfect.services import (
    gemini_image_service,
    identity_service,
    image_router,
    openrouter_image_service,
)
from propertyperfect.services.gemini_image_service import GeminiAuthError, gemini_edit_image
from propertyperfect.services.identity_service import IdentityService
from propertyperfect.services.image_router import ImageLoadError, ImageProviderError, ImageRouter, load_image
from propertyperfect.utils.error_handlers import ServiceUnavailable

PNG_B64 = base64.b64encode(b"\x89PNG\r\n\x1a\nfake-image").decode("ascii")


class FakeResponse:

    def __init__(self, status_code=200, json_data=None, text="", headers=None, chunks=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {}
        self._chunks = chunks or []

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json

    def iter_content(self, chunk_size=1):
        return iter(self._chunks)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeRequest:
    def __init__(self, headers):
        self.headers = headers


@pytest.fixture
def supabase(base_config, monkeypatch):
    monkeypatch.setattr(base_config, "SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setattr(base_config, "SUPABASE_ANON_KEY", "anon-key")
    return base_config


class TestBearerToken:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc.def", "abc.def"),
        ("bearer   abc", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("", None),
    ])
    def test_extract(self, header, expected):
        headers = {"Authorization": header} if header else {}
        assert IdentityService.extract_bearer_token(FakeRequest(headers)) == expected

    def test_valid_token(self, supabase, monkeypatch):
        seen = {}

        def fake_get(url, headers=None, timeout=None):
            seen.update(url=url, headers=headers)
            return FakeResponse(200, {"id": "a1b2", "email": "agent@example.com"})

        monkeypatch.setattr(identity_service.requests, "get", fake_get)

        assert IdentityService.resolve_bearer_token("jwt") == {"id": "a1b2", "email": "agent@example.com"}
        assert seen["url"] == "https://proj.supabase.co/auth/v1/user"
        assert seen["headers"] == {"Authorization": "Bearer jwt", "apikey": "anon-key"}

    @pytest.mark.parametrize("response", [
        FakeResponse(401, {"msg": "invalid JWT"}),
        FakeResponse(403),
        FakeResponse(404),
        FakeResponse(200, None, text="<html>"),
        FakeResponse(200, {"email": "no-id@example.com"}),
    ])
    def test_unusable_answers_mean_unknown_token(self, supabase, monkeypatch, response):
        monkeypatch.setattr(identity_service.requests, "get", lambda *a, **k: response)
        assert IdentityService.resolve_bearer_token("jwt") is None

    def test_supabase_down(self, supabase, monkeypatch):
        def fail(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(identity_service.requests, "get", fail)
        with pytest.raises(ServiceUnavailable):
            IdentityService.resolve_bearer_token("jwt")

    def test_supabase_5xx(self, supabase, monkeypatch):
        monkeypatch.setattr(identity_service.requests, "get", lambda *a, **k: FakeResponse(502, text="bad gateway"))
        with pytest.raises(ServiceUnavailable):
            IdentityService.resolve_bearer_token("jwt")

    def test_not_configured(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "SUPABASE_URL", "")
        assert IdentityService.resolve_bearer_token("jwt") is None


class TestLoadImage:

    @pytest.fixture
    def resolve_to(self, monkeypatch):
        """Point DNS for every host at the given addresses."""
        lookups = []

        def set_addresses(*addresses):
            def fake_getaddrinfo(host, port, *args, **kwargs):
                lookups.append(host)
                return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", (ip, port)) for ip in addresses]
            monkeypatch.setattr(image_router.socket, "getaddrinfo", fake_getaddrinfo)
            return lookups

        return set_addresses

    @pytest.fixture
    def public_dns(self, resolve_to):
        return resolve_to("93.184.216.34")

    @pytest.fixture
    def no_fetch(self, monkeypatch):
        fetched = []
        monkeypatch.setattr(image_router.requests, "get", lambda url, **k: fetched.append(url))
        return fetched

    def test_data_url(self, base_config):
        assert load_image(f"data:image/png;base64,{PNG_B64}") == ("image/png", PNG_B64)

    def test_data_url_too_large(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "MAX_IMAGE_BYTES", 4)
        with pytest.raises(ImageLoadError):
            load_image(f"data:image/png;base64,{PNG_B64}")

    def test_download(self, base_config, monkeypatch, public_dns):
        seen = {}
        resp = FakeResponse(200, headers={"Content-Type": "image/jpeg; charset=binary"}, chunks=[b"abc", b"def"])

        def fake_get(url, **kwargs):
            seen.update(kwargs)
            return resp

        monkeypatch.setattr(image_router.requests, "get", fake_get)

        mime, b64 = load_image("https://cdn.example.com/photo.jpg")

        assert mime == "image/jpeg"
        assert base64.b64decode(b64) == b"abcdef"
        assert seen["allow_redirects"] is False
        assert public_dns == ["cdn.example.com"]

    @pytest.mark.parametrize("response", [
        FakeResponse(404),
        FakeResponse(302, headers={"Location": "http://169.254.169.254/"}),
        FakeResponse(200, headers={"Content-Type": "text/html"}, chunks=[b"<html>"]),
        FakeResponse(200, headers={"Content-Type": "image/png"}, chunks=[]),
    ])
    def test_download_rejected(self, base_config, monkeypatch, public_dns, response):
        monkeypatch.setattr(image_router.requests, "get", lambda *a, **k: response)
        with pytest.raises(ImageLoadError):
            load_image("https://cdn.example.com/photo.jpg")

    def test_download_size_cap(self, base_config, monkeypatch, public_dns):
        monkeypatch.setattr(base_config, "MAX_IMAGE_BYTES", 5)
        resp = FakeResponse(200, headers={"Content-Type": "image/png"}, chunks=[b"abc", b"def"])
        monkeypatch.setattr(image_router.requests, "get", lambda *a, **k: resp)
        with pytest.raises(ImageLoadError):
            load_image("https://cdn.example.com/photo.jpg")

    @pytest.mark.parametrize("url", [
        "http://127.0.0.1/photo.jpg",
        "http://169.254.169.254/latest/meta-data/",
        "http://10.0.0.8:8080/photo.jpg",
        "http://192.168.1.20/photo.jpg",
        "http://[::1]/photo.jpg",
        "http://[::ffff:127.0.0.1]/photo.jpg",
        "http://0.0.0.0/photo.jpg",
    ])
    def test_internal_addresses_blocked(self, base_config, public_dns, no_fetch, url):
        with pytest.raises(ImageLoadError, match="not allowed"):
            load_image(url)
        assert no_fetch == []

    @pytest.mark.parametrize("address", ["127.0.0.1", "169.254.169.254", "172.16.4.2", "fe80::1%eth0"])
    def test_hostname_resolving_internally_blocked(self, base_config, resolve_to, no_fetch, address):
        resolve_to("93.184.216.34", address)
        with pytest.raises(ImageLoadError, match="not allowed"):
            load_image("https://photos.example.net/room.jpg")
        assert no_fetch == []

    def test_unresolvable_host_blocked(self, base_config, monkeypatch, no_fetch):
        def fail(*args, **kwargs):
            raise socket.gaierror("Name or service not known")

        monkeypatch.setattr(image_router.socket, "getaddrinfo", fail)
        with pytest.raises(ImageLoadError):
            load_image("https://nowhere.invalid/room.jpg")
        assert no_fetch == []

    def test_host_allowlist(self, base_config, monkeypatch, public_dns, no_fetch):
        monkeypatch.setattr(base_config, "ALLOWED_IMAGE_HOSTS", ["images.example.com"])
        with pytest.raises(ImageLoadError, match="not allowed"):
            load_image("https://cdn.example.com/photo.jpg")
        assert no_fetch == []

    def test_blocked_source_surfaces_as_source_error(self, base_config, monkeypatch, no_fetch):
        monkeypatch.setattr(base_config, "GEMINI_API_KEY", "g-key")
        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit("http://169.254.169.254/latest/meta-data/", "Declutter")
        assert exc.value.kind == "source"
        assert no_fetch == []


class TestGemini:

    @pytest.fixture
    def gemini(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "GEMINI_API_KEY", "g-key")
        calls = []

        def respond_with(response):
            def fake_post(url, headers=None, json=None, timeout=None):
                calls.append({"url": url, "headers": headers, "json": json})
                return response
            monkeypatch.setattr(gemini_image_service.requests, "post", fake_post)

        return respond_with, calls

    def test_image_returned_as_data_url(self, gemini):
        respond_with, calls = gemini
        respond_with(FakeResponse(200, {
            "candidates": [{"content": {"parts": [
                {"text": "Here is the decluttered room."},
                {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
            ]}}],
        }))

        result = gemini_edit_image("Declutter", PNG_B64, "image/jpeg", model="gemini-test")

        assert result["image_url"] == f"data:image/png;base64,{PNG_B64}"
        assert result["text"] == "Here is the decluttered room."
        assert calls[0]["url"].endswith("/models/gemini-test:generateContent")
        assert calls[0]["headers"]["x-goog-api-key"] == "g-key"
        parts = calls[0]["json"]["contents"][0]["parts"]
        assert parts[0]["inline_data"] == {"mime_type": "image/jpeg", "data": PNG_B64}
        assert parts[1] == {"text": "Declutter"}

    def test_text_only_answer(self, gemini):
        respond_with, _ = gemini
        respond_with(FakeResponse(200, {"candidates": [{"content": {"parts": [{"text": "I can't do that"}]}}]}))
        result = gemini_edit_image("Declutter", PNG_B64)
        assert result["image_url"] is None
        assert result["text"] == "I can't do that"

    def test_auth_error(self, gemini):
        respond_with, _ = gemini
        respond_with(FakeResponse(403, text="API key not valid"))
        with pytest.raises(GeminiAuthError):
            gemini_edit_image("Declutter", PNG_B64)

    def test_quota_error(self, gemini):
        respond_with, _ = gemini
        respond_with(FakeResponse(429, {"error": {"message": "Resource has been exhausted"}}, text="quota"))
        with pytest.raises(RuntimeError, match="gemini_quota_or_billing"):
            gemini_edit_image("Declutter", PNG_B64)

    @pytest.mark.parametrize("status,body", [
        (400, {"error": "bad request"}),
        (400, {"error": ["unexpected", "shape"]}),
        (400, ["not", "an", "object"]),
        (200, {"error": "model overloaded"}),
    ])
    def test_odd_error_bodies_become_runtime_errors(self, gemini, status, body):
        respond_with, _ = gemini
        respond_with(FakeResponse(status, body, text=str(body)))
        with pytest.raises(RuntimeError, match="gemini_edit_failed"):
            gemini_edit_image("Declutter", PNG_B64)

    def test_malformed_candidates_yield_no_image(self, gemini):
        respond_with, _ = gemini
        respond_with(FakeResponse(200, {
            "candidates": ["oops", {"content": "text"}, {"content": {"parts": [None, {"inlineData": "x"}]}}],
            "promptFeedback": "blocked",
        }))
        result = gemini_edit_image("Declutter", PNG_B64)
        assert result["image_url"] is None


class TestImageRouter:

    def test_missing_key_is_config_error(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "GEMINI_API_KEY", "")
        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit(f"data:image/png;base64,{PNG_B64}", "Declutter")
        assert exc.value.kind == "config"

    def test_unknown_provider_falls_back_to_gemini(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "IMAGE_PROVIDER", "dalle")
        assert ImageRouter.describe()["provider"] == "gemini"

    def test_openrouter_selected(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "IMAGE_PROVIDER", "openrouter")
        monkeypatch.setattr(base_config, "OPENROUTER_API_KEY", "or-key")
        image = f"data:image/png;base64,{PNG_B64}"
        monkeypatch.setattr(openrouter_image_service.requests, "post", lambda *a, **k: FakeResponse(200, {
            "choices": [{"message": {"content": "done", "images": [{"image_url": {"url": image}}]}}],
        }))

        result = ImageRouter.edit(image, "Add plants")

        assert result["provider"] == "openrouter"
        assert result["image_url"] == image
        assert result["mime_type"] == "image/png"

    def test_provider_errors_are_wrapped(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "GEMINI_API_KEY", "g-key")

        def timeout(*args, **kwargs):
            raise requests.Timeout("read timed out")

        monkeypatch.setattr(gemini_image_service.requests, "post", timeout)
        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit(f"data:image/png;base64,{PNG_B64}", "Declutter")
        assert exc.value.provider == "gemini"
        assert "gemini_timeout" in str(exc.value)

    def test_bad_source_image(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "GEMINI_API_KEY", "g-key")
        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit("data:image/png;base64,!!!notbase64", "Declutter")
        assert exc.value.kind == "source"

    @pytest.mark.parametrize("provider,module,key_field", [
        ("gemini", gemini_image_service, "GEMINI_API_KEY"),
        ("openrouter", openrouter_image_service, "OPENROUTER_API_KEY"),
    ])
    def test_transport_errors_are_wrapped(self, base_config, monkeypatch, provider, module, key_field):
        monkeypatch.setattr(base_config, "IMAGE_PROVIDER", provider)
        monkeypatch.setattr(base_config, key_field, "key")

        def broken_stream(*args, **kwargs):
            raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")

        monkeypatch.setattr(module.requests, "post", broken_stream)
        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit(f"data:image/png;base64,{PNG_B64}", "Declutter")
        assert exc.value.provider == provider
        assert exc.value.kind == "upstream"
        assert f"{provider}_request_failed" in str(exc.value)

    @pytest.mark.parametrize("provider,module,key_field", [
        ("gemini", gemini_image_service, "GEMINI_API_KEY"),
        ("openrouter", openrouter_image_service, "OPENROUTER_API_KEY"),
    ])
    def test_string_error_body_is_wrapped(self, base_config, monkeypatch, provider, module, key_field):
        monkeypatch.setattr(base_config, "IMAGE_PROVIDER", provider)
        monkeypatch.setattr(base_config, key_field, "key")
        resp = FakeResponse(400, {"error": "bad request"}, text='{"error": "bad request"}')
        monkeypatch.setattr(module.requests, "post", lambda *a, **k: resp)

        with pytest.raises(ImageProviderError) as exc:
            ImageRouter.edit(f"data:image/png;base64,{PNG_B64}", "Declutter")
        assert "bad request" in str(exc.value)

    def test_openrouter_malformed_choices_yield_no_image(self, base_config, monkeypatch):
        monkeypatch.setattr(base_config, "IMAGE_PROVIDER", "openrouter")
        monkeypatch.setattr(base_config, "OPENROUTER_API_KEY", "or-key")
        monkeypatch.setattr(openrouter_image_service.requests, "post", lambda *a, **k: FakeResponse(200, {
            "choices": [{"message": {"content": "sorry", "images": ["nope", {"image_url": "flat"}]}}],
        }))

        result = ImageRouter.edit(f"data:image/png;base64,{PNG_B64}", "Add plants")
        assert result["image_url"] is None
        assert result["text"] == "sorry"
