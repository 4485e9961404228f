"""
Image Provider Router.

Routes enhancement requests to the configured image model provider
(IMAGE_PROVIDER) and normalizes every provider failure into one
ImageProviderError, so the orchestrator has a single failure to handle.

Supported providers:
- gemini      (Gemini Developer API) - default
- openrouter  (same family of models via OpenRouter)

No fallback between providers: the caller has been charged for exactly
one attempt.
"""

from __future__ import annotations

import base64
import ipaddress
import socket
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import requests

from propertyperfect.config import config
from propertyperfect.services.gemini_image_service import (
    GeminiAuthError,
    GeminiConfigError,
    GeminiServerError,
    check_gemini_configured,
    gemini_edit_image,
)
from propertyperfect.services.openrouter_image_service import (
    OpenRouterAuthError,
    OpenRouterConfigError,
    check_openrouter_configured,
    openrouter_edit_image,
)
from propertyperfect.utils.helpers import is_data_url, parse_data_url, short_ref

DOWNLOAD_TIMEOUT = (10, 30)


# ── Errors ────────────────────────────────────────────────────
class ImageProviderError(Exception):
    """Raised when the image model could not produce a result."""

    def __init__(self, provider: str, message: str, kind: str = "upstream"):
        self.provider = provider
        self.kind = kind
        super().__init__(message)


class ImageLoadError(ValueError):
    """Raised when the source image cannot be read."""
    pass


# ── Provider base ─────────────────────────────────────────────
class ImageProvider:
    """Base interface every image provider must implement."""

    name: str = "unknown"

    @property
    def model(self) -> str:
        return ""

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return False, "Not implemented"

    def edit_image(self, prompt: str, image_base64: str, mime_type: str) -> Dict[str, Any]:
        raise NotImplementedError


class GeminiImageProvider(ImageProvider):
    name = "gemini"

    @property
    def model(self) -> str:
        return config.GEMINI_IMAGE_MODEL

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_gemini_configured()

    def edit_image(self, prompt: str, image_base64: str, mime_type: str) -> Dict[str, Any]:
        try:
            return gemini_edit_image(prompt, image_base64, mime_type, model=self.model)
        except GeminiConfigError as e:
            raise ImageProviderError(self.name, str(e), kind="config") from e
        except GeminiAuthError as e:
            raise ImageProviderError(self.name, str(e), kind="auth") from e
        except (GeminiServerError, RuntimeError) as e:
            raise ImageProviderError(self.name, str(e)) from e


class OpenRouterImageProvider(ImageProvider):
    name = "openrouter"

    @property
    def model(self) -> str:
        return config.OPENROUTER_IMAGE_MODEL

    def is_configured(self) -> Tuple[bool, Optional[str]]:
        return check_openrouter_configured()

    def edit_image(self, prompt: str, image_base64: str, mime_type: str) -> Dict[str, Any]:
        try:
            return openrouter_edit_image(prompt, image_base64, mime_type, model=self.model)
        except OpenRouterConfigError as e:
            raise ImageProviderError(self.name, str(e), kind="config") from e
        except OpenRouterAuthError as e:
            raise ImageProviderError(self.name, str(e), kind="auth") from e
        except RuntimeError as e:
            raise ImageProviderError(self.name, str(e)) from e


# ── Provider registry ─────────────────────────────────────────
_PROVIDERS: Dict[str, ImageProvider] = {
    "gemini": GeminiImageProvider(),
    "openrouter": OpenRouterImageProvider(),
}


# ── Source image loading ──────────────────────────────────────
def _is_private_ip(host: str) -> bool:
    """Reject private/loopback/link-local/reserved IPs to prevent SSRF."""
    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return False
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return (
        ip.is_private or ip.is_loopback or ip.is_link_local
        or ip.is_reserved or ip.is_multicast or ip.is_unspecified
    )


def _host_is_allowed(url: str) -> bool:
    try:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
    except ValueError:
        return False
    if not host:
        return False
    if config.ALLOWED_IMAGE_HOSTS and host not in config.ALLOWED_IMAGE_HOSTS:
        return False
    if _is_private_ip(host):
        return False
    # Resolve DNS and block private ranges
    try:
        addresses = socket.getaddrinfo(host, port, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError):
        return False
    if not addresses:
        return False
    return not any(_is_private_ip(str(res[4][0])) for res in addresses)


def load_image(image_ref: str) -> Tuple[str, str]:
    """
    Turn an image reference into (mime_type, base64).
    data: URLs are decoded in place; http(s) URLs are downloaded.

    Raises:
        ImageLoadError: If the image cannot be read or its host is blocked
    """
    if is_data_url(image_ref):
        try:
            mime_type, payload = parse_data_url(image_ref)
        except ValueError as e:
            raise ImageLoadError(f"Invalid image data URL: {e}") from e
        if len(payload) * 3 // 4 > config.MAX_IMAGE_BYTES:
            raise ImageLoadError("Image exceeds maximum size")
        return mime_type, payload

    if not _host_is_allowed(image_ref):
        print(f"[IMAGE_ROUTER] Blocked source image host: {short_ref(image_ref)}")
        raise ImageLoadError("Image host is not allowed")

    try:
        # Redirects are not followed; only this URL passed the host check
        r = requests.get(image_ref, timeout=DOWNLOAD_TIMEOUT, stream=True, allow_redirects=False)
    except requests.RequestException as e:
        raise ImageLoadError(f"Failed to fetch source image: {type(e).__name__}") from e

    with r:
        if r.status_code != 200:
            raise ImageLoadError(f"Failed to fetch source image: HTTP {r.status_code}")

        content_type = (r.headers.get("Content-Type") or "").split(";", 1)[0].strip().lower()
        if content_type and not content_type.startswith("image/"):
            raise ImageLoadError(f"URL did not return an image (Content-Type: {content_type})")

        chunks, size = [], 0
        for chunk in r.iter_content(chunk_size=64 * 1024):
            size += len(chunk)
            if size > config.MAX_IMAGE_BYTES:
                raise ImageLoadError("Image exceeds maximum size")
            chunks.append(chunk)

    data = b"".join(chunks)
    if not data:
        raise ImageLoadError("Received empty image data from URL")
    return content_type or "image/jpeg", base64.b64encode(data).decode("ascii")


# ── Router ────────────────────────────────────────────────────
class ImageRouter:
    """Picks the configured provider and runs one edit."""

    @staticmethod
    def get_provider(name: Optional[str] = None) -> ImageProvider:
        key = (name or config.IMAGE_PROVIDER or "gemini").lower()
        provider = _PROVIDERS.get(key)
        if provider is None:
            print(f"[IMAGE_ROUTER] Unknown provider '{key}', using gemini")
            provider = _PROVIDERS["gemini"]
        return provider

    @staticmethod
    def describe() -> Dict[str, str]:
        """Provider + model that the next edit will use."""
        provider = ImageRouter.get_provider()
        return {"provider": provider.name, "model": provider.model}

    @staticmethod
    def edit(image_ref: str, prompt: str) -> Dict[str, Any]:
        """
        Run one edit against the configured provider.

        Returns:
            Dict with image_url (None if the model returned no image),
            mime_type, text, provider, model

        Raises:
            ImageProviderError: On any provider or source-image failure
        """
        provider = ImageRouter.get_provider()

        configured, reason = provider.is_configured()
        if not configured:
            raise ImageProviderError(provider.name, reason or "Provider not configured", kind="config")

        try:
            mime_type, image_base64 = load_image(image_ref)
        except ImageLoadError as e:
            raise ImageProviderError(provider.name, str(e), kind="source") from e

        print(f"[IMAGE_ROUTER] provider={provider.name} image={short_ref(image_ref)}")
        return provider.edit_image(prompt, image_base64, mime_type)
