"""
OpenRouter Image Editing Service.

Alternative provider: routes the same Gemini image model (or any other
image-output model) through OpenRouter's OpenAI-compatible chat API.
Authentication: OPENROUTER_API_KEY (Bearer).

Endpoint: POST https://openrouter.ai/api/v1/chat/completions

The edited image comes back in choices[0].message.images[*].image_url.url,
usually as a data URL.
"""

from __future__ import annotations

from typing import Dict, Any, Optional, Tuple

import requests
from requests.exceptions import Timeout, ConnectionError as RequestsConnectionError, RequestException

from propertyperfect.config import config
from propertyperfect.utils.helpers import to_data_url, upstream_error_message

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"

CONNECT_TIMEOUT = 15


class OpenRouterAuthError(Exception):
    """Raised when OpenRouter authentication fails."""
    pass


class OpenRouterConfigError(Exception):
    """Raised when OpenRouter is not configured."""
    pass


def _get_api_key() -> str:
    key = config.OPENROUTER_API_KEY
    if not key:
        raise OpenRouterConfigError("OPENROUTER_API_KEY is not set.")
    return key


def check_openrouter_configured() -> Tuple[bool, Optional[str]]:
    try:
        _get_api_key()
        return True, None
    except OpenRouterConfigError as e:
        return False, str(e)


def openrouter_edit_image(
    prompt: str,
    image_base64: str,
    mime_type: str = "image/jpeg",
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Edit a photo through OpenRouter.

    Returns:
        Dict with image_url (or None when the model returned no image),
        mime_type, text, provider, model

    Raises:
        OpenRouterConfigError: If OPENROUTER_API_KEY not set
        OpenRouterAuthError: If authentication fails
        RuntimeError: For other API errors
    """
    model = model or config.OPENROUTER_IMAGE_MODEL
    headers = {
        "Authorization": f"Bearer {_get_api_key()}",
        "Content-Type": "application/json",
    }
    payload = {
        "model": model,
        "modalities": ["image", "text"],
        "messages": [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": to_data_url(image_base64, mime_type)}},
            ],
        }],
    }

    print(f"[OPENROUTER] Request: model={model}, mime={mime_type}")

    try:
        r = requests.post(
            f"{OPENROUTER_API_BASE}/chat/completions",
            headers=headers,
            json=payload,
            timeout=(CONNECT_TIMEOUT, config.MODEL_TIMEOUT_SECONDS),
        )
    except Timeout as e:
        raise RuntimeError(f"openrouter_timeout: no response within {config.MODEL_TIMEOUT_SECONDS}s") from e
    except RequestsConnectionError as e:
        raise RuntimeError(f"openrouter_connection_failed: {e}") from e
    except RequestException as e:
        raise RuntimeError(f"openrouter_request_failed: {type(e).__name__}: {e}") from e

    if not r.ok:
        error_text = r.text[:500] if r.text else "No error details"
        print(f"[OPENROUTER] Error {r.status_code}: {error_text}")
        if r.status_code in (401, 403):
            raise OpenRouterAuthError("OpenRouter authentication failed. Check your OPENROUTER_API_KEY.")
        try:
            error_msg = upstream_error_message(r.json(), error_text)
        except ValueError:
            error_msg = error_text
        raise RuntimeError(f"openrouter_edit_failed ({r.status_code}): {error_msg}")

    try:
        result = r.json()
    except ValueError as e:
        raise RuntimeError("openrouter_edit_failed: response was not JSON") from e

    if not isinstance(result, dict):
        raise RuntimeError("openrouter_edit_failed: unexpected response shape")
    if result.get("error"):
        raise RuntimeError(f"openrouter_edit_failed: {upstream_error_message(result, 'Unknown error')}")

    choices = result.get("choices")
    first = choices[0] if isinstance(choices, list) and choices else None
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        message = {}
    images = message.get("images")
    image_url = None
    for image in images if isinstance(images, list) else []:
        ref = image.get("image_url") if isinstance(image, dict) else None
        url = ref.get("url") if isinstance(ref, dict) else None
        if isinstance(url, str) and url:
            image_url = url
            break

    if image_url is None:
        print(f"[OPENROUTER] No image in response (choices={len(choices) if isinstance(choices, list) else 0})")

    text = message.get("content")
    return {
        "image_url": image_url,
        "mime_type": image_url.split(";", 1)[0][5:] if image_url and image_url.startswith("data:") else None,
        "text": text if isinstance(text, str) and text.strip() else None,
        "provider": "openrouter",
        "model": model,
    }
