"""
Gemini Image Editing Service.

Sends a property photo plus an instruction to a Gemini image model and
returns the edited photo.
Authentication: GEMINI_API_KEY (via x-goog-api-key header).

Endpoint: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent

CURL Test Example:
    curl -X POST \
      'https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash-image-preview:generateContent' \
      -H 'x-goog-api-key: YOUR_GEMINI_API_KEY' \
      -H 'Content-Type: application/json' \
      -d '{
        "contents": [{"role": "user", "parts": [
          {"inline_data": {"mime_type": "image/jpeg", "data": "<base64>"}},
          {"text": "Remove the clutter from this room"}
        ]}],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]}
      }'

One attempt per request: the caller has already been charged a credit and
decides what a failure means.
"""

from __future__ import annotations

from typing import Dict, Any, Optional, Tuple

import requests
from requests.exceptions import Timeout, ConnectionError as RequestsConnectionError, RequestException

from propertyperfect.config import config
from propertyperfect.utils.helpers import to_data_url, upstream_error_message

# Gemini Developer API base URL
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

CONNECT_TIMEOUT = 15


class GeminiAuthError(Exception):
    """Raised when Gemini authentication fails."""
    pass


class GeminiConfigError(Exception):
    """Raised when Gemini is not configured."""
    pass


class GeminiServerError(Exception):
    """Raised for 5xx errors from Gemini."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


def _get_api_key() -> str:
    key = config.GEMINI_API_KEY
    if not key:
        raise GeminiConfigError(
            "GEMINI_API_KEY is not set. "
            "Get your API key from https://aistudio.google.com/apikey"
        )
    return key


def _get_headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-goog-api-key": _get_api_key(),
    }


def check_gemini_configured() -> Tuple[bool, Optional[str]]:
    """
    Check if Gemini is configured. Returns (is_configured, error_message).
    """
    try:
        _get_api_key()
        return True, None
    except GeminiConfigError as e:
        return False, str(e)


def gemini_edit_image(
    prompt: str,
    image_base64: str,
    mime_type: str = "image/jpeg",
    model: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Edit a photo with a Gemini image model.

    Args:
        prompt: Edit instruction
        image_base64: Source photo, base64 (no data: prefix)
        mime_type: Source photo MIME type
        model: Model override (defaults to GEMINI_IMAGE_MODEL)

    Returns:
        Dict with image_url (data URL, or None when the model returned no
        image), mime_type, text, provider, model

    Raises:
        GeminiConfigError: If GEMINI_API_KEY not set
        GeminiAuthError: If authentication fails
        GeminiServerError: On 5xx
        RuntimeError: For other API errors (4xx, timeout, bad payload)
    """
    model = model or config.GEMINI_IMAGE_MODEL
    url = f"{GEMINI_API_BASE}/models/{model}:generateContent"

    payload = {
        "contents": [{
            "role": "user",
            "parts": [
                {"inline_data": {"mime_type": mime_type, "data": image_base64}},
                {"text": prompt},
            ],
        }],
        "generationConfig": {
            "responseModalities": ["TEXT", "IMAGE"],
        },
    }

    print(f"[GEMINI] Request: model={model}, mime={mime_type}, image_b64_len={len(image_base64)}")

    try:
        r = requests.post(
            url,
            headers=_get_headers(),
            json=payload,
            timeout=(CONNECT_TIMEOUT, config.MODEL_TIMEOUT_SECONDS),
        )
    except Timeout as e:
        raise RuntimeError(f"gemini_timeout: no response within {config.MODEL_TIMEOUT_SECONDS}s") from e
    except RequestsConnectionError as e:
        raise RuntimeError(f"gemini_connection_failed: {e}") from e
    except RequestException as e:
        raise RuntimeError(f"gemini_request_failed: {type(e).__name__}: {e}") from e

    if not r.ok:
        error_text = r.text[:500] if r.text else "No error details"
        print(f"[GEMINI] Error {r.status_code}: {error_text}")

        if r.status_code in (401, 403):
            raise GeminiAuthError("Gemini authentication failed. Check your GEMINI_API_KEY.")

        try:
            error_msg = upstream_error_message(r.json(), error_text)
        except ValueError:
            error_msg = error_text

        if r.status_code == 429 or "quota" in error_msg.lower() or "billing" in error_msg.lower():
            raise RuntimeError(f"gemini_quota_or_billing: {error_msg}")

        if 400 <= r.status_code < 500:
            raise RuntimeError(f"gemini_edit_failed: {error_msg}")

        raise GeminiServerError(r.status_code, f"Gemini server error {r.status_code}: {error_text}")

    try:
        result = r.json()
    except ValueError as e:
        raise RuntimeError("gemini_edit_failed: response was not JSON") from e

    return _parse_edit_response(result, model)


def _parse_edit_response(result: Dict[str, Any], model: str) -> Dict[str, Any]:
    """
    Pull the first image out of a generateContent response.

    Response format:
    {
      "candidates": [
        {"content": {"parts": [
            {"text": "..."},
            {"inlineData": {"mimeType": "image/png", "data": "<base64>"}}
        ]}}
      ]
    }
    """
    if not isinstance(result, dict):
        raise RuntimeError("gemini_edit_failed: unexpected response shape")
    if result.get("error"):
        raise RuntimeError(f"gemini_edit_failed: {upstream_error_message(result, 'Unknown error')}")

    texts = []
    image_url = None
    image_mime = None

    candidates = result.get("candidates")
    if not isinstance(candidates, list):
        candidates = []
    for candidate in candidates:
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if isinstance(inline, dict) and inline.get("data") and image_url is None:
                image_mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                image_url = to_data_url(inline["data"], image_mime)
            elif isinstance(part.get("text"), str) and part["text"]:
                texts.append(part["text"])
        if image_url:
            break

    if image_url is None:
        feedback = result.get("promptFeedback")
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        print(f"[GEMINI] No image in response (candidates={len(candidates)}, block_reason={block_reason})")
    else:
        print(f"[GEMINI] Image received: mime={image_mime}")

    return {
        "image_url": image_url,
        "mime_type": image_mime,
        "text": " ".join(texts).strip() or None,
        "provider": "gemini",
        "model": model,
    }
