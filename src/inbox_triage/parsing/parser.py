from __future__ import annotations

import base64
import binascii
from typing import Dict, Optional


def decode_body_data(data: str) -> str:
    # Gmail sends base64url, sometimes without padding.
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def headers_from_payload(payload: dict) -> Dict[str, str]:
    """Header map keyed by lower-cased name; the first occurrence wins."""
    headers: Dict[str, str] = {}
    for header in payload.get("headers", []) or []:
        name = str(header.get("name") or "").lower()
        if name and name not in headers:
            headers[name] = str(header.get("value") or "")
    return headers


def extract_body_from_payload(payload: dict) -> str:
    """
    Extract plain text body from Gmail message payload.
    Falls back to HTML if plain text is unavailable, "" if neither exists.
    """
    def find_part(part: dict, mime_type: str) -> Optional[str]:
        # Depth-first search through multipart payloads.
        if part.get("mimeType") == mime_type and part.get("body", {}).get("data"):
            return decode_body_data(part["body"]["data"])
        for child in part.get("parts", []) or []:
            found = find_part(child, mime_type)
            if found:
                return found
        return None

    if not payload.get("parts") and payload.get("body", {}).get("data"):
        return decode_body_data(payload["body"]["data"])

    return find_part(payload, "text/plain") or find_part(payload, "text/html") or ""
