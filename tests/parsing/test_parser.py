from __future__ import annotations

import base64

from inbox_triage.parsing.parser import decode_body_data, extract_body_from_payload, headers_from_payload


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def test_decode_body_data_without_padding() -> None:
    assert decode_body_data(_b64("Grüße")) == "Grüße"


def test_single_part_body() -> None:
    payload = {"mimeType": "text/plain", "body": {"data": _b64("Hello")}}

    assert extract_body_from_payload(payload) == "Hello"


def test_multipart_prefers_plain_text() -> None:
    payload = {
        "mimeType": "multipart/mixed",
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/html", "body": {"data": _b64("<p>Hello</p>")}},
                    {"mimeType": "text/plain", "body": {"data": _b64("Hello")}},
                ],
            },
            {"mimeType": "application/pdf", "body": {"attachmentId": "a1"}},
        ],
    }

    assert extract_body_from_payload(payload) == "Hello"


def test_multipart_falls_back_to_html() -> None:
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [{"mimeType": "text/html", "body": {"data": _b64("<p>Hi</p>")}}],
    }

    assert extract_body_from_payload(payload) == "<p>Hi</p>"


def test_no_text_part_gives_empty_body() -> None:
    assert extract_body_from_payload({"mimeType": "multipart/mixed", "parts": []}) == ""


def test_headers_are_case_insensitive_first_wins() -> None:
    payload = {
        "headers": [
            {"name": "Subject", "value": "First"},
            {"name": "SUBJECT", "value": "Second"},
            {"name": "From", "value": "a@example.com"},
        ]
    }

    headers = headers_from_payload(payload)

    assert headers["subject"] == "First"
    assert headers["from"] == "a@example.com"
