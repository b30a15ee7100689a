from __future__ import annotations

import json
from typing import Optional, Protocol

from loguru import logger
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ValidationError, field_validator

from inbox_triage.errors import ClassificationError
from inbox_triage.models import Category, Classification

CATEGORIES = [c.value for c in Category]

PROMPT_TEMPLATE = """Analyze the following email and return ONLY pure JSON, without markdown and without backticks.

Categories: {categories}

Labels:
- promotions and marketing mail -> "newsletter"
- personal conversations -> "private"
- bank statements and invoices -> "payments"
- business offers, LinkedIn and B2B outreach -> "business"
- junk and spam -> "junk"

If the email comes from a real person, is not spam/newsletter/advertising/invoice, and needs a reply or a decision,
use "action_needed" and write a short, polite draft reply in the language of the email.
The reply must be an empty string for every other category.
Include sender_name, taken from the email if possible, otherwise "there".

Format:
{{"category":"...","label":"...","reply":"...","sender_name":"..."}}

Email:
Subject: {subject}

Body:
{body}"""


class Classifier(Protocol):
    def classify(self, subject: str, body: str) -> Classification: ...


class ClassifierResponse(BaseModel):
    category: Category
    label: Optional[str] = None
    # Models often answer null instead of "" for categories without a reply.
    reply: Optional[str] = None
    sender_name: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


def _strip_fences(text: str) -> str:
    text = text.strip()
    for prefix in ("```json", "```"):
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    if text.endswith("```"):
        text = text[: -len("```")]
    return text.strip()


def parse_classification(text: str) -> Classification:
    """Validate the model's JSON answer against the closed category set."""
    cleaned = _strip_fences(text)
    try:
        data = ClassifierResponse.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ClassificationError(f"cannot parse classifier JSON: {exc} (raw={cleaned[:200]!r})") from exc

    try:
        label = Category((data.label or "").strip().lower())
    except ValueError:
        # Models sometimes echo a free-form label; the category is authoritative.
        label = data.category

    reply = (data.reply or "").strip() if data.category.needs_reply else ""
    return Classification(
        category=data.category,
        label=label,
        reply=reply,
        display_name=(data.sender_name or "").strip(),
    )


class OpenAIClassifier:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None,
    ):
        self._model = model
        self._timeout = timeout
        # The SDK retries 429/5xx itself; the pool throttle handles the steady rate.
        self._client = client or OpenAI(api_key=api_key, max_retries=2)

    def classify(self, subject: str, body: str) -> Classification:
        prompt = PROMPT_TEMPLATE.format(
            categories=json.dumps(CATEGORIES),
            subject=subject,
            body=body,
        )
        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                timeout=self._timeout,
            )
        except OpenAIError as exc:
            raise ClassificationError(f"openai api error: {exc}") from exc

        if not resp.choices or not resp.choices[0].message.content:
            raise ClassificationError("empty LLM response")

        result = parse_classification(resp.choices[0].message.content)
        logger.debug(f"Classified subject={subject[:60]!r} as {result.category.value}")
        return result
