from __future__ import annotations

import logging
import re
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

MAX_WORDS_IN_REQUEST = 200
DEFAULT_COLORS = ["#375E97", "#FB6542", "#FFBB00", "#3F681C"]

STOP_WORDS = {
    "the", "and", "or", "but", "is", "are", "was", "were", "be", "been",
    "have", "has", "had", "do", "does", "did", "will", "would", "should",
    "could", "can", "may", "might", "must", "a", "an", "in", "on",
    "at", "to", "for", "of", "with", "by", "from", "as", "that", "this",
    "these", "those", "it", "its", "they", "them", "their", "what", "which",
}

_HTML_TAG = re.compile(r"<.*?>")
_NON_WORD = re.compile(r"[^\w\s]")


class WordCloudError(RuntimeError):
    pass


def clean_text(text: str) -> str:
    cleaned = _NON_WORD.sub(" ", _HTML_TAG.sub("", text)).lower()
    words = [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]
    return " ".join(words[:MAX_WORDS_IN_REQUEST])


class WordCloudClient:
    """Renders word clouds through a QuickChart-compatible API."""

    def __init__(
        self,
        api_url: str,
        *,
        width: int = 800,
        height: int = 600,
        max_words: int = 100,
        timeout: float = 30.0,
        fallback_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.width = width
        self.height = height
        self.max_words = max_words
        self.timeout = timeout
        self.fallback_url = fallback_url
        self._transport = transport

    def static_url(self, cleaned: str) -> str:
        query = urlencode({"text": cleaned, "width": self.width, "height": self.height})
        return f"{self.api_url}?{query}"

    def _payload(self, cleaned: str) -> dict:
        return {
            "format": "png",
            "width": self.width,
            "height": self.height,
            "chart": {
                "type": "wordCloud",
                "data": {"text": cleaned},
                "options": {
                    "maxWords": self.max_words,
                    "minWordLength": 3,
                    "colors": DEFAULT_COLORS,
                    "fontFamily": "Arial",
                    "backgroundColor": "#ffffff",
                    "scale": "linear",
                    "rotation": {"from": 0, "to": 0, "numOfOrientation": 1},
                    "padding": 1,
                },
            },
        }

    async def generate(self, text: str | None) -> str | None:
        """Return an image URL for ``text``; ``None`` when there is nothing to draw.

        Raises ``WordCloudError`` when the API cannot be reached in time.
        """
        if not text or not text.strip():
            logger.warning("Empty text for word cloud")
            return None

        cleaned = clean_text(text)
        if not cleaned:
            logger.warning("Text is empty after cleaning, using fallback image")
            return self.fallback_url

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.api_url, json=self._payload(cleaned))
        except httpx.TimeoutException as e:
            raise WordCloudError(f"word cloud API timed out after {self.timeout:g}s") from e
        except httpx.TransportError as e:
            raise WordCloudError(f"word cloud API unreachable: {e.__class__.__name__}") from e

        if not resp.is_success:
            logger.error("Word cloud API error %s: %s", resp.status_code, resp.text[:200])
            return self.static_url(cleaned)

        try:
            url = resp.json().get("url")
        except (ValueError, AttributeError):
            url = None
        if not url:
            logger.warning("Word cloud API returned no url")
            return self.static_url(cleaned)

        logger.info("Word cloud generated: %s", url)
        return url
