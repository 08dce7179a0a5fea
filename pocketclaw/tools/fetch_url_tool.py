"""HTTP fetch tool."""

from __future__ import annotations

import html
import re
from typing import Any

import httpx

from pocketclaw.config import FETCH_MAX_RESPONSE
from pocketclaw.tools.base import Tool, ToolName

_DROP_BLOCKS = re.compile(r"<(script|style|noscript|svg|head)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_COMMENTS = re.compile(r"<!--.*?-->", re.DOTALL)
_TAGS = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    """Reduce an HTML document to readable text."""

    text = _DROP_BLOCKS.sub("", text)
    text = _COMMENTS.sub("", text)
    text = _TAGS.sub(" ", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n", text)
    return text.strip()


class FetchUrlTool(Tool):
    """Make an HTTP request and return the status and (text) body."""

    name = ToolName.FETCH_URL
    description = (
        "Make an HTTP request to a URL. HTML responses are converted to plain "
        f"text. Responses are truncated to {FETCH_MAX_RESPONSE} characters."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The full URL to fetch."},
            "method": {"type": "string", "description": "HTTP method (default GET)."},
            "headers": {"type": "object", "description": "Optional request headers."},
            "body": {"type": "string", "description": "Optional request body."},
        },
        "required": ["url"],
        "additionalProperties": False,
    }

    def __init__(self, timeout_seconds: float = 20.0) -> None:
        self._timeout_seconds = timeout_seconds

    async def run(self, group_id: str, **kwargs: Any) -> str:
        url = str(kwargs["url"]).strip()
        method = str(kwargs.get("method") or "GET").upper()
        headers = {str(k): str(v) for k, v in (kwargs.get("headers") or {}).items()}

        async with httpx.AsyncClient(follow_redirects=True) as client:
            resp = await client.request(
                method,
                url,
                headers=headers,
                content=kwargs.get("body"),
                timeout=self._timeout_seconds,
            )
            raw_text = resp.text
            content_type = resp.headers.get("content-type", "")

        body = raw_text
        if "html" in content_type or raw_text.lstrip().startswith("<"):
            body = strip_html(raw_text)
        return f"[HTTP {resp.status_code}]\n{body[:FETCH_MAX_RESPONSE]}"
