"""Outbound HTTP tool restricted to an allowlist of domains."""

from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from codeloop.ai.tools.base import Tool, ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import read_mapping_param, read_number_param, read_string_param
from codeloop.log import get_logger

logger = get_logger(__name__)

METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_TIMEOUT_MS = 15_000
MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 60_000
MAX_BODY_BYTES = 1024 * 1024
SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "x-api-key", "token", "proxy-authorization"})
USER_AGENT = "codeloop-agent/0.1"


def is_host_allowed(host: str, allowlist: tuple[str, ...] | list[str]) -> bool:
    """Exact domain or any subdomain of an allowed domain; ``*`` allows all."""
    if "*" in allowlist:
        return True
    host = host.lower()
    return any(host == d.lower() or host.endswith(f".{d.lower()}") for d in allowlist)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: "[REDACTED]" if k.lower() in SENSITIVE_HEADERS else v for k, v in headers.items()}


def _format_body(raw: bytes) -> str:
    truncated = len(raw) > MAX_BODY_BYTES
    text = raw[:MAX_BODY_BYTES].decode("utf-8", errors="replace")
    if truncated:
        return text + "... [TRUNCATED]"
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except ValueError:
        return text


class HttpRequestTool(Tool):
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @property
    def name(self) -> str:
        return "http_request"

    @property
    def description(self) -> str:
        return (
            "Make an HTTP request to an allowed external API. "
            "Use this for fetching data or interacting with services."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "method": {"type": "string", "enum": list(METHODS), "description": "HTTP method"},
                "url": {"type": "string", "description": "Target URL (must be in allowed domains list)"},
                "headers": {"type": "object", "description": "HTTP headers"},
                "query": {"type": "object", "description": "Query parameters to append to URL"},
                "json_body": {"type": "object", "description": "JSON body for POST/PUT/PATCH requests"},
                "timeout_ms": {
                    "type": "integer",
                    "description": f"Timeout in milliseconds (default {DEFAULT_TIMEOUT_MS}, max {MAX_TIMEOUT_MS})",
                },
            },
            "required": ["method", "url"],
        }

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        method = read_string_param(args, "method", required=True).upper()
        url = read_string_param(args, "url", required=True)
        headers = {str(k): str(v) for k, v in read_mapping_param(args, "headers").items()}
        query = {str(k): str(v) for k, v in read_mapping_param(args, "query").items()}
        json_body = args.get("json_body")
        timeout_ms = read_number_param(args, "timeout_ms", default=DEFAULT_TIMEOUT_MS)
        timeout_ms = min(max(timeout_ms, MIN_TIMEOUT_MS), MAX_TIMEOUT_MS)

        if method not in METHODS:
            return ToolResult.fail(f"Unsupported method: {method}", ToolErrorKind.BAD_ARGUMENTS)

        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return ToolResult.fail(f"Invalid URL: {url}", ToolErrorKind.BAD_ARGUMENTS)

        if not context.http_allowlist:
            return ToolResult.fail(
                "HTTP requests are disabled (allowlist is empty).", ToolErrorKind.POLICY_DENIED
            )
        if not is_host_allowed(parts.hostname, context.http_allowlist):
            return ToolResult.fail(
                f"Domain {parts.hostname} is not in the allowlist. "
                f"Allowed: {', '.join(context.http_allowlist)}",
                ToolErrorKind.POLICY_DENIED,
            )

        logger.info(
            "http_request",
            method=method,
            url=url,
            headers=redact_headers(headers),
            session_id=context.session_id,
        )

        request_kwargs: dict[str, Any] = {
            "headers": {"User-Agent": USER_AGENT, **headers},
            "params": query or None,
        }
        if json_body is not None and method in BODY_METHODS:
            request_kwargs["json"] = json_body

        try:
            async with httpx.AsyncClient(
                timeout=timeout_ms / 1000, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.request(method, url, **request_kwargs)
        except httpx.TimeoutException:
            return ToolResult.fail(f"Request timed out after {timeout_ms:g}ms", ToolErrorKind.TIMEOUT)
        except httpx.HTTPError as e:
            return ToolResult.fail(f"HTTP request failed: {e}")

        body = _format_body(response.content)
        status = f"{response.status_code} {response.reason_phrase}".strip()
        # Non-2xx is still a completed request; the model reads the status.
        if response.is_success:
            return ToolResult.ok(f"HTTP Request Successful ({status}):\n{body}")
        return ToolResult.ok(f"HTTP Request Failed ({status}):\n{body}")
