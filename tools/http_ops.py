"""HTTP tool: plain requests against local or remote endpoints."""

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Union

from tools._common import ToolResult

logger = logging.getLogger(__name__)

_HTTP_MAX_BYTES = 500_000
_HTTP_DEFAULT_TIMEOUT = 30
_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


def _encode_body(body: Union[str, Dict[str, Any], list, None], headers: Dict[str, str]) -> Optional[bytes]:
    if body is None or body == "":
        return None
    if isinstance(body, (dict, list)):
        headers.setdefault("Content-Type", "application/json")
        return json.dumps(body).encode("utf-8")
    return str(body).encode("utf-8")


def http_request(url: str, method: str = "GET", headers: Optional[Dict[str, str]] = None,
                 body: Union[str, Dict[str, Any], list, None] = None, timeout: Optional[int] = None,
                 **kw: Any) -> ToolResult:
    """Send an HTTP request and return status line, headers and (clipped) body."""
    url = (url or "").strip()
    if not url:
        return ToolResult(success=False, output="", error="url is required")
    if not url.startswith(("http://", "https://")):
        return ToolResult(success=False, output="", error="url must start with http:// or https://")
    method = (method or "GET").upper()
    if method not in _METHODS:
        return ToolResult(success=False, output="", error=f"Unsupported HTTP method: {method}")

    req_headers = {"User-Agent": "TermAI-Orchestrator/1.0"}
    req_headers.update(headers or {})
    data = _encode_body(body, req_headers)
    req = urllib.request.Request(url, data=data, headers=req_headers, method=method)
    to = min(120, max(1, timeout or _HTTP_DEFAULT_TIMEOUT))

    try:
        with urllib.request.urlopen(req, timeout=to) as resp:
            status = resp.status
            reason = resp.reason
            resp_headers = dict(resp.headers.items())
            raw = resp.read(_HTTP_MAX_BYTES + 1)
    except urllib.error.HTTPError as e:
        raw = e.read(_HTTP_MAX_BYTES + 1) if e.fp else b""
        text = raw.decode("utf-8", errors="replace")
        return ToolResult(success=False, output=f"HTTP {e.code} {e.reason}\n\n{text}",
                          error=f"HTTP {e.code} {e.reason}")
    except urllib.error.URLError as e:
        return ToolResult(success=False, output="", error=f"Request failed: {e.reason}")
    except Exception as e:
        logger.exception("http_request failed")
        return ToolResult(success=False, output="", error=str(e))

    truncated = len(raw) > _HTTP_MAX_BYTES
    text = raw[:_HTTP_MAX_BYTES].decode("utf-8", errors="replace")
    header_lines = "\n".join(f"{k}: {v}" for k, v in resp_headers.items())
    out = f"HTTP {status} {reason}\n{header_lines}\n\n{text}"
    if truncated:
        out += "\n\n[Response truncated at 500KB]"
    return ToolResult(success=200 <= status < 400, output=out,
                      error=None if 200 <= status < 400 else f"HTTP {status} {reason}")
