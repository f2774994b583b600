from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from typing import Any


class ApiClientError(RuntimeError):
    """Error envelope from the API: code defaults to UNKNOWN_ERROR, status 0 means no HTTP response."""

    def __init__(self, code: str, message: str, status: int):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status={self.status}, message={self.message!r})"


def _error_from_body(raw: bytes, status: int, fallback_message: str, error_cls: type[ApiClientError]) -> ApiClientError:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        payload = None
    err = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(err, dict):
        err = {}
    return error_cls(err.get("code") or "UNKNOWN_ERROR", err.get("message") or fallback_message, status)


def request_json(
    base_url: str,
    method: str,
    path: str,
    *,
    params: dict[str, Any] | None = None,
    body: Any = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 30,
    error_cls: type[ApiClientError] = ApiClientError,
    fallback_message: str = "Request failed",
) -> Any:
    """
    Perform one request and unwrap the {"success", "data"} envelope.
    No retries: every failure is raised to the caller as `error_cls`.
    """
    url = base_url.rstrip("/") + path
    if params:
        query = {k: v for k, v in params.items() if v is not None and v != ""}
        if query:
            url += "?" + urllib.parse.urlencode(query)

    data = None
    req_headers = {"Accept": "application/json"}
    if body is not None:
        data = json.dumps(body).encode("utf-8")
        req_headers["Content-Type"] = "application/json"
    req_headers.update(headers or {})

    req = urllib.request.Request(url, data=data, method=method, headers=req_headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
            status = resp.status
            raw = resp.read()
    except urllib.error.HTTPError as e:
        try:
            raw_err = e.read()
        except OSError:
            raw_err = b""
        raise _error_from_body(raw_err, e.code, fallback_message, error_cls) from e
    except urllib.error.URLError as e:
        raise error_cls("NETWORK_ERROR", f"{fallback_message}: {e.reason}", 0) from e

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise error_cls("INVALID_RESPONSE", f"{fallback_message}: response is not JSON", status) from e
    if not isinstance(payload, dict) or not payload.get("success"):
        raise _error_from_body(raw, status, fallback_message, error_cls)
    return payload.get("data")
