"""Gate.io APIv4 request signing.

Sign string (one field per line, LF separated)::

    METHOD
    /api/v4/futures/usdt/<path>
    <sorted, form-encoded query>   (GET/DELETE only, may be empty)
    <hex sha512 of body>           (sha512("") for GET/DELETE)
    <unix seconds>

signed with HMAC-SHA512 over the API secret, hex encoded.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

READ_METHODS = ("GET", "DELETE")
EMPTY_BODY_HASH = hashlib.sha512(b"").hexdigest()


def compact_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"))


def canonical_query(params: Optional[Mapping[str, Any]]) -> str:
    """Deterministic query string: keys sorted, values stringified, form-encoded."""
    if not params:
        return ""
    items = [(str(k), _query_value(v)) for k, v in params.items() if v is not None]
    items.sort(key=lambda kv: kv[0])
    return urlencode(items)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def body_hash(method: str, body: str) -> str:
    if method.upper() in READ_METHODS:
        return EMPTY_BODY_HASH
    return hashlib.sha512((body or "").encode("utf-8")).hexdigest()


class GateSigner:
    def __init__(
        self,
        api_key: str,
        secret_key: str,
        *,
        path_prefix: str = "/api/v4/futures/usdt",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_key = api_key
        self.secret_key = secret_key
        self.path_prefix = path_prefix.rstrip("/")
        self._clock = clock

    def sign_string(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        body: str,
        timestamp: str,
    ) -> str:
        upper = method.upper()
        query = canonical_query(params) if upper in READ_METHODS else ""
        return "\n".join(
            (upper, f"{self.path_prefix}{path}", query, body_hash(upper, body), timestamp)
        )

    def sign(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: str = "",
    ) -> Dict[str, str]:
        timestamp = str(int(self._clock()))
        message = self.sign_string(method, path, params, body, timestamp)
        signature = hmac.new(
            self.secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha512
        ).hexdigest()
        return {
            "KEY": self.api_key,
            "SIGN": signature,
            "Timestamp": timestamp,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
