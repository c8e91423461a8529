"""Shared fakes: a scripted ``requests.Session`` stand-in and position builders."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Tuple, Union
from urllib.parse import urlsplit

import pytest

from trading.models import Position


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = "" if payload is None else json.dumps(payload)
        self.text = text

    def json(self) -> Any:
        return json.loads(self.text)


Route = Union[FakeResponse, List[FakeResponse], Callable[[SimpleNamespace], FakeResponse]]


class FakeSession:
    """Routes ``(METHOD, url path)`` to canned responses and records every call."""

    def __init__(self, routes: Dict[Tuple[str, str], Route] = None):
        self.routes: Dict[Tuple[str, str], Route] = dict(routes or {})
        self.calls: List[SimpleNamespace] = []
        self.closed = False

    def request(self, method, url, params=None, data=None, headers=None, timeout=None):
        parts = urlsplit(url)
        call = SimpleNamespace(
            method=method,
            url=url,
            path=parts.path,
            query=parts.query,
            params=params,
            data=data,
            headers=dict(headers or {}),
            timeout=timeout,
        )
        self.calls.append(call)
        route = self.routes.get((method, parts.path))
        if route is None:
            return FakeResponse(404, {"label": "ROUTE_NOT_FOUND", "message": f"no route for {method} {parts.path}"})
        if isinstance(route, list):
            return route.pop(0)
        if callable(route):
            return route(call)
        return route

    def close(self):
        self.closed = True

    def calls_to(self, method: str, path: str) -> List[SimpleNamespace]:
        return [c for c in self.calls if c.method == method and c.path == path]


def make_position(
    symbol: str = "BTCUSDT",
    amount: float = 1.0,
    *,
    entry: float = 100.0,
    mark: float = 100.0,
    upnl: float = 0.0,
    leverage: float = 10.0,
    liq: float = 0.0,
) -> Position:
    return Position(
        symbol=symbol,
        position_amt=amount,
        entry_price=entry,
        mark_price=mark,
        unrealized_pnl=upnl,
        leverage=leverage,
        liquidation_price=liq,
        side="long" if amount > 0 else "short",
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
