"""Helpers shared by the test modules."""

from datetime import datetime, timedelta

from starlette.requests import Request
from starlette.responses import Response


class MutableClock:
    """Callable clock that tests move forward by hand."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


def make_request(cookies=None) -> Request:
    """Bare ASGI request carrying the given cookies."""
    header = "; ".join(f"{name}={value}" for name, value in (cookies or {}).items())
    headers = [(b"cookie", header.encode("latin-1"))] if header else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "query_string": b""})


def set_cookie_headers(response: Response):
    return [value.decode("latin-1") for key, value in response.raw_headers if key == b"set-cookie"]


def cookie_value(response: Response, name: str) -> str:
    """Value of the last Set-Cookie for ``name``."""
    for header in reversed(set_cookie_headers(response)):
        pair = header.split(";", 1)[0]
        key, _, value = pair.partition("=")
        if key == name:
            return value
    raise AssertionError(f"no Set-Cookie for {name}")
