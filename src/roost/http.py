"""HTTP adapters — fetchers and mutation operations over httpx.

The cache and pipeline accept any callable; these adapters cover the
common case of a JSON API. Requires ``httpx`` (``pip install roost[http]``).

Timeouts belong to the fetcher, not the cache: ``create_client`` sets one
on every request so an unresponsive server cannot leave an entry pending
forever.

Usage::

    client = create_client("https://erp.example.com/api")

    devises = HttpFetcher(client, "/devises")
    devise = HttpFetcher(client, "/devises/{id}")          # id taken from key params
    create_devise = HttpOperation(client, "POST", "/devises")
    update_devise = HttpOperation(client, "PUT", "/devises/{id}")

    sub = cache.subscribe(CacheKey.of("devise", id=3), devise)
    await pipeline.execute(MutationSpec(create_devise, ("devises",)), payload)
"""

from __future__ import annotations

import string
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from roost.errors import DependencyNotInstalledError, RemoteError
from roost.query.keys import CacheKey

if TYPE_CHECKING:
    import httpx

DEFAULT_TIMEOUT = 10.0

_formatter = string.Formatter()


def _get_httpx() -> Any:
    """Import httpx or raise a clear error."""
    try:
        import httpx

        return httpx
    except ImportError:
        msg = (
            "roost.http requires 'httpx'. "
            "Install it with: pip install roost[http]"
        )
        raise DependencyNotInstalledError(msg) from None


def create_client(
    base_url: str = "",
    *,
    timeout: float = DEFAULT_TIMEOUT,
    headers: Mapping[str, str] | None = None,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Build the shared ``httpx.AsyncClient`` for an application."""
    httpx = _get_httpx()
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers={"accept": "application/json", **(headers or {})},
        **kwargs,
    )


def _template_fields(template: str) -> frozenset[str]:
    return frozenset(name for _, name, _, _ in _formatter.parse(template) if name)


def _decode(response: httpx.Response) -> Any:
    """Return the JSON body of a 2xx response, raise ``RemoteError`` otherwise."""
    if not response.is_success:
        raise RemoteError(response.status_code, response.text, str(response.request.url))
    if not response.content:
        return None
    return response.json()


class HttpFetcher:
    """Query fetcher: ``GET path`` with the key's params.

    Params named in the path template are substituted into the path; the
    rest are sent as the query string. *path* may also be a callable
    ``(key) -> path``, in which case every param goes to the query string.
    """

    __slots__ = ("_client", "_fields", "_path")

    def __init__(self, client: httpx.AsyncClient, path: str | Callable[[CacheKey], str]) -> None:
        self._client = client
        self._path = path
        self._fields = _template_fields(path) if isinstance(path, str) else frozenset()

    async def __call__(self, key: CacheKey) -> Any:
        params = dict(key.params)
        if isinstance(self._path, str):
            path = self._path.format(**params)
            query = {name: value for name, value in params.items() if name not in self._fields}
        else:
            path = self._path(key)
            query = params
        response = await self._client.get(path, params=query or None)
        return _decode(response)

    def __repr__(self) -> str:
        return f"HttpFetcher({self._path!r})"


class HttpOperation:
    """Mutation operation: send the payload as JSON with *method* to *path*.

    Payload fields named in the path template fill it in
    (``"/devises/{id}"``); the whole payload is still sent as the body.
    ``DELETE`` sends no body.
    """

    __slots__ = ("_client", "_method", "_path")

    def __init__(self, client: httpx.AsyncClient, method: str, path: str) -> None:
        self._client = client
        self._method = method.upper()
        self._path = path

    async def __call__(self, payload: Any) -> Any:
        fields = payload if isinstance(payload, Mapping) else {}
        path = self._path.format(**fields)
        if self._method == "DELETE":
            response = await self._client.request(self._method, path)
        else:
            response = await self._client.request(self._method, path, json=payload)
        return _decode(response)

    def __repr__(self) -> str:
        return f"HttpOperation({self._method!r}, {self._path!r})"
