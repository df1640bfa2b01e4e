"""Roost exception hierarchy.

Shared across the query cache, mutation pipeline, validation engine, and
navigation guard so every module raises and catches the same types.
"""

from typing import Any


class RoostError(Exception):
    """Base for all roost-specific errors."""


class ConfigurationError(RoostError):
    """Raised when a route table, schema, or cache setting is invalid.

    Typically raised once, at construction time, never during a request.
    """


class SchemaCycleError(ConfigurationError):
    """Raised when a schema embeds itself, directly or transitively."""

    def __init__(self, cycle: tuple[str, ...]) -> None:
        self.cycle = cycle
        super().__init__(f"Cyclic schema composition: {' -> '.join(cycle)}")


class UnknownRouteError(RoostError, LookupError):
    """Raised when a route id is not present in the registry."""

    def __init__(self, route_id: str, detail: str = "") -> None:
        self.route_id = route_id
        super().__init__(detail or f"No route registered with id {route_id!r}")


class DependencyNotInstalledError(RoostError):
    """Raised when an optional dependency (e.g. httpx) is missing."""


class FetchError(RoostError):
    """A query fetcher failed, after all automatic retries.

    Stored on ``CacheEntry.error``; the original exception is available as
    ``cause`` (and ``__cause__``).
    """

    def __init__(self, key: Any, cause: BaseException, attempts: int = 1) -> None:
        self.key = key
        self.cause = cause
        self.attempts = attempts
        super().__init__(f"Fetch for {key} failed after {attempts} attempt(s): {cause}")
        self.__cause__ = cause


class MutationError(RoostError):
    """A write operation failed. Never retried automatically."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        self.cause = cause
        label = name or "mutation"
        super().__init__(f"{label} failed: {cause}")
        self.__cause__ = cause


class ValidationError(RoostError):
    """A payload failed its schema before any write was attempted."""

    def __init__(self, result: Any) -> None:
        self.result = result
        self.errors: dict[str, list[str]] = dict(result.errors)
        fields = ", ".join(sorted(self.errors)) or "<none>"
        super().__init__(f"Validation failed for: {fields}")


class GuardDenied(RoostError):
    """Raised by ``NavigationGuard.require()`` when navigation is not allowed.

    ``decide()`` never raises this; it returns the decision instead.
    """

    def __init__(self, decision: Any) -> None:
        self.decision = decision
        super().__init__(
            f"Navigation to {decision.route.id!r} {decision.outcome.value}: {decision.reason}"
        )


class RemoteError(RoostError):
    """Raised by the HTTP adapters when the server answers with a non-2xx status."""

    def __init__(self, status: int, detail: str, url: str = "") -> None:
        self.status = status
        self.detail = detail
        self.url = url
        where = f" from {url}" if url else ""
        super().__init__(f"{status}{where}: {detail}")
