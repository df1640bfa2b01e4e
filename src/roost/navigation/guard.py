"""Navigation guard — decides whether a view may mount.

Each navigation attempt starts in *requested* and ends in exactly one
terminal outcome:

- ``ALLOWED``: public route, or protected route with an authenticated
  user holding at least one of the route's roles (if it declares any);
- ``REDIRECTED``: protected route, unauthenticated user, fallback route
  configured (typically the login view); the decision carries the original
  request so the login flow can resume it;
- ``DENIED``: everything else.

A denial or redirect is an ordinary decision, not an error: callers branch
on ``decision.outcome``. ``require()`` is available for code that prefers
an exception.

The guard holds no mutable state. It reads the auth state at decision time
and never subscribes to it; the view layer re-runs the guard when auth
changes.

Usage::

    guard = NavigationGuard(registry, fallback="login")

    decision = guard.decide("devises", auth)
    match decision.outcome:
        case NavigationOutcome.ALLOWED:
            mount(decision.route)
        case NavigationOutcome.REDIRECTED:
            go_to(decision.location)      # "/login?next=%2Fdevises"
        case NavigationOutcome.DENIED:
            show_forbidden()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

from roost.audit import emit_event
from roost.errors import ConfigurationError, GuardDenied
from roost.routing.registry import RouteRegistry
from roost.routing.route import RouteDescriptor

_log = logging.getLogger("roost.navigation")


# ---------------------------------------------------------------------------
# Auth state
# ---------------------------------------------------------------------------


@runtime_checkable
class AuthState(Protocol):
    """Read-only view of the current user's authentication.

    Any object with ``is_authenticated`` and ``roles`` satisfies this;
    the application owns it and the guard never mutates it.
    """

    @property
    def is_authenticated(self) -> bool: ...

    @property
    def roles(self) -> frozenset[str]: ...


@dataclass(frozen=True, slots=True)
class Auth:
    """A plain ``AuthState`` snapshot."""

    is_authenticated: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)


ANONYMOUS = Auth()


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class NavigationOutcome(Enum):
    """Terminal states of a navigation attempt."""

    ALLOWED = "allowed"
    DENIED = "denied"
    REDIRECTED = "redirected"


@dataclass(frozen=True, slots=True)
class NavigationRequest:
    """What the user asked for: a route id, its params, and the built path."""

    route_id: str
    params: dict[str, Any]
    path: str


@dataclass(frozen=True, slots=True)
class NavigationDecision:
    """The guard's verdict for one navigation attempt.

    Attributes:
        outcome: Terminal state.
        route: Descriptor of the requested route.
        request: The original request.
        reason: Short machine-readable reason (``"public"``,
            ``"authenticated"``, ``"unauthenticated"``, ``"forbidden"``).
        redirect_to: Fallback path when ``REDIRECTED``.
        resume: The original request when ``REDIRECTED``, so the fallback
            flow can continue to it after authentication.
    """

    outcome: NavigationOutcome
    route: RouteDescriptor
    request: NavigationRequest
    reason: str
    redirect_to: str | None = None
    resume: NavigationRequest | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is NavigationOutcome.ALLOWED

    @property
    def location(self) -> str | None:
        """Redirect target with the original path as ``next``, or ``None``."""
        if self.redirect_to is None:
            return None
        if self.resume is None:
            return self.redirect_to
        separator = "&" if "?" in self.redirect_to else "?"
        return f"{self.redirect_to}{separator}next={quote(self.resume.path, safe='')}"


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class NavigationGuard:
    """Stateless decision function over a ``RouteRegistry``.

    Args:
        registry: The application's route table.
        fallback: Route id to redirect unauthenticated users to (usually
            the login route). Its path must not take parameters. ``None``
            turns those redirects into denials.

    Raises:
        UnknownRouteError: *fallback* is not registered.
        ConfigurationError: *fallback* needs path parameters.
    """

    __slots__ = ("_fallback", "_fallback_path", "_registry")

    def __init__(self, registry: RouteRegistry, *, fallback: str | None = None) -> None:
        self._fallback_path: str | None = None
        if fallback is not None:
            try:
                self._fallback_path = registry.build(fallback)
            except ValueError as exc:
                msg = f"Fallback route {fallback!r} cannot take path parameters: {exc}"
                raise ConfigurationError(msg) from exc
        self._registry = registry
        self._fallback = fallback

    @property
    def registry(self) -> RouteRegistry:
        return self._registry

    @property
    def fallback(self) -> str | None:
        return self._fallback

    def decide(
        self,
        route_id: str,
        auth: AuthState,
        params: Mapping[str, Any] | None = None,
    ) -> NavigationDecision:
        """Evaluate one navigation attempt.

        Raises ``UnknownRouteError`` if *route_id* is not registered.
        """
        route = self._registry.get(route_id)
        try:
            path = self._registry.build(route.id, params)
        except ValueError:
            # Params incomplete: keep the template so the request stays identifiable
            path = route.path
        request = NavigationRequest(route_id=route.id, params=dict(params or {}), path=path)

        if not route.protected:
            return NavigationDecision(NavigationOutcome.ALLOWED, route, request, reason="public")

        if not auth.is_authenticated:
            if self._fallback_path is not None and self._fallback != route.id:
                redirect_to = self._fallback_path
                _log.debug("Redirecting %s to %s", request.path, redirect_to)
                emit_event(
                    "navigation.redirected",
                    route_id=route.id,
                    details={"path": request.path, "to": redirect_to},
                )
                return NavigationDecision(
                    NavigationOutcome.REDIRECTED,
                    route,
                    request,
                    reason="unauthenticated",
                    redirect_to=redirect_to,
                    resume=request,
                )
            emit_event("navigation.denied", route_id=route.id, details={"reason": "unauthenticated"})
            return NavigationDecision(NavigationOutcome.DENIED, route, request, reason="unauthenticated")

        if route.roles and not (route.roles & frozenset(auth.roles or ())):
            _log.info(
                "Navigation to %s denied: requires one of %s",
                route.id,
                ", ".join(sorted(route.roles)),
            )
            emit_event(
                "navigation.denied",
                route_id=route.id,
                details={"reason": "forbidden", "required": sorted(route.roles)},
            )
            return NavigationDecision(NavigationOutcome.DENIED, route, request, reason="forbidden")

        return NavigationDecision(NavigationOutcome.ALLOWED, route, request, reason="authenticated")

    def decide_path(self, path: str, auth: AuthState) -> NavigationDecision:
        """Resolve a concrete path through the registry, then ``decide()``."""
        match = self._registry.match(path)
        return self.decide(match.route.id, auth, match.params)

    def require(
        self,
        route_id: str,
        auth: AuthState,
        params: Mapping[str, Any] | None = None,
    ) -> NavigationDecision:
        """Like ``decide()``, but raise ``GuardDenied`` unless allowed."""
        decision = self.decide(route_id, auth, params)
        if not decision.allowed:
            raise GuardDenied(decision)
        return decision
