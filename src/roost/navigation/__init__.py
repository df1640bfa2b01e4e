"""Navigation gating for protected views."""

from roost.navigation.guard import (
    ANONYMOUS,
    Auth,
    AuthState,
    NavigationDecision,
    NavigationGuard,
    NavigationOutcome,
    NavigationRequest,
)

__all__ = [
    "ANONYMOUS",
    "Auth",
    "AuthState",
    "NavigationDecision",
    "NavigationGuard",
    "NavigationOutcome",
    "NavigationRequest",
]
