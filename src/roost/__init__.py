"""Roost — data synchronization, navigation gating and form validation
for modular business web clients.

Three cooperating pieces, all plain Python and asyncio:

- a query cache that deduplicates and shares server data between views;
- a mutation pipeline that validates writes and invalidates the cache;
- a navigation guard that gates protected views on auth state.

Basic usage::

    from roost import CacheKey, MutationPipeline, MutationSpec, QueryCache

    cache = QueryCache()
    pipeline = MutationPipeline(cache)

    sub = cache.subscribe(CacheKey("devises"), load_devises, on_change=redraw)
    await sub.wait()

    await pipeline.execute(
        MutationSpec(create_devise, affected_keys=("devises",), schema=devise_schema),
        {"code": "EUR", "nom": "Euro"},
    )

Navigation::

    from roost import NavigationGuard, RouteDescriptor, RouteRegistry

    registry = RouteRegistry([...])
    guard = NavigationGuard(registry, fallback="login")
    decision = guard.decide("devises", auth)
"""

__version__ = "0.1.0"
__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheKey",
    "ConfigurationError",
    "FetchError",
    "GuardDenied",
    "MutationError",
    "MutationPipeline",
    "MutationSpec",
    "NavigationDecision",
    "NavigationGuard",
    "NavigationOutcome",
    "QueryCache",
    "QueryOptions",
    "QueryStatus",
    "RetryPolicy",
    "RoostError",
    "RouteDescriptor",
    "RouteRegistry",
    "Schema",
    "SchemaRegistry",
    "Subscription",
    "ValidationError",
    "ValidationResult",
    "validate",
    "validate_async",
]

_LAZY: dict[str, str] = {
    "CacheConfig": "roost.config",
    "RetryPolicy": "roost.config",
    "ConfigurationError": "roost.errors",
    "FetchError": "roost.errors",
    "GuardDenied": "roost.errors",
    "MutationError": "roost.errors",
    "RoostError": "roost.errors",
    "ValidationError": "roost.errors",
    "CacheEntry": "roost.query",
    "CacheKey": "roost.query",
    "QueryCache": "roost.query",
    "QueryOptions": "roost.query",
    "QueryStatus": "roost.query",
    "Subscription": "roost.query",
    "MutationPipeline": "roost.mutation",
    "MutationSpec": "roost.mutation",
    "NavigationDecision": "roost.navigation",
    "NavigationGuard": "roost.navigation",
    "NavigationOutcome": "roost.navigation",
    "RouteDescriptor": "roost.routing",
    "RouteRegistry": "roost.routing",
    "Schema": "roost.validation",
    "SchemaRegistry": "roost.validation",
    "ValidationResult": "roost.validation",
    "validate": "roost.validation",
    "validate_async": "roost.validation",
}


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import roost`` fast while providing a clean top-level API.
    """
    module_name = _LAZY.get(name)
    if module_name is None:
        msg = f"module 'roost' has no attribute {name!r}"
        raise AttributeError(msg)

    from importlib import import_module

    return getattr(import_module(module_name), name)
