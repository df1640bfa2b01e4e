"""Route registry with trie-based path matching.

The registry is built once from a static table of ``RouteDescriptor``
records and is immutable afterwards: there is no registration API after
construction.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any
from urllib.parse import unquote, urlencode

from roost.errors import ConfigurationError, UnknownRouteError
from roost.routing.params import CONVERTERS, Converter
from roost.routing.route import PathSegment, RouteDescriptor, RouteMatch

_PARAM_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_path(path: str) -> list[PathSegment]:
    """Parse a path template into segments.

    Examples::

        "/devises"            -> [PathSegment("devises")]
        "/devises/{id}"       -> [PathSegment("devises"), PathSegment("{id}", is_param=True, ...)]
        "/devises/{id:int}"   -> [..., PathSegment("{id:int}", is_param=True, param_type="int")]
        "/docs/{rest:path}"   -> [..., PathSegment("{rest:path}", is_param=True, param_type="path")]

    Raises ``ConfigurationError`` for malformed templates.
    """
    if not path.startswith("/"):
        msg = f"Path template must start with '/': {path!r}"
        raise ConfigurationError(msg)

    segments: list[PathSegment] = []
    parts = [p for p in path.strip("/").split("/") if p]
    for index, part in enumerate(parts):
        if part.startswith("<") and part.endswith(">"):
            msg = (
                f"Route {path!r} uses <param> syntax. "
                "Use {param} or {param:int} instead."
            )
            raise ConfigurationError(msg)

        if not (part.startswith("{") and part.endswith("}")):
            segments.append(PathSegment(value=part))
            continue

        inner = part[1:-1]
        param_name, _, param_type = inner.partition(":")
        param_type = param_type or "str"
        if not _PARAM_NAME_RE.match(param_name):
            msg = f"Invalid parameter name {param_name!r} in route {path!r}"
            raise ConfigurationError(msg)
        if param_type not in CONVERTERS:
            options = ", ".join(sorted(CONVERTERS))
            msg = f"Unknown converter {param_type!r} in route {path!r}. Use one of: {options}"
            raise ConfigurationError(msg)
        if param_type == "path" and index != len(parts) - 1:
            msg = f"{{{param_name}:path}} must be the last segment of {path!r}"
            raise ConfigurationError(msg)
        segments.append(
            PathSegment(
                value=part,
                is_param=True,
                param_name=param_name,
                param_type=param_type,
            )
        )
    return segments


class _TrieNode:
    """A node in the route trie. Mutable during construction only."""

    __slots__ = ("catch_all", "children", "param_children", "route")

    def __init__(self) -> None:
        self.children: dict[str, _TrieNode] = {}
        self.param_children: list[_ParamEdge] = []
        self.catch_all: _CatchAllEdge | None = None
        self.route: RouteDescriptor | None = None


@dataclass(slots=True)
class _ParamEdge:
    """A parameter edge in the trie."""

    param_name: str
    param_type: str
    converter: Converter
    node: _TrieNode


@dataclass(slots=True)
class _CatchAllEdge:
    """A catch-all (path) edge — consumes the remaining path."""

    param_name: str
    route: RouteDescriptor


class RouteRegistry:
    """Immutable mapping from route id to ``RouteDescriptor``.

    Usage::

        registry = RouteRegistry([
            RouteDescriptor("login", "/login", module="auth"),
            RouteDescriptor("devises", "/devises", module="referentiel", protected=True),
            RouteDescriptor("devise", "/devises/{id:int}", module="referentiel", protected=True),
        ])
        registry.get("devise").path          # "/devises/{id:int}"
        registry.build("devise", {"id": 3})  # "/devises/3"
        registry.match("/devises/3")         # RouteMatch(route=..., params={"id": 3})
    """

    __slots__ = ("_by_id", "_segments", "_root")

    def __init__(self, routes: Iterable[RouteDescriptor]) -> None:
        by_id: dict[str, RouteDescriptor] = {}
        self._segments: dict[str, list[PathSegment]] = {}
        self._root = _TrieNode()

        for route in routes:
            if route.id in by_id:
                msg = f"Duplicate route id {route.id!r}"
                raise ConfigurationError(msg)
            segments = parse_path(route.path)
            self._insert(route, segments)
            by_id[route.id] = route
            self._segments[route.id] = segments

        self._by_id: Mapping[str, RouteDescriptor] = MappingProxyType(by_id)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> RouteRegistry:
        """Build a registry from plain dicts (e.g. a JSON route table).

        Each record needs ``id`` and ``path``; ``module``, ``protected``
        and ``roles`` are optional.
        """
        routes: list[RouteDescriptor] = []
        for record in records:
            try:
                routes.append(
                    RouteDescriptor(
                        id=record["id"],
                        path=record["path"],
                        module=record.get("module", ""),
                        protected=bool(record.get("protected", False)),
                        roles=frozenset(record.get("roles", ())),
                    )
                )
            except KeyError as exc:
                msg = f"Route record {dict(record)!r} is missing {exc.args[0]!r}"
                raise ConfigurationError(msg) from None
        return cls(routes)

    # -- Construction --

    def _insert(self, route: RouteDescriptor, segments: list[PathSegment]) -> None:
        node = self._root
        for seg in segments:
            if seg.is_param and seg.param_type == "path":
                if node.catch_all is not None:
                    msg = (
                        f"Routes {node.catch_all.route.id!r} and {route.id!r} "
                        "both declare a catch-all at the same position"
                    )
                    raise ConfigurationError(msg)
                node.catch_all = _CatchAllEdge(param_name=seg.param_name or "path", route=route)
                return

            if seg.is_param:
                edge = next(
                    (
                        e
                        for e in node.param_children
                        if e.param_name == seg.param_name and e.param_type == seg.param_type
                    ),
                    None,
                )
                if edge is None:
                    edge = _ParamEdge(
                        param_name=seg.param_name or "",
                        param_type=seg.param_type,
                        converter=CONVERTERS[seg.param_type],
                        node=_TrieNode(),
                    )
                    node.param_children.append(edge)
                node = edge.node
            else:
                node = node.children.setdefault(seg.value, _TrieNode())

        if node.route is not None:
            msg = f"Routes {node.route.id!r} and {route.id!r} share the path {route.path!r}"
            raise ConfigurationError(msg)
        node.route = route

    # -- Lookup --

    def get(self, route_id: str) -> RouteDescriptor:
        """Return the descriptor for *route_id* or raise ``UnknownRouteError``."""
        try:
            return self._by_id[route_id]
        except KeyError:
            raise UnknownRouteError(route_id) from None

    def __contains__(self, route_id: object) -> bool:
        return route_id in self._by_id

    def __iter__(self) -> Iterator[RouteDescriptor]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def modules(self) -> tuple[str, ...]:
        """Module names in first-declared order."""
        return tuple(dict.fromkeys(route.module for route in self._by_id.values()))

    def by_module(self, module: str) -> tuple[RouteDescriptor, ...]:
        """All routes grouped under *module*, in declaration order."""
        return tuple(route for route in self._by_id.values() if route.module == module)

    def build(self, route_id: str, params: Mapping[str, Any] | None = None) -> str:
        """Fill the route's path template with *params*.

        Parameters not named in the template are appended as a query
        string. Raises ``ValueError`` for a missing or ill-typed parameter.
        """
        route = self.get(route_id)
        values = dict(params or {})
        parts: list[str] = []
        for seg in self._segments[route_id]:
            if not seg.is_param:
                parts.append(seg.value)
                continue
            name = seg.param_name or ""
            if name not in values:
                msg = f"Route {route.id!r} requires parameter {name!r}"
                raise ValueError(msg)
            try:
                parts.append(CONVERTERS[seg.param_type].to_url(values.pop(name)))
            except ValueError as exc:
                msg = f"Parameter {name!r} in route {route.id!r}: {exc}"
                raise ValueError(msg) from exc

        path = "/" + "/".join(parts)
        if values:
            path = f"{path}?{urlencode(sorted(values.items()), doseq=True)}"
        return path

    def match(self, path: str) -> RouteMatch:
        """Resolve a concrete path to its route.

        Static segments win over parameters, parameters over catch-alls.
        Raises ``UnknownRouteError`` when nothing matches.
        """
        path = path.split("?", 1)[0]
        parts = [p for p in path.strip("/").split("/") if p]
        result = self._match_node(self._root, parts, 0, {})
        if result is None:
            raise UnknownRouteError(path, f"No route matches path {path!r}")
        route, raw_params = result

        params: dict[str, Any] = {}
        for seg in self._segments[route.id]:
            if seg.is_param and seg.param_name in raw_params:
                params[seg.param_name] = CONVERTERS[seg.param_type].parse(unquote(raw_params[seg.param_name]))
        return RouteMatch(route=route, params=params)

    def _match_node(
        self,
        node: _TrieNode,
        parts: list[str],
        index: int,
        params: dict[str, str],
    ) -> tuple[RouteDescriptor, dict[str, str]] | None:
        """Recursively match path parts against the trie."""
        if index == len(parts):
            if node.route is not None:
                return node.route, params
            return None

        part = parts[index]

        # 1. Static child (exact match)
        if part in node.children:
            result = self._match_node(node.children[part], parts, index + 1, params)
            if result is not None:
                return result

        # 2. Parameter children, in declaration order
        for edge in node.param_children:
            if edge.converter.accepts(part):
                new_params = {**params, edge.param_name: part}
                result = self._match_node(edge.node, parts, index + 1, new_params)
                if result is not None:
                    return result

        # 3. Catch-all
        if node.catch_all is not None:
            remaining = "/".join(parts[index:])
            return node.catch_all.route, {**params, node.catch_all.param_name: remaining}

        return None
