"""RouteDescriptor, PathSegment and RouteMatch frozen dataclasses."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a path template.

    Static:  ``/devises``     (is_param=False)
    Param:   ``/{id}``        (is_param=True, param_name="id")
    Typed:   ``/{id:int}``    (is_param=True, param_name="id", param_type="int")
    """

    value: str
    is_param: bool = False
    param_name: str | None = None
    param_type: str = "str"


@dataclass(frozen=True, slots=True)
class RouteDescriptor:
    """A logical route: id, path template, owning module, protection.

    ``roles`` lists the roles that may open a protected route; an empty set
    means any authenticated user. Roles are ignored for public routes.
    """

    id: str
    path: str
    module: str = ""
    protected: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of resolving a concrete path to a route."""

    route: RouteDescriptor
    params: dict[str, Any]
