"""Routing — static route table with O(path-depth) matching.

Routes are declared once at startup and compiled into an immutable
lookup structure; the navigation guard reads it, nothing writes it.
"""

from roost.routing.registry import RouteRegistry, parse_path
from roost.routing.route import PathSegment, RouteDescriptor, RouteMatch

__all__ = [
    "PathSegment",
    "RouteDescriptor",
    "RouteMatch",
    "RouteRegistry",
    "parse_path",
]
