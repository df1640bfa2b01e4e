"""Mutations — validated, optimistic writes that invalidate cached queries."""

from roost.mutation.pipeline import (
    Failure,
    MutationPipeline,
    MutationSpec,
    Operation,
    OptimisticUpdate,
    Result,
    Success,
)

__all__ = [
    "Failure",
    "MutationPipeline",
    "MutationSpec",
    "Operation",
    "OptimisticUpdate",
    "Result",
    "Success",
]
