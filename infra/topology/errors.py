"""Errors raised while building a resource topology."""

from __future__ import annotations


class TopologyError(Exception):
    """Base error for topology construction and rendering."""


class TopologyValidationError(TopologyError):
    """An invariant was violated while defining a resource."""

    def __init__(self, entity: str, invariant: str, message: str) -> None:
        self.entity = entity
        self.invariant = invariant
        super().__init__(f"{entity}: {message} [{invariant}]")


class FirewallPolicyConflictError(TopologyValidationError):
    """An entry point already has a firewall policy bound to it."""


class DanglingReferenceError(TopologyError):
    """A resource refers to a resource that is not in the graph."""

    def __init__(self, entity: str, missing: str) -> None:
        self.entity = entity
        self.missing = missing
        super().__init__(f"{entity}: refers to {missing!r}, which is not in the graph")


class DuplicateResourceError(TopologyError):
    """A logical resource name is already taken in the graph."""

    def __init__(self, entity: str) -> None:
        self.entity = entity
        super().__init__(f"{entity}: a resource with this name already exists")


class SealedGraphError(TopologyError):
    """The graph was finished and can no longer change."""
