"""Exception types raised while validating a model descriptor."""
from __future__ import annotations


class InvalidConfiguration(ValueError):
    """Raised when a descriptor field violates a build-time precondition.

    Carries the offending *field* name and a human-readable *details* string.
    An invalid configuration is a build defect, so callers are expected to let
    this propagate and abort engine initialisation.
    """

    def __init__(self, field: str, details: str) -> None:
        self.field = field
        self.details = details
        super().__init__(f"Invalid configuration for '{field}': {details}")
