"""Exceptions raised by the regularization engine."""


class RegularizationError(Exception):
    """Base class for regularization failures."""


class DataSourceUnavailable(RegularizationError):
    """The backing store could not be queried."""


class ConfigurationError(RegularizationError):
    """Year configuration is missing curated or uncurated years."""


class HierarchyNotReady(RegularizationError):
    """Prerequisite loads did not finish before auto-regularization started."""


class MakeConsistencyError(RegularizationError):
    """An uncurated make is already mapped to a different canonical make."""

    def __init__(self, uncurated_make_id: int, existing_canonical_make: str):
        self.uncurated_make_id = uncurated_make_id
        self.existing_canonical_make = existing_canonical_make
        super().__init__(
            f"This uncurated Make already maps to '{existing_canonical_make}'. "
            "All models from the same Make must map to the same canonical Make."
        )
