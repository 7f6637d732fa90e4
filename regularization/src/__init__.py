"""Regularization engine: hierarchy, pairs, mappings, resolver and session."""

def __getattr__(name):
    """Lazy imports so the models can be used without the engine modules."""
    if name == "RegularizationSession":
        from .session import RegularizationSession
        return RegularizationSession
    if name == "CanonicalHierarchyBuilder":
        from .hierarchy import CanonicalHierarchyBuilder
        return CanonicalHierarchyBuilder
    if name == "UncuratedPairFinder":
        from .pairs import UncuratedPairFinder
        return UncuratedPairFinder
    if name == "MappingStore":
        from .mapping_store import MappingStore
        return MappingStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "RegularizationSession",
    "CanonicalHierarchyBuilder",
    "UncuratedPairFinder",
    "MappingStore",
]
