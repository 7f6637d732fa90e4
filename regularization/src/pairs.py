"""Uncurated Pair Finder."""

from typing import Optional

from loguru import logger

from .errors import ConfigurationError
from .models import CanonicalHierarchy, UncuratedPair, YearConfiguration
from .store import RegularizationStore


def assign_percentages(pairs: list[UncuratedPair]) -> list[UncuratedPair]:
    """Set each pair's share of the total records in the list."""
    total = sum(pair.record_count for pair in pairs)
    for pair in pairs:
        pair.percentage_of_total = pair.record_count / total * 100.0 if total else 0.0
    return pairs


class UncuratedPairFinder:
    def __init__(self, store: RegularizationStore, year_config: YearConfiguration):
        self.store = store
        self.year_config = year_config

    def find(
        self,
        include_exact_matches: bool = True,
        hierarchy: Optional[CanonicalHierarchy] = None,
    ) -> list[UncuratedPair]:
        """
        List the Make/Model pairs seen in uncurated years.

        When include_exact_matches is False, pairs whose names appear verbatim
        in the canonical hierarchy are left out. Without a hierarchy the
        curated names are taken from the store.
        """
        if not self.year_config.uncurated_years:
            raise ConfigurationError("No uncurated years configured")

        aggregates = self.store.uncurated_pair_aggregates(self.year_config.uncurated_years)
        canonical: set[tuple[str, str]] = set()
        if not include_exact_matches:
            if hierarchy is None:
                if not self.year_config.curated_years:
                    raise ConfigurationError("No curated years configured")
                canonical = {
                    (fact.make_name, fact.model_name)
                    for fact in self.store.curated_facts(self.year_config.curated_years)
                }
            else:
                canonical = hierarchy.canonical_keys()

        pairs = [
            UncuratedPair(
                make_id=agg.make_id,
                model_id=agg.model_id,
                make_name=agg.make_name,
                model_name=agg.model_name,
                record_count=agg.record_count,
                earliest_year=agg.earliest_year,
                latest_year=agg.latest_year,
            )
            for agg in aggregates
            if (agg.make_name, agg.model_name) not in canonical
        ]
        assign_percentages(pairs)
        logger.info(
            f"Found {len(pairs)} uncurated pairs in {self.year_config.uncurated_year_range}"
            f" (exact matches {'included' if include_exact_matches else 'excluded'})"
        )
        return pairs


def find_uncurated_pairs(
    store: RegularizationStore,
    year_config: YearConfiguration,
    include_exact_matches: bool = True,
    hierarchy: Optional[CanonicalHierarchy] = None,
) -> list[UncuratedPair]:
    return UncuratedPairFinder(store, year_config).find(include_exact_matches, hierarchy)
