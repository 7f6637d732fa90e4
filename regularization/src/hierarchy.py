"""
Canonical Hierarchy Builder

Projects curated registration records into the Make -> Model tree that
uncurated pairs are resolved against. Each model carries two independent
projections of the curated rows:
- vehicle types, counts summed across model years and fuel types
- fuel types per model year, counts summed across vehicle types

Rows without a model year are grouped under NO_MODEL_YEAR.
"""

from typing import Iterable, Optional

from loguru import logger

from .errors import ConfigurationError
from .models import (
    NO_MODEL_YEAR,
    CanonicalHierarchy,
    CanonicalMake,
    CanonicalModel,
    FuelTypeInfo,
    VehicleTypeInfo,
    YearConfiguration,
)
from .store import CuratedFact, RegularizationStore


def build_hierarchy(facts: Iterable[CuratedFact]) -> CanonicalHierarchy:
    """Group curated facts into a sorted canonical hierarchy."""
    makes: dict[int, CanonicalMake] = {}
    models: dict[tuple[int, int], CanonicalModel] = {}
    vehicle_types: dict[tuple[int, int], dict[int, VehicleTypeInfo]] = {}
    fuel_types: dict[tuple[int, int], dict[int, dict[int, FuelTypeInfo]]] = {}

    for fact in facts:
        make = makes.get(fact.make_id)
        if make is None:
            make = makes[fact.make_id] = CanonicalMake(id=fact.make_id, name=fact.make_name)

        key = (fact.make_id, fact.model_id)
        model = models.get(key)
        if model is None:
            model = models[key] = CanonicalModel(
                id=fact.model_id,
                name=fact.model_name,
                make_id=fact.make_id,
                make_name=fact.make_name,
            )
            make.models.append(model)
            vehicle_types[key] = {}
            fuel_types[key] = {}

        year_id = fact.model_year_id if fact.model_year_id is not None else NO_MODEL_YEAR
        if year_id != NO_MODEL_YEAR and fact.model_year is not None:
            model.model_years[year_id] = fact.model_year
        year_fuels = fuel_types[key].setdefault(year_id, {})

        if fact.vehicle_type_id is not None:
            info = vehicle_types[key].get(fact.vehicle_type_id)
            if info is None:
                info = vehicle_types[key][fact.vehicle_type_id] = VehicleTypeInfo(
                    id=fact.vehicle_type_id,
                    code=fact.vehicle_type_code or "",
                    description=fact.vehicle_type_description or "",
                )
            info.record_count += fact.record_count

        if fact.fuel_type_id is not None:
            info = year_fuels.get(fact.fuel_type_id)
            if info is None:
                info = year_fuels[fact.fuel_type_id] = FuelTypeInfo(
                    id=fact.fuel_type_id,
                    code=fact.fuel_type_code or "",
                    description=fact.fuel_type_description or "",
                    model_year_id=year_id,
                    model_year=fact.model_year if year_id != NO_MODEL_YEAR else None,
                )
            info.record_count += fact.record_count

    for key, model in models.items():
        model.vehicle_types = sorted(vehicle_types[key].values(), key=lambda v: v.code)
        model.model_year_fuel_types = {
            year_id: sorted(fuels.values(), key=lambda f: f.description)
            for year_id, fuels in fuel_types[key].items()
        }

    ordered = sorted(makes.values(), key=lambda m: m.name)
    for make in ordered:
        make.models.sort(key=lambda m: m.name)
    return CanonicalHierarchy(makes=ordered)


class CanonicalHierarchyBuilder:
    """Memoizes the canonical hierarchy for the configured curated years."""

    def __init__(self, store: RegularizationStore, year_config: YearConfiguration):
        self.store = store
        self._year_config = year_config
        self._cached: Optional[CanonicalHierarchy] = None

    @property
    def year_config(self) -> YearConfiguration:
        return self._year_config

    @year_config.setter
    def year_config(self, value: YearConfiguration) -> None:
        self._year_config = value
        self._cached = None
        logger.debug("Year configuration changed, canonical hierarchy cache cleared")

    @property
    def cached(self) -> Optional[CanonicalHierarchy]:
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    def generate(self, force_refresh: bool = False) -> CanonicalHierarchy:
        """
        Return the canonical hierarchy, building it on first use.

        Store failures propagate as DataSourceUnavailable and leave any
        previously cached hierarchy in place.
        """
        if self._cached is not None and not force_refresh:
            return self._cached

        if not self._year_config.curated_years:
            raise ConfigurationError("No curated years configured")

        logger.info(f"Building canonical hierarchy for curated years {self._year_config.curated_year_range}")
        facts = self.store.curated_facts(self._year_config.curated_years)
        hierarchy = build_hierarchy(facts)
        self._cached = hierarchy
        logger.info(f"Canonical hierarchy: {len(hierarchy.makes)} makes, {hierarchy.model_count} models")
        return hierarchy
