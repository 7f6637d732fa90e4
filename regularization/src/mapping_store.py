"""
Mapping Store

Persists wildcard (model_year_id None, carries vehicle type) and triplet
(model year scoped, carries fuel type) regularization rows. Saves are upserts
keyed by (uncurated make, uncurated model, model year), so repeated saves
never add rows.
"""

from collections import defaultdict
from typing import Optional

from loguru import logger

from .errors import ConfigurationError, DataSourceUnavailable, MakeConsistencyError
from .models import AutoRegularizationConfig, RegularizationMapping, YearConfiguration
from .store import RegularizationStore


def build_mapping_index(mappings: list[RegularizationMapping]) -> dict[str, list[RegularizationMapping]]:
    """Group mappings by uncurated pair key ("{make_id}_{model_id}")."""
    index: dict[str, list[RegularizationMapping]] = defaultdict(list)
    for mapping in mappings:
        index[mapping.uncurated_key].append(mapping)
    return dict(index)


class MappingStore:
    def __init__(
        self,
        store: RegularizationStore,
        year_config: YearConfiguration,
        config: Optional[AutoRegularizationConfig] = None,
    ):
        self.store = store
        self.year_config = year_config
        self.config = config or AutoRegularizationConfig()

    def get_all_mappings(self) -> list[RegularizationMapping]:
        mappings = self.store.get_all_mappings()
        logger.debug(f"Loaded {len(mappings)} regularization mappings")
        return mappings

    def load_index(self) -> dict[str, list[RegularizationMapping]]:
        return build_mapping_index(self.get_all_mappings())

    def validate_make_consistency(self, uncurated_make_id: int, canonical_make_id: int) -> None:
        """Raise MakeConsistencyError if the uncurated make already maps elsewhere."""
        for existing_id, existing_name in self.store.canonical_makes_for(uncurated_make_id):
            if existing_id != canonical_make_id:
                raise MakeConsistencyError(uncurated_make_id, existing_name)

    def save_mapping(
        self,
        uncurated_make_id: int,
        uncurated_model_id: int,
        model_year_id: Optional[int],
        canonical_make_id: int,
        canonical_model_id: int,
        fuel_type_id: Optional[int] = None,
        vehicle_type_id: Optional[int] = None,
    ) -> None:
        """
        Insert or replace the row for (uncurated make, uncurated model, model year).

        The stored record count covers the uncurated records the row applies to:
        one model year for a triplet, every model year for a wildcard.
        """
        years = self.year_config.uncurated_years
        if not years:
            raise ConfigurationError("No uncurated years configured")

        self.validate_make_consistency(uncurated_make_id, canonical_make_id)
        record_count = self.store.uncurated_record_count(
            uncurated_make_id, uncurated_model_id, model_year_id, years
        )
        self.store.upsert_mapping(
            uncurated_make_id=uncurated_make_id,
            uncurated_model_id=uncurated_model_id,
            model_year_id=model_year_id,
            canonical_make_id=canonical_make_id,
            canonical_model_id=canonical_model_id,
            fuel_type_id=fuel_type_id,
            vehicle_type_id=vehicle_type_id,
            record_count=record_count,
            year_range_start=min(years),
            year_range_end=max(years),
        )
        scope = "wildcard" if model_year_id is None else f"model year id {model_year_id}"
        logger.debug(
            f"Saved mapping {uncurated_make_id}_{uncurated_model_id} ({scope}) -> "
            f"{canonical_make_id}_{canonical_model_id}, {record_count} records"
        )

    # ─── Unknown sentinel resolution ───

    def _resolve_unknown(self, table: str, code: str) -> Optional[int]:
        try:
            enum_id = self.store.get_enum_id(table, "code", code)
        except DataSourceUnavailable as e:
            logger.warning(f"Could not resolve Unknown code '{code}' in {table}: {e}")
            return None
        if enum_id is None:
            logger.warning(f"Unknown code '{code}' not found in {table}, saving as unassigned")
        return enum_id

    def resolve_unknown_fuel_type(self) -> Optional[int]:
        return self._resolve_unknown("fuel_type_enum", self.config.unknown_fuel_type_code)

    def resolve_unknown_vehicle_type(self) -> Optional[int]:
        return self._resolve_unknown("vehicle_type_enum", self.config.unknown_vehicle_type_code)
