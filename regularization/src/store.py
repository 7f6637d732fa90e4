"""
Storage contract consumed by the regularization engine.

The engine never talks SQL directly: every scan and write goes through an
object implementing RegularizationStore (see backend.store.SQLModelStore for
the SQLite implementation). All methods are synchronous; callers that need
async boundaries wrap them with asyncio.to_thread.
"""

from typing import Iterable, Optional, Protocol

from pydantic import BaseModel

from .models import (
    FuelTypeInfo,
    ModelYearCount,
    RegularizationMapping,
    RegularizationStatistics,
    VehicleTypeInfo,
)


class CuratedFact(BaseModel):
    """Curated record count for one make/model/model year/fuel/vehicle type combination."""
    make_id: int
    make_name: str
    model_id: int
    model_name: str
    model_year_id: Optional[int] = None
    model_year: Optional[int] = None
    fuel_type_id: Optional[int] = None
    fuel_type_code: Optional[str] = None
    fuel_type_description: Optional[str] = None
    vehicle_type_id: Optional[int] = None
    vehicle_type_code: Optional[str] = None
    vehicle_type_description: Optional[str] = None
    record_count: int = 0


class PairAggregate(BaseModel):
    """Uncurated records grouped by make/model."""
    make_id: int
    model_id: int
    make_name: str
    model_name: str
    earliest_year: int
    latest_year: int
    record_count: int


class RegularizationStore(Protocol):
    def curated_facts(self, curated_years: Iterable[int]) -> list[CuratedFact]: ...

    def uncurated_pair_aggregates(self, uncurated_years: Iterable[int]) -> list[PairAggregate]: ...

    def model_year_counts(
        self, make_id: int, model_id: int, uncurated_years: Iterable[int]
    ) -> list[ModelYearCount]: ...

    def model_years_by_pair(self, uncurated_years: Iterable[int]) -> dict[str, set[int]]: ...

    def uncurated_record_count(
        self,
        make_id: int,
        model_id: int,
        model_year_id: Optional[int],
        uncurated_years: Iterable[int],
    ) -> int: ...

    def get_all_mappings(self) -> list[RegularizationMapping]: ...

    def upsert_mapping(
        self,
        uncurated_make_id: int,
        uncurated_model_id: int,
        model_year_id: Optional[int],
        canonical_make_id: int,
        canonical_model_id: int,
        fuel_type_id: Optional[int],
        vehicle_type_id: Optional[int],
        record_count: int,
        year_range_start: int,
        year_range_end: int,
    ) -> None: ...

    def canonical_makes_for(self, uncurated_make_id: int) -> list[tuple[int, str]]: ...

    def get_enum_id(self, table: str, column: str, value: str) -> Optional[int]: ...

    def all_vehicle_types(self) -> list[VehicleTypeInfo]: ...

    def all_fuel_types(self) -> list[FuelTypeInfo]: ...

    def regularization_vehicle_types(self) -> list[VehicleTypeInfo]: ...

    def statistics(self, uncurated_years: Iterable[int]) -> RegularizationStatistics: ...
