"""Unified data models for the regularization engine."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Hierarchy key for curated rows that carry no model year
NO_MODEL_YEAR = 0

# Form-level placeholder for "Unknown", resolved to a real enum id before saving
UNKNOWN_SENTINEL = -1


def pair_key(make_id: int, model_id: int) -> str:
    return f"{make_id}_{model_id}"


class RegularizationStatus(str, Enum):
    UNASSIGNED = "unassigned"
    PARTIAL = "partial"
    COMPLETE = "complete"


# ─── Configuration ───

class YearConfiguration(BaseModel):
    """Which registration years are curated (canonical) and which are not."""
    curated_years: set[int] = Field(default_factory=set)
    uncurated_years: set[int] = Field(default_factory=set)

    @property
    def curated_year_range(self) -> str:
        return _year_range(self.curated_years)

    @property
    def uncurated_year_range(self) -> str:
        return _year_range(self.uncurated_years)


def _year_range(years: set[int]) -> str:
    if not years:
        return "none"
    return f"{min(years)}-{max(years)}"


class AutoRegularizationConfig(BaseModel):
    """Settings consulted by auto-regularization and form suggestions."""
    use_cardinal_types: bool = True
    cardinal_vehicle_type_codes: list[str] = Field(default_factory=list)
    placeholder_descriptions: list[str] = Field(
        default_factory=lambda: ["not specified", "not assigned", "non spécifié"]
    )
    unknown_fuel_type_code: str = "U"
    unknown_vehicle_type_code: str = "UK"
    dependency_wait_seconds: float = 60.0


# ─── Canonical Hierarchy ───

class VehicleTypeInfo(BaseModel):
    id: int
    code: str
    description: str
    record_count: int = 0


class FuelTypeInfo(BaseModel):
    id: int
    code: str
    description: str
    record_count: int = 0
    model_year_id: int = NO_MODEL_YEAR
    model_year: Optional[int] = None


class CanonicalModel(BaseModel):
    """One curated model with its vehicle types and per-year fuel types."""
    id: int
    name: str
    make_id: int
    make_name: str
    vehicle_types: list[VehicleTypeInfo] = Field(default_factory=list)
    # model_year_id -> fuel types observed for that year (NO_MODEL_YEAR for missing years)
    model_year_fuel_types: dict[int, list[FuelTypeInfo]] = Field(default_factory=dict)
    # model_year_id -> model year value
    model_years: dict[int, int] = Field(default_factory=dict)

    def model_year_id_for(self, model_year: int) -> Optional[int]:
        for year_id, year in self.model_years.items():
            if year == model_year:
                return year_id
        return None

    def fuel_types_for_year(self, model_year: int) -> Optional[list[FuelTypeInfo]]:
        """Fuel types seen for a model year value, or None if the year is unknown to this model."""
        year_id = self.model_year_id_for(model_year)
        if year_id is None:
            return None
        return self.model_year_fuel_types.get(year_id, [])


class CanonicalMake(BaseModel):
    id: int
    name: str
    models: list[CanonicalModel] = Field(default_factory=list)


class CanonicalHierarchy(BaseModel):
    makes: list[CanonicalMake] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def model_count(self) -> int:
        return sum(len(make.models) for make in self.makes)

    def find_make(self, name: str) -> Optional[CanonicalMake]:
        return next((make for make in self.makes if make.name == name), None)

    def find_model(self, make_name: str, model_name: str) -> Optional[CanonicalModel]:
        make = self.find_make(make_name)
        if make is None:
            return None
        return next((model for model in make.models if model.name == model_name), None)

    def find_model_by_id(self, make_id: int, model_id: int) -> Optional[CanonicalModel]:
        for make in self.makes:
            if make.id != make_id:
                continue
            return next((model for model in make.models if model.id == model_id), None)
        return None

    def model_lookup(self) -> dict[tuple[str, str], CanonicalModel]:
        """Exact-name index: (make name, model name) -> model."""
        return {(make.name, model.name): model for make in self.makes for model in make.models}

    def canonical_keys(self) -> set[tuple[str, str]]:
        return set(self.model_lookup())


# ─── Uncurated Pairs ───

class UncuratedPair(BaseModel):
    """A Make/Model combination observed in uncurated years."""
    make_id: int
    model_id: int
    make_name: str
    model_name: str
    record_count: int = Field(default=0, ge=0)
    percentage_of_total: float = 0.0
    earliest_year: int
    latest_year: int
    regularization_status: RegularizationStatus = RegularizationStatus.UNASSIGNED
    vehicle_type_id: Optional[int] = None

    @property
    def key(self) -> str:
        return pair_key(self.make_id, self.model_id)

    @property
    def display_name(self) -> str:
        return f"{self.make_name} / {self.model_name}"


class ModelYearCount(BaseModel):
    """Records of an uncurated pair for one model year."""
    model_year_id: int
    model_year: int
    record_count: int = 0


# ─── Regularization Mappings ───

class RegularizationMapping(BaseModel):
    """One persisted mapping row (wildcard when model_year_id is None, else triplet)."""
    id: Optional[int] = None
    uncurated_make_id: int
    uncurated_model_id: int
    uncurated_make: str = ""
    uncurated_model: str = ""
    model_year_id: Optional[int] = None
    model_year: Optional[int] = None
    canonical_make_id: int
    canonical_model_id: int
    canonical_make: str = ""
    canonical_model: str = ""
    fuel_type_id: Optional[int] = None
    fuel_type: Optional[str] = None
    vehicle_type_id: Optional[int] = None
    vehicle_type: Optional[str] = None
    record_count: int = 0
    year_range: str = ""

    @property
    def is_wildcard(self) -> bool:
        return self.model_year_id is None

    @property
    def uncurated_key(self) -> str:
        return pair_key(self.uncurated_make_id, self.uncurated_model_id)


# ─── Statistics ───

class FieldCoverage(BaseModel):
    assigned_count: int = 0
    unassigned_count: int = 0
    total_records: int = 0

    @property
    def coverage_percentage(self) -> float:
        if self.total_records == 0:
            return 0.0
        return self.assigned_count / self.total_records * 100.0


class RegularizationStatistics(BaseModel):
    mapping_count: int = 0
    total_uncurated_records: int = 0
    make_model_coverage: FieldCoverage = Field(default_factory=FieldCoverage)
    fuel_type_coverage: FieldCoverage = Field(default_factory=FieldCoverage)
    vehicle_type_coverage: FieldCoverage = Field(default_factory=FieldCoverage)


# ─── Resolver Results ───

class AutoRegularizationResult(BaseModel):
    pairs_regularized: int = 0
    triplets_created: int = 0
    wildcards_with_vehicle_type: int = 0
    skipped_existing: int = 0
    skipped_no_match: int = 0
    failures: int = 0


class FormSuggestion(BaseModel):
    """Pre-populated form values for a pair (never saved automatically)."""
    canonical_make_id: Optional[int] = None
    canonical_model_id: Optional[int] = None
    canonical_make: str = ""
    canonical_model: str = ""
    vehicle_type_id: Optional[int] = None
    # model year value -> fuel type id (UNKNOWN_SENTINEL allowed)
    fuel_selections: dict[int, Optional[int]] = Field(default_factory=dict)


class FieldAssignmentStatus(BaseModel):
    make_model_assigned: bool = False
    vehicle_type_assigned: bool = False
    fuel_types_assigned: bool = False


class RegularizationProgress(BaseModel):
    regularized_records: int = 0
    total_records: int = 0

    @property
    def percentage(self) -> float:
        if self.total_records == 0:
            return 0.0
        return self.regularized_records / self.total_records * 100.0


class SortOrder(str, Enum):
    RECORD_COUNT_DESC = "record_count_desc"
    RECORD_COUNT_ASC = "record_count_asc"
    MAKE_MODEL = "make_model"
    PERCENTAGE_DESC = "percentage_desc"
