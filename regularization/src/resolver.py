"""
Regularization Resolver

Status classification, the auto-regularization heuristic, and normalization
of user-submitted mappings.

Field separation: wildcard rows (no model year) carry only the vehicle type,
triplet rows (one model year) carry only the fuel type.
"""

from typing import Iterable, Optional

from loguru import logger

from .errors import RegularizationError
from .mapping_store import MappingStore
from .models import (
    NO_MODEL_YEAR,
    UNKNOWN_SENTINEL,
    AutoRegularizationConfig,
    AutoRegularizationResult,
    CanonicalHierarchy,
    CanonicalModel,
    FieldAssignmentStatus,
    FormSuggestion,
    FuelTypeInfo,
    ModelYearCount,
    RegularizationMapping,
    RegularizationStatus,
    UncuratedPair,
    VehicleTypeInfo,
)


def split_mappings(
    mappings: Iterable[RegularizationMapping],
) -> tuple[Optional[RegularizationMapping], list[RegularizationMapping]]:
    """Return (first wildcard found, triplets)."""
    wildcard = None
    triplets = []
    for mapping in mappings:
        if mapping.is_wildcard:
            if wildcard is None:
                wildcard = mapping
        else:
            triplets.append(mapping)
    return wildcard, triplets


def compute_status(
    mappings_for_pair: list[RegularizationMapping],
    expected_model_years: Iterable[int],
) -> RegularizationStatus:
    """
    Classify a pair from its mapping rows.

    expected_model_years are the model year values present in the pair's
    uncurated records. Complete needs a wildcard with a vehicle type, a triplet
    for every expected year, and a fuel type on every triplet ("Unknown" counts).
    """
    if not mappings_for_pair:
        return RegularizationStatus.UNASSIGNED

    wildcard, triplets = split_mappings(mappings_for_pair)
    has_vehicle_type = wildcard is not None and wildcard.vehicle_type_id is not None
    years_with_fuel = {t.model_year for t in triplets if t.fuel_type_id is not None}
    all_years_have_fuel = all(t.fuel_type_id is not None for t in triplets) and all(
        year in years_with_fuel for year in set(expected_model_years)
    )

    if has_vehicle_type and all_years_have_fuel:
        return RegularizationStatus.COMPLETE
    if has_vehicle_type or years_with_fuel:
        return RegularizationStatus.PARTIAL
    return RegularizationStatus.UNASSIGNED


def wildcard_vehicle_type_id(mappings_for_pair: list[RegularizationMapping]) -> Optional[int]:
    wildcard, _ = split_mappings(mappings_for_pair)
    return wildcard.vehicle_type_id if wildcard is not None else None


# ─── Valid type selection ───

def _is_placeholder(description: str, config: AutoRegularizationConfig) -> bool:
    lowered = description.strip().lower()
    return any(p.lower() in lowered for p in config.placeholder_descriptions)


def valid_vehicle_types(
    vehicle_types: list[VehicleTypeInfo], config: AutoRegularizationConfig
) -> list[VehicleTypeInfo]:
    return [vt for vt in vehicle_types if not _is_placeholder(vt.description, config)]


def valid_fuel_types(
    fuel_types: list[FuelTypeInfo], config: AutoRegularizationConfig
) -> list[FuelTypeInfo]:
    return [ft for ft in fuel_types if not _is_placeholder(ft.description, config)]


def choose_vehicle_type(
    vehicle_types: list[VehicleTypeInfo], config: AutoRegularizationConfig
) -> Optional[VehicleTypeInfo]:
    """
    Pick a vehicle type for a wildcard row.

    A single valid type wins outright. With several, the first cardinal code
    present among them is used (when cardinal preference is enabled).
    Otherwise nothing is guessed.
    """
    valid = valid_vehicle_types(vehicle_types, config)
    if len(valid) == 1:
        return valid[0]
    if len(valid) > 1 and config.use_cardinal_types:
        by_code = {vt.code: vt for vt in valid}
        for code in config.cardinal_vehicle_type_codes:
            if code in by_code:
                return by_code[code]
    return None


# ─── Auto-regularization ───

def auto_regularize(
    pairs: list[UncuratedPair],
    hierarchy: CanonicalHierarchy,
    mapping_index: dict[str, list[RegularizationMapping]],
    config: AutoRegularizationConfig,
    mapping_store: MappingStore,
) -> AutoRegularizationResult:
    """
    Map every unmapped pair whose names exactly match a canonical model.

    Pairs with any existing mapping are skipped, so running this again never
    overwrites earlier decisions or adds rows.
    """
    result = AutoRegularizationResult()
    lookup = hierarchy.model_lookup()

    for pair in pairs:
        if mapping_index.get(pair.key):
            result.skipped_existing += 1
            continue

        model = lookup.get((pair.make_name, pair.model_name))
        if model is None:
            result.skipped_no_match += 1
            continue

        vehicle_type = choose_vehicle_type(model.vehicle_types, config)
        try:
            mapping_store.save_mapping(
                uncurated_make_id=pair.make_id,
                uncurated_model_id=pair.model_id,
                model_year_id=None,
                canonical_make_id=model.make_id,
                canonical_model_id=model.id,
                fuel_type_id=None,
                vehicle_type_id=vehicle_type.id if vehicle_type else None,
            )
            triplets = 0
            for year_id, fuels in sorted(model.model_year_fuel_types.items()):
                if year_id == NO_MODEL_YEAR:
                    continue
                valid = valid_fuel_types(fuels, config)
                if len(valid) != 1:
                    continue
                mapping_store.save_mapping(
                    uncurated_make_id=pair.make_id,
                    uncurated_model_id=pair.model_id,
                    model_year_id=year_id,
                    canonical_make_id=model.make_id,
                    canonical_model_id=model.id,
                    fuel_type_id=valid[0].id,
                    vehicle_type_id=None,
                )
                triplets += 1
        except RegularizationError as e:
            logger.warning(f"Auto-regularization failed for {pair.display_name}: {e}")
            result.failures += 1
            continue

        result.pairs_regularized += 1
        result.triplets_created += triplets
        if vehicle_type is not None:
            result.wildcards_with_vehicle_type += 1
        logger.debug(
            f"Auto-regularized {pair.display_name}: {triplets} model years, "
            f"vehicle type {vehicle_type.code if vehicle_type else 'unassigned'}"
        )

    logger.info(
        f"Auto-regularization: {result.pairs_regularized} pairs mapped, "
        f"{result.triplets_created} triplets, {result.skipped_existing} already mapped, "
        f"{result.failures} failures"
    )
    return result


# ─── User submissions ───

def submit_mapping(
    mapping_store: MappingStore,
    pair: UncuratedPair,
    canonical_model: CanonicalModel,
    vehicle_type_id: Optional[int],
    fuel_selections: dict[int, Optional[int]],
    uncurated_model_years: list[ModelYearCount],
) -> int:
    """
    Save a user's form for a pair: one wildcard row, then one triplet per
    uncurated model year.

    fuel_selections maps model year values to None (not assigned),
    UNKNOWN_SENTINEL, or a fuel type id. Returns the number of triplets saved.
    """
    if vehicle_type_id == UNKNOWN_SENTINEL:
        vehicle_type_id = mapping_store.resolve_unknown_vehicle_type()

    mapping_store.save_mapping(
        uncurated_make_id=pair.make_id,
        uncurated_model_id=pair.model_id,
        model_year_id=None,
        canonical_make_id=canonical_model.make_id,
        canonical_model_id=canonical_model.id,
        fuel_type_id=None,
        vehicle_type_id=vehicle_type_id,
    )

    unknown_fuel_id: Optional[int] = None
    unknown_resolved = False
    for year in uncurated_model_years:
        fuel_type_id = fuel_selections.get(year.model_year)
        if fuel_type_id == UNKNOWN_SENTINEL:
            if not unknown_resolved:
                unknown_fuel_id = mapping_store.resolve_unknown_fuel_type()
                unknown_resolved = True
            fuel_type_id = unknown_fuel_id
        mapping_store.save_mapping(
            uncurated_make_id=pair.make_id,
            uncurated_model_id=pair.model_id,
            model_year_id=year.model_year_id,
            canonical_make_id=canonical_model.make_id,
            canonical_model_id=canonical_model.id,
            fuel_type_id=fuel_type_id,
            vehicle_type_id=None,
        )

    logger.info(
        f"Saved {pair.display_name} -> {canonical_model.make_name} / {canonical_model.name} "
        f"({len(uncurated_model_years)} model years)"
    )
    return len(uncurated_model_years)


def fuel_type_options(
    model: Optional[CanonicalModel],
    model_year: int,
    all_fuel_types: list[FuelTypeInfo],
) -> list[FuelTypeInfo]:
    """Fuel types offered for one model year of the selected canonical model."""
    if model is not None:
        fuels = model.fuel_types_for_year(model_year)
        if fuels:
            return fuels
    return all_fuel_types


def suggest_form_values(
    model: CanonicalModel,
    config: AutoRegularizationConfig,
    uncurated_model_years: list[ModelYearCount],
) -> FormSuggestion:
    """Vehicle type and single-fuel years for a freshly selected canonical model."""
    vehicle_type = choose_vehicle_type(model.vehicle_types, config)
    selections: dict[int, Optional[int]] = {}
    for year in uncurated_model_years:
        fuels = model.fuel_types_for_year(year.model_year) or []
        valid = valid_fuel_types(fuels, config)
        if len(valid) == 1:
            selections[year.model_year] = valid[0].id
    return FormSuggestion(
        canonical_make_id=model.make_id,
        canonical_model_id=model.id,
        canonical_make=model.make_name,
        canonical_model=model.name,
        vehicle_type_id=vehicle_type.id if vehicle_type else None,
        fuel_selections=selections,
    )


def form_from_mappings(mappings_for_pair: list[RegularizationMapping]) -> Optional[FormSuggestion]:
    """Rebuild form values from saved rows, or None if there is no wildcard."""
    wildcard, triplets = split_mappings(mappings_for_pair)
    if wildcard is None:
        return None
    return FormSuggestion(
        canonical_make_id=wildcard.canonical_make_id,
        canonical_model_id=wildcard.canonical_model_id,
        canonical_make=wildcard.canonical_make,
        canonical_model=wildcard.canonical_model,
        vehicle_type_id=wildcard.vehicle_type_id,
        fuel_selections={t.model_year: t.fuel_type_id for t in triplets if t.model_year is not None},
    )


# ─── Field assignment ───

def field_assignment_status(
    mappings_for_pair: list[RegularizationMapping],
    expected_model_years: Iterable[int],
) -> FieldAssignmentStatus:
    """Fuel types only count as assigned once the pair is complete."""
    if not mappings_for_pair:
        return FieldAssignmentStatus()
    status = compute_status(mappings_for_pair, set(expected_model_years))
    return FieldAssignmentStatus(
        make_model_assigned=True,
        vehicle_type_assigned=wildcard_vehicle_type_id(mappings_for_pair) is not None,
        fuel_types_assigned=status == RegularizationStatus.COMPLETE,
    )


def has_incomplete_fields(
    mappings_for_pair: list[RegularizationMapping],
    vehicle_type: bool = True,
    fuel_type: bool = True,
) -> bool:
    """
    True for a mapped pair still missing a vehicle type or a fuel type.

    Unmapped pairs never match. A pair with no triplets counts as missing fuel.
    """
    if not mappings_for_pair:
        return False
    wildcard, triplets = split_mappings(mappings_for_pair)
    if vehicle_type and wildcard is not None and wildcard.vehicle_type_id is None:
        return True
    if fuel_type and (not triplets or any(t.fuel_type_id is None for t in triplets)):
        return True
    return False
