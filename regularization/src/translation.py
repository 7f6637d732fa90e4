"""
Query filter translation across regularization mappings.

A filter on a canonical make/model should also match its uncurated variants,
and a filter on an uncurated id should also match its canonical target.
All functions work on the persisted mapping rows.
"""

from typing import Iterable

from loguru import logger

from .models import RegularizationMapping


def expand_make_model_ids(
    mappings: list[RegularizationMapping],
    make_ids: Iterable[int],
    model_ids: Iterable[int],
    coupling: bool = True,
) -> tuple[list[int], list[int]]:
    """
    Expand make and model id filters in both directions.

    Uncurated ids first gain their canonical equivalents; every canonical id
    then gains its uncurated variants. With coupling, a matched mapping adds
    both its make and model; without it, only the id kinds that were
    filtered on are expanded.
    """
    make_ids = set(make_ids)
    model_ids = set(model_ids)
    if not make_ids and not model_ids:
        return [], []

    expanded_makes = set(make_ids)
    expanded_models = set(model_ids)

    for mapping in mappings:
        if mapping.uncurated_make_id in make_ids:
            expanded_makes.add(mapping.canonical_make_id)
        if mapping.uncurated_model_id in model_ids:
            expanded_models.add(mapping.canonical_model_id)

    current_makes = set(expanded_makes)
    current_models = set(expanded_models)
    for mapping in mappings:
        if mapping.canonical_make_id not in current_makes and mapping.canonical_model_id not in current_models:
            continue
        if coupling:
            expanded_makes.add(mapping.uncurated_make_id)
            expanded_models.add(mapping.uncurated_model_id)
        else:
            if make_ids:
                expanded_makes.add(mapping.uncurated_make_id)
            if model_ids:
                expanded_models.add(mapping.uncurated_model_id)

    if len(expanded_makes) > len(make_ids) or len(expanded_models) > len(model_ids):
        logger.debug(
            f"Regularization expanded makes {len(make_ids)} -> {len(expanded_makes)}, "
            f"models {len(model_ids)} -> {len(expanded_models)}"
        )
    return sorted(expanded_makes), sorted(expanded_models)


def expand_make_ids(mappings: list[RegularizationMapping], make_ids: Iterable[int]) -> list[int]:
    make_ids = set(make_ids)
    if not make_ids:
        return []
    expanded = set(make_ids)
    for mapping in mappings:
        if mapping.uncurated_make_id in make_ids:
            expanded.add(mapping.canonical_make_id)
    current = set(expanded)
    for mapping in mappings:
        if mapping.canonical_make_id in current:
            expanded.add(mapping.uncurated_make_id)
    return sorted(expanded)


def uncurated_ids_for_vehicle_type(
    mappings: list[RegularizationMapping], vehicle_type_id: int
) -> tuple[list[int], list[int]]:
    """Uncurated make and model ids whose wildcard mapping assigns this vehicle type."""
    makes = set()
    models = set()
    for mapping in mappings:
        if mapping.vehicle_type_id == vehicle_type_id:
            makes.add(mapping.uncurated_make_id)
            models.add(mapping.uncurated_model_id)
    return sorted(makes), sorted(models)
