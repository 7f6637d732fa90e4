"""
Regularization Session

Interactive state for one editing session: the loaded pairs, hierarchy and
mapping index, plus the form for the selected pair. Store calls run in
worker threads via asyncio.to_thread; every attribute is assigned on the
event loop once the worker returns, so readers never see half-applied state.

Load and save failures are logged, recorded in last_error, and leave the
previously loaded state in place.
"""

import asyncio
from typing import Optional

from loguru import logger

from .errors import HierarchyNotReady, RegularizationError
from .hierarchy import CanonicalHierarchyBuilder
from .mapping_store import MappingStore, build_mapping_index
from .models import (
    AutoRegularizationConfig,
    AutoRegularizationResult,
    CanonicalHierarchy,
    CanonicalMake,
    CanonicalModel,
    FormSuggestion,
    FuelTypeInfo,
    ModelYearCount,
    RegularizationMapping,
    RegularizationProgress,
    RegularizationStatistics,
    RegularizationStatus,
    SortOrder,
    UncuratedPair,
    VehicleTypeInfo,
    YearConfiguration,
)
from .pairs import UncuratedPairFinder
from .resolver import (
    auto_regularize,
    compute_status,
    form_from_mappings,
    fuel_type_options,
    has_incomplete_fields,
    submit_mapping,
    suggest_form_values,
    wildcard_vehicle_type_id,
)
from .store import RegularizationStore


class RegularizationSession:
    def __init__(
        self,
        store: RegularizationStore,
        year_config: YearConfiguration,
        config: Optional[AutoRegularizationConfig] = None,
    ):
        self.store = store
        self.config = config or AutoRegularizationConfig()
        self.builder = CanonicalHierarchyBuilder(store, year_config)
        self.finder = UncuratedPairFinder(store, year_config)
        self.mapping_store = MappingStore(store, year_config, self.config)

        self.pairs: list[UncuratedPair] = []
        self.hierarchy: Optional[CanonicalHierarchy] = None
        self.mapping_index: dict[str, list[RegularizationMapping]] = {}
        self.vehicle_types: list[VehicleTypeInfo] = []
        self.fuel_types: list[FuelTypeInfo] = []

        # Form state
        self.selected_pair: Optional[UncuratedPair] = None
        self.selected_canonical_make: Optional[CanonicalMake] = None
        self.selected_canonical_model: Optional[CanonicalModel] = None
        self.selected_vehicle_type_id: Optional[int] = None
        self.fuel_selections: dict[int, Optional[int]] = {}
        self.uncurated_model_years: list[ModelYearCount] = []
        self.model_years_loaded = False

        self.is_loading_pairs = False
        self.is_loading_hierarchy = False
        self.is_loading_mappings = False
        self.is_auto_regularizing = False
        self.is_saving = False
        self.last_error: Optional[str] = None
        self.last_auto_result: Optional[AutoRegularizationResult] = None

        self._pairs_task: Optional[asyncio.Task] = None
        self._hierarchy_task: Optional[asyncio.Task] = None
        self._mappings_task: Optional[asyncio.Task] = None

    @property
    def year_config(self) -> YearConfiguration:
        return self.builder.year_config

    def set_year_configuration(self, year_config: YearConfiguration) -> None:
        """Switch curated/uncurated years; the hierarchy is rebuilt on next load."""
        self.builder.year_config = year_config
        self.finder.year_config = year_config
        self.mapping_store.year_config = year_config
        self.hierarchy = None

    def _record_failure(self, what: str, error: Exception) -> None:
        logger.error(f"Failed to {what}: {error}")
        self.last_error = f"Failed to {what}: {error}"

    # ─── Loading ───

    async def load_initial_data(
        self, include_exact_matches: bool = True, auto_regularize: bool = True
    ) -> None:
        """
        Load enumerations, mappings, pairs and hierarchy concurrently, then run
        auto-regularization once pairs and hierarchy are ready.
        """
        self._mappings_task = asyncio.create_task(self._load_mappings())
        self._pairs_task = asyncio.create_task(self._load_pairs(include_exact_matches))
        self._hierarchy_task = asyncio.create_task(self._load_hierarchy())
        tasks = {
            "load enumerations": asyncio.create_task(self.refresh_enumerations()),
            "load mappings": self._mappings_task,
            "load pairs": self._pairs_task,
            "build canonical hierarchy": self._hierarchy_task,
        }
        if auto_regularize:
            tasks["auto-regularize"] = asyncio.create_task(self._auto_regularize_when_ready())

        results = await asyncio.gather(*tasks.values(), return_exceptions=True)
        for what, result in zip(tasks, results):
            if isinstance(result, RegularizationError):
                self._record_failure(what, result)
            elif isinstance(result, Exception):
                raise result

    async def _load_mappings(self) -> None:
        self.is_loading_mappings = True
        try:
            mappings = await asyncio.to_thread(self.mapping_store.get_all_mappings)
            self.mapping_index = build_mapping_index(mappings)
        finally:
            self.is_loading_mappings = False

    async def _load_pairs(self, include_exact_matches: bool) -> None:
        self.is_loading_pairs = True
        try:
            pairs = await asyncio.to_thread(self.finder.find, include_exact_matches, self.hierarchy)
            model_years = await asyncio.to_thread(
                self.store.model_years_by_pair, self.year_config.uncurated_years
            )
            if self._mappings_task is not None:
                await asyncio.gather(self._mappings_task, return_exceptions=True)
            for pair in pairs:
                self._apply_status(pair, model_years.get(pair.key, set()))
            self.pairs = pairs
        finally:
            self.is_loading_pairs = False

    async def _load_hierarchy(self, force_refresh: bool = False) -> None:
        self.is_loading_hierarchy = True
        try:
            self.hierarchy = await asyncio.to_thread(self.builder.generate, force_refresh)
        finally:
            self.is_loading_hierarchy = False

    async def refresh_enumerations(self) -> bool:
        try:
            self.vehicle_types = await asyncio.to_thread(self.store.all_vehicle_types)
            self.fuel_types = await asyncio.to_thread(self.store.all_fuel_types)
        except RegularizationError as e:
            self._record_failure("load enumerations", e)
            return False
        return True

    async def refresh_mappings(self) -> bool:
        try:
            await self._load_mappings()
        except RegularizationError as e:
            self._record_failure("load mappings", e)
            return False
        return True

    async def refresh_pairs(self, include_exact_matches: bool = True) -> bool:
        try:
            await self._load_pairs(include_exact_matches)
        except RegularizationError as e:
            self._record_failure("load pairs", e)
            return False
        return True

    async def refresh_hierarchy(self, force_refresh: bool = True) -> bool:
        try:
            await self._load_hierarchy(force_refresh)
        except RegularizationError as e:
            self._record_failure("build canonical hierarchy", e)
            return False
        return True

    # ─── Auto-regularization ───

    async def _auto_regularize_when_ready(self) -> Optional[AutoRegularizationResult]:
        prerequisites = [t for t in (self._pairs_task, self._hierarchy_task, self._mappings_task) if t]
        try:
            await asyncio.wait_for(
                asyncio.gather(*(asyncio.shield(t) for t in prerequisites)),
                timeout=self.config.dependency_wait_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Pairs and hierarchy not ready after {self.config.dependency_wait_seconds}s, "
                "skipping auto-regularization"
            )
            return None
        except RegularizationError as e:
            logger.warning(f"Prerequisite load failed, skipping auto-regularization: {e}")
            return None
        return await self.run_auto_regularization()

    async def run_auto_regularization(self) -> AutoRegularizationResult:
        if self.hierarchy is None:
            raise HierarchyNotReady("Canonical hierarchy must be loaded first")
        if not self.pairs:
            return AutoRegularizationResult()

        self.is_auto_regularizing = True
        try:
            result = await asyncio.to_thread(
                auto_regularize,
                list(self.pairs),
                self.hierarchy,
                dict(self.mapping_index),
                self.config,
                self.mapping_store,
            )
        finally:
            self.is_auto_regularizing = False

        self.last_auto_result = result
        if result.pairs_regularized:
            await self.refresh_mappings()
            await self.refresh_all_statuses()
        return result

    # ─── Status ───

    def _apply_status(self, pair: UncuratedPair, expected_model_years: set[int]) -> None:
        mappings = self.mapping_index.get(pair.key, [])
        pair.regularization_status = compute_status(mappings, expected_model_years)
        pair.vehicle_type_id = wildcard_vehicle_type_id(mappings)

    async def refresh_all_statuses(self) -> bool:
        """Recompute every pair's status from the current mapping index."""
        try:
            model_years = await asyncio.to_thread(
                self.store.model_years_by_pair, self.year_config.uncurated_years
            )
        except RegularizationError as e:
            self._record_failure("load model years", e)
            return False
        for pair in self.pairs:
            self._apply_status(pair, model_years.get(pair.key, set()))
        logger.debug(f"Recomputed status for {len(self.pairs)} pairs")
        return True

    def _listed_pair(self, pair: UncuratedPair) -> Optional[UncuratedPair]:
        return next((p for p in self.pairs if p.key == pair.key), None)

    def mappings_for(self, pair: UncuratedPair) -> list[RegularizationMapping]:
        return self.mapping_index.get(pair.key, [])

    def status_counts(self) -> dict[RegularizationStatus, int]:
        counts = {status: 0 for status in RegularizationStatus}
        for pair in self.pairs:
            counts[pair.regularization_status] += 1
        return counts

    def regularization_progress(self) -> RegularizationProgress:
        """Share of uncurated records whose pair has at least one mapping."""
        return RegularizationProgress(
            regularized_records=sum(p.record_count for p in self.pairs if self.mapping_index.get(p.key)),
            total_records=sum(p.record_count for p in self.pairs),
        )

    async def statistics(self) -> Optional[RegularizationStatistics]:
        try:
            return await asyncio.to_thread(self.store.statistics, self.year_config.uncurated_years)
        except RegularizationError as e:
            self._record_failure("compute statistics", e)
            return None

    # ─── List filtering ───

    def filter_pairs(
        self,
        search_text: str = "",
        show_unassigned: bool = True,
        show_partial: bool = True,
        show_complete: bool = True,
        vehicle_type_id: Optional[int] = None,
        incomplete_vehicle_type: bool = False,
        incomplete_fuel_type: bool = False,
    ) -> list[UncuratedPair]:
        """
        Filter loaded pairs the way the pair list does.

        vehicle_type_id -1 selects pairs without an assigned vehicle type.
        """
        shown = {
            RegularizationStatus.UNASSIGNED: show_unassigned,
            RegularizationStatus.PARTIAL: show_partial,
            RegularizationStatus.COMPLETE: show_complete,
        }
        needle = search_text.casefold()
        result = []
        for pair in self.pairs:
            if needle and needle not in pair.make_name.casefold() and needle not in pair.model_name.casefold():
                continue
            if not shown[pair.regularization_status]:
                continue
            if vehicle_type_id is not None:
                if vehicle_type_id == -1:
                    if pair.vehicle_type_id is not None:
                        continue
                elif pair.vehicle_type_id != vehicle_type_id:
                    continue
            if (incomplete_vehicle_type or incomplete_fuel_type) and not has_incomplete_fields(
                self.mappings_for(pair), incomplete_vehicle_type, incomplete_fuel_type
            ):
                continue
            result.append(pair)
        return result

    @staticmethod
    def sort_pairs(pairs: list[UncuratedPair], order: SortOrder = SortOrder.RECORD_COUNT_DESC) -> list[UncuratedPair]:
        if order == SortOrder.RECORD_COUNT_ASC:
            return sorted(pairs, key=lambda p: p.record_count)
        if order == SortOrder.MAKE_MODEL:
            return sorted(pairs, key=lambda p: p.display_name)
        if order == SortOrder.PERCENTAGE_DESC:
            return sorted(pairs, key=lambda p: p.percentage_of_total, reverse=True)
        return sorted(pairs, key=lambda p: p.record_count, reverse=True)

    # ─── Selection ───

    def _clear_form(self) -> None:
        self.selected_canonical_make = None
        self.selected_canonical_model = None
        self.selected_vehicle_type_id = None
        self.fuel_selections = {}

    def _apply_form(self, form: FormSuggestion) -> None:
        model = None
        if self.hierarchy is not None:
            model = self.hierarchy.find_model_by_id(form.canonical_make_id, form.canonical_model_id)
        if model is None:
            model = CanonicalModel(
                id=form.canonical_model_id,
                name=form.canonical_model,
                make_id=form.canonical_make_id,
                make_name=form.canonical_make,
            )
        self.selected_canonical_model = model
        self.selected_canonical_make = self._make_for(model)
        self.selected_vehicle_type_id = form.vehicle_type_id
        self.fuel_selections = dict(form.fuel_selections)

    def _make_for(self, model: CanonicalModel) -> CanonicalMake:
        if self.hierarchy is not None:
            make = self.hierarchy.find_make(model.make_name)
            if make is not None:
                return make
        return CanonicalMake(id=model.make_id, name=model.make_name)

    async def select_pair(self, pair: Optional[UncuratedPair]) -> None:
        """Select a pair, load its uncurated model years and pre-populate the form."""
        self.selected_pair = pair
        self._clear_form()
        self.uncurated_model_years = []
        self.model_years_loaded = False
        if pair is None:
            return

        try:
            counts = await asyncio.to_thread(
                self.store.model_year_counts, pair.make_id, pair.model_id, self.year_config.uncurated_years
            )
        except RegularizationError as e:
            self._record_failure(f"load model years for {pair.display_name}", e)
            return
        # another pair was selected while this one loaded
        if self.selected_pair is not pair:
            return
        self.uncurated_model_years = counts
        self.model_years_loaded = True
        self._populate_form(pair)

    def _populate_form(self, pair: UncuratedPair) -> None:
        form = form_from_mappings(self.mappings_for(pair))
        if form is not None:
            self._apply_form(form)
            return
        if self.hierarchy is None:
            return
        model = self.hierarchy.find_model(pair.make_name, pair.model_name)
        if model is not None:
            self.select_canonical_model(model)

    def select_canonical_model(self, model: Optional[CanonicalModel]) -> None:
        """Pick a canonical target; unmapped pairs get suggested values."""
        self.selected_canonical_model = model
        self.fuel_selections = {}
        if model is None:
            self.selected_canonical_make = None
            return
        self.selected_canonical_make = self._make_for(model)
        if self.selected_pair is not None and not self.mappings_for(self.selected_pair):
            suggestion = suggest_form_values(model, self.config, self.uncurated_model_years)
            self.selected_vehicle_type_id = suggestion.vehicle_type_id
            self.fuel_selections = dict(suggestion.fuel_selections)

    def fuel_type_options(self, model_year: int) -> list[FuelTypeInfo]:
        return fuel_type_options(self.selected_canonical_model, model_year, self.fuel_types)

    @property
    def can_save(self) -> bool:
        return (
            self.selected_pair is not None
            and self.selected_canonical_model is not None
            and self.model_years_loaded
        )

    # ─── Saving ───

    async def save(self) -> bool:
        """
        Persist the form for the selected pair, then reload the mapping index
        and recompute that pair's status. Rejected while another save runs.
        """
        if self.is_saving:
            logger.warning("Save already in progress, ignoring new request")
            return False
        if not self.can_save:
            logger.warning("Select a pair with loaded model years and a canonical model before saving")
            return False

        pair = self.selected_pair
        model = self.selected_canonical_model
        model_years = list(self.uncurated_model_years)
        self.is_saving = True
        try:
            await asyncio.to_thread(
                submit_mapping,
                self.mapping_store,
                pair,
                model,
                self.selected_vehicle_type_id,
                dict(self.fuel_selections),
                model_years,
            )
            if not await self.refresh_mappings():
                return False
        except RegularizationError as e:
            self._record_failure(f"save mapping for {pair.display_name}", e)
            return False
        finally:
            self.is_saving = False

        expected = {y.model_year for y in model_years}
        self._apply_status(pair, expected)
        listed = self._listed_pair(pair)
        if listed is not None and listed is not pair:
            self._apply_status(listed, expected)
        if self.selected_pair is pair:
            self._populate_form(pair)
        logger.info(f"{pair.display_name} is now {pair.regularization_status.value}")
        return True
