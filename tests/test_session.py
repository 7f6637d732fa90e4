import asyncio
import time

import pandas as pd
import pytest

from regularization.src.errors import DataSourceUnavailable
from regularization.src.models import (
    AutoRegularizationConfig,
    RegularizationStatus,
    SortOrder,
    YearConfiguration,
)
from regularization.src.pipeline import run_pipeline_async
from regularization.src.session import RegularizationSession


@pytest.fixture
def session(store, year_config, auto_config):
    return RegularizationSession(store, year_config, auto_config)


def statuses(session):
    return {p.display_name: p.regularization_status for p in session.pairs}


@pytest.mark.asyncio
async def test_initial_load_runs_auto_regularization(session):
    await session.load_initial_data()

    assert len(session.pairs) == 5
    assert session.hierarchy is not None
    assert [v.code for v in session.vehicle_types][:3] == ["AB", "AT", "AU"]
    assert session.last_auto_result.pairs_regularized == 3
    assert statuses(session) == {
        "HONDA / CIVIC": RegularizationStatus.PARTIAL,
        "HONDA / CIVIK": RegularizationStatus.UNASSIGNED,
        "TOYOTA / PRIUS": RegularizationStatus.COMPLETE,
        "FORD / F150": RegularizationStatus.COMPLETE,
        "KIA / SOUL": RegularizationStatus.UNASSIGNED,
    }
    assert session.status_counts() == {
        RegularizationStatus.UNASSIGNED: 2,
        RegularizationStatus.PARTIAL: 1,
        RegularizationStatus.COMPLETE: 2,
    }
    progress = session.regularization_progress()
    assert (progress.regularized_records, progress.total_records) == (5, 8)
    assert progress.percentage == pytest.approx(62.5)


@pytest.mark.asyncio
async def test_load_without_auto_regularization(session):
    await session.load_initial_data(auto_regularize=False)
    assert session.last_auto_result is None
    assert session.mapping_index == {}
    assert all(p.regularization_status == RegularizationStatus.UNASSIGNED for p in session.pairs)
    assert session.regularization_progress().percentage == 0.0


@pytest.mark.asyncio
async def test_auto_regularization_skipped_when_hierarchy_is_late(store, year_config, monkeypatch):
    config = AutoRegularizationConfig(cardinal_vehicle_type_codes=["AU"], dependency_wait_seconds=0.1)
    session = RegularizationSession(store, year_config, config)
    original = store.curated_facts

    def slow_curated_facts(years):
        time.sleep(0.5)
        return original(years)

    monkeypatch.setattr(store, "curated_facts", slow_curated_facts)
    await session.load_initial_data()

    assert session.last_auto_result is None
    assert session.hierarchy is not None
    assert store.get_all_mappings() == []


@pytest.mark.asyncio
async def test_failed_prerequisite_skips_auto_regularization(session, store, monkeypatch):
    def unavailable(years):
        raise DataSourceUnavailable("disk I/O error")

    monkeypatch.setattr(store, "curated_facts", unavailable)
    await session.load_initial_data()

    assert session.hierarchy is None
    assert len(session.pairs) == 5
    assert session.last_auto_result is None
    assert "canonical hierarchy" in session.last_error
    assert store.get_all_mappings() == []


@pytest.mark.asyncio
async def test_failed_reload_keeps_previous_pairs(session, store, monkeypatch):
    await session.load_initial_data(auto_regularize=False)
    previous = session.pairs

    def unavailable(years):
        raise DataSourceUnavailable("database is locked")

    monkeypatch.setattr(store, "uncurated_pair_aggregates", unavailable)
    assert await session.refresh_pairs() is False
    assert session.pairs is previous
    assert not session.is_loading_pairs


@pytest.mark.asyncio
async def test_selecting_exact_match_prefills_without_saving(session, store, find_pair, ids):
    await session.load_initial_data(auto_regularize=False)
    civic = find_pair(session.pairs, "HONDA", "CIVIC")

    await session.select_pair(civic)

    assert [y.model_year for y in session.uncurated_model_years] == [2016, 2022]
    assert session.selected_canonical_model.name == "CIVIC"
    assert session.selected_canonical_make.name == "HONDA"
    assert session.selected_vehicle_type_id == ids.vehicle_type("AU")
    assert session.fuel_selections == {2016: ids.fuel("E")}
    assert store.get_all_mappings() == []


@pytest.mark.asyncio
async def test_selecting_mapped_pair_loads_saved_values(session, find_pair, ids):
    await session.load_initial_data()
    prius = find_pair(session.pairs, "TOYOTA", "PRIUS")

    await session.select_pair(prius)

    assert session.selected_canonical_model.name == "PRIUS"
    assert session.selected_vehicle_type_id == ids.vehicle_type("AU")
    assert session.fuel_selections == {2016: ids.fuel("H")}


@pytest.mark.asyncio
async def test_fuel_options_for_year_unknown_to_canonical_model(session, find_pair):
    await session.load_initial_data(auto_regularize=False)
    await session.select_pair(find_pair(session.pairs, "HONDA", "CIVIC"))

    assert [f.code for f in session.fuel_type_options(2017)] == ["E", "H"]
    assert len(session.fuel_type_options(2022)) == len(session.fuel_types)


@pytest.mark.asyncio
async def test_save_updates_only_the_affected_pair(session, find_pair, ids):
    await session.load_initial_data(auto_regularize=False)
    civik = find_pair(session.pairs, "HONDA", "CIVIK")
    await session.select_pair(civik)
    assert session.selected_canonical_model is None

    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))
    assert session.selected_vehicle_type_id == ids.vehicle_type("AU")
    assert session.fuel_selections == {2016: ids.fuel("E")}

    assert await session.save() is True
    assert civik.regularization_status == RegularizationStatus.COMPLETE
    assert civik.vehicle_type_id == ids.vehicle_type("AU")
    assert len(session.mappings_for(civik)) == 2
    assert find_pair(session.pairs, "HONDA", "CIVIC").regularization_status == RegularizationStatus.UNASSIGNED


@pytest.mark.asyncio
async def test_second_save_is_rejected_while_first_runs(session, find_pair):
    await session.load_initial_data(auto_regularize=False)
    await session.select_pair(find_pair(session.pairs, "HONDA", "CIVIK"))
    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))

    results = await asyncio.gather(session.save(), session.save())
    assert sorted(results) == [False, True]
    assert not session.is_saving


@pytest.mark.asyncio
async def test_rejected_save_keeps_prior_status(session, find_pair):
    await session.load_initial_data(auto_regularize=False)
    await session.select_pair(find_pair(session.pairs, "HONDA", "CIVIK"))
    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))
    assert await session.save()

    civic = find_pair(session.pairs, "HONDA", "CIVIC")
    await session.select_pair(civic)
    session.select_canonical_model(session.hierarchy.find_model("TOYOTA", "PRIUS"))
    assert await session.save() is False
    assert "already maps to 'HONDA'" in session.last_error
    assert civic.regularization_status == RegularizationStatus.UNASSIGNED
    assert session.mappings_for(civic) == []


@pytest.mark.asyncio
async def test_switching_canonical_target_overwrites_triplets(session, find_pair, ids):
    await session.load_initial_data(auto_regularize=False)
    civik = find_pair(session.pairs, "HONDA", "CIVIK")
    await session.select_pair(civik)
    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))
    await session.save()

    retargeted = session.hierarchy.find_model("HONDA", "CIVIC").model_copy(update={"id": ids.model("CIVIK")})
    session.select_canonical_model(retargeted)
    session.selected_vehicle_type_id = ids.vehicle_type("AU")
    assert await session.save()

    rows = session.mappings_for(civik)
    assert len(rows) == 2
    assert {r.canonical_model_id for r in rows} == {ids.model("CIVIK")}


@pytest.mark.asyncio
async def test_filters_and_sorting(session, find_pair):
    await session.load_initial_data()

    complete = session.filter_pairs(show_unassigned=False, show_partial=False)
    assert sorted(p.display_name for p in complete) == ["FORD / F150", "TOYOTA / PRIUS"]

    no_vehicle_type = session.filter_pairs(vehicle_type_id=-1)
    assert sorted(p.display_name for p in no_vehicle_type) == ["HONDA / CIVIK", "KIA / SOUL"]

    searched = session.filter_pairs(search_text="civ")
    assert sorted(p.model_name for p in searched) == ["CIVIC", "CIVIK"]

    assert session.filter_pairs(incomplete_fuel_type=True) == []

    by_count = session.sort_pairs(session.pairs, SortOrder.RECORD_COUNT_DESC)
    assert by_count[0].display_name == "HONDA / CIVIC"
    by_name = session.sort_pairs(session.pairs, SortOrder.MAKE_MODEL)
    assert by_name[0].display_name == "FORD / F150"
    ascending = session.sort_pairs(session.pairs, SortOrder.RECORD_COUNT_ASC)
    assert ascending[-1].display_name == "HONDA / CIVIC"


@pytest.mark.asyncio
async def test_year_configuration_change_drops_hierarchy(session):
    await session.load_initial_data(auto_regularize=False)
    session.set_year_configuration(YearConfiguration(curated_years={2018}, uncurated_years={2023}))
    assert session.hierarchy is None
    assert session.builder.cached is None

    assert await session.refresh_hierarchy(force_refresh=False)
    assert session.hierarchy.find_model("TOYOTA", "PRIUS") is None


@pytest.mark.asyncio
async def test_pipeline_exports_pair_report(store, year_config, auto_config, tmp_path):
    out = tmp_path / "pairs.csv"
    await run_pipeline_async(store, year_config, auto_config, export_path=out)

    df = pd.read_csv(out)
    assert len(df) == 5
    assert df.iloc[0]["model_name"] == "CIVIC"
    assert dict(zip(df["model_name"], df["regularization_status"]))["PRIUS"] == "complete"


@pytest.mark.asyncio
async def test_save_refused_when_model_years_fail_to_load(session, store, find_pair, monkeypatch):
    await session.load_initial_data(auto_regularize=False)
    civic = find_pair(session.pairs, "HONDA", "CIVIC")

    def unavailable(make_id, model_id, years):
        raise DataSourceUnavailable("database is locked")

    monkeypatch.setattr(store, "model_year_counts", unavailable)
    await session.select_pair(civic)
    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))

    assert not session.model_years_loaded
    assert not session.can_save
    assert await session.save() is False
    assert civic.regularization_status == RegularizationStatus.UNASSIGNED
    assert store.get_all_mappings() == []


@pytest.mark.asyncio
async def test_save_updates_listed_pair_after_pairs_reload(session, find_pair, ids):
    await session.load_initial_data(auto_regularize=False)
    await session.select_pair(find_pair(session.pairs, "HONDA", "CIVIK"))
    session.select_canonical_model(session.hierarchy.find_model("HONDA", "CIVIC"))

    assert await session.refresh_pairs()
    listed = find_pair(session.pairs, "HONDA", "CIVIK")
    assert listed is not session.selected_pair

    assert await session.save()
    assert listed.regularization_status == RegularizationStatus.COMPLETE
    assert listed.vehicle_type_id == ids.vehicle_type("AU")
