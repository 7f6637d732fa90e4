import pytest

from regularization.src.hierarchy import CanonicalHierarchyBuilder
from regularization.src.mapping_store import MappingStore
from regularization.src.models import AutoRegularizationConfig, RegularizationStatus
from regularization.src.pairs import find_uncurated_pairs
from regularization.src.resolver import auto_regularize, compute_status


@pytest.fixture
def loaded(store, year_config, auto_config):
    hierarchy = CanonicalHierarchyBuilder(store, year_config).generate()
    pairs = find_uncurated_pairs(store, year_config, True, hierarchy)
    return pairs, hierarchy, MappingStore(store, year_config, auto_config)


def run(loaded, config):
    pairs, hierarchy, mapping_store = loaded
    index = mapping_store.load_index()
    return auto_regularize(pairs, hierarchy, index, config, mapping_store)


def test_exact_matches_are_mapped(loaded, auto_config):
    result = run(loaded, auto_config)
    assert result.pairs_regularized == 3
    assert result.triplets_created == 3
    assert result.skipped_no_match == 2
    assert result.failures == 0


def test_ambiguous_years_get_no_triplet(loaded, auto_config, store, year_config, find_pair, ids):
    run(loaded, auto_config)
    pairs, _, mapping_store = loaded
    civic = find_pair(pairs, "HONDA", "CIVIC")
    rows = mapping_store.load_index()[civic.key]

    triplets = {r.model_year: r.fuel_type_id for r in rows if not r.is_wildcard}
    assert triplets == {2016: ids.fuel("E")}
    wildcard = next(r for r in rows if r.is_wildcard)
    assert wildcard.vehicle_type_id == ids.vehicle_type("AU")
    assert wildcard.fuel_type_id is None

    expected = {y.model_year for y in store.model_year_counts(civic.make_id, civic.model_id, year_config.uncurated_years)}
    assert compute_status(rows, expected) == RegularizationStatus.PARTIAL


def test_cardinal_code_breaks_vehicle_type_tie(loaded, auto_config, find_pair, ids):
    run(loaded, auto_config)
    pairs, _, mapping_store = loaded
    f150 = find_pair(pairs, "FORD", "F150")
    wildcard = next(r for r in mapping_store.load_index()[f150.key] if r.is_wildcard)
    assert wildcard.vehicle_type_id == ids.vehicle_type("AU")


def test_tie_without_cardinal_match_is_left_unassigned(loaded, find_pair):
    run(loaded, AutoRegularizationConfig(cardinal_vehicle_type_codes=["MC"]))
    pairs, _, mapping_store = loaded
    f150 = find_pair(pairs, "FORD", "F150")
    wildcard = next(r for r in mapping_store.load_index()[f150.key] if r.is_wildcard)
    assert wildcard.vehicle_type_id is None


def test_second_run_adds_no_rows(loaded, auto_config):
    _, _, mapping_store = loaded
    run(loaded, auto_config)
    first = mapping_store.get_all_mappings()

    result = run(loaded, auto_config)
    assert result.pairs_regularized == 0
    assert result.skipped_existing == 3
    assert len(mapping_store.get_all_mappings()) == len(first)


def test_existing_user_mapping_is_never_overwritten(loaded, auto_config, find_pair, ids):
    pairs, _, mapping_store = loaded
    prius = find_pair(pairs, "TOYOTA", "PRIUS")
    mapping_store.save_mapping(
        prius.make_id, prius.model_id, None, prius.make_id, prius.model_id,
        vehicle_type_id=ids.vehicle_type("CA"),
    )
    run(loaded, auto_config)

    rows = mapping_store.load_index()[prius.key]
    assert len(rows) == 1
    assert rows[0].vehicle_type_id == ids.vehicle_type("CA")


def test_failing_pair_does_not_stop_the_pass(loaded, auto_config, find_pair, ids):
    pairs, _, mapping_store = loaded
    # CIVIK already maps HONDA to TOYOTA, so the HONDA CIVIC exact match is rejected
    civik = find_pair(pairs, "HONDA", "CIVIK")
    mapping_store.save_mapping(
        civik.make_id, civik.model_id, None, ids.make("TOYOTA"), ids.model("PRIUS"),
    )
    result = run(loaded, auto_config)
    assert result.failures == 1
    assert result.pairs_regularized == 2
