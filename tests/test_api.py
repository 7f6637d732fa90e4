import pytest
from fastapi.testclient import TestClient

from backend.main import app, configure_session
from regularization.src.errors import DataSourceUnavailable
from regularization.src.session import RegularizationSession


@pytest.fixture
def client(store, year_config, auto_config):
    configure_session(RegularizationSession(store, year_config, auto_config))
    with TestClient(app) as test_client:
        yield test_client
    configure_session(None)


def pair_ids(client, model_name):
    pair = next(p for p in client.get("/pairs").json() if p["model_name"] == model_name)
    return pair["make_id"], pair["model_id"]


def canonical_ids(client, make_name, model_name):
    hierarchy = client.get("/hierarchy").json()
    make = next(m for m in hierarchy["makes"] if m["name"] == make_name)
    model = next(m for m in make["models"] if m["name"] == model_name)
    return model["make_id"], model["id"]


def test_load_with_auto_regularization(client):
    response = client.post("/load")
    assert response.status_code == 200
    body = response.json()
    assert body["pairs"] == 5
    assert body["canonical_makes"] == 5
    assert body["auto_regularization"]["pairs_regularized"] == 3

    complete = client.get("/pairs", params={"show_unassigned": False, "show_partial": False}).json()
    assert sorted(p["model_name"] for p in complete) == ["F150", "PRIUS"]


def test_pairs_are_sorted_and_searchable(client):
    pairs = client.get("/pairs").json()
    assert pairs[0]["model_name"] == "CIVIC"
    assert pairs[0]["regularization_status"] == "unassigned"

    searched = client.get("/pairs", params={"search": "soul"}).json()
    assert [p["make_name"] for p in searched] == ["KIA"]

    by_name = client.get("/pairs", params={"sort": "make_model"}).json()
    assert by_name[0]["make_name"] == "FORD"


def test_save_mapping_and_read_status(client, ids):
    make_id, model_id = pair_ids(client, "CIVIK")
    canonical_make, canonical_model = canonical_ids(client, "HONDA", "CIVIC")

    response = client.post(
        f"/pairs/{make_id}/{model_id}/mapping",
        json={
            "canonical_make_id": canonical_make,
            "canonical_model_id": canonical_model,
            "vehicle_type_id": ids.vehicle_type("AU"),
            "fuel_selections": {"2016": -1},
        },
    )
    assert response.status_code == 200
    assert response.json()["status"] == "complete"

    status = client.get(f"/pairs/{make_id}/{model_id}").json()
    assert status["status"] == "complete"
    assert status["model_years"] == [2016]
    triplet = next(m for m in status["mappings"] if m["model_year_id"] is not None)
    assert triplet["fuel_type_id"] == ids.fuel("U")

    fields = client.get(f"/pairs/{make_id}/{model_id}/fields").json()
    assert fields == {"make_model_assigned": True, "vehicle_type_assigned": True, "fuel_types_assigned": True}

    assert len(client.get("/mappings").json()) == 2


def test_make_consistency_violation_is_a_conflict(client):
    civik = pair_ids(client, "CIVIK")
    civic = pair_ids(client, "CIVIC")
    honda_civic = canonical_ids(client, "HONDA", "CIVIC")
    toyota_prius = canonical_ids(client, "TOYOTA", "PRIUS")

    first = client.post(
        f"/pairs/{civik[0]}/{civik[1]}/mapping",
        json={"canonical_make_id": honda_civic[0], "canonical_model_id": honda_civic[1]},
    )
    assert first.status_code == 200

    second = client.post(
        f"/pairs/{civic[0]}/{civic[1]}/mapping",
        json={"canonical_make_id": toyota_prius[0], "canonical_model_id": toyota_prius[1]},
    )
    assert second.status_code == 409
    assert "already maps to 'HONDA'" in second.json()["detail"]


def test_unknown_pair_and_model_are_not_found(client):
    assert client.get("/pairs/999/999").status_code == 404
    make_id, model_id = pair_ids(client, "SOUL")
    response = client.post(
        f"/pairs/{make_id}/{model_id}/mapping",
        json={"canonical_make_id": 999, "canonical_model_id": 999},
    )
    assert response.status_code == 404


def test_statistics_and_translation(client, ids):
    client.post("/auto-regularize")
    stats = client.get("/statistics").json()
    assert stats["statistics"]["total_uncurated_records"] == 8
    assert stats["make_model_coverage"] == pytest.approx(62.5)
    assert stats["status_counts"] == {"unassigned": 2, "partial": 1, "complete": 2}
    assert stats["progress"]["regularized_records"] == 5

    used = client.get("/vehicle-types", params={"regularized_only": True}).json()
    assert [v["code"] for v in used] == ["AU"]

    expanded = client.get("/expand", params={"vehicle_type_id": ids.vehicle_type("AU")}).json()
    assert ids.make("HONDA") in expanded["make_ids"]
    assert ids.model("PRIUS") in expanded["model_ids"]


def test_save_is_unavailable_when_model_years_fail(client, store, monkeypatch):
    make_id, model_id = pair_ids(client, "CIVIC")
    canonical_make, canonical_model = canonical_ids(client, "HONDA", "CIVIC")

    def unavailable(make_id, model_id, years):
        raise DataSourceUnavailable("database is locked")

    monkeypatch.setattr(store, "model_year_counts", unavailable)
    response = client.post(
        f"/pairs/{make_id}/{model_id}/mapping",
        json={"canonical_make_id": canonical_make, "canonical_model_id": canonical_model},
    )
    assert response.status_code == 503
    assert "database is locked" in response.json()["detail"]
    assert client.get("/mappings").json() == []
