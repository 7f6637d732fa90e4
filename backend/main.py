import asyncio
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.schemas import PairStatusResponse, SaveMappingRequest
from backend.store import SQLModelStore, make_engine
from regularization.config.settings import (
    DATABASE_URL,
    ensure_dirs,
    load_auto_regularization_config,
    load_year_configuration,
)
from regularization.src.errors import DataSourceUnavailable, HierarchyNotReady, RegularizationError
from regularization.src.models import RegularizationStatus, SortOrder
from regularization.src.resolver import compute_status, field_assignment_status
from regularization.src.session import RegularizationSession
from regularization.src.translation import expand_make_model_ids, uncurated_ids_for_vehicle_type


app = FastAPI(title="SAAQ Make/Model Regularization")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_session: Optional[RegularizationSession] = None
_loaded = False
_edit_lock = asyncio.Lock()


def configure_session(session: Optional[RegularizationSession]) -> None:
    """Install the session served by the API (None resets to the default database)."""
    global _session, _loaded
    _session = session
    _loaded = False


def get_session() -> RegularizationSession:
    global _session
    if _session is None:
        ensure_dirs()
        store = SQLModelStore(make_engine(DATABASE_URL))
        _session = RegularizationSession(
            store, load_year_configuration(), load_auto_regularization_config()
        )
    return _session


async def loaded_session(session: RegularizationSession = Depends(get_session)) -> RegularizationSession:
    global _loaded
    if not _loaded:
        await session.load_initial_data(auto_regularize=False)
        _loaded = True
    return session


@app.exception_handler(RegularizationError)
async def regularization_error_handler(request, exc: RegularizationError):
    status_code = 503 if isinstance(exc, (DataSourceUnavailable, HierarchyNotReady)) else 409
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def find_pair(session: RegularizationSession, make_id: int, model_id: int):
    pair = next((p for p in session.pairs if p.make_id == make_id and p.model_id == model_id), None)
    if pair is None:
        raise HTTPException(status_code=404, detail="No uncurated pair with those ids.")
    return pair


@app.post("/load")
async def load(
    include_exact_matches: bool = True,
    auto_regularize: bool = True,
    session: RegularizationSession = Depends(get_session),
):
    global _loaded
    await session.load_initial_data(include_exact_matches, auto_regularize)
    _loaded = True
    return {
        "pairs": len(session.pairs),
        "canonical_makes": len(session.hierarchy.makes) if session.hierarchy else 0,
        "mappings": sum(len(rows) for rows in session.mapping_index.values()),
        "auto_regularization": session.last_auto_result,
        "last_error": session.last_error,
    }


@app.get("/pairs")
async def pairs(
    search: str = "",
    show_unassigned: bool = True,
    show_partial: bool = True,
    show_complete: bool = True,
    vehicle_type_id: Optional[int] = Query(None, description="-1 for pairs without a vehicle type"),
    incomplete_vehicle_type: bool = False,
    incomplete_fuel_type: bool = False,
    sort: SortOrder = SortOrder.RECORD_COUNT_DESC,
    session: RegularizationSession = Depends(loaded_session),
):
    filtered = session.filter_pairs(
        search_text=search,
        show_unassigned=show_unassigned,
        show_partial=show_partial,
        show_complete=show_complete,
        vehicle_type_id=vehicle_type_id,
        incomplete_vehicle_type=incomplete_vehicle_type,
        incomplete_fuel_type=incomplete_fuel_type,
    )
    return session.sort_pairs(filtered, sort)


@app.get("/hierarchy")
async def hierarchy(
    force_refresh: bool = False,
    session: RegularizationSession = Depends(loaded_session),
):
    if force_refresh or session.hierarchy is None:
        if not await session.refresh_hierarchy(force_refresh=force_refresh):
            raise HTTPException(status_code=503, detail=session.last_error)
    return session.hierarchy


@app.get("/mappings")
async def mappings(session: RegularizationSession = Depends(loaded_session)):
    return [m for rows in session.mapping_index.values() for m in rows]


@app.get("/pairs/{make_id}/{model_id}", response_model=PairStatusResponse)
async def pair_status(
    make_id: int,
    model_id: int,
    session: RegularizationSession = Depends(loaded_session),
):
    pair = find_pair(session, make_id, model_id)
    counts = await asyncio.to_thread(
        session.store.model_year_counts, make_id, model_id, session.year_config.uncurated_years
    )
    years = [c.model_year for c in counts]
    rows = session.mappings_for(pair)
    return PairStatusResponse(
        make_id=make_id,
        model_id=model_id,
        status=compute_status(rows, years),
        vehicle_type_id=pair.vehicle_type_id,
        model_years=years,
        mappings=rows,
    )


@app.get("/pairs/{make_id}/{model_id}/fields")
async def pair_fields(
    make_id: int,
    model_id: int,
    session: RegularizationSession = Depends(loaded_session),
):
    pair = find_pair(session, make_id, model_id)
    years = await asyncio.to_thread(
        session.store.model_year_counts, make_id, model_id, session.year_config.uncurated_years
    )
    return field_assignment_status(session.mappings_for(pair), [y.model_year for y in years])


@app.post("/pairs/{make_id}/{model_id}/mapping")
async def save_mapping(
    make_id: int,
    model_id: int,
    body: SaveMappingRequest,
    session: RegularizationSession = Depends(loaded_session),
):
    pair = find_pair(session, make_id, model_id)
    if session.hierarchy is None:
        raise HTTPException(status_code=503, detail="Canonical hierarchy is not loaded.")
    model = session.hierarchy.find_model_by_id(body.canonical_make_id, body.canonical_model_id)
    if model is None:
        raise HTTPException(status_code=404, detail="No canonical model with those ids.")

    if _edit_lock.locked():
        raise HTTPException(status_code=409, detail="A save is already in progress.")
    async with _edit_lock:
        await session.select_pair(pair)
        if not session.model_years_loaded:
            raise HTTPException(
                status_code=503, detail=session.last_error or "Uncurated model years could not be loaded."
            )
        session.select_canonical_model(model)
        session.selected_vehicle_type_id = body.vehicle_type_id
        session.fuel_selections = dict(body.fuel_selections)
        session.last_error = None
        if not await session.save():
            raise HTTPException(status_code=409, detail=session.last_error or "Save rejected.")

    return {"status": pair.regularization_status, "vehicle_type_id": pair.vehicle_type_id}


@app.post("/auto-regularize")
async def auto_regularize(session: RegularizationSession = Depends(loaded_session)):
    return await session.run_auto_regularization()


@app.get("/statistics")
async def statistics(session: RegularizationSession = Depends(loaded_session)):
    stats = await session.statistics()
    if stats is None:
        raise HTTPException(status_code=503, detail=session.last_error)
    progress = session.regularization_progress()
    counts = session.status_counts()
    return {
        "statistics": stats,
        "make_model_coverage": stats.make_model_coverage.coverage_percentage,
        "fuel_type_coverage": stats.fuel_type_coverage.coverage_percentage,
        "vehicle_type_coverage": stats.vehicle_type_coverage.coverage_percentage,
        "status_counts": {status.value: counts[status] for status in RegularizationStatus},
        "progress": {
            "regularized_records": progress.regularized_records,
            "total_records": progress.total_records,
            "percentage": progress.percentage,
        },
    }


@app.get("/vehicle-types")
async def vehicle_types(
    regularized_only: bool = False,
    session: RegularizationSession = Depends(loaded_session),
):
    if regularized_only:
        return await asyncio.to_thread(session.store.regularization_vehicle_types)
    return session.vehicle_types


@app.get("/expand")
async def expand(
    make_ids: list[int] = Query(default=[]),
    model_ids: list[int] = Query(default=[]),
    vehicle_type_id: Optional[int] = None,
    coupling: bool = True,
    session: RegularizationSession = Depends(loaded_session),
):
    rows = [m for group in session.mapping_index.values() for m in group]
    if vehicle_type_id is not None:
        makes, models = uncurated_ids_for_vehicle_type(rows, vehicle_type_id)
    else:
        makes, models = expand_make_model_ids(rows, make_ids, model_ids, coupling)
    return {"make_ids": makes, "model_ids": models}
