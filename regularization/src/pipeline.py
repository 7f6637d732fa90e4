"""
Batch Regularization Pipeline

Non-interactive run over the whole database:
1. Build the canonical hierarchy
2. Find uncurated pairs
3. Auto-regularize unmapped exact matches
4. Recompute statuses and export a CSV report
"""

import asyncio
from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from .models import AutoRegularizationConfig, UncuratedPair, YearConfiguration
from .session import RegularizationSession
from .store import RegularizationStore


def pairs_to_frame(pairs: list[UncuratedPair]) -> pd.DataFrame:
    columns = [
        "make_id", "model_id", "make_name", "model_name", "record_count",
        "percentage_of_total", "earliest_year", "latest_year",
        "regularization_status", "vehicle_type_id",
    ]
    rows = []
    for pair in pairs:
        row = pair.model_dump()
        row["regularization_status"] = pair.regularization_status.value
        rows.append(row)
    return pd.DataFrame(rows, columns=columns)


def export_pairs(pairs: list[UncuratedPair], out_path: Path) -> Path:
    df = pairs_to_frame(pairs)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False)
    logger.info(f"Exported {len(df)} pairs to {out_path}")
    return out_path


async def run_pipeline_async(
    store: RegularizationStore,
    year_config: YearConfiguration,
    config: AutoRegularizationConfig,
    include_exact_matches: bool = True,
    skip_auto: bool = False,
    export_path: Optional[Path] = None,
) -> RegularizationSession:
    logger.info("Starting regularization pipeline")
    session = RegularizationSession(store, year_config, config)
    await session.load_initial_data(include_exact_matches, auto_regularize=not skip_auto)

    counts = session.status_counts()
    logger.info(
        "Pair status: "
        + ", ".join(f"{status.value} {count}" for status, count in counts.items())
    )
    if export_path is not None:
        export_pairs(session.sort_pairs(session.pairs), export_path)
    return session


def run_pipeline(
    store: RegularizationStore,
    year_config: YearConfiguration,
    config: AutoRegularizationConfig,
    include_exact_matches: bool = True,
    skip_auto: bool = False,
    export_path: Optional[Path] = None,
) -> RegularizationSession:
    return asyncio.run(run_pipeline_async(
        store, year_config, config, include_exact_matches, skip_auto, export_path
    ))
