from pathlib import Path
import argparse
from typing import Iterable, Optional

import pandas as pd
from loguru import logger
from sqlmodel import Session, select

from backend.models import (
    FuelTypeEnum,
    MakeEnum,
    ModelEnum,
    ModelYearEnum,
    Vehicle,
    VehicleTypeEnum,
    YearEnum,
)
from backend.store import make_engine

FUEL_TYPES = {
    "E": "Gasoline",
    "D": "Diesel",
    "L": "Electric",
    "H": "Hybrid",
    "W": "Plug-in Hybrid",
    "C": "Hydrogen",
    "P": "Propane",
    "N": "Natural Gas",
    "M": "Methanol",
    "T": "Ethanol",
    "A": "Other",
    "S": "Non-powered",
    "U": "Unknown",
}

VEHICLE_TYPES = {
    "AB": "Bus",
    "AT": "Dealer Plates",
    "AU": "Automobile or Light Truck",
    "CA": "Truck or Road Tractor",
    "CY": "Moped",
    "HM": "Motorhome",
    "MC": "Motorcycle",
    "MN": "Snowmobile",
    "NV": "Other Off-Road Vehicle",
    "SN": "Snow Blower",
    "VO": "Tool Vehicle",
    "VT": "All-Terrain Vehicle",
    "UK": "Unknown",
}

# SAAQ export headers -> internal column names
SAAQ_COLUMNS = {
    "an": "year",
    "marq_veh": "make",
    "model_veh": "model",
    "annee_mod": "model_year",
    "typ_carbu": "fuel_type",
    "typ_veh_categ_usa": "vehicle_type",
}


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [col.strip().lower() for col in df.columns]
    return df.rename(columns=SAAQ_COLUMNS)


def validate_columns(df: pd.DataFrame) -> None:
    required = {"year", "make", "model"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")


def apply_rules(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for column in ("model_year", "fuel_type", "vehicle_type"):
        if column not in df.columns:
            df[column] = None

    df["year"] = pd.to_numeric(df["year"], errors="coerce")
    df = df.loc[df["year"].notna()].reset_index(drop=True)
    df["year"] = df["year"].astype(int)
    df["model_year"] = pd.to_numeric(df["model_year"], errors="coerce").astype("Int64")

    for column in ("make", "model", "fuel_type", "vehicle_type"):
        df[column] = df[column].astype("string").str.strip()
        df[column] = df[column].replace("", pd.NA)

    dropped = df["make"].isna() | df["model"].isna()
    if dropped.any():
        logger.warning(f"Dropping {int(dropped.sum())} rows without make or model")
    return df.loc[~dropped].reset_index(drop=True)


def populate_type_enums(engine) -> None:
    """Insert the known SAAQ fuel and vehicle type codes."""
    with Session(engine) as session:
        for table, codes in ((FuelTypeEnum, FUEL_TYPES), (VehicleTypeEnum, VEHICLE_TYPES)):
            existing = set(session.exec(select(table.code)).all())
            for code, description in codes.items():
                if code not in existing:
                    session.add(table(code=code, description=description))
        session.commit()


def _sync_values(session: Session, table, column: str, values: Iterable) -> dict:
    """Ensure each value has a row in an enum table; return value -> id."""
    ids = {getattr(row, column): row.id for row in session.exec(select(table)).all()}
    for value in values:
        if value not in ids:
            row = table(**{column: value})
            session.add(row)
            session.flush()
            ids[value] = row.id
    return ids


def _sync_codes(session: Session, table, codes: Iterable[str]) -> dict[str, int]:
    ids = {row.code: row.id for row in session.exec(select(table)).all()}
    for code in codes:
        if code not in ids:
            logger.warning(f"Code '{code}' missing from {table.__tablename__}, adding it")
            row = table(code=code, description=code)
            session.add(row)
            session.flush()
            ids[code] = row.id
    return ids


def seed_dataframe(engine, df: pd.DataFrame) -> int:
    """Load cleaned registration rows into the enum and vehicles tables."""
    populate_type_enums(engine)
    with Session(engine) as session:
        year_ids = _sync_values(session, YearEnum, "year", sorted(int(y) for y in df["year"].unique()))
        make_ids = _sync_values(session, MakeEnum, "name", sorted(df["make"].unique()))

        model_ids = {
            (row.name, row.make_id): row.id for row in session.exec(select(ModelEnum)).all()
        }
        for make, model in df[["make", "model"]].drop_duplicates().itertuples(index=False):
            key = (model, make_ids[make])
            if key not in model_ids:
                row = ModelEnum(name=model, make_id=make_ids[make])
                session.add(row)
                session.flush()
                model_ids[key] = row.id

        model_year_ids = _sync_values(
            session, ModelYearEnum, "year", sorted(int(y) for y in df["model_year"].dropna().unique())
        )
        fuel_ids = _sync_codes(session, FuelTypeEnum, sorted(df["fuel_type"].dropna().unique()))
        vehicle_type_ids = _sync_codes(session, VehicleTypeEnum, sorted(df["vehicle_type"].dropna().unique()))
        session.commit()

    def lookup(mapping: dict, value) -> Optional[int]:
        if pd.isna(value):
            return None
        return mapping.get(value)

    make_col = df["make"].map(make_ids)
    vehicles = pd.DataFrame({
        "year_id": df["year"].map(year_ids),
        "make_id": make_col,
        "model_id": [model_ids[(model, make_id)] for model, make_id in zip(df["model"], make_col)],
        "model_year_id": [lookup(model_year_ids, v if pd.isna(v) else int(v)) for v in df["model_year"]],
        "fuel_type_id": [lookup(fuel_ids, v) for v in df["fuel_type"]],
        "vehicle_type_id": [lookup(vehicle_type_ids, v) for v in df["vehicle_type"]],
    })
    for column in ("model_year_id", "fuel_type_id", "vehicle_type_id"):
        vehicles[column] = vehicles[column].astype("Int64")

    vehicles.to_sql(Vehicle.__tablename__, engine, if_exists="append", index=False)
    return len(vehicles)


def seed_csv(csv_path: Path, database_url: str) -> int:
    if not csv_path.exists():
        raise FileNotFoundError(f"CSV not found at {csv_path}")

    df = pd.read_csv(csv_path, dtype=str)
    df = normalize_columns(df)
    validate_columns(df)
    df = apply_rules(df)

    engine = make_engine(database_url)
    count = seed_dataframe(engine, df)
    logger.info(f"Seeded {count} rows from {csv_path}")
    return count


def main() -> None:
    from regularization.config.settings import DATABASE_URL, ensure_dirs

    parser = argparse.ArgumentParser(description="Load a SAAQ registration CSV into the database")
    parser.add_argument("csv", type=Path)
    parser.add_argument("--database-url", default=DATABASE_URL)
    args = parser.parse_args()

    ensure_dirs()
    count = seed_csv(args.csv, args.database_url)
    print(f"Seeded {count} rows into {args.database_url}")


if __name__ == "__main__":
    main()
