"""
SQLite-backed implementation of the regularization storage contract.

Query shapes follow the vehicles/enum-table schema in backend.models: every
categorical column on `vehicles` is an integer id into its *_enum table, and
registration years are split into curated and uncurated sets by the caller.
"""

from typing import Callable, Iterable, Optional, TypeVar

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import aliased
from sqlmodel import Session, SQLModel, col, create_engine, select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.models import (
    FuelTypeEnum,
    MakeEnum,
    MakeModelRegularization,
    ModelEnum,
    ModelYearEnum,
    Vehicle,
    VehicleTypeEnum,
    YearEnum,
)
from regularization.src.errors import DataSourceUnavailable
from regularization.src.models import (
    FieldCoverage,
    FuelTypeInfo,
    ModelYearCount,
    RegularizationMapping,
    RegularizationStatistics,
    VehicleTypeInfo,
    pair_key,
)
from regularization.src.store import CuratedFact, PairAggregate

T = TypeVar("T")


def make_engine(database_url: str):
    """Create an engine; SQLite connections are shared with worker threads."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, connect_args=connect_args)
    SQLModel.metadata.create_all(engine)
    return engine


class SQLModelStore:
    """RegularizationStore over a SQLModel engine."""

    def __init__(self, engine):
        self.engine = engine

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    def _execute(self, work: Callable[[Session], T]) -> T:
        with Session(self.engine) as session:
            return work(session)

    def _run(self, work: Callable[[Session], T], what: str) -> T:
        try:
            return self._execute(work)
        except SQLAlchemyError as e:
            logger.error(f"Store query failed ({what}): {e}")
            raise DataSourceUnavailable(f"Failed to {what}: {e}") from e

    # ─── Curated / uncurated scans ───

    def curated_facts(self, curated_years: Iterable[int]) -> list[CuratedFact]:
        years = sorted(curated_years)

        def work(session: Session) -> list[CuratedFact]:
            stmt = (
                select(
                    MakeEnum.id,
                    MakeEnum.name,
                    ModelEnum.id,
                    ModelEnum.name,
                    ModelYearEnum.id,
                    ModelYearEnum.year,
                    FuelTypeEnum.id,
                    FuelTypeEnum.code,
                    FuelTypeEnum.description,
                    VehicleTypeEnum.id,
                    VehicleTypeEnum.code,
                    VehicleTypeEnum.description,
                    func.count(Vehicle.id),
                )
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .join(MakeEnum, Vehicle.make_id == MakeEnum.id)
                .join(ModelEnum, Vehicle.model_id == ModelEnum.id)
                .outerjoin(ModelYearEnum, Vehicle.model_year_id == ModelYearEnum.id)
                .outerjoin(FuelTypeEnum, Vehicle.fuel_type_id == FuelTypeEnum.id)
                .outerjoin(VehicleTypeEnum, Vehicle.vehicle_type_id == VehicleTypeEnum.id)
                .where(col(YearEnum.year).in_(years))
                .group_by(
                    MakeEnum.id, ModelEnum.id, ModelYearEnum.id, FuelTypeEnum.id, VehicleTypeEnum.id
                )
            )
            return [
                CuratedFact(
                    make_id=row[0],
                    make_name=row[1],
                    model_id=row[2],
                    model_name=row[3],
                    model_year_id=row[4],
                    model_year=row[5],
                    fuel_type_id=row[6],
                    fuel_type_code=row[7],
                    fuel_type_description=row[8],
                    vehicle_type_id=row[9],
                    vehicle_type_code=row[10],
                    vehicle_type_description=row[11],
                    record_count=row[12],
                )
                for row in session.exec(stmt).all()
            ]

        return self._run(work, "scan curated records")

    def uncurated_pair_aggregates(self, uncurated_years: Iterable[int]) -> list[PairAggregate]:
        years = sorted(uncurated_years)

        def work(session: Session) -> list[PairAggregate]:
            stmt = (
                select(
                    Vehicle.make_id,
                    Vehicle.model_id,
                    MakeEnum.name,
                    ModelEnum.name,
                    func.min(YearEnum.year),
                    func.max(YearEnum.year),
                    func.count(Vehicle.id),
                )
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .join(MakeEnum, Vehicle.make_id == MakeEnum.id)
                .join(ModelEnum, Vehicle.model_id == ModelEnum.id)
                .where(col(YearEnum.year).in_(years))
                .group_by(Vehicle.make_id, Vehicle.model_id)
            )
            return [
                PairAggregate(
                    make_id=row[0],
                    model_id=row[1],
                    make_name=row[2],
                    model_name=row[3],
                    earliest_year=row[4],
                    latest_year=row[5],
                    record_count=row[6],
                )
                for row in session.exec(stmt).all()
            ]

        return self._run(work, "scan uncurated pairs")

    def model_year_counts(
        self, make_id: int, model_id: int, uncurated_years: Iterable[int]
    ) -> list[ModelYearCount]:
        years = sorted(uncurated_years)

        def work(session: Session) -> list[ModelYearCount]:
            stmt = (
                select(ModelYearEnum.id, ModelYearEnum.year, func.count(Vehicle.id))
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .join(ModelYearEnum, Vehicle.model_year_id == ModelYearEnum.id)
                .where(
                    Vehicle.make_id == make_id,
                    Vehicle.model_id == model_id,
                    col(YearEnum.year).in_(years),
                )
                .group_by(ModelYearEnum.id, ModelYearEnum.year)
                .order_by(ModelYearEnum.year)
            )
            return [
                ModelYearCount(model_year_id=row[0], model_year=row[1], record_count=row[2])
                for row in session.exec(stmt).all()
            ]

        return self._run(work, "load model years for pair")

    def model_years_by_pair(self, uncurated_years: Iterable[int]) -> dict[str, set[int]]:
        years = sorted(uncurated_years)

        def work(session: Session) -> dict[str, set[int]]:
            stmt = (
                select(Vehicle.make_id, Vehicle.model_id, ModelYearEnum.year)
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .join(ModelYearEnum, Vehicle.model_year_id == ModelYearEnum.id)
                .where(col(YearEnum.year).in_(years))
                .distinct()
            )
            result: dict[str, set[int]] = {}
            for make_id, model_id, model_year in session.exec(stmt).all():
                result.setdefault(pair_key(make_id, model_id), set()).add(model_year)
            return result

        return self._run(work, "load model years for all pairs")

    def uncurated_record_count(
        self,
        make_id: int,
        model_id: int,
        model_year_id: Optional[int],
        uncurated_years: Iterable[int],
    ) -> int:
        years = sorted(uncurated_years)

        def work(session: Session) -> int:
            stmt = (
                select(func.count(Vehicle.id))
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .where(
                    Vehicle.make_id == make_id,
                    Vehicle.model_id == model_id,
                    col(YearEnum.year).in_(years),
                )
            )
            if model_year_id is not None:
                stmt = stmt.where(Vehicle.model_year_id == model_year_id)
            return session.exec(stmt).one()

        return self._run(work, "count uncurated records")

    # ─── Mappings ───

    def get_all_mappings(self) -> list[RegularizationMapping]:
        uncurated_make = aliased(MakeEnum)
        uncurated_model = aliased(ModelEnum)
        canonical_make = aliased(MakeEnum)
        canonical_model = aliased(ModelEnum)

        def work(session: Session) -> list[RegularizationMapping]:
            stmt = (
                select(
                    MakeModelRegularization,
                    uncurated_make.name,
                    uncurated_model.name,
                    ModelYearEnum.year,
                    canonical_make.name,
                    canonical_model.name,
                    FuelTypeEnum.description,
                    VehicleTypeEnum.description,
                )
                .select_from(MakeModelRegularization)
                .join(uncurated_make, MakeModelRegularization.uncurated_make_id == uncurated_make.id)
                .join(uncurated_model, MakeModelRegularization.uncurated_model_id == uncurated_model.id)
                .outerjoin(ModelYearEnum, MakeModelRegularization.model_year_id == ModelYearEnum.id)
                .join(canonical_make, MakeModelRegularization.canonical_make_id == canonical_make.id)
                .join(canonical_model, MakeModelRegularization.canonical_model_id == canonical_model.id)
                .outerjoin(FuelTypeEnum, MakeModelRegularization.fuel_type_id == FuelTypeEnum.id)
                .outerjoin(VehicleTypeEnum, MakeModelRegularization.vehicle_type_id == VehicleTypeEnum.id)
                .order_by(col(MakeModelRegularization.record_count).desc(), MakeModelRegularization.id)
            )
            mappings = []
            for row, u_make, u_model, model_year, c_make, c_model, fuel, vehicle_type in session.exec(stmt).all():
                mappings.append(RegularizationMapping(
                    id=row.id,
                    uncurated_make_id=row.uncurated_make_id,
                    uncurated_model_id=row.uncurated_model_id,
                    uncurated_make=u_make,
                    uncurated_model=u_model,
                    model_year_id=row.model_year_id,
                    model_year=model_year,
                    canonical_make_id=row.canonical_make_id,
                    canonical_model_id=row.canonical_model_id,
                    canonical_make=c_make,
                    canonical_model=c_model,
                    fuel_type_id=row.fuel_type_id,
                    fuel_type=fuel,
                    vehicle_type_id=row.vehicle_type_id,
                    vehicle_type=vehicle_type,
                    record_count=row.record_count,
                    year_range=f"{row.year_range_start}-{row.year_range_end}",
                ))
            return mappings

        return self._run(work, "get mappings")

    def upsert_mapping(
        self,
        uncurated_make_id: int,
        uncurated_model_id: int,
        model_year_id: Optional[int],
        canonical_make_id: int,
        canonical_model_id: int,
        fuel_type_id: Optional[int],
        vehicle_type_id: Optional[int],
        record_count: int,
        year_range_start: int,
        year_range_end: int,
    ) -> None:
        def work(session: Session) -> None:
            stmt = select(MakeModelRegularization).where(
                MakeModelRegularization.uncurated_make_id == uncurated_make_id,
                MakeModelRegularization.uncurated_model_id == uncurated_model_id,
            )
            # NULL never collides in a UNIQUE index, so the wildcard row is matched explicitly
            if model_year_id is None:
                stmt = stmt.where(col(MakeModelRegularization.model_year_id).is_(None))
            else:
                stmt = stmt.where(MakeModelRegularization.model_year_id == model_year_id)

            row = session.exec(stmt).first()
            if row is None:
                row = MakeModelRegularization(
                    uncurated_make_id=uncurated_make_id,
                    uncurated_model_id=uncurated_model_id,
                    model_year_id=model_year_id,
                    canonical_make_id=canonical_make_id,
                    canonical_model_id=canonical_model_id,
                    year_range_start=year_range_start,
                    year_range_end=year_range_end,
                )
            row.canonical_make_id = canonical_make_id
            row.canonical_model_id = canonical_model_id
            row.fuel_type_id = fuel_type_id
            row.vehicle_type_id = vehicle_type_id
            row.record_count = record_count
            row.year_range_start = year_range_start
            row.year_range_end = year_range_end
            session.add(row)
            session.commit()

        self._run(work, "save mapping")

    def canonical_makes_for(self, uncurated_make_id: int) -> list[tuple[int, str]]:
        def work(session: Session) -> list[tuple[int, str]]:
            stmt = (
                select(MakeModelRegularization.canonical_make_id, MakeEnum.name)
                .select_from(MakeModelRegularization)
                .join(MakeEnum, MakeModelRegularization.canonical_make_id == MakeEnum.id)
                .where(MakeModelRegularization.uncurated_make_id == uncurated_make_id)
                .distinct()
            )
            return [(row[0], row[1]) for row in session.exec(stmt).all()]

        return self._run(work, "validate make consistency")

    # ─── Enumerations ───

    def get_enum_id(self, table: str, column: str, value: str) -> Optional[int]:
        enum_table = SQLModel.metadata.tables.get(table)
        if enum_table is None or column not in enum_table.c:
            raise ValueError(f"Unknown enumeration column {table}.{column}")

        def work(session: Session) -> Optional[int]:
            stmt = select(enum_table.c.id).where(enum_table.c[column] == value).limit(1)
            return session.exec(stmt).first()

        enum_id = self._run(work, f"look up {table}.{column}")
        if enum_id is None:
            logger.debug(f"No match for '{value}' in {table}.{column}")
        return enum_id

    def all_vehicle_types(self) -> list[VehicleTypeInfo]:
        def work(session: Session) -> list[VehicleTypeInfo]:
            rows = session.exec(select(VehicleTypeEnum).order_by(VehicleTypeEnum.code)).all()
            return [VehicleTypeInfo(id=r.id, code=r.code, description=r.description) for r in rows]

        return self._run(work, "load vehicle types")

    def all_fuel_types(self) -> list[FuelTypeInfo]:
        def work(session: Session) -> list[FuelTypeInfo]:
            rows = session.exec(select(FuelTypeEnum).order_by(FuelTypeEnum.description)).all()
            return [FuelTypeInfo(id=r.id, code=r.code, description=r.description) for r in rows]

        return self._run(work, "load fuel types")

    def regularization_vehicle_types(self) -> list[VehicleTypeInfo]:
        def work(session: Session) -> list[VehicleTypeInfo]:
            stmt = (
                select(
                    VehicleTypeEnum.id,
                    VehicleTypeEnum.code,
                    VehicleTypeEnum.description,
                    func.count(MakeModelRegularization.id),
                )
                .select_from(MakeModelRegularization)
                .join(VehicleTypeEnum, MakeModelRegularization.vehicle_type_id == VehicleTypeEnum.id)
                .group_by(VehicleTypeEnum.id, VehicleTypeEnum.code, VehicleTypeEnum.description)
                .order_by(VehicleTypeEnum.code)
            )
            return [
                VehicleTypeInfo(id=row[0], code=row[1], description=row[2], record_count=row[3])
                for row in session.exec(stmt).all()
            ]

        return self._run(work, "load regularization vehicle types")

    # ─── Statistics ───

    def statistics(self, uncurated_years: Iterable[int]) -> RegularizationStatistics:
        years = sorted(uncurated_years)
        mapping = MakeModelRegularization

        def count_uncurated(session: Session, *conditions) -> int:
            stmt = (
                select(func.count(Vehicle.id))
                .select_from(Vehicle)
                .join(YearEnum, Vehicle.year_id == YearEnum.id)
                .where(col(YearEnum.year).in_(years), *conditions)
            )
            return session.exec(stmt).one()

        def work(session: Session) -> RegularizationStatistics:
            same_pair = (
                mapping.uncurated_make_id == Vehicle.make_id,
                mapping.uncurated_model_id == Vehicle.model_id,
            )
            make_model_mapped = select(mapping.id).where(*same_pair).exists()
            fuel_mapped = (
                select(mapping.id)
                .where(
                    *same_pair,
                    mapping.model_year_id == Vehicle.model_year_id,
                    col(mapping.fuel_type_id).is_not(None),
                )
                .exists()
            )
            vehicle_type_mapped = (
                select(mapping.id)
                .where(
                    *same_pair,
                    col(mapping.model_year_id).is_(None),
                    col(mapping.vehicle_type_id).is_not(None),
                )
                .exists()
            )

            total = count_uncurated(session)
            mapping_count = session.exec(select(func.count(mapping.id))).one()

            def coverage(condition) -> FieldCoverage:
                assigned = count_uncurated(session, condition)
                return FieldCoverage(
                    assigned_count=assigned,
                    unassigned_count=total - assigned,
                    total_records=total,
                )

            return RegularizationStatistics(
                mapping_count=mapping_count,
                total_uncurated_records=total,
                make_model_coverage=coverage(make_model_mapped),
                fuel_type_coverage=coverage(fuel_mapped),
                vehicle_type_coverage=coverage(vehicle_type_mapped),
            )

        return self._run(work, "compute statistics")
