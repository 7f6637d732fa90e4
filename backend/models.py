from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class YearEnum(SQLModel, table=True):
    __tablename__ = "year_enum"

    id: Optional[int] = Field(default=None, primary_key=True)
    year: int = Field(unique=True)


class MakeEnum(SQLModel, table=True):
    __tablename__ = "make_enum"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)


class ModelEnum(SQLModel, table=True):
    __tablename__ = "model_enum"
    __table_args__ = (UniqueConstraint("name", "make_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    make_id: int = Field(foreign_key="make_enum.id")


class ModelYearEnum(SQLModel, table=True):
    __tablename__ = "model_year_enum"

    id: Optional[int] = Field(default=None, primary_key=True)
    year: int = Field(unique=True)


class FuelTypeEnum(SQLModel, table=True):
    __tablename__ = "fuel_type_enum"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True)
    description: str


class VehicleTypeEnum(SQLModel, table=True):
    __tablename__ = "vehicle_type_enum"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(unique=True)
    description: str


class Vehicle(SQLModel, table=True):
    __tablename__ = "vehicles"

    id: Optional[int] = Field(default=None, primary_key=True)
    year_id: int = Field(foreign_key="year_enum.id", index=True)
    make_id: int = Field(foreign_key="make_enum.id", index=True)
    model_id: int = Field(foreign_key="model_enum.id", index=True)
    model_year_id: Optional[int] = Field(default=None, foreign_key="model_year_enum.id")
    fuel_type_id: Optional[int] = Field(default=None, foreign_key="fuel_type_enum.id")
    vehicle_type_id: Optional[int] = Field(default=None, foreign_key="vehicle_type_enum.id")


class MakeModelRegularization(SQLModel, table=True):
    __tablename__ = "make_model_regularization"
    __table_args__ = (
        UniqueConstraint("uncurated_make_id", "uncurated_model_id", "model_year_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    uncurated_make_id: int = Field(foreign_key="make_enum.id", index=True)
    uncurated_model_id: int = Field(foreign_key="model_enum.id", index=True)
    model_year_id: Optional[int] = Field(default=None, foreign_key="model_year_enum.id")
    canonical_make_id: int = Field(foreign_key="make_enum.id", index=True)
    canonical_model_id: int = Field(foreign_key="model_enum.id")
    fuel_type_id: Optional[int] = Field(default=None, foreign_key="fuel_type_enum.id")
    vehicle_type_id: Optional[int] = Field(default=None, foreign_key="vehicle_type_enum.id")
    record_count: int = 0
    year_range_start: int
    year_range_end: int
    created_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
