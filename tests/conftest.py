"""
Pytest configuration and fixtures for regularization tests.

The sample database holds curated rows for 2017-2018 and uncurated rows for
2023-2024:
- HONDA CIVIC   curated model years 2016 (E) and 2017 (E, H); uncurated 2016 and 2022
- TOYOTA PRIUS  curated 2016 (H); uncurated 2016
- FORD F150     curated 2016 (E) as AU and CA; uncurated 2016
- YAMAHA YZF    curated 2017 (E) as MC only
- BMW X5        curated without model year or fuel type
- HONDA CIVIK   uncurated only (typo of CIVIC)
- KIA SOUL      uncurated only
"""

import pandas as pd
import pytest

from backend.seed import apply_rules, normalize_columns, seed_dataframe
from backend.store import SQLModelStore, make_engine
from regularization.src.models import AutoRegularizationConfig, YearConfiguration

CURATED_YEARS = {2017, 2018}
UNCURATED_YEARS = {2023, 2024}

# (AN, MARQ_VEH, MODEL_VEH, ANNEE_MOD, TYP_CARBU, TYP_VEH_CATEG_USA, copies)
SAMPLE_ROWS = [
    ("2017", "HONDA", "CIVIC", "2016", "E", "AU", 3),
    ("2018", "HONDA", "CIVIC", "2017", "E", "AU", 2),
    ("2018", "HONDA", "CIVIC", "2017", "H", "AU", 1),
    ("2017", "TOYOTA", "PRIUS", "2016", "H", "AU", 2),
    ("2017", "FORD", "F150", "2016", "E", "AU", 1),
    ("2018", "FORD", "F150", "2016", "E", "CA", 1),
    ("2018", "YAMAHA", "YZF", "2017", "E", "MC", 1),
    ("2017", "BMW", "X5", "", "", "AU", 1),
    ("2023", "HONDA", "CIVIC", "2016", "E", "AU", 2),
    ("2024", "HONDA", "CIVIC", "2022", "E", "AU", 1),
    ("2023", "HONDA", "CIVIK", "2016", "", "", 1),
    ("2024", "TOYOTA", "PRIUS", "2016", "", "", 1),
    ("2023", "FORD", "F150", "2016", "", "", 1),
    ("2024", "KIA", "SOUL", "2020", "E", "AU", 2),
]


def sample_frame() -> pd.DataFrame:
    records = []
    for year, make, model, model_year, fuel, vehicle_type, copies in SAMPLE_ROWS:
        records.extend([{
            "AN": year,
            "MARQ_VEH": make,
            "MODEL_VEH": model,
            "ANNEE_MOD": model_year,
            "TYP_CARBU": fuel,
            "TYP_VEH_CATEG_USA": vehicle_type,
        }] * copies)
    return apply_rules(normalize_columns(pd.DataFrame(records)))


@pytest.fixture
def year_config():
    return YearConfiguration(curated_years=set(CURATED_YEARS), uncurated_years=set(UNCURATED_YEARS))


@pytest.fixture
def auto_config():
    return AutoRegularizationConfig(
        use_cardinal_types=True,
        cardinal_vehicle_type_codes=["AU", "MC"],
        dependency_wait_seconds=5.0,
    )


@pytest.fixture
def engine(tmp_path):
    return make_engine(f"sqlite:///{tmp_path / 'saaq.db'}")


@pytest.fixture
def store(engine):
    seed_dataframe(engine, sample_frame())
    return SQLModelStore(engine)


@pytest.fixture
def empty_store(engine):
    return SQLModelStore(engine)


@pytest.fixture
def ids(store):
    """Resolve enum ids by name or code in the sample database."""
    def lookup(table: str, value, column: str = "name"):
        enum_id = store.get_enum_id(table, column, value)
        assert enum_id is not None, f"{value} missing from {table}"
        return enum_id

    class Ids:
        def make(self, name):
            return lookup("make_enum", name)

        def model(self, name):
            return lookup("model_enum", name)

        def model_year(self, year):
            return lookup("model_year_enum", year, "year")

        def fuel(self, code):
            return lookup("fuel_type_enum", code, "code")

        def vehicle_type(self, code):
            return lookup("vehicle_type_enum", code, "code")

    return Ids()


@pytest.fixture
def find_pair():
    def find(pairs, make, model):
        return next(p for p in pairs if p.make_name == make and p.model_name == model)
    return find
