"""Pytest configuration and fixtures."""
from pathlib import Path
from typing import List

import pytest
from sqlalchemy.pool import StaticPool

from config import YOKOHAMA_LINE, LineConfig, OriginWeight
from data_cache import TimetableCache, timetable_filename
from database import create_db_engine, create_session_factory, init_db
from session_state import StationPreferenceStore

TEST_HEADER = "sequence,tier,destination,S,A,B,T,platform,through_arrival"

# A 駅を 0800 / 通過 / 0810 / 0750 に発車する4本
SCENARIO_ROWS = [
    "0001,local,T,0755,0800,0803,0820,2,-",
    "0002,rapid,T,0800,->,0805,0825,1,-",
    "0003,local,Z,0805,0810,0813,0830,2,0835",
    "0004,local,T,0745,0750,0753,0810,2,-",
]


class FixedRandom:
    """random() が常に同じ値を返す乱数源"""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def test_line() -> LineConfig:
    return LineConfig(
        id="test",
        name="テスト線",
        stations=("S", "A", "B", "T"),
        rapid_stops=("S", "B", "T"),
        major_stations=("A",),
        origin_weights=(OriginWeight(station="S", weight=1),),
        intervals={
            "local": {"S-A": 2, "A-B": 3, "B-T": 4},
            "rapid": {"S-B": 4, "B-T": 3},
        },
        tier_labels={"local": "各停", "rapid": "快速"},
        platforms={"rapid": 1, "local": 2},
        terminus="T",
        through_destination="Z",
        through_arrival_station="Y",
        through_transit_minutes=5,
    )


@pytest.fixture
def yokohama_line() -> LineConfig:
    return YOKOHAMA_LINE


def write_csv(path: Path, header: str, rows: List[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join([header, *rows]) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def scenario_data_dir(tmp_path: Path) -> Path:
    data_dir = tmp_path / "data"
    write_csv(data_dir / timetable_filename("weekday"), TEST_HEADER, SCENARIO_ROWS)
    write_csv(data_dir / timetable_filename("holiday"), TEST_HEADER, SCENARIO_ROWS[:1])
    return data_dir


@pytest.fixture
def ready_cache(scenario_data_dir: Path, test_line: LineConfig) -> TimetableCache:
    cache = TimetableCache(scenario_data_dir, test_line)
    cache.load_all()
    assert cache.is_ready
    return cache


@pytest.fixture
def preference_store() -> StationPreferenceStore:
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    return StationPreferenceStore(create_session_factory(engine))
