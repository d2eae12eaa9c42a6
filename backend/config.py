# backend/config.py
"""
路線定義モジュール

駅の並び・快速停車駅・駅間所要時間などの路線データと、
環境変数から読み込む実行時設定を管理する。
新しい路線を追加する際は SUPPORTED_LINES に追記する。
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

BASE_DIR = Path(__file__).resolve().parent.parent


class OriginWeight(BaseModel):
    """始発駅と発車本数の重み"""
    model_config = ConfigDict(frozen=True)

    station: str
    weight: float


class Station(BaseModel):
    """路線上の1駅"""
    model_config = ConfigDict(frozen=True)

    name: str
    index: int          # 起点駅からの 0 始まりの位置
    is_rapid_stop: bool
    is_major: bool      # UI のショートカット表示用


class LineConfig(BaseModel):
    """
    路線ごとの設定。生成スクリプトと発車案内の両方に明示的に渡す。

    NOTE:
      - intervals は {種別: {"駅A-駅B": 分}} の形で持つ。
      - 定義のない駅間は 0 分として扱われる（find_missing_intervals で検出できる）。
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str                           # 日本語路線名
    stations: Tuple[str, ...]           # 起点 → 終点 の順
    rapid_stops: Tuple[str, ...]
    major_stations: Tuple[str, ...]
    origin_weights: Tuple[OriginWeight, ...]
    intervals: Mapping[str, Mapping[str, int]]
    tier_labels: Mapping[str, str]
    platforms: Mapping[str, int]

    # 全列車が到着する終点（並び替え・到着時刻の基準駅）
    terminus: str
    # 直通運転の行先と、時刻を表示する先の駅
    through_destination: str
    through_arrival_station: str
    through_transit_minutes: int = 5

    # 運行時間帯 [start, end) と時間帯別の運転間隔
    service_start_hour: int = 5
    service_end_hour: int = 24
    peak_windows: Tuple[Tuple[int, int], ...] = ((7, 9), (17, 19))
    peak_headway: int = 7
    off_peak_headway: int = 12
    peak_through_probability: float = 0.2
    off_peak_through_probability: float = 0.1
    rapid_every: int = 3

    @field_validator("intervals", mode="after")
    @classmethod
    def _freeze_intervals(cls, value):
        return MappingProxyType({tier: MappingProxyType(dict(table)) for tier, table in value.items()})

    @field_validator("tier_labels", "platforms", mode="after")
    @classmethod
    def _freeze_mapping(cls, value):
        # frozen=True は属性の再代入しか防がないため、中身も読み取り専用にする
        return MappingProxyType(dict(value))

    def station_index(self, name: str) -> int:
        return self.stations.index(name)

    def has_station(self, name: str) -> bool:
        return name in self.stations

    def is_rapid_stop(self, name: str) -> bool:
        return name in self.rapid_stops

    def is_peak_hour(self, hour: int) -> bool:
        """ピーク時間帯は両端を含む"""
        return any(start <= hour <= end for start, end in self.peak_windows)

    def headway(self, hour: int) -> int:
        return self.peak_headway if self.is_peak_hour(hour) else self.off_peak_headway

    def through_probability(self, hour: int) -> float:
        if self.is_peak_hour(hour):
            return self.peak_through_probability
        return self.off_peak_through_probability

    def interval_minutes(self, tier: str, from_station: str, to_station: str) -> Optional[int]:
        """駅間所要時間。定義がなければ None"""
        tier_key = getattr(tier, "value", tier)
        return self.intervals.get(tier_key, {}).get(f"{from_station}-{to_station}")

    def station_list(self) -> List[Station]:
        return [
            Station(
                name=name,
                index=i,
                is_rapid_stop=name in self.rapid_stops,
                is_major=name in self.major_stations,
            )
            for i, name in enumerate(self.stations)
        ]

    def selectable_stations(self) -> List[str]:
        """乗車駅として選べる駅（終点は除く）"""
        return [s for s in self.stations if s != self.terminus]

    def without_peaks(self) -> "LineConfig":
        """終日オフピークのダイヤ（土休日用）"""
        return self.model_copy(update={"peak_windows": ()})


YOKOHAMA_LINE = LineConfig(
    id="yokohama",
    name="横浜線",
    stations=(
        "八王子", "片倉", "八王子みなみ野", "相原", "橋本", "相模原", "矢部",
        "淵野辺", "古淵", "町田", "成瀬", "長津田", "十日市場", "中山",
        "鴨居", "小机", "新横浜", "菊名", "大口", "東神奈川",
    ),
    rapid_stops=("八王子", "橋本", "町田", "長津田", "新横浜", "菊名", "東神奈川"),
    major_stations=("八王子", "橋本", "町田", "長津田", "新横浜"),
    origin_weights=(
        OriginWeight(station="八王子", weight=10),
        OriginWeight(station="橋本", weight=3),
        OriginWeight(station="町田", weight=2),
        OriginWeight(station="長津田", weight=1),
    ),
    intervals={
        "local": {
            "八王子-片倉": 3,
            "片倉-八王子みなみ野": 3,
            "八王子みなみ野-相原": 3,
            "相原-橋本": 11,
            "橋本-相模原": 3,
            "相模原-矢部": 3,
            "矢部-淵野辺": 3,
            "淵野辺-古淵": 3,
            "古淵-町田": 2,
            "町田-成瀬": 3,
            "成瀬-長津田": 3,
            "長津田-十日市場": 3,
            "十日市場-中山": 3,
            "中山-鴨居": 3,
            "鴨居-小机": 3,
            "小机-新横浜": 12,
            "新横浜-菊名": 18,
            "菊名-大口": 3,
            "大口-東神奈川": 4,
        },
        "rapid": {
            "八王子-橋本": 15,
            "橋本-町田": 7,
            "町田-長津田": 3,
            "長津田-新横浜": 3,
            "新横浜-菊名": 18,
            "菊名-東神奈川": 7,
        },
    },
    tier_labels={"local": "各停", "rapid": "快速"},
    platforms={"rapid": 1, "local": 2},
    terminus="東神奈川",
    through_destination="桜木町",
    through_arrival_station="横浜",
    through_transit_minutes=5,
)


# サポートする路線の定義
SUPPORTED_LINES: Dict[str, LineConfig] = {
    YOKOHAMA_LINE.id: YOKOHAMA_LINE,
}


def get_line_config(line_id: str) -> Optional[LineConfig]:
    """
    路線IDから設定を取得する。

    Args:
        line_id: URL パラメータの路線ID (例: "yokohama")

    Returns:
        対応する LineConfig、未サポートの場合は None
    """
    return SUPPORTED_LINES.get(line_id)


# ============================================================================
# 実行時設定（.env / 環境変数）
# ============================================================================

class Settings(BaseModel):
    """環境変数から読み込む実行時設定"""
    model_config = ConfigDict(frozen=True)

    data_dir: Path
    database_url: str
    default_line_id: str
    # ローカルファイルのパス、または http(s) URL。空なら祝日判定なし
    holiday_csv_source: str
    holiday_csv_encoding: str
    frontend_urls: Tuple[str, ...]


@lru_cache
def get_settings() -> Settings:
    load_dotenv()

    data_dir = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
    default_db = f"sqlite:///{BASE_DIR / 'departures.db'}"

    # 複数指定はカンマ区切り
    _default_origins = "http://localhost:5173,http://localhost:5174"
    raw_origins = os.getenv("FRONTEND_URL", _default_origins)

    return Settings(
        data_dir=data_dir,
        database_url=os.getenv("DATABASE_URL", default_db),
        default_line_id=os.getenv("DEFAULT_LINE_ID", YOKOHAMA_LINE.id),
        holiday_csv_source=os.getenv(
            "HOLIDAY_CSV_SOURCE", str(data_dir / "syukujitsu.csv")
        ).strip(),
        holiday_csv_encoding=os.getenv("HOLIDAY_CSV_ENCODING", "utf-8"),
        frontend_urls=tuple(o.strip() for o in raw_origins.split(",") if o.strip()),
    )
