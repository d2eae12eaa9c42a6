# backend/timetable_models.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

# CSV の固定カラム名（駅カラムは駅名そのもの）
SEQUENCE_COLUMN = "sequence"
TIER_COLUMN = "tier"
DESTINATION_COLUMN = "destination"
PLATFORM_COLUMN = "platform"
THROUGH_ARRIVAL_COLUMN = "through_arrival"

# 時刻欄に入る記号
NOT_YET_REACHED_MARKER = "-"
PASS_THROUGH_MARKER = "->"
NO_THROUGH_MARKER = "-"

MINUTES_PER_DAY = 24 * 60


class ServiceTier(str, Enum):
    """列車種別（各停 / 快速）"""
    LOCAL = "local"
    RAPID = "rapid"


class TimeKind(Enum):
    TIME = "time"
    NOT_YET_REACHED = "not_yet_reached"  # 始発駅より手前
    PASS_THROUGH = "pass_through"        # 通過


def format_hhmm(minutes: int) -> str:
    """0時からの分 → "HHMM"（24時以降は 24, 25... のまま）"""
    return f"{minutes // 60:02d}{minutes % 60:02d}"


def format_clock(minutes: int) -> str:
    """0時からの分 → "HH:MM" """
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_hhmm(text: str) -> int:
    """
    "HHMM" 形式の文字列を 0時からの分に変換する。
    不正な形式の場合は ValueError を発生させる。

    NOTE:
      - 深夜帯の "2405" のような 24 時以降の表記も受け付ける。
    """
    if text is None:
        raise ValueError("Empty time string")
    text = text.strip()
    if len(text) != 4 or not text.isdigit():
        raise ValueError(f"Invalid time format: {text!r} (expected HHMM)")

    hour = int(text[:2])
    minute = int(text[2:])
    if minute > 59:
        raise ValueError(f"Invalid minute {minute} in {text!r} (must be 0-59)")
    return hour * 60 + minute


@dataclass(frozen=True)
class StationTime:
    """
    1駅分の時刻欄。時刻（0時からの分）か、2種類の記号のどちらか。

    記号の文字列（"-" / "->"）は CSV の読み書きでのみ使う。
    """
    kind: TimeKind
    minutes: int | None = None

    @classmethod
    def at(cls, minutes: int) -> "StationTime":
        return cls(TimeKind.TIME, minutes)

    @property
    def is_time(self) -> bool:
        return self.kind is TimeKind.TIME

    def to_field(self) -> str:
        if self.kind is TimeKind.NOT_YET_REACHED:
            return NOT_YET_REACHED_MARKER
        if self.kind is TimeKind.PASS_THROUGH:
            return PASS_THROUGH_MARKER
        return format_hhmm(self.minutes)

    @classmethod
    def from_field(cls, text: str) -> "StationTime":
        raw = (text or "").strip()
        if raw == NOT_YET_REACHED_MARKER:
            return NOT_YET_REACHED
        if raw == PASS_THROUGH_MARKER:
            return PASS_THROUGH
        return cls.at(parse_hhmm(raw))


NOT_YET_REACHED = StationTime(TimeKind.NOT_YET_REACHED)
PASS_THROUGH = StationTime(TimeKind.PASS_THROUGH)


@dataclass(frozen=True)
class GeneratedTrain:
    """生成スクリプトが作る1本の列車"""

    # "0001" のような4桁の列車番号（並び替え後に振り直す）
    sequence: str
    tier: ServiceTier
    destination: str
    origin: str
    # 駅名 → 時刻欄（全駅分）
    times: Dict[str, StationTime]
    platform: int
    # 直通先の到着時刻（0時からの分）。直通しない列車は None
    through_arrival: int | None

    def time_at(self, station: str) -> StationTime:
        return self.times.get(station, NOT_YET_REACHED)

    def minutes_at(self, station: str) -> int | None:
        t = self.time_at(station)
        return t.minutes if t.is_time else None


@dataclass(frozen=True)
class DepartureCandidate:
    """発車案内の1件（検索時に導出、保存しない）"""

    sequence: str
    tier: str
    tier_label: str
    destination: str
    departure_minutes: int
    arrival_minutes: int       # 終点到着（0時からの分）
    platform: int
    through_service: bool
    through_arrival_minutes: int | None

    @property
    def departure(self) -> str:
        return format_clock(self.departure_minutes)

    @property
    def arrival(self) -> str:
        return format_clock(self.arrival_minutes)

    @property
    def through_arrival(self) -> str | None:
        if self.through_arrival_minutes is None:
            return None
        return format_clock(self.through_arrival_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "tier": self.tier,
            "tier_label": self.tier_label,
            "destination": self.destination,
            "departure": self.departure,
            "arrival": self.arrival,
            "arrival_minutes": self.arrival_minutes,
            "platform": self.platform,
            "through_service": self.through_service,
            "through_arrival": self.through_arrival,
        }
