# backend/service_day.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import AbstractSet, Literal, Tuple

from zoneinfo import ZoneInfo

JST = ZoneInfo("Asia/Tokyo")

# 運行日は翌 02:00 まで続くものとして曜日を判定する
SERVICE_DAY_SHIFT_HOURS = 2

# 基準時刻がこれより前（0〜1時台）なら前日の 24〜25 時台として比較する
LATE_NIGHT_ROLLOVER_HOUR = 2

DayType = Literal["weekday", "holiday"]
DAY_TYPES: Tuple[str, ...] = ("weekday", "holiday")


# ============================================================================
# 時刻文字列ユーティリティ
# ============================================================================

def parse_clock(text: str) -> Tuple[int, int]:
    """
    "HH:MM" 形式の文字列を (時, 分) に変換する。
    不正な形式の場合は ValueError を発生させる。
    """
    if not text:
        raise ValueError("Empty time string")

    parts = text.strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {text} (expected HH:MM)")

    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError as e:
        raise ValueError(f"Invalid time components in '{text}': {e}")

    if not (0 <= hour <= 23):
        raise ValueError(f"Invalid hour {hour} in '{text}' (must be 0-23)")
    if not (0 <= minute <= 59):
        raise ValueError(f"Invalid minute {minute} in '{text}' (must be 0-59)")

    return hour, minute


def current_clock(now: datetime | None = None) -> str:
    """現在時刻（JST）を "HH:MM" で返す"""
    now = now or datetime.now(JST)
    if now.tzinfo is None:
        now = now.replace(tzinfo=JST)
    now = now.astimezone(JST)
    return f"{now.hour:02d}:{now.minute:02d}"


def reference_minutes(clock: str, late_night_rollover: bool = False) -> int:
    """
    基準時刻 "HH:MM" を比較用の分に変換する。

    late_night_rollover=True の場合、1時59分までは 25:59 のように
    前日の続きとして扱う（表示用の時刻は変えない）。
    """
    hour, minute = parse_clock(clock)
    if late_night_rollover and hour < LATE_NIGHT_ROLLOVER_HOUR:
        hour += 24
    return hour * 60 + minute


# ============================================================================
# 運行日種別
# ============================================================================

def get_service_date(dt_jst: datetime) -> date:
    """
    指定時刻が属する「運行日」を返す。

    ルール:
      - 2時間前にずらした日付を運行日とみなす。
      - 深夜0〜1時台は前日の運行日に属する。
    """
    if dt_jst.tzinfo is None:
        # 念のため JST として扱う
        dt_jst = dt_jst.replace(tzinfo=JST)

    shifted = dt_jst.astimezone(JST) - timedelta(hours=SERVICE_DAY_SHIFT_HOURS)
    return shifted.date()


def holiday_key(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def determine_day_type(dt_jst: datetime, holidays: AbstractSet[str] = frozenset()) -> DayType:
    """
    指定日時から運行日種別を判定する。

    - 祝日（holidays に "YYYY-MM-DD" がある日）: "holiday"
    - 土・日: "holiday"
    - それ以外: "weekday"
    """
    service_date = get_service_date(dt_jst)

    if holiday_key(service_date) in holidays:
        return "holiday"

    if service_date.weekday() in (5, 6):  # 土・日
        return "holiday"
    return "weekday"
