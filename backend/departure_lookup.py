# backend/departure_lookup.py
"""
発車案内の検索ロジック

選択した駅と基準時刻から、終点に早く着く順に次の列車を返す。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import LineConfig
from data_cache import TimetableCache
from service_day import reference_minutes
from timetable_models import (
    DESTINATION_COLUMN,
    NO_THROUGH_MARKER,
    NOT_YET_REACHED_MARKER,
    PASS_THROUGH_MARKER,
    PLATFORM_COLUMN,
    SEQUENCE_COLUMN,
    THROUGH_ARRIVAL_COLUMN,
    TIER_COLUMN,
    DepartureCandidate,
    parse_hhmm,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 2

_MARKERS = (NOT_YET_REACHED_MARKER, PASS_THROUGH_MARKER)


@dataclass(frozen=True)
class LookupOptions:
    """
    検索方法の切り替え。

    late_night_rollover: 0〜1時台の基準時刻を 24〜25 時台として比較する
    through_from_destination: 直通判定を行先で行う（False なら直通先到着時刻の有無）
    """
    late_night_rollover: bool = True
    through_from_destination: bool = True

    @classmethod
    def simple(cls) -> "LookupOptions":
        return cls(late_night_rollover=False, through_from_destination=False)

    @classmethod
    def service_day(cls) -> "LookupOptions":
        return cls(late_night_rollover=True, through_from_destination=True)


def _field_minutes(raw: Optional[str]) -> Optional[int]:
    """時刻欄 → 分。記号・空欄・不正な値は None"""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw or raw in _MARKERS:
        return None
    try:
        return parse_hhmm(raw)
    except ValueError:
        return None


def _candidate_from_row(
    row: Dict[str, str],
    line: LineConfig,
    station: str,
    ref_minutes: int,
    options: LookupOptions,
) -> Optional[DepartureCandidate]:
    """1行分を検索対象に変換する。対象外なら None"""
    departure = _field_minutes(row.get(station))
    if departure is None or departure < ref_minutes:
        return None

    arrival = _field_minutes(row.get(line.terminus))
    if arrival is None:
        return None

    platform_raw = (row.get(PLATFORM_COLUMN) or "").strip()
    if not platform_raw.isdigit():
        return None

    through_raw = (row.get(THROUGH_ARRIVAL_COLUMN) or "").strip()
    through_arrival = None
    if through_raw and through_raw != NO_THROUGH_MARKER:
        through_arrival = _field_minutes(through_raw)

    destination = (row.get(DESTINATION_COLUMN) or "").strip()
    if options.through_from_destination:
        through_service = destination != line.terminus
    else:
        through_service = through_arrival is not None

    tier = (row.get(TIER_COLUMN) or "").strip()

    return DepartureCandidate(
        sequence=(row.get(SEQUENCE_COLUMN) or "").strip(),
        tier=tier,
        tier_label=line.tier_labels.get(tier, tier),
        destination=destination,
        departure_minutes=departure,
        arrival_minutes=arrival,
        platform=int(platform_raw),
        through_service=through_service,
        through_arrival_minutes=through_arrival,
    )


def find_next_departures(
    rows: List[Dict[str, str]],
    line: LineConfig,
    station: str,
    reference_time: str,
    options: LookupOptions = LookupOptions(),
    limit: int = DEFAULT_LIMIT,
) -> List[DepartureCandidate]:
    """
    station を reference_time 以降に発車する列車を、終点到着が早い順に最大 limit 本返す。

    - 終点そのものを指定した場合は常に空リスト。
    - 通過・未到達・時刻が読めない列車は対象外。
    - 基準時刻ちょうどに発車する列車は含む。
    - reference_time が不正な場合、limit が 1 未満の場合は ValueError。
    """
    if limit < 1:
        raise ValueError(f"limit must be at least 1 (got {limit})")

    if station == line.terminus:
        return []

    ref = reference_minutes(reference_time, options.late_night_rollover)

    candidates: List[DepartureCandidate] = []
    malformed = 0

    for row in rows:
        raw = (row.get(station) or "").strip()
        if raw and raw not in _MARKERS and _field_minutes(raw) is None:
            malformed += 1
            continue

        candidate = _candidate_from_row(row, line, station, ref, options)
        if candidate is not None:
            candidates.append(candidate)

    if malformed:
        logger.warning(
            "Skipped %d trains with unreadable times at %s", malformed, station
        )

    candidates.sort(key=lambda c: c.arrival_minutes)
    return candidates[:limit]


def lookup_departures(
    cache: TimetableCache,
    station: str,
    reference_time: str,
    day_type: str,
    options: LookupOptions = LookupOptions(),
    limit: int = DEFAULT_LIMIT,
) -> List[DepartureCandidate]:
    """読み込み済みの時刻表から検索する。読み込み前・失敗時は空リスト"""
    if not cache.is_ready:
        logger.info("Timetable not ready (state=%s); no departures", cache.state)
        return []

    return find_next_departures(
        cache.rows_for(day_type),
        cache.line,
        station,
        reference_time,
        options=options,
        limit=limit,
    )
