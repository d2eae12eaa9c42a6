# backend/timetable_generator.py
"""
サンプル時刻表の生成ロジック

運行時間帯の各枠について始発駅・種別・直通有無を決め、
駅間所要時間を積み上げて各駅の時刻を作る。
"""
from __future__ import annotations

import csv
import io
import logging
import random
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from config import LineConfig
from timetable_models import (
    DESTINATION_COLUMN,
    MINUTES_PER_DAY,
    NO_THROUGH_MARKER,
    NOT_YET_REACHED,
    PASS_THROUGH,
    PLATFORM_COLUMN,
    SEQUENCE_COLUMN,
    THROUGH_ARRIVAL_COLUMN,
    TIER_COLUMN,
    GeneratedTrain,
    ServiceTier,
    StationTime,
    format_hhmm,
)

logger = logging.getLogger(__name__)

# 終点時刻がない列車は最後に並べる
_MISSING_SORT_KEY = 9999


# ============================================================================
# 重み付きランダム選択
# ============================================================================

def weighted_choice(items: Sequence[Tuple[str, float]], sample: float) -> str:
    """
    (候補, 重み) のリストから1つ選ぶ。

    sample は [0, 1) の一様乱数。重みの合計を掛けた値から
    先頭の候補の重みを順に引き、0 以下になった候補を返す。
    丸め誤差で最後まで残った場合は先頭の候補を返す。
    """
    if not items:
        raise ValueError("weighted_choice() needs at least one item")

    total = sum(weight for _, weight in items)
    remaining = sample * total
    for item, weight in items:
        remaining -= weight
        if remaining <= 0:
            return item
    return items[0][0]


# ============================================================================
# 駅間所要時間の検証
# ============================================================================

def _tier_stops(line: LineConfig, tier: ServiceTier) -> List[str]:
    if tier is ServiceTier.RAPID:
        return [s for s in line.stations if line.is_rapid_stop(s)]
    return list(line.stations)


def find_missing_intervals(line: LineConfig) -> Dict[ServiceTier, List[Tuple[str, str]]]:
    """
    種別ごとに、所要時間が定義されていない隣接駅ペアを返す。

    生成時は未定義の駅間を 0 分として扱うため、ここで事前に洗い出す。
    """
    missing: Dict[ServiceTier, List[Tuple[str, str]]] = {}
    for tier in ServiceTier:
        stops = _tier_stops(line, tier)
        gaps = [
            (a, b)
            for a, b in zip(stops, stops[1:])
            if line.interval_minutes(tier, a, b) is None
        ]
        if gaps:
            missing[tier] = gaps
    return missing


def report_missing_intervals(line: LineConfig) -> int:
    """未定義の駅間を WARNING で出力し、その件数を返す"""
    missing = find_missing_intervals(line)
    count = 0
    for tier, gaps in missing.items():
        for a, b in gaps:
            logger.warning(
                "[%s] No %s interval defined for %s-%s; treating it as 0 minutes",
                line.id,
                tier.value,
                a,
                b,
            )
            count += 1
    return count


# ============================================================================
# 1本分の時刻計算
# ============================================================================

def build_station_times(
    line: LineConfig,
    origin: str,
    tier: ServiceTier,
    start_minutes: int,
) -> Dict[str, StationTime]:
    """
    始発駅と発車時刻から、全駅分の時刻欄を作る。

    - 始発駅より手前の駅は「未到達」。
    - 各停は始発駅以降の全駅に停車し、隣の駅までの所要時間を足していく。
    - 快速は始発駅以降の快速停車駅にのみ停車し、次の快速停車駅までの
      所要時間を足していく。それ以外の駅は「通過」。
    """
    origin_index = line.station_index(origin)
    stops = _tier_stops(line, tier)
    stop_set = set(stops)
    next_stop = dict(zip(stops, stops[1:]))

    times: Dict[str, StationTime] = {}
    current = start_minutes

    for i, station in enumerate(line.stations):
        if i < origin_index:
            times[station] = NOT_YET_REACHED
            continue

        if station not in stop_set:
            times[station] = PASS_THROUGH
            continue

        times[station] = StationTime.at(current)

        following = next_stop.get(station)
        if following is not None:
            current += line.interval_minutes(tier, station, following) or 0

    return times


# ============================================================================
# 時刻表全体の生成
# ============================================================================

def _service_slots(line: LineConfig):
    """(時, 分) の発車枠。分は毎時 0 分から運転間隔ごとに数え直す"""
    for hour in range(line.service_start_hour, line.service_end_hour):
        interval = line.headway(hour)
        for minute in range(0, 60, interval):
            yield hour, minute


def sort_and_renumber(trains: List[GeneratedTrain], terminus: str) -> List[GeneratedTrain]:
    """終点の到着時刻順に並べ、列車番号を 0001 から振り直す"""

    def _key(train: GeneratedTrain) -> int:
        minutes = train.minutes_at(terminus)
        return minutes if minutes is not None else _MISSING_SORT_KEY

    ordered = sorted(trains, key=_key)
    return [
        replace(train, sequence=f"{index:04d}")
        for index, train in enumerate(ordered, start=1)
    ]


def generate_trains(
    line: LineConfig,
    rng: Optional[random.Random] = None,
) -> List[GeneratedTrain]:
    """
    1日分の列車リストを生成する（終点到着順・列車番号振り直し済み）。

    NOTE:
      - 快速は「始発駅が快速停車駅」かつ「それまでに採用した本数が
        rapid_every の倍数」のときだけ。乱数は使わない。
      - 終点到着が 24:00 以降になる列車は採用しない。
    """
    rng = rng or random.Random()
    origin_items = [(o.station, o.weight) for o in line.origin_weights]

    trains: List[GeneratedTrain] = []
    rejected = 0

    for hour, minute in _service_slots(line):
        origin = weighted_choice(origin_items, rng.random())

        can_be_rapid = line.is_rapid_stop(origin)
        is_rapid = can_be_rapid and len(trains) % line.rapid_every == 0
        tier = ServiceTier.RAPID if is_rapid else ServiceTier.LOCAL

        is_through = rng.random() < line.through_probability(hour)
        destination = line.through_destination if is_through else line.terminus

        times = build_station_times(line, origin, tier, hour * 60 + minute)

        terminus_time = times[line.terminus]
        if terminus_time.is_time and terminus_time.minutes >= MINUTES_PER_DAY:
            rejected += 1
            continue

        through_arrival = None
        if is_through and terminus_time.is_time:
            through_arrival = terminus_time.minutes + line.through_transit_minutes

        trains.append(
            GeneratedTrain(
                sequence=f"{len(trains) + 1:04d}",
                tier=tier,
                destination=destination,
                origin=origin,
                times=times,
                platform=line.platforms[tier.value],
                through_arrival=through_arrival,
            )
        )

    if rejected:
        logger.info("Dropped %d trains arriving at %s after 24:00", rejected, line.terminus)

    return sort_and_renumber(trains, line.terminus)


# ============================================================================
# CSV 出力
# ============================================================================

def csv_header(line: LineConfig) -> List[str]:
    return [
        SEQUENCE_COLUMN,
        TIER_COLUMN,
        DESTINATION_COLUMN,
        *line.stations,
        PLATFORM_COLUMN,
        THROUGH_ARRIVAL_COLUMN,
    ]


def train_to_row(line: LineConfig, train: GeneratedTrain) -> List[str]:
    through = (
        format_hhmm(train.through_arrival)
        if train.through_arrival is not None
        else NO_THROUGH_MARKER
    )
    return [
        train.sequence,
        train.tier.value,
        train.destination,
        *(train.time_at(s).to_field() for s in line.stations),
        str(train.platform),
        through,
    ]


def to_csv(line: LineConfig, trains: List[GeneratedTrain]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(csv_header(line))
    for train in trains:
        writer.writerow(train_to_row(line, train))
    return buf.getvalue()


def write_timetable(path: Path, line: LineConfig, trains: List[GeneratedTrain]) -> Path:
    """CSV を書き出す。ディレクトリが存在しない場合は作成する"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_csv(line, trains), encoding="utf-8")
    return path
