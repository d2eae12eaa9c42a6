# backend/session_state.py
"""
発車案内の利用セッション

- 前回選択した駅の保存・復元（DB の preferences テーブル）
- 「現在時刻」モード中だけ動く 1 秒ごとの再検索タイマー
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from data_cache import TimetableCache
from database import Preference, SessionLocal
from departure_lookup import DEFAULT_LIMIT, LookupOptions, lookup_departures
from service_day import JST, DayType, current_clock, determine_day_type, parse_clock
from timetable_models import DepartureCandidate

logger = logging.getLogger(__name__)

LAST_STATION_KEY = "lastSelectedStation"
REFRESH_INTERVAL_SEC = 1.0

UpdateCallback = Callable[[List[DepartureCandidate]], Awaitable[None]]


class StationPreferenceStore:
    """前回選択した駅名を1件だけ保存する"""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def get_last_station(self) -> Optional[str]:
        with self._session_factory() as db:
            row = db.get(Preference, LAST_STATION_KEY)
            return row.value if row else None

    def set_last_station(self, station: str) -> None:
        with self._session_factory() as db:
            db.merge(
                Preference(
                    key=LAST_STATION_KEY,
                    value=station,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            db.commit()


class ClockRefresher:
    """
    interval 秒ごとに callback を呼ぶ asyncio タスク。

    start() は実行中のイベントループ上で呼ぶこと。stop() でタスクを取り消す。
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], interval: float = REFRESH_INTERVAL_SEC) -> None:
        self._callback = callback
        self._interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Clock refresh callback failed: %s", e)


class DepartureSession:
    """
    1人分の発車案内の状態。

    - 駅を選ぶと検索し、終点以外の既知の駅なら保存する。
    - 時刻を指定すると「現在時刻」モードを解除する。
    - on_update がある場合のみ、「現在時刻」モード中は毎秒再検索して通知する。
    """

    def __init__(
        self,
        cache: TimetableCache,
        store: StationPreferenceStore,
        options: LookupOptions = LookupOptions(),
        limit: int = DEFAULT_LIMIT,
        on_update: Optional[UpdateCallback] = None,
        now: Callable[[], datetime] = lambda: datetime.now(JST),
        refresh_interval: float = REFRESH_INTERVAL_SEC,
    ) -> None:
        self.cache = cache
        self.line = cache.line
        self.store = store
        self.options = options
        self.limit = limit
        self._on_update = on_update
        self._now = now

        self.selected_station: Optional[str] = None
        self.selected_time: str = current_clock(now())
        self.use_current_time = True
        self.day_type: DayType = determine_day_type(now(), cache.holidays)
        self.departures: List[DepartureCandidate] = []

        self._refresher = ClockRefresher(self._tick, refresh_interval)

    # ------------------------------------------------------------------
    # 状態の変更
    # ------------------------------------------------------------------

    def restore(self) -> Optional[str]:
        """保存済みの駅が路線上にあれば選択状態にする"""
        saved = self.store.get_last_station()
        if saved and self.line.has_station(saved):
            self.selected_station = saved
        return self.selected_station

    def select_station(self, station: str) -> List[DepartureCandidate]:
        if not self.line.has_station(station):
            raise ValueError(f"Unknown station: {station}")

        self.selected_station = station
        departures = self.refresh()
        if station != self.line.terminus and self.cache.is_ready:
            self.store.set_last_station(station)
        return departures

    def set_time(self, clock: str) -> List[DepartureCandidate]:
        parse_clock(clock)
        self.selected_time = clock
        self.use_current_time = False
        self._refresher.stop()
        return self.refresh()

    def set_day_type(self, day_type: DayType) -> List[DepartureCandidate]:
        self.day_type = day_type
        return self.refresh()

    def enable_current_time(self) -> List[DepartureCandidate]:
        now = self._now()
        self.selected_time = current_clock(now)
        self.use_current_time = True
        self.day_type = determine_day_type(now, self.cache.holidays)
        if self._on_update is not None:
            self._refresher.start()
        return self.refresh()

    def start(self) -> List[DepartureCandidate]:
        """初回表示。保存済みの駅を復元し、必要ならタイマーを動かす"""
        self.restore()
        if self.use_current_time:
            return self.enable_current_time()
        return self.refresh()

    def close(self) -> None:
        self._refresher.stop()

    @property
    def is_refreshing(self) -> bool:
        return self._refresher.is_running

    # ------------------------------------------------------------------
    # 検索
    # ------------------------------------------------------------------

    def refresh(self) -> List[DepartureCandidate]:
        station = self.selected_station
        if not station or station == self.line.terminus or not self.cache.is_ready:
            self.departures = []
            return self.departures

        reference = current_clock(self._now()) if self.use_current_time else self.selected_time
        self.departures = lookup_departures(
            self.cache,
            station,
            reference,
            self.day_type,
            options=self.options,
            limit=self.limit,
        )
        return self.departures

    async def _tick(self) -> None:
        if not self.use_current_time:
            return
        self.selected_time = current_clock(self._now())
        departures = self.refresh()
        if self._on_update is not None:
            await self._on_update(departures)
