"""Tests for the departure session state (last station + clock refresh)."""
import asyncio
from datetime import datetime

import pytest

from data_cache import TimetableCache
from departure_lookup import LookupOptions
from service_day import JST
from session_state import ClockRefresher, DepartureSession


def _fixed_now(hour: int, minute: int, day: int = 14):
    # 2025-03-14 は金曜日
    return lambda: datetime(2025, 3, day, hour, minute, tzinfo=JST)


class TestStationPreferenceStore:
    def test_empty(self, preference_store) -> None:
        assert preference_store.get_last_station() is None

    def test_overwrite(self, preference_store) -> None:
        preference_store.set_last_station("町田")
        preference_store.set_last_station("橋本")
        assert preference_store.get_last_station() == "橋本"


class TestDepartureSession:
    def test_select_station_uses_current_time(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(8, 0))

        result = session.select_station("A")

        assert [d.sequence for d in result] == ["0001", "0003"]
        assert session.day_type == "weekday"
        assert preference_store.get_last_station() == "A"

    def test_terminus_is_not_saved(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(8, 0))

        assert session.select_station("T") == []
        assert preference_store.get_last_station() is None

    def test_unknown_station(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(8, 0))
        with pytest.raises(ValueError):
            session.select_station("Q")

    def test_not_ready_is_not_saved(self, tmp_path, test_line, preference_store) -> None:
        cache = TimetableCache(tmp_path, test_line)
        session = DepartureSession(cache, preference_store, now=_fixed_now(8, 0))

        assert session.select_station("A") == []
        assert preference_store.get_last_station() is None

    def test_restore(self, ready_cache, preference_store) -> None:
        preference_store.set_last_station("B")
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(8, 0))

        session.start()

        assert session.selected_station == "B"
        assert [d.departure for d in session.departures] == ["08:03", "08:05"]

    def test_restore_ignores_other_line(self, ready_cache, preference_store) -> None:
        preference_store.set_last_station("町田")
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(8, 0))

        assert session.restore() is None

    def test_fixed_time(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(6, 0))
        session.select_station("A")

        result = session.set_time("08:01")

        assert session.use_current_time is False
        assert [d.sequence for d in result] == ["0003"]

    def test_invalid_time(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(6, 0))
        with pytest.raises(ValueError):
            session.set_time("25:00")
        assert session.use_current_time is True

    def test_day_type_override(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(7, 0))
        session.select_station("S")

        result = session.set_day_type("holiday")

        assert [d.sequence for d in result] == ["0001"]

    def test_enable_current_time_redetects_day_type(self, ready_cache, preference_store) -> None:
        session = DepartureSession(ready_cache, preference_store, now=_fixed_now(7, 0, day=15))
        session.set_day_type("weekday")
        session.set_time("10:00")

        session.enable_current_time()

        assert session.use_current_time is True
        assert session.day_type == "holiday"
        # 通知先がないのでタイマーは動かない
        assert session.is_refreshing is False

    def test_simple_options(self, ready_cache, preference_store) -> None:
        session = DepartureSession(
            ready_cache, preference_store, options=LookupOptions.simple(), now=_fixed_now(8, 5)
        )
        result = session.select_station("A")
        assert result[0].through_service is True


class TestClockRefresher:
    def test_ticks_until_stopped(self) -> None:
        calls = []

        async def run():
            async def tick():
                calls.append(1)

            refresher = ClockRefresher(tick, interval=0.01)
            refresher.start()
            assert refresher.is_running
            await asyncio.sleep(0.1)
            refresher.stop()
            assert not refresher.is_running
            count = len(calls)
            await asyncio.sleep(0.05)
            return count

        count = asyncio.run(run())

        assert count >= 2
        assert len(calls) == count

    def test_start_needs_running_loop(self) -> None:
        async def tick():
            pass

        with pytest.raises(RuntimeError):
            ClockRefresher(tick).start()

    def test_callback_errors_do_not_stop_timer(self) -> None:
        calls = []

        async def run():
            async def tick():
                calls.append(1)
                raise RuntimeError("boom")

            refresher = ClockRefresher(tick, interval=0.01)
            refresher.start()
            await asyncio.sleep(0.1)
            refresher.stop()

        asyncio.run(run())

        assert len(calls) >= 2


class TestSessionRefreshTimer:
    def test_pushes_updates_in_current_time_mode(self, ready_cache, preference_store) -> None:
        clock = {"minute": 0}
        pushed = []

        def now():
            return datetime(2025, 3, 14, 8, clock["minute"], tzinfo=JST)

        async def on_update(departures):
            pushed.append([d.sequence for d in departures])

        async def run():
            session = DepartureSession(
                ready_cache,
                preference_store,
                on_update=on_update,
                now=now,
                refresh_interval=0.01,
            )
            session.select_station("A")
            session.start()
            assert session.is_refreshing

            clock["minute"] = 5
            await asyncio.sleep(0.1)

            session.set_time("08:00")
            assert session.is_refreshing is False
            session.close()

        asyncio.run(run())

        assert pushed
        assert pushed[-1] == ["0003"]
