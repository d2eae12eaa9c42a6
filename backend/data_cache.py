# backend/data_cache.py
from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import Dict, List, Literal, Optional, Set

import httpx

from config import LineConfig
from service_day import DAY_TYPES
from timetable_models import SEQUENCE_COLUMN

logger = logging.getLogger(__name__)

CacheState = Literal["loading", "ready", "failed"]

HOLIDAY_HTTP_TIMEOUT = 10.0


def timetable_filename(day_type: str) -> str:
    return f"timetable-{day_type}.csv"


def parse_holiday_csv(text: str) -> Set[str]:
    """
    祝日 CSV から "YYYY-MM-DD" の集合を作る。

    各行の先頭カラムが "2020/2/23" のような日付の行だけを使い、
    ヘッダー行や空行は読み飛ばす。
    """
    holidays: Set[str] = set()

    for line in text.splitlines():
        raw = line.strip()
        if not raw:
            continue

        date_str = raw.split(",")[0].strip()
        parts = date_str.split("/")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            continue

        y, m, d = parts
        holidays.add(f"{y}-{m.zfill(2)}-{d.zfill(2)}")

    return holidays


def parse_timetable_csv(text: str, line: LineConfig) -> List[Dict[str, str]]:
    """
    生成済み時刻表 CSV を行（カラム名 → 文字列）のリストに変換する。
    必須カラムが無い場合は ValueError を発生させる。

    NOTE:
      - 各行の時刻の妥当性はここではチェックしない（検索時に行単位で読み飛ばす）。
    """
    reader = csv.DictReader(io.StringIO(text))
    header = reader.fieldnames or []

    required = [SEQUENCE_COLUMN, line.terminus]
    missing = [c for c in required if c not in header]
    if missing:
        raise ValueError(f"Timetable header is missing columns: {missing}")

    rows: List[Dict[str, str]] = []
    for row in reader:
        # 末尾の空行などは列車番号が無いので除外
        if not (row.get(SEQUENCE_COLUMN) or "").strip():
            continue
        rows.append(row)
    return rows


class TimetableCache:
    """
    発車案内が使う静的データ（運行日種別ごとの時刻表と祝日一覧）。

    読み込みが終わるまでは state が "loading"。失敗した場合は "failed" になり、
    自動で再読み込みはしない。
    """

    def __init__(
        self,
        data_dir: Path,
        line: LineConfig,
        holiday_source: str = "",
        holiday_encoding: str = "utf-8",
    ) -> None:
        self.data_dir = data_dir
        self.line = line
        self.holiday_source = holiday_source
        self.holiday_encoding = holiday_encoding

        self.state: CacheState = "loading"
        self.error: Optional[str] = None

        # 運行日種別 → 時刻表の行
        self.timetables: Dict[str, List[Dict[str, str]]] = {}
        self.holidays: Set[str] = set()

    @property
    def is_ready(self) -> bool:
        return self.state == "ready"

    def _load_csv(self, rel_path: str) -> List[Dict[str, str]]:
        path = self.data_dir / rel_path
        if not path.exists():
            raise FileNotFoundError(f"CSV file not found: {path}")
        with path.open("r", encoding="utf-8", newline="") as f:
            return parse_timetable_csv(f.read(), self.line)

    def load_all(self) -> None:
        """全運行日種別の時刻表を読み込む"""
        self.state = "loading"
        self.error = None

        timetables: Dict[str, List[Dict[str, str]]] = {}
        try:
            for day_type in DAY_TYPES:
                timetables[day_type] = self._load_csv(timetable_filename(day_type))
        except (OSError, ValueError, csv.Error) as e:
            logger.error("Failed to load timetable for %s: %s", self.line.id, e)
            self.timetables = {}
            self.state = "failed"
            self.error = str(e)
            return

        self.timetables = timetables
        self.state = "ready"

        for day_type, rows in timetables.items():
            logger.info("Loaded %d %s trains for %s", len(rows), day_type, self.line.id)

    async def load_holidays(self, client: Optional[httpx.AsyncClient] = None) -> None:
        """
        祝日 CSV を読み込む。

        holiday_source が http(s) URL なら client で取得し、それ以外は
        ローカルファイルとして読む。失敗しても時刻表の検索は続けられるので、
        ログを出して祝日なしのまま進める。
        """
        if not self.holiday_source:
            logger.info("No holiday calendar configured; weekends only")
            return

        try:
            if self.holiday_source.startswith(("http://", "https://")):
                if client is None:
                    raise RuntimeError("httpx.AsyncClient is required for a remote holiday calendar")
                response = await client.get(self.holiday_source, timeout=HOLIDAY_HTTP_TIMEOUT)
                response.raise_for_status()
                content = response.content
            else:
                content = Path(self.holiday_source).read_bytes()
        except (httpx.HTTPError, OSError, RuntimeError) as e:
            logger.error("Failed to load holiday calendar from %s: %s", self.holiday_source, e)
            return

        # 日付カラムは ASCII なので、名称カラムの文字化けは無視してよい
        text = content.decode(self.holiday_encoding, errors="replace")
        self.holidays = parse_holiday_csv(text)
        logger.info("Loaded %d holidays", len(self.holidays))

    def rows_for(self, day_type: str) -> List[Dict[str, str]]:
        return self.timetables.get(day_type, [])
