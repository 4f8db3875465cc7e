"""
1.0 Run Logger
Collects one row per warmed URL for the whole run and ships them once.

Key features:
- One run id, start timestamp and sheet name shared by every row
- Finish timestamp backfilled on all rows at the end of the run
- Single POST to the Apps Script web app (one sheet tab per run)
- Optional CSV run report and a pandas summary in the log
"""

import logging
import os
import threading
import uuid
from dataclasses import dataclass, astuple, fields
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import pandas as pd
import requests

logger = logging.getLogger(__name__)

DEFAULT_SINK_TIMEOUT = 20


@dataclass
class OutcomeRow:
    run_id: str
    started_at: str
    finished_at: Optional[str]
    region: str
    region_tag: str = ""
    url: str = ""
    status: Optional[int] = None
    origin_cache: str = ""
    edge_cache: str = ""
    edge_ray: str = ""
    edge_pop: str = ""
    response_ms: Optional[int] = None
    error: int = 0
    message: str = ""


# Column order of the sheet; matches the OutcomeRow field order.
OUTCOME_COLUMNS = [f.name for f in fields(OutcomeRow)]


def make_sheet_name(
    started: datetime,
    offset_hours: float = 8.0,
    label: str = "WITA",
) -> str:
    """Per-run tab name, e.g. 2024-05-01_14-03-09_WITA (start time at a fixed offset)."""
    local = started.astimezone(timezone(timedelta(hours=offset_hours)))
    return f"{local.strftime('%Y-%m-%d_%H-%M-%S')}_{label}"


def _utc_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RunLogger:
    """
    2.0 RunLogger Class
    Owns the run context and the ordered list of outcome rows.
    """

    def __init__(
        self,
        sink_url: Optional[str] = None,
        tz_offset_hours: float = 8.0,
        tz_label: str = "WITA",
        timeout: float = DEFAULT_SINK_TIMEOUT,
        session: Optional[requests.Session] = None,
        now: Optional[datetime] = None,
    ):
        started = now or datetime.now(timezone.utc)
        self.sink_url = sink_url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.run_id = uuid.uuid4().hex
        self.started_at = _utc_iso(started)
        self.finished_at: Optional[str] = None
        self.sheet_name = make_sheet_name(started, tz_offset_hours, tz_label)
        self.rows: List[OutcomeRow] = []
        self.flushed = False
        self._lock = threading.Lock()

    # =========================================================================
    # 3.0 ROW ACCUMULATION
    # =========================================================================

    def new_row(self, region: str, **values) -> OutcomeRow:
        """Build a row stamped with this run's id and timestamps."""
        return OutcomeRow(
            run_id=self.run_id,
            started_at=self.started_at,
            finished_at=self.finished_at,
            region=region,
            **values,
        )

    def log(self, row: OutcomeRow) -> None:
        with self._lock:
            self.rows.append(row)

    def extend(self, rows: Iterable[OutcomeRow]) -> None:
        """Append a finished batch in one step, keeping its internal order."""
        batch = list(rows)
        with self._lock:
            self.rows.extend(batch)

    def finalize(self, now: Optional[datetime] = None) -> str:
        """
        3.1 Stamp the finish time on every row. Only the first call counts.
        """
        with self._lock:
            if self.finished_at is None:
                self.finished_at = _utc_iso(now or datetime.now(timezone.utc))
            for row in self.rows:
                row.finished_at = self.finished_at
        return self.finished_at

    # =========================================================================
    # 4.0 OUTPUT
    # =========================================================================

    def payload(self) -> dict:
        with self._lock:
            rows = [list(astuple(row)) for row in self.rows]
        return {"sheetName": self.sheet_name, "headers": list(OUTCOME_COLUMNS), "rows": rows}

    def flush(self) -> bool:
        """
        4.1 Send every row to the Apps Script sink in a single request.

        Returns True when the sink acknowledged the rows. Never raises and
        never retries; a second call does nothing.
        """
        if self.flushed:
            logger.debug("Run log already flushed; ignoring repeated flush.")
            return False
        self.flushed = True

        if not self.sink_url:
            logger.warning("Apps Script logging disabled (missing APPS_SCRIPT_URL).")
            return False
        if not self.rows:
            logger.info("No rows to send to Apps Script.")
            return False

        payload = self.payload()
        try:
            response = self.session.post(
                self.sink_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Apps Script logging error: {e}")
            return False

        try:
            data = response.json()
        except ValueError:
            data = None

        logger.info(f"Apps Script response: {response.status_code} {data}")
        if not isinstance(data, dict) or not data.get("ok"):
            logger.warning(f"Apps Script replied error: status={response.status_code}, body={data or response.text[:200]}")
            return False

        logger.info(f"Sent {len(payload['rows'])} rows to sheet '{self.sheet_name}'")
        return True

    def to_dataframe(self) -> pd.DataFrame:
        with self._lock:
            records = [astuple(row) for row in self.rows]
        return pd.DataFrame.from_records(records, columns=OUTCOME_COLUMNS)

    def save_csv(self, output_dir: str) -> Optional[str]:
        """
        4.2 Write the run's rows to <output_dir>/<sheet_name>.csv.
        """
        df = self.to_dataframe()
        if df.empty:
            return None
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, f"{self.sheet_name}.csv")
        df.to_csv(path, index=False)
        logger.info(f"Saved run report with {len(df)} rows to {path}")
        return path

    def summarize(self) -> None:
        """
        4.3 Log counts per region and cache status, plus latency percentiles.
        """
        df = self.to_dataframe()
        warmed = df[df["url"] != ""]
        if warmed.empty:
            logger.info("Run summary: no URLs warmed")
            return

        logger.info("=" * 60)
        logger.info(f"Run summary ({self.run_id}, sheet {self.sheet_name}):")
        for region, group in warmed.groupby("region"):
            failed = int(group["error"].sum())
            statuses = group.loc[group["error"] == 0, "edge_cache"].value_counts()
            breakdown = ", ".join(f"{status}={count}" for status, count in statuses.items())
            logger.info(f"  [{region}] {len(group)} URLs, {failed} failed; edge cache: {breakdown or 'none'}")

        latencies = pd.to_numeric(warmed.loc[warmed["error"] == 0, "response_ms"], errors="coerce").dropna()
        if not latencies.empty:
            logger.info(
                f"  Response times: median {latencies.median():.0f}ms, "
                f"95th percentile {latencies.quantile(0.95):.0f}ms"
            )
        logger.info("=" * 60)
