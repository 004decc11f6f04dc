# chicken_run_backend/chickenrun/clickhouse_logger.py

import os
import json
import datetime
import asyncio
import httpx
import logging
from typing import Optional, Dict, Any

CLICKHOUSE_ENABLED = os.getenv("CLICKHOUSE_ENABLED", "0") == "1"
CLICKHOUSE_HOST = os.getenv("CLICKHOUSE_HOST", "http://localhost:8123/")
CLICKHOUSE_USER = os.getenv("CLICKHOUSE_USER", "default")
CLICKHOUSE_PASSWORD = os.getenv("CLICKHOUSE_PASSWORD", "")
CLICKHOUSE_DB = os.getenv("CLICKHOUSE_DB", "default")
CLICKHOUSE_LOG_TABLE = os.getenv("CLICKHOUSE_TABLE", "chickenrun_events")
CLICKHOUSE_ROUNDS_TABLE = os.getenv("CLICKHOUSE_ROUNDS_TABLE", "chickenrun_rounds")

logger = logging.getLogger("uvicorn.error")

_ensured_lock: Optional[asyncio.Lock] = None
_ensured = False
_last_error: Optional[str] = None

EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    ts DateTime,
    event_type LowCardinality(String),
    round Nullable(UInt64),
    payload String
) ENGINE = MergeTree() ORDER BY (ts, event_type)
"""

ROUNDS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    ts DateTime,
    round UInt64,
    status LowCardinality(String),
    crash_lane UInt8,
    multiplier Float64,
    pot Float64,
    bonus Float64,
    player_stake Float64,
    player_status Nullable(String),
    player_payout Float64
) ENGINE = MergeTree() ORDER BY (ts, round)
"""


def _auth_tuple():
    return (CLICKHOUSE_USER, CLICKHOUSE_PASSWORD) if (CLICKHOUSE_USER or CLICKHOUSE_PASSWORD) else None


def _now_str(ts: datetime.datetime | None = None) -> str:
    return (ts or datetime.datetime.now(datetime.timezone.utc)).strftime("%Y-%m-%d %H:%M:%S")


async def _exec(client: httpx.AsyncClient, sql: str, *, database: str | None = None) -> None:
    params = {"query": sql}
    if database:
        params["database"] = database
    r = await client.post(CLICKHOUSE_HOST, params=params, auth=_auth_tuple())
    r.raise_for_status()


async def _ping_with_retries(client: httpx.AsyncClient, attempts: int = 8) -> None:
    delay = 0.5
    last_exc: Optional[Exception] = None
    for _ in range(attempts):
        try:
            await _exec(client, "SELECT 1")
            return
        except Exception as e:
            last_exc = e
            await asyncio.sleep(delay)
            delay = min(delay * 1.8, 5.0)
    raise last_exc if last_exc else RuntimeError("Unknown CH ping error")


def _base_status() -> Dict[str, Any]:
    return {
        "enabled": CLICKHOUSE_ENABLED,
        "host": CLICKHOUSE_HOST,
        "db": CLICKHOUSE_DB,
        "log_table": CLICKHOUSE_LOG_TABLE,
        "rounds_table": CLICKHOUSE_ROUNDS_TABLE,
        "reachable": False,
        "error": None,
    }


async def ensure_clickhouse() -> Dict[str, Any]:
    """
    Pings ClickHouse once per process and creates the event and round tables
    if they are missing. Safe to call before every insert.
    """
    global _ensured, _last_error, _ensured_lock

    status = _base_status()
    if not CLICKHOUSE_ENABLED:
        status["error"] = "CLICKHOUSE_ENABLED=0"
        return status

    if _ensured:
        status["reachable"] = True
        return status

    if _ensured_lock is None:
        _ensured_lock = asyncio.Lock()
    async with _ensured_lock:
        if _ensured:
            status["reachable"] = True
            return status
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                await _ping_with_retries(client)
                status["reachable"] = True
                await _exec(client, EVENTS_DDL.format(table=CLICKHOUSE_LOG_TABLE), database=CLICKHOUSE_DB)
                await _exec(client, ROUNDS_DDL.format(table=CLICKHOUSE_ROUNDS_TABLE), database=CLICKHOUSE_DB)
                _ensured = True
                return status
        except Exception as e:
            _last_error = f"CH setup failed: {e}"
            status["error"] = _last_error
            return status


async def ch_status() -> Dict[str, Any]:
    info = _base_status()
    info["last_error"] = _last_error
    if not CLICKHOUSE_ENABLED:
        return info
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            await _ping_with_retries(client, attempts=2)
            info["reachable"] = True
    except Exception as e:
        info["last_error"] = f"ch_status ping failed: {e}"
    return info


async def _insert_row(table: str, row: Dict[str, Any]) -> None:
    data_to_send = json.dumps(row, ensure_ascii=False) + "\n"
    params = {"query": f"INSERT INTO {table} FORMAT JSONEachRow", "database": CLICKHOUSE_DB}
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.post(CLICKHOUSE_HOST, params=params, content=data_to_send.encode("utf-8"), auth=_auth_tuple())
            if resp.status_code >= 400:
                logger.warning(f"[CH] insert {table} failed: status={resp.status_code} body={resp.text!r} row={data_to_send!r}")
                resp.raise_for_status()
    except Exception as e:
        logger.warning(f"[CH] insert {table} exception: {e}")


async def log_event(event_type: str, payload: dict | None = None) -> None:
    if not CLICKHOUSE_ENABLED:
        return
    st = await ensure_clickhouse()
    if not st.get("reachable"):
        return

    payload = payload or {}
    row = {
        "ts": _now_str(),
        "event_type": event_type,
        "round": payload.get("round"),
        "payload": json.dumps(payload, ensure_ascii=False),
    }
    await _insert_row(CLICKHOUSE_LOG_TABLE, row)


async def log_round(*, round: int, status: str, crash_lane: int, multiplier: float, pot: float, bonus: float,
                    player_stake: float, player_status: str | None, player_payout: float,
                    timestamp: datetime.datetime | None = None) -> None:
    if not CLICKHOUSE_ENABLED:
        return
    st = await ensure_clickhouse()
    if not st.get("reachable"):
        return

    row = {
        "ts": _now_str(timestamp),
        "round": int(round),
        "status": status,
        "crash_lane": int(crash_lane),
        "multiplier": float(multiplier),
        "pot": float(pot),
        "bonus": float(bonus),
        "player_stake": float(player_stake),
        "player_status": player_status,
        "player_payout": float(player_payout),
    }
    await _insert_row(CLICKHOUSE_ROUNDS_TABLE, row)
