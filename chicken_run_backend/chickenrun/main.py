# chicken_run_backend/chickenrun/main.py

import asyncio
import time
import uuid
import logging

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chickenrun import config
from chickenrun.clickhouse_logger import ensure_clickhouse, ch_status
from chickenrun.db import SessionStore
from chickenrun.formatting import decorate_snapshot
from chickenrun.round_engine import RoundEngine, IntentResult
from chickenrun.ws_manager import WebSocketManager

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="chicken-run")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = SessionStore(config.DATABASE_URL, config.SAVE_KEY)
engine = RoundEngine(store=store)
manager = WebSocketManager(engine)
engine.on_event = manager.on_engine_event


async def game_loop():
    engine.start(time.monotonic())
    while True:
        engine.tick(time.monotonic())
        await manager.broadcast(manager.state_message())
        await asyncio.sleep(config.TICK_INTERVAL)


def _intent_response(result: IntentResult) -> JSONResponse:
    if not result.accepted:
        return JSONResponse(status_code=400, content={"ok": False, "error": result.reason.value})
    return JSONResponse(content={
        "ok": True,
        "amount": result.amount,
        "multiplier": result.multiplier,
        "balance": engine.session.balance,
    })


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    client_id = uuid.uuid4().hex
    await manager.connect(websocket, client_id)
    logger.info(f"Client {client_id} connected.")

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            logger.info(f"Client {client_id} sent: {data}")
            await manager.handle_message(client_id, data)
    except WebSocketDisconnect:
        manager.disconnect(client_id)
        logger.info(f"Client {client_id} disconnected.")
    except Exception as e:
        logger.exception(f"WS error for client {client_id}: {e}")
        manager.disconnect(client_id)


@app.get("/state")
async def get_state():
    return decorate_snapshot(engine.snapshot())


@app.post("/bet")
async def place_bet(data: dict = Body(...)):
    return _intent_response(engine.place_bet(data.get("amount")))


@app.post("/cashout")
async def cash_out():
    return _intent_response(engine.cash_out())


@app.post("/reset")
async def reset_progress():
    engine.reset_progress()
    return {"ok": True, "balance": engine.session.balance}


@app.post("/add-balance")
async def add_balance():
    engine.add_test_balance()
    return {"ok": True, "balance": engine.session.balance}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/admin/ensure_clickhouse")
async def admin_ensure_clickhouse():
    return await ensure_clickhouse()


@app.get("/admin/ch_status")
async def admin_ch_status():
    return await ch_status()


@app.on_event("startup")
async def on_startup():
    store.init_db()
    session = store.load()
    engine.use_session(session)
    logger.info(f"[STORE] loaded session: balance={session.balance:.2f} round={session.round} rollover={session.rollover:.2f}")
    try:
        st = await ensure_clickhouse()
        logger.info(f"[CH] reachable={st.get('reachable')} err={st.get('error')}")
    except Exception as e:
        logger.warning(f"ensure_clickhouse failed: {e}")
    asyncio.create_task(game_loop())


if __name__ == "__main__":
    uvicorn.run(app, host=config.APP_HOST, port=config.APP_PORT)
