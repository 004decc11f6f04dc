# chicken_run_backend/chickenrun/config.py

import os

APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT = int(os.getenv("APP_PORT", "8000"))

# Phase durations
BETTING_TIME = float(os.getenv("BETTING_TIME", "15"))  # seconds
RESOLVING_TIME = float(os.getenv("RESOLVING_TIME", "5"))  # seconds
CROSS_TIME_MS = int(os.getenv("CROSS_TIME_MS", "2000"))
REST_TIME_MS = int(os.getenv("REST_TIME_MS", "2000"))
SETTLE_TIME_MS = int(os.getenv("SETTLE_TIME_MS", "4000"))

# How often the game loop advances the engine and pushes state to clients.
TICK_INTERVAL = float(os.getenv("TICK_INTERVAL", "0.05"))

START_BALANCE = float(os.getenv("START_BALANCE", "1000"))
MIN_STAKE = float(os.getenv("MIN_STAKE", "10"))
TEST_BALANCE_CREDIT = float(os.getenv("TEST_BALANCE_CREDIT", "1000"))
HISTORY_LIMIT = 40

DATABASE_URL = os.getenv("DATABASE_URL", "chicken_run.db")
SAVE_KEY = os.getenv("SAVE_KEY", "chickenrun_v3")
