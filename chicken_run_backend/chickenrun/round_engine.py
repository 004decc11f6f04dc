# chicken_run_backend/chickenrun/round_engine.py

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from chickenrun import config
from chickenrun.bots import ParticipantGenerator
from chickenrun.db import PlayerSession, SessionStore
from chickenrun.game_logic import (
    LANE_COUNT,
    FINISH_MULTIPLIER,
    Bettor,
    BettorStatus,
    OutcomeSimulator,
    RoundLedger,
    RoundOutcome,
    lane_multiplier,
)

logger = logging.getLogger("uvicorn.error")

PLAYER_ID = "player"


class Phase(str, Enum):
    BETTING = "betting"
    RESOLVING = "resolving"
    RUNNING = "running"
    SETTLING = "settling"


class Rejection(str, Enum):
    WRONG_PHASE = "wrong-phase"
    ALREADY_BET = "already-bet"
    INVALID_AMOUNT = "invalid-amount"
    INSUFFICIENT_BALANCE = "insufficient-balance"
    NO_ACTIVE_BET = "no-active-bet"
    ALREADY_CASHED_OUT = "already-cashed-out"


class InvariantViolation(RuntimeError):
    """The engine was driven in a way its phase rules never allow."""


@dataclass(frozen=True)
class IntentResult:
    accepted: bool
    reason: Optional[Rejection] = None
    amount: float = 0.0
    multiplier: float = 0.0

    @classmethod
    def reject(cls, reason: Rejection) -> "IntentResult":
        return cls(accepted=False, reason=reason)


@dataclass(frozen=True)
class PhaseTimings:
    """Durations in seconds."""
    betting: float = config.BETTING_TIME
    resolving: float = config.RESOLVING_TIME
    crossing: float = config.CROSS_TIME_MS / 1000
    rest: float = config.REST_TIME_MS / 1000
    settling: float = config.SETTLE_TIME_MS / 1000


@dataclass
class Round:
    number: int
    bettors: list[Bettor]
    phase: Phase = Phase.BETTING
    player_bet: Optional[Bettor] = None
    outcome: Optional[RoundOutcome] = None
    current_lane: int = 0
    is_crossing: bool = False
    cross_progress: float = 0.0
    splat: bool = False
    bonus: float = 0.0
    terminal: Optional[dict] = None

    def set_outcome(self, outcome: RoundOutcome):
        if self.outcome is not None:
            raise InvariantViolation(f"round {self.number} already has an outcome")
        self.outcome = outcome

    @property
    def crash_lane(self) -> int:
        if self.outcome is None:
            raise InvariantViolation(f"round {self.number} has no outcome yet")
        return self.outcome.crash_lane

    def all_bettors(self) -> list[Bettor]:
        if self.player_bet is None:
            return list(self.bettors)
        return [self.player_bet, *self.bettors]

    def waiting_bettors(self) -> list[Bettor]:
        return [b for b in self.all_bettors() if b.is_waiting]


class RoundEngine:
    """
    Four-phase round cycle: betting -> resolving -> running -> settling -> betting.

    The engine never sleeps. Every phase step ends by setting a deadline, and
    `tick(now)` fires each expired deadline in order. Each new deadline is
    computed from the one that fired, so a late tick replays the skipped steps
    instead of dropping them.

    Player intents (`place_bet`, `cash_out`) may arrive at any time; outside
    their window they are rejected with a reason and change nothing.
    """

    def __init__(
        self,
        session: PlayerSession | None = None,
        store: SessionStore | None = None,
        simulator: OutcomeSimulator | None = None,
        generator: ParticipantGenerator | None = None,
        timings: PhaseTimings | None = None,
        on_event: Callable[[str, dict], None] | None = None,
    ):
        self.store = store
        self.session = session if session is not None else PlayerSession()
        self.simulator = simulator or OutcomeSimulator(self.session)
        self.simulator.session = self.session
        self.generator = generator or ParticipantGenerator()
        self.timings = timings or PhaseTimings()
        self.on_event = on_event

        self.round: Optional[Round] = None
        self.ledger: Optional[RoundLedger] = None
        self.deadline: Optional[float] = None
        self.now: float = 0.0
        self._crossing_started: float = 0.0

    def use_session(self, session: PlayerSession):
        """Swaps in a loaded session. Only valid before the first round starts."""
        if self.round is not None:
            raise InvariantViolation("cannot swap the session of a running engine")
        self.session = session
        self.simulator.session = session

    # ---- clock ----

    def start(self, now: float):
        """Opens the first betting phase. Later rounds start themselves from `tick`."""
        if self.round is not None:
            raise InvariantViolation("engine already started")
        self.now = now
        self._begin_betting(now)

    def tick(self, now: float):
        if self.round is None:
            self.start(now)
        self.now = now
        while self.deadline is not None and now >= self.deadline:
            fired = self.deadline
            self.deadline = None
            self._on_timer(fired)
        self._update_progress(now)

    def seconds_left(self) -> float:
        if self.deadline is None:
            return 0.0
        return max(0.0, self.deadline - self.now)

    def _on_timer(self, at: float):
        rnd = self.round
        if rnd.phase is Phase.BETTING:
            self._begin_resolving(at)
        elif rnd.phase is Phase.RESOLVING:
            self._begin_running(at)
        elif rnd.phase is Phase.RUNNING:
            if rnd.is_crossing:
                self._finish_crossing(at)
            elif rnd.current_lane < LANE_COUNT:
                self._enter_lane(rnd.current_lane + 1, at)
            else:
                self._settle_safe(at)
        elif rnd.phase is Phase.SETTLING:
            self._begin_betting(at)

    def _update_progress(self, now: float):
        rnd = self.round
        if rnd.phase is Phase.RUNNING and rnd.is_crossing and self.timings.crossing > 0:
            elapsed = now - self._crossing_started
            rnd.cross_progress = min(max(elapsed / self.timings.crossing, 0.0), 1.0)

    # ---- phases ----

    def _begin_betting(self, at: float):
        self.session.round += 1
        self.round = Round(number=self.session.round, bettors=self.generator.generate())
        # the pot is unknown until this round resolves
        self.ledger = None
        self.deadline = at + self.timings.betting
        logger.info(f"--- Round #{self.round.number}: betting open, {len(self.round.bettors)} bots ---")

    def _begin_resolving(self, at: float):
        rnd = self.round
        if rnd.outcome is not None:
            raise InvariantViolation(f"round {rnd.number} resolved twice")
        rnd.phase = Phase.RESOLVING

        real_stake = rnd.player_bet.stake if rnd.player_bet else 0.0
        outcome = self.simulator.decide(rnd.bettors, real_stake)
        rnd.set_outcome(outcome)
        self.ledger = outcome.ledger
        self._save()

        label = f"{outcome.multiplier}x" if not outcome.is_safe else "SAFE"
        logger.info(
            f"[R{rnd.number}] crashLane={outcome.crash_lane} ({label}) "
            f"pot=${outcome.ledger.pot:.0f} pool=${outcome.ledger.pool:.2f}"
        )
        self._emit("round_resolved", {
            "round": rnd.number,
            "crash_lane": outcome.crash_lane,
            "funded_crash_lane": outcome.funded_crash_lane,
            **outcome.ledger.to_dict(),
        })
        self.deadline = at + self.timings.resolving

    def _begin_running(self, at: float):
        rnd = self.round
        if rnd.outcome is None:
            raise InvariantViolation(f"round {rnd.number} cannot run without an outcome")
        rnd.phase = Phase.RUNNING
        self._enter_lane(1, at)

    def _enter_lane(self, lane: int, at: float):
        rnd = self.round
        rnd.current_lane = lane
        if lane != rnd.crash_lane:
            mult = lane_multiplier(lane)
            for bot in rnd.bettors:
                if bot.is_waiting and bot.target_lane == lane:
                    bot.cash_out(mult)
        rnd.is_crossing = True
        rnd.cross_progress = 0.0
        self._crossing_started = at
        self.deadline = at + self.timings.crossing

    def _finish_crossing(self, at: float):
        rnd = self.round
        rnd.is_crossing = False
        rnd.cross_progress = 1.0
        if rnd.current_lane == rnd.crash_lane:
            self._settle_crash(at)
        else:
            self.deadline = at + self.timings.rest

    def _settle_crash(self, at: float):
        rnd = self.round
        lane = rnd.current_lane
        mult = lane_multiplier(lane)
        rnd.splat = True

        bonus = 0.0
        for bettor in rnd.waiting_bettors():
            bettor.crash()
            bonus += bettor.stake
        if rnd.player_bet is not None and rnd.player_bet.status is BettorStatus.CRASHED:
            self.session.total_loss += rnd.player_bet.stake

        rnd.bonus = bonus
        rnd.terminal = {"status": "crashed", "lane": lane, "multiplier": mult}
        logger.info(f"--- Round #{rnd.number}: crashed at lane {lane} ({mult}x) ---")
        self._enter_settling(mult, at)

    def _settle_safe(self, at: float):
        rnd = self.round
        for bettor in rnd.waiting_bettors():
            amount = bettor.cash_out(FINISH_MULTIPLIER)
            if bettor.is_player:
                self.session.balance += amount
                self.session.total_win += amount

        rnd.bonus = 0.0
        rnd.terminal = {"status": "safe", "lane": LANE_COUNT, "multiplier": FINISH_MULTIPLIER}
        logger.info(f"--- Round #{rnd.number}: safe, finish reached ({FINISH_MULTIPLIER}x) ---")
        self._enter_settling(FINISH_MULTIPLIER, at)

    def _enter_settling(self, multiplier: float, at: float):
        rnd = self.round
        rnd.phase = Phase.SETTLING
        self.session.record_multiplier(multiplier)
        self._save()

        player = rnd.player_bet
        self._emit("round_settled", {
            "round": rnd.number,
            "status": rnd.terminal["status"],
            "crash_lane": rnd.crash_lane,
            "multiplier": multiplier,
            "pot": rnd.outcome.ledger.pot,
            "bonus": rnd.bonus,
            "player_stake": player.stake if player else 0.0,
            "player_status": player.status.value if player else None,
            "player_payout": player.cashout_amount if player else 0.0,
        })
        self.deadline = at + self.timings.settling

    # ---- intents ----

    def place_bet(self, amount) -> IntentResult:
        rnd = self.round
        if rnd is None or rnd.phase is not Phase.BETTING:
            return self._rejected("bet_rejected", Rejection.WRONG_PHASE)
        if rnd.player_bet is not None:
            return self._rejected("bet_rejected", Rejection.ALREADY_BET)

        # bool is an int subclass; strings are not numbers even when they parse
        if isinstance(amount, (str, bool)):
            return self._rejected("bet_rejected", Rejection.INVALID_AMOUNT)
        try:
            stake = float(amount)
        except (TypeError, ValueError):
            return self._rejected("bet_rejected", Rejection.INVALID_AMOUNT)
        if not math.isfinite(stake) or stake <= 0 or stake < config.MIN_STAKE:
            return self._rejected("bet_rejected", Rejection.INVALID_AMOUNT)
        if stake > self.session.balance:
            return self._rejected("bet_rejected", Rejection.INSUFFICIENT_BALANCE)

        rnd.player_bet = Bettor(id=PLAYER_ID, username="YOU", stake=stake, is_player=True)
        self.session.balance -= stake
        self.session.total_bet += stake
        self._save()

        logger.info(f"Round #{rnd.number}: player bet ${stake:.2f}")
        self._emit("bet_placed", {"round": rnd.number, "amount": stake, "balance": self.session.balance})
        return IntentResult(accepted=True, amount=stake)

    def cash_out(self) -> IntentResult:
        rnd = self.round
        if rnd is None or rnd.phase is not Phase.RUNNING:
            return IntentResult.reject(Rejection.WRONG_PHASE)
        player = rnd.player_bet
        if player is None:
            return IntentResult.reject(Rejection.NO_ACTIVE_BET)
        if not player.is_waiting:
            return IntentResult.reject(Rejection.ALREADY_CASHED_OUT)

        # The lane being entered sets the price, even mid-crossing.
        mult = lane_multiplier(rnd.current_lane)
        amount = player.cash_out(mult)
        self.session.balance += amount
        self.session.total_win += amount
        self._save()

        logger.info(f"Round #{rnd.number}: player cashed out at lane {rnd.current_lane} ({mult}x) for ${amount:.2f}")
        self._emit("cash_out", {
            "round": rnd.number,
            "lane": rnd.current_lane,
            "multiplier": mult,
            "bet_amount": player.stake,
            "win_amount": amount,
        })
        return IntentResult(accepted=True, amount=amount, multiplier=mult)

    def reset_progress(self):
        """Wipes the saved progress and rollover; the live round keeps running."""
        self.session.reset()
        if self.store is not None:
            self.store.clear()
        self._save()
        self._emit("progress_reset", {"balance": self.session.balance})

    def add_test_balance(self):
        self.session.balance += config.TEST_BALANCE_CREDIT
        self._save()
        self._emit("test_balance_added", {"amount": config.TEST_BALANCE_CREDIT, "balance": self.session.balance})

    # ---- state ----

    def snapshot(self) -> dict:
        """Plain-data view of everything a client needs to draw the game."""
        rnd = self.round
        session = self.session
        ledger = self.ledger
        state = {
            "phase": rnd.phase.value if rnd else None,
            "round": rnd.number if rnd else session.round,
            "seconds_left": self.seconds_left(),
            "current_lane": rnd.current_lane if rnd else 0,
            "is_crossing": rnd.is_crossing if rnd else False,
            "cross_progress": rnd.cross_progress if rnd else 0.0,
            "splat": rnd.splat if rnd else False,
            "crash_lane": None,
            "crash_multiplier": None,
            "terminal": rnd.terminal if rnd else None,
            "bettors": [b.to_dict() for b in rnd.all_bettors()] if rnd else [],
            "player_bet": rnd.player_bet.to_dict() if rnd and rnd.player_bet else None,
            "stats": {
                "balance": session.balance,
                "total_bet": session.total_bet,
                "total_win": session.total_win,
                "total_loss": session.total_loss,
                "net": session.total_win - session.total_loss,
            },
            "ledger": {
                "pot": ledger.pot if ledger else 0.0,
                "pool": ledger.pool if ledger else 0.0,
                "platform_profit": ledger.platform_profit if ledger else 0.0,
                "provider_fee": ledger.provider_fee if ledger else 0.0,
                "rollover": session.rollover,
                "bonus": rnd.bonus if rnd else 0.0,
            },
            "history": list(session.history),
        }
        if rnd is not None and rnd.outcome is not None:
            state["crash_lane"] = rnd.outcome.crash_lane
            state["crash_multiplier"] = rnd.outcome.multiplier
        return state

    # ---- helpers ----

    def _rejected(self, event_type: str, reason: Rejection) -> IntentResult:
        self._emit(event_type, {"round": self.round.number if self.round else None, "reason": reason.value})
        return IntentResult.reject(reason)

    def _save(self):
        if self.store is not None:
            self.store.save(self.session)

    def _emit(self, event_type: str, payload: dict):
        if self.on_event is not None:
            self.on_event(event_type, payload)
