# chicken_run_backend/chickenrun/game_logic.py

import random
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

# Fixed payout multiplier of each lane, lane 1 first.
LANE_MULTIPLIERS = (1.0, 1.2, 1.5, 2.0, 2.5, 3.0, 3.5, 4.0)
LANE_COUNT = len(LANE_MULTIPLIERS)
FINISH_MULTIPLIER = LANE_MULTIPLIERS[-1]


def lane_multiplier(lane: int) -> float:
    """Multiplier bound to a 1-based lane. Lane 0 is the start zone and pays nothing extra."""
    if lane < 1:
        return 0.0
    return LANE_MULTIPLIERS[lane - 1]


def payout_for(stake: float, multiplier: float) -> float:
    """A cash-out returns the stake plus stake * multiplier."""
    return stake * (1 + multiplier)


class BettorStatus(str, Enum):
    WAITING = "waiting"
    CASHED_OUT = "cashed"
    CRASHED = "crashed"


@dataclass
class Bettor:
    id: str
    username: str
    stake: float
    target_lane: Optional[int] = None  # None for the real player, who decides live
    status: BettorStatus = BettorStatus.WAITING
    cashout_multiplier: float = 0.0
    cashout_amount: float = 0.0
    is_player: bool = False

    @property
    def is_waiting(self) -> bool:
        return self.status is BettorStatus.WAITING

    def cash_out(self, multiplier: float) -> float:
        self.status = BettorStatus.CASHED_OUT
        self.cashout_multiplier = multiplier
        self.cashout_amount = payout_for(self.stake, multiplier)
        return self.cashout_amount

    def crash(self):
        self.status = BettorStatus.CRASHED

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class RoundLedger:
    pot: float
    pool: float
    platform_profit: float
    provider_fee: float
    next_rollover: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RoundOutcome:
    crash_lane: int  # 0 means the chicken reaches the finish
    ledger: RoundLedger
    funded_crash_lane: int  # result of the pool walk before the drama draws

    @property
    def is_safe(self) -> bool:
        return self.crash_lane == 0

    @property
    def multiplier(self) -> float:
        """Realized multiplier of the round: the crash lane's, or the finish multiplier."""
        return FINISH_MULTIPLIER if self.is_safe else lane_multiplier(self.crash_lane)


class OutcomeSimulator:
    """
    Decides the crash lane of a round from the pot of wagers.

    60% of the pot (plus the rollover carried from the previous round) forms the
    payout pool; the remaining 40% is profit, split 40/30/30 between the platform,
    the provider and the next round's rollover. The pool is then walked lane by lane:
    the first lane at which the house could not pay every bot cashing out there
    plus the real player cashing out there is the crash lane.

    The simulator reads and commits `session.rollover`; the session is any object
    carrying that attribute (normally a `chickenrun.db.PlayerSession`).
    """
    BASE_PAYOUT_PCT = 0.6
    PROFIT_PLATFORM = 0.4
    PROFIT_PROVIDER = 0.3
    PROFIT_ROLLOVER = 0.3

    # Drama layer. These only ever move the crash earlier (or to lane 1).
    LATE_CRASH_CHANCE = 0.12
    LATE_CRASH_LANES = (6, 8)
    EARLY_SHIFT_CHANCE = 0.10
    INSTANT_CRASH_CHANCE = 0.04

    def __init__(self, session, rng: random.Random | None = None):
        self.session = session
        self.rng = rng or random.Random()

    def build_ledger(self, bettors: list[Bettor], real_stake: float) -> RoundLedger:
        pot = sum(b.stake for b in bettors) + real_stake
        profit = pot * (1 - self.BASE_PAYOUT_PCT)
        return RoundLedger(
            pot=pot,
            pool=pot * self.BASE_PAYOUT_PCT + self.session.rollover,
            platform_profit=profit * self.PROFIT_PLATFORM,
            provider_fee=profit * self.PROFIT_PROVIDER,
            next_rollover=profit * self.PROFIT_ROLLOVER,
        )

    @staticmethod
    def walk_lanes(bettors: list[Bettor], real_stake: float, pool: float) -> int:
        """
        Returns the first lane the pool cannot fund, or 0 if it funds all of them.

        The real player is always assumed to cash out at the lane being tested,
        since their cash-out is a live decision unknown at this point.
        """
        pool_left = pool
        for lane, mult in enumerate(LANE_MULTIPLIERS, start=1):
            lane_payout = sum(payout_for(b.stake, mult) for b in bettors if b.target_lane == lane)
            real_worst = payout_for(real_stake, mult) if real_stake > 0 else 0.0

            if pool_left - lane_payout - real_worst < 0:
                return lane
            pool_left -= lane_payout
            # Second check against the same pool; only reachable when real_worst is zero.
            if pool_left < 0:
                return lane
        return 0

    def apply_drama(self, crash_lane: int) -> int:
        rng = self.rng
        if crash_lane == 0 and rng.random() < self.LATE_CRASH_CHANCE:
            crash_lane = rng.randint(*self.LATE_CRASH_LANES)
        elif crash_lane > 2 and rng.random() < self.EARLY_SHIFT_CHANCE:
            crash_lane = max(1, crash_lane - 1)

        if rng.random() < self.INSTANT_CRASH_CHANCE:
            crash_lane = 1
        return crash_lane

    def decide(self, bettors: list[Bettor], real_stake: float = 0.0) -> RoundOutcome:
        ledger = self.build_ledger(bettors, real_stake)
        funded = self.walk_lanes(bettors, real_stake, ledger.pool)
        crash_lane = min(max(self.apply_drama(funded), 0), LANE_COUNT)

        self.session.rollover = ledger.next_rollover
        return RoundOutcome(crash_lane=crash_lane, ledger=ledger, funded_crash_lane=funded)
