import copy
import random

from chickenrun.bots import ParticipantGenerator
from chickenrun.db import PlayerSession
from chickenrun.game_logic import Bettor, OutcomeSimulator
from chickenrun.round_engine import PhaseTimings, RoundEngine


class SequenceRandom(random.Random):
    """random() replays a fixed script; randint() still comes from the seeded generator."""

    def __init__(self, values, seed=0):
        super().__init__(seed)
        self.values = list(values)

    def random(self):
        if not self.values:
            raise IndexError("random() called more times than scripted")
        return self.values.pop(0)

    def getrandbits(self, k):
        return super().getrandbits(k)


class ConstantRandom(random.Random):
    def __init__(self, value, seed=0):
        super().__init__(seed)
        self.value = value

    def random(self):
        return self.value


def no_drama() -> random.Random:
    # 0.99 never clears any drama threshold
    return ConstantRandom(0.99)


class ForcedLaneSimulator(OutcomeSimulator):
    """Real ledger and rollover, but the crash lane is pinned."""

    def __init__(self, session, crash_lane: int):
        super().__init__(session, rng=no_drama())
        self.crash_lane = crash_lane

    def apply_drama(self, crash_lane: int) -> int:
        return self.crash_lane


class StaticGenerator(ParticipantGenerator):
    def __init__(self, bettors):
        super().__init__()
        self.bettors = bettors

    def generate(self):
        return copy.deepcopy(self.bettors)


def bot(stake, target_lane, bot_id=None) -> Bettor:
    return Bettor(id=bot_id or f"bot-{stake}-{target_lane}", username="Bot", stake=float(stake), target_lane=target_lane)


DEFAULT_BOTS = [bot(100, 1), bot(200, 3), bot(500, 5), bot(50, 8)]

# Round timeline with these timings, started at t=0:
#   betting 0-15, resolving 15-20,
#   lane L crossing [20 + 4(L-1), 22 + 4(L-1)), rest until 24 + 4(L-1)
TIMINGS = PhaseTimings(betting=15, resolving=5, crossing=2, rest=2, settling=4)


def crossing_start(lane: int) -> float:
    return 20 + 4 * (lane - 1)


def make_engine(crash_lane=0, bettors=None, session=None, store=None, events=None) -> RoundEngine:
    session = session or PlayerSession()
    on_event = None
    if events is not None:
        on_event = lambda event_type, payload: events.append((event_type, payload))
    return RoundEngine(
        session=session,
        store=store,
        simulator=ForcedLaneSimulator(session, crash_lane),
        generator=StaticGenerator(DEFAULT_BOTS if bettors is None else bettors),
        timings=TIMINGS,
        on_event=on_event,
    )
