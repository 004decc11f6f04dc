# chicken_run_backend/chickenrun/bots.py

import random

from chickenrun.game_logic import Bettor

CONSONANTS = "bcdfghjklmnpqrstvwxyz"
VOWELS = "aeiou"


class ParticipantGenerator:
    """Builds the simulated bettors that share the pot with the real player each round."""
    MIN_BOTS = 8
    MAX_BOTS = 18
    STAKES = (50, 50, 100, 100, 100, 200, 200, 300, 500, 500, 1000, 2000, 5000)

    # (cumulative probability, lowest lane, highest lane)
    TARGET_LANE_BUCKETS = (
        (0.30, 1, 2),
        (0.55, 3, 4),
        (0.75, 5, 6),
        (0.90, 7, 7),
        (1.00, 8, 8),  # ride to the finish
    )

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def generate(self) -> list[Bettor]:
        count = self.rng.randint(self.MIN_BOTS, self.MAX_BOTS)
        return [self._make_bettor() for _ in range(count)]

    def _make_bettor(self) -> Bettor:
        target_lane = self.target_lane()
        return Bettor(
            id=str(self.rng.randint(100000, 999999)),
            username=self.random_name(),
            stake=float(self.rng.choice(self.STAKES)),
            target_lane=target_lane,
        )

    def target_lane(self) -> int:
        r = self.rng.random()
        for threshold, low, high in self.TARGET_LANE_BUCKETS:
            if r < threshold:
                return self.rng.randint(low, high)
        return self.TARGET_LANE_BUCKETS[-1][2]

    def random_name(self) -> str:
        length = self.rng.randint(5, 9)
        letters = [self.rng.choice(CONSONANTS if i % 2 == 0 else VOWELS) for i in range(length)]
        name = "".join(letters).capitalize()
        if self.rng.random() > 0.5:
            name += str(self.rng.randint(1, 99))
        return name
