import random
from collections import Counter

from chickenrun.bots import ParticipantGenerator
from chickenrun.game_logic import BettorStatus


def test_population_shape():
    gen = ParticipantGenerator(random.Random(7))
    for _ in range(100):
        bots = gen.generate()
        assert 8 <= len(bots) <= 18
        for b in bots:
            assert b.stake in ParticipantGenerator.STAKES
            assert 1 <= b.target_lane <= 8
            assert b.status is BettorStatus.WAITING
            assert not b.is_player
            assert len(b.id) == 6 and b.id.isdigit()
            assert b.username[0].isupper()


def test_same_seed_same_population():
    first = ParticipantGenerator(random.Random(42)).generate()
    second = ParticipantGenerator(random.Random(42)).generate()
    assert [b.to_dict() for b in first] == [b.to_dict() for b in second]


def test_target_lane_weights():
    gen = ParticipantGenerator(random.Random(1))
    draws = 20_000
    counts = Counter(gen.target_lane() for _ in range(draws))

    def share(*lanes):
        return sum(counts[lane] for lane in lanes) / draws

    assert abs(share(1, 2) - 0.30) < 0.02
    assert abs(share(3, 4) - 0.25) < 0.02
    assert abs(share(5, 6) - 0.20) < 0.02
    assert abs(share(7) - 0.15) < 0.02
    assert abs(share(8) - 0.10) < 0.02
