import random

from database.models import SL_HIT, TP_HIT
from trader.rewards import FixedRewardPolicy, RandomRewardPolicy, Reward


def test_take_profit_rewards_stay_in_range():
    policy = RandomRewardPolicy(random.Random(42))
    for confidence in (0, 50, 78, 100, 250, -10, None):
        for _ in range(50):
            reward = policy(TP_HIT, confidence)
            assert 50 <= reward.bsai <= 300
            assert 50 <= reward.xp <= 150
            assert 1 <= reward.gas <= 10


def test_stop_loss_pays_participation_xp_only():
    policy = RandomRewardPolicy(random.Random(7))
    for _ in range(100):
        reward = policy(SL_HIT, 99)
        assert reward.bsai == 0
        assert 5 <= reward.xp <= 25
        assert 1 <= reward.gas <= 10


def test_zero_confidence_gets_no_bonus():
    policy = RandomRewardPolicy(random.Random(3))
    for _ in range(50):
        assert policy(TP_HIT, 0).bsai <= 100


def test_seeded_policy_is_reproducible():
    first, second = RandomRewardPolicy(random.Random(11)), RandomRewardPolicy(random.Random(11))
    assert [first(TP_HIT, 80) for _ in range(5)] == [second(TP_HIT, 80) for _ in range(5)]


def test_fixed_policy():
    policy = FixedRewardPolicy()
    assert policy(TP_HIT, 10) == Reward(bsai=150, xp=100, gas=5)
    assert policy(SL_HIT, 90) == Reward(bsai=0, xp=10, gas=5)
