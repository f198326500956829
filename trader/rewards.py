"""
Reward Policy
=============
Turns a resolved outcome into (bsai, xp, gas).

    policy(outcome, confidence) -> Reward

RandomRewardPolicy is what the arena runs with:
- TP_HIT: bsai = 50..100 base + up to 2x confidence bonus (so 50..300),
          xp = 50..150
- SL_HIT: bsai = 0, xp = 5..25 (participation)
- gas:    1..10 on every outcome. Recorded on the signal only; nothing
          deducts it from a balance.

FixedRewardPolicy returns constant figures, for tests and demos.
"""

import random
from dataclasses import dataclass

from database.models import TP_HIT

TP_BSAI_BASE = (50, 100)
TP_BSAI_MAX = 300
TP_XP = (50, 150)
SL_XP = (5, 25)
GAS = (1, 10)


@dataclass(frozen=True)
class Reward:
    bsai: int
    xp: int
    gas: int


class RandomRewardPolicy:
    """Seed the rng for reproducible rewards: RandomRewardPolicy(random.Random(7))."""

    def __init__(self, rng: random.Random | None = None):
        self.rng = rng or random.Random()

    def __call__(self, outcome: str, confidence: float) -> Reward:
        gas = self.rng.randint(*GAS)
        if outcome == TP_HIT:
            confidence = min(max(float(confidence or 0), 0.0), 100.0)
            bonus = int(confidence * self.rng.uniform(0.0, 2.0))
            bsai = min(self.rng.randint(*TP_BSAI_BASE) + bonus, TP_BSAI_MAX)
            return Reward(bsai=bsai, xp=self.rng.randint(*TP_XP), gas=gas)
        return Reward(bsai=0, xp=self.rng.randint(*SL_XP), gas=gas)


class FixedRewardPolicy:
    def __init__(self, win: Reward = Reward(150, 100, 5), loss: Reward = Reward(0, 10, 5)):
        self.win = win
        self.loss = loss

    def __call__(self, outcome: str, confidence: float) -> Reward:
        return self.win if outcome == TP_HIT else self.loss
