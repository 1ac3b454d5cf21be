"""Turn cards: weighted random modifiers drawn at the start of a turn."""

import random
from dataclasses import dataclass
from typing import Optional, Sequence

NORMAL = 'normal'
ADDITIONAL = 'additional'
EXPOSE_LEFT = 'expose_left'
EXPOSE_RIGHT = 'expose_right'
BONUS_20 = 'bonus_20'

EXPOSE_CARDS = (EXPOSE_LEFT, EXPOSE_RIGHT)
BONUS_POINTS = 20


@dataclass(frozen=True)
class TurnCard:
    type: str
    label: str
    weight: float
    multiplier: Optional[int] = None

    @property
    def is_expose(self) -> bool:
        return self.type in EXPOSE_CARDS

    def to_dict(self):
        payload = {'type': self.type, 'label': self.label}
        if self.multiplier:
            payload['multiplier'] = self.multiplier
        return payload


TURN_CARDS = (
    TurnCard(NORMAL, 'Take your normal turn', 60),
    TurnCard(ADDITIONAL, 'Take an additional turn', 5),
    TurnCard(EXPOSE_LEFT, 'Player on your left exposes a letter', 5),
    TurnCard(EXPOSE_RIGHT, 'Player on your right exposes a letter', 5),
    TurnCard(BONUS_20, 'Add 20 to your score', 5),
    TurnCard('double', 'Double the value of your first guess', 5, multiplier=2),
    TurnCard('triple', 'Triple the value of your first guess', 5, multiplier=3),
    TurnCard('quadruple', 'Quadruple the value of your first guess', 5, multiplier=4),
    TurnCard('quintuple', 'Quintuple the value of your first guess', 5, multiplier=5),
)

CARDS_BY_TYPE = {card.type: card for card in TURN_CARDS}


def get_card(card_type: Optional[str]) -> TurnCard:
    return CARDS_BY_TYPE.get(card_type or NORMAL, CARDS_BY_TYPE[NORMAL])


class TurnCardDeck:
    """Draws cards from a weighted table.

    Pass a seeded ``random.Random`` for reproducible draws, or a reduced
    ``cards`` table to force particular cards.
    """

    def __init__(self, cards: Optional[Sequence[TurnCard]] = None, rng: Optional[random.Random] = None):
        self.cards = tuple(cards) if cards else TURN_CARDS
        self.rng = rng or random.Random()

    @property
    def total_weight(self) -> float:
        return sum(card.weight for card in self.cards)

    def draw(self) -> TurnCard:
        remainder = self.rng.random() * self.total_weight
        for card in self.cards:
            remainder -= card.weight
            if remainder <= 0:
                return card
        # Float drift can leave a sliver of weight unclaimed
        return CARDS_BY_TYPE[NORMAL]
