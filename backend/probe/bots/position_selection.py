"""Position choice for a bot whose own word is the target of an ambiguous guess.

When an opponent guesses a letter that occurs more than once in the bot's
word, or BLANK while several blanks are hidden, the bot picks which single
position gets revealed.
"""

import logging
import random
import re
from typing import List, Optional, Sequence

from probe.services.games.scoring import ScoringEngine, scoring_engine
from .types import BotConfig, Difficulty, GameContext

logger = logging.getLogger(__name__)

MEDIUM_STRATEGIC_RATE = 0.7


class PositionSelectionStrategy:
    def __init__(self, llm, scoring: Optional[ScoringEngine] = None, rng: Optional[random.Random] = None):
        self.llm = llm
        self.scoring = scoring or scoring_engine
        self.rng = rng or random.Random()

    def select_blank_position(self, candidates: Sequence[int], context: GameContext, config: BotConfig) -> int:
        candidates = self._check(candidates)
        if len(candidates) == 1:
            return candidates[0]
        if config.difficulty == Difficulty.EASY:
            return self.rng.choice(candidates)
        if config.difficulty == Difficulty.HARD:
            return max(candidates)
        if self.rng.random() < MEDIUM_STRATEGIC_RATE:
            return max(candidates)
        return self.rng.choice(candidates)

    def select_duplicate_position(self, candidates: Sequence[int], letter: str,
                                  context: GameContext, config: BotConfig) -> int:
        candidates = self._check(candidates)
        if len(candidates) == 1:
            return candidates[0]
        if config.difficulty == Difficulty.EASY:
            return self.rng.choice(candidates)
        if config.difficulty == Difficulty.HARD:
            return self.select_with_model(candidates, letter, context, config)
        return self.select_by_scoring(candidates)

    def select_by_scoring(self, candidates: Sequence[int]) -> int:
        """Cheapest position for the opponent; the earliest one on ties."""
        return min(self._check(candidates), key=self.scoring.get_position_points)

    def select_with_model(self, candidates: List[int], letter: str,
                          context: GameContext, config: BotConfig) -> int:
        try:
            response = self.llm.generate(
                config.model_name,
                self.build_prompt(candidates, letter, context),
                {**config.ollama_options, 'temperature': 0.3, 'num_predict': 10},
            )
            match = re.search(r'\d+', response or '')
            if match and int(match.group()) in candidates:
                position = int(match.group())
                logger.info('[bot-defend] bot=%s letter=%s position=%s', config.display_name, letter, position)
                return position
            logger.info('[bot-defend] bot=%s unusable model answer %r', config.display_name, response)
        except Exception as exc:
            logger.warning('[bot-defend] bot=%s model call failed: %s', config.display_name, exc)
        return self.select_by_scoring(candidates)

    def build_prompt(self, candidates: List[int], letter: str, context: GameContext) -> str:
        word = context.my_padded_word or context.my_word or ''
        revealed = context.my_revealed_positions or []
        shape = []
        for idx, char in enumerate(word):
            if idx < len(revealed) and revealed[idx]:
                shape.append(char)
            elif idx in candidates:
                shape.append(f'[{char}]')
            else:
                shape.append('•')
        values = '\n'.join(f'- Position {pos}: {self.scoring.get_position_points(pos)} points'
                           for pos in candidates)
        return '\n'.join([
            'You are playing a word guessing game and must choose which position to reveal.',
            '',
            f'Your word: {"".join(shape)}',
            f'(• = hidden, [{letter}] = positions you may reveal)',
            '',
            f'The opponent guessed "{letter}", found at positions: {", ".join(map(str, candidates))}',
            'Reveal exactly ONE of these positions.',
            '',
            'Points the opponent gains per position:',
            values,
            '',
            'Reply with ONLY the position number.',
        ])

    @staticmethod
    def _check(candidates: Sequence[int]) -> List[int]:
        candidates = list(candidates)
        if not candidates:
            raise ValueError('candidate positions must not be empty')
        return candidates
