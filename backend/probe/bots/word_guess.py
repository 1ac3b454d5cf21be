"""Full-word guesses for bots.

Bots mostly guess letters. A word guess is only considered once at least 80%
of the target's positions show and no more than two remain hidden, and the
guessed word must be in the dictionary and fit everything revealed so far.
A wrong word guess costs points and the turn, so every doubt ends in a
letter guess instead.
"""

import logging
import random
import re
from typing import Iterable, List, Optional

from probe.services.games.words import BLANK_GUESS
from .types import BotConfig, Difficulty, GameContext, PlayerView

logger = logging.getLogger(__name__)

MIN_REVEALED = 0.8
MAX_HIDDEN = 2
# Easy and medium bots only gamble on the last hidden position
CASUAL_REVEALED = 0.85
CASUAL_GUESS_RATE = 0.5

HIDDEN = '_'


def fits_pattern(word: str, revealed: List[Optional[str]], missed: Iterable[str] = ()) -> bool:
    """Whether ``word`` could be the secret behind a padded reveal view.

    The word sits somewhere inside the padded positions. Everything outside it
    must be hidden or a revealed blank, every revealed letter inside it must
    match, and no hidden position may hold a letter already missed.
    """
    word = word.upper()
    missed = {m for m in missed if m != BLANK_GUESS}
    for offset in range(len(revealed) - len(word) + 1):
        outside = revealed[:offset] + revealed[offset + len(word):]
        if any(c not in (None, BLANK_GUESS) for c in outside):
            continue
        inside = revealed[offset:offset + len(word)]
        if all((shown is None and char not in missed) or shown == char
               for char, shown in zip(word, inside)):
            return True
    return False


class WordGuessStrategy:
    def __init__(self, llm, validator, rng: Optional[random.Random] = None):
        self.llm = llm
        self.validator = validator
        self.rng = rng or random.Random()

    def should_guess_word(self, context: GameContext, target: PlayerView, config: BotConfig) -> bool:
        if not target.word_length or target.hidden_count == 0:
            return False
        if target.completion < MIN_REVEALED or target.hidden_count > MAX_HIDDEN:
            return False
        if config.difficulty == Difficulty.HARD:
            return self.candidate_word(target, config) is not None
        if target.hidden_count == 1 and target.completion >= CASUAL_REVEALED:
            return self.rng.random() < CASUAL_GUESS_RATE
        return False

    def guess_word(self, context: GameContext, target: PlayerView, config: BotConfig) -> Optional[str]:
        """The word to guess, or None when no candidate survives the checks."""
        word = self.candidate_word(target, config)
        if word:
            logger.info('[bot-word-guess] bot=%s room=%s pattern=%s word=%s',
                        config.display_name, context.room_code, self.render_pattern(target), word)
        else:
            logger.info('[bot-word-guess] bot=%s no usable word, guessing a letter', config.display_name)
        return word

    def candidate_word(self, target: PlayerView, config: BotConfig) -> Optional[str]:
        try:
            response = self.llm.generate(
                config.model_name,
                self.build_prompt(target),
                {**config.ollama_options, 'temperature': 0.2, 'num_predict': 20},
                'You are playing a word guessing game. Give only single-word answers.',
            )
            for word in self.extract_words(response):
                if self.is_usable(word, target):
                    return word
            logger.info('[bot-word-guess] bot=%s no fitting word in %r', config.display_name, response)
        except Exception as exc:
            logger.warning('[bot-word-guess] bot=%s model call failed: %s', config.display_name, exc)
        return self.only_dictionary_fit(target)

    def is_usable(self, word: str, target: PlayerView) -> bool:
        return (self.validator.is_valid_length(word) and self.validator.is_valid_word(word)
                and fits_pattern(word, target.revealed_positions, target.missed_letters))

    def only_dictionary_fit(self, target: PlayerView) -> Optional[str]:
        """The dictionary word matching the board, when exactly one does."""
        fits = [w for w in self.validator.load_dictionary() if self.is_usable(w, target)]
        return fits[0] if len(fits) == 1 else None

    @staticmethod
    def render_pattern(target: PlayerView) -> str:
        return ''.join(HIDDEN if c is None else ('-' if c == BLANK_GUESS else c)
                       for c in target.revealed_positions)

    def build_prompt(self, target: PlayerView) -> str:
        return '\n'.join([
            f'Complete this word pattern: {self.render_pattern(target)}',
            f'- {HIDDEN} = hidden position, - = revealed padding that is not part of the word',
            f'- Positions: {target.word_length}',
            f'- Revealed: {", ".join(target.revealed_letters) or "none"}',
            f'- NOT in word: {", ".join(m for m in target.missed_letters if m != BLANK_GUESS) or "none"}',
            '',
            'What is the COMPLETE English word? Reply with ONLY the word in uppercase, or UNKNOWN.',
        ])

    @staticmethod
    def extract_words(response: Optional[str]) -> List[str]:
        words = re.findall(r'[A-Z]+', (response or '').upper())
        return [w for w in words if w != 'UNKNOWN']
