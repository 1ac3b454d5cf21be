"""Letter and target choice for bots on their own turn."""

import logging
import random
import re
from typing import Iterable, Optional, Set

from probe.errors import NoEligibleTargets
from probe.services.games.words import BLANK_GUESS
from .types import BotConfig, Difficulty, GameContext, PlayerView

logger = logging.getLogger(__name__)

# English letter frequency, most to least common
LETTER_FREQUENCY = 'ETAOINSHRDLCUMWFGYPBVKJXQZ'
VOWELS = ('E', 'A', 'I', 'O', 'U')

TEMPERATURES = {
    Difficulty.EASY: 1.0,
    Difficulty.MEDIUM: 0.7,
    Difficulty.HARD: 0.3,
}

# (no blank found yet, blank already found) per difficulty
BLANK_GUESS_RATES = {
    Difficulty.EASY: (0.10, 0.25),
    Difficulty.MEDIUM: (0.15, 0.30),
    Difficulty.HARD: (0.20, 0.40),
}
LONG_WORD_LENGTH = 9
MANY_MISSES = 8
BLANK_BOOST = 0.15
MAX_BLANK_RATE = 0.9

STRATEGIC_COMPLETION = 0.7

HIDDEN = '•'
SHOWN_BLANK = '_'


class LetterGuessStrategy:
    def __init__(self, llm, rng: Optional[random.Random] = None):
        self.llm = llm
        self.rng = rng or random.Random()

    def guess_letter(self, context: GameContext, target: PlayerView, config: BotConfig) -> str:
        revealed = target.revealed_letters
        tried = set(revealed) | {m for m in target.missed_letters if m != BLANK_GUESS}
        has_vowels = any(letter in VOWELS for letter in revealed)
        pattern = self.render_pattern(target)

        try:
            response = self.llm.generate(
                config.model_name,
                self.build_prompt(target, pattern, tried, has_vowels),
                {
                    **config.ollama_options,
                    'temperature': TEMPERATURES.get(config.difficulty, 0.7),
                    'num_predict': 10,
                },
                self.system_prompt(config),
            )
            letter = self.extract_letter(response, tried)
            if letter:
                logger.info('[bot-guess] bot=%s room=%s pattern=%s letter=%s',
                            config.display_name, context.room_code, pattern, letter)
                return letter
            logger.info('[bot-guess] bot=%s could not extract a letter from %r', config.display_name, response)
        except Exception as exc:
            logger.warning('[bot-guess] bot=%s model call failed: %s', config.display_name, exc)

        letter = self.select_fallback_letter(tried, has_vowels)
        logger.info('[bot-guess] bot=%s fallback letter=%s', config.display_name, letter)
        return letter

    @staticmethod
    def render_pattern(target: PlayerView) -> str:
        out = []
        for char in target.revealed_positions:
            if char is None:
                out.append(HIDDEN)
            elif char == BLANK_GUESS:
                out.append(SHOWN_BLANK)
            else:
                out.append(char)
        return ''.join(out)

    @staticmethod
    def system_prompt(config: BotConfig) -> str:
        base = 'You are an AI player in a word guessing game.'
        return f'{base} {config.personality}' if config.personality else base

    def build_prompt(self, target: PlayerView, pattern: str, tried: Set[str], has_vowels: bool) -> str:
        untried_vowels = [v for v in VOWELS if v not in tried]
        tips = []
        if not has_vowels and untried_vowels:
            tips.append(f'- No vowels revealed yet. Consider: {", ".join(untried_vowels)}')
        if target.hidden_count <= 3:
            tips.append('- The word is nearly revealed. Think about which words fit.')
        tips.append(f'- Think about English words matching "{pattern}"')
        return '\n'.join([
            "You are guessing letters in an opponent's hidden word.",
            '',
            f'Length: {target.word_length} positions',
            f'Pattern: {pattern} ({HIDDEN} = hidden, {SHOWN_BLANK} = revealed padding)',
            f'Revealed letters: {", ".join(target.revealed_letters) or "none"}',
            f'Missed letters: {", ".join(target.missed_letters) or "none"}',
            f'Hidden positions: {target.hidden_count}',
            '',
            f'Letter frequency in English, most to least common: {", ".join(LETTER_FREQUENCY)}',
            '',
            *tips,
            '',
            f'Do not guess any of these letters: {", ".join(sorted(tried)) or "none"}',
            'Reply with ONLY one uppercase letter.',
        ])

    @staticmethod
    def extract_letter(response: Optional[str], tried: Iterable[str]) -> Optional[str]:
        """Pull one untried letter out of free-form model output, or None."""
        tried = set(tried)
        text = (response or '').strip().upper()
        if not text:
            return None

        def usable(letter):
            return letter if 'A' <= letter <= 'Z' and letter not in tried else None

        if len(text) == 1:
            return usable(text)

        letters = re.findall(r'[A-Z]', text)
        if len(set(letters)) == 1:
            return usable(letters[0])

        # A standalone letter at either end, e.g. "E." or "Letter: E"
        edge = text.strip(' \t\n.,!?:;"\'`*()[]')
        if edge:
            if len(edge) == 1 or not edge[1].isalpha():
                found = usable(edge[0])
                if found:
                    return found
            if len(edge) == 1 or not edge[-2].isalpha():
                found = usable(edge[-1])
                if found:
                    return found

        for letter in letters:
            if letter not in tried:
                return letter
        return None

    @staticmethod
    def select_fallback_letter(tried: Iterable[str], has_vowels: bool = False) -> str:
        tried = set(tried)
        if not has_vowels:
            for vowel in VOWELS:
                if vowel not in tried:
                    return vowel
        for letter in LETTER_FREQUENCY:
            if letter not in tried:
                return letter
        return 'E'

    def select_target(self, context: GameContext, config: BotConfig) -> str:
        candidates = [p for p in context.players
                      if not p.is_eliminated and p.id != context.bot_player_id]
        if not candidates:
            raise NoEligibleTargets('No eligible targets')
        if len(candidates) == 1:
            return candidates[0].id

        if config.difficulty == Difficulty.EASY:
            return self.rng.choice(candidates).id
        if config.difficulty == Difficulty.HARD:
            return self.select_strategic_target(candidates)
        if self.rng.random() < 0.5:
            return self.select_strategic_target(candidates)
        return self.rng.choice(candidates).id

    @staticmethod
    def select_strategic_target(candidates) -> str:
        closest = max(candidates, key=lambda p: p.completion)
        if closest.completion > STRATEGIC_COMPLETION:
            return closest.id
        return max(candidates, key=lambda p: p.total_score).id

    def should_guess_blank(self, target: PlayerView, config: BotConfig) -> bool:
        if BLANK_GUESS in target.missed_letters:
            return False
        if target.hidden_count == 0:
            return False

        blank_found = BLANK_GUESS in target.revealed_positions
        rates = BLANK_GUESS_RATES.get(config.difficulty, BLANK_GUESS_RATES[Difficulty.MEDIUM])
        probability = rates[1] if blank_found else rates[0]
        if target.word_length >= LONG_WORD_LENGTH:
            probability += BLANK_BOOST
        if len(target.missed_letters) >= MANY_MISSES:
            probability += BLANK_BOOST
        return self.rng.random() < min(probability, MAX_BLANK_RATE)
