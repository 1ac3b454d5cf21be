"""Secret word choice for bots during word selection.

The bot asks its model for a word, retrying with a rising temperature until
one is in the dictionary and absent from the shared history of recent bot
words. If the model never gets there the bot draws from the dictionary
instead, preferring words that suit its difficulty.
"""

import json
import logging
import os
import random
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .types import BotConfig, Difficulty, GameContext

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
MAX_HISTORY = 500
AVOID_IN_PROMPT = 50

# Largest padding per side, by difficulty
MAX_SIDE_PADDING = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 3,
}

RARE_LETTERS = set('JQXZKVW')

DIFFICULTY_PROMPTS = {
    Difficulty.EASY: 'Choose a common, everyday English word that most people would know. '
                     'It should be simple but not too obvious.',
    Difficulty.MEDIUM: 'Choose a moderately challenging English word: not too common, not obscure.',
    Difficulty.HARD: 'Choose an uncommon or tricky English word with unusual letter patterns, '
                     'such as Q, X, Z, J or unexpected double letters.',
}

TOPICS = (
    'nature, animals, or plants',
    'technology, science, or invention',
    'food, cooking, or cuisine',
    'art, music, or creativity',
    'sports, games, or competition',
    'weather, seasons, or climate',
    'travel, geography, or places',
    'history or mythology',
    'space or astronomy',
    'buildings or construction',
)


class WordHistory:
    """Words bots have used recently, kept across games.

    With a ``path`` the history is stored as a JSON file and survives
    restarts; without one it lives in memory only.
    """

    def __init__(self, path: Optional[str] = None, max_size: int = MAX_HISTORY):
        self.path = path
        self.max_size = max_size
        self._lock = threading.Lock()
        self.entries: List[Dict[str, Optional[str]]] = self._load()

    def _load(self) -> List[Dict[str, Optional[str]]]:
        if not self.path or not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning('[word-history] could not read %s: %s', self.path, exc)
            return []
        return [e for e in data.get('words', []) if isinstance(e, dict) and e.get('word')]

    def _save(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = f'{self.path}.tmp'
        with open(tmp, 'w', encoding='utf-8') as fh:
            json.dump({'words': self.entries, 'last_updated': datetime.utcnow().isoformat()}, fh, indent=2)
        os.replace(tmp, self.path)

    @property
    def used(self) -> Set[str]:
        return {e['word'] for e in self.entries}

    def is_used(self, word: str) -> bool:
        return word.upper() in self.used

    def add(self, word: str, bot_id: Optional[str] = None, room_code: Optional[str] = None) -> None:
        word = word.upper()
        with self._lock:
            if word in self.used:
                return
            self.entries.append({
                'word': word,
                'used_at': datetime.utcnow().isoformat(),
                'bot_id': bot_id,
                'room_code': room_code,
            })
            del self.entries[:-self.max_size]
            self._save()

    def recent(self, limit: int = AVOID_IN_PROMPT) -> List[str]:
        return [e['word'] for e in self.entries[-limit:]]

    def filter_unused(self, words: Iterable[str]) -> List[str]:
        used = self.used
        return [w for w in words if w.upper() not in used]


@dataclass
class WordChoice:
    word: str
    front_padding: int = 0
    back_padding: int = 0


class WordSelectionStrategy:
    def __init__(self, llm, validator, history: Optional[WordHistory] = None,
                 rng: Optional[random.Random] = None, max_padded_length: int = 12):
        self.llm = llm
        self.validator = validator
        self.history = history if history is not None else WordHistory()
        self.rng = rng or random.Random()
        self.max_padded_length = max_padded_length

    def select_word(self, context: GameContext, config: BotConfig) -> WordChoice:
        prompt = self.build_prompt(config, self.rng.choice(TOPICS), self.history.recent())
        for attempt in range(MAX_ATTEMPTS):
            try:
                response = self.llm.generate(
                    config.model_name,
                    prompt,
                    {**config.ollama_options, 'temperature': 0.9 + attempt * 0.1},
                    self.system_prompt(config),
                )
            except Exception as exc:
                logger.warning('[bot-word] bot=%s model call failed: %s', config.display_name, exc)
                continue
            word = self.extract_word(response)
            if not word or not self._usable(word):
                logger.info('[bot-word] bot=%s rejected %r (attempt %d)', config.display_name, word, attempt + 1)
                continue
            if self.history.is_used(word):
                logger.info('[bot-word] bot=%s %s used recently, retrying', config.display_name, word)
                continue
            return self._commit(word, context, config)
        return self.fallback_word(context, config)

    def fallback_word(self, context: GameContext, config: BotConfig) -> WordChoice:
        usable = sorted(w for w in self.validator.load_dictionary() if self._usable(w))
        if not usable:
            raise ValueError('dictionary has no usable words')
        suited = [w for w in usable if self._suits(w, config.difficulty)] or usable
        fresh = self.history.filter_unused(suited) or self.history.filter_unused(usable)
        word = self.rng.choice(fresh or suited)
        logger.info('[bot-word] bot=%s dictionary fallback (%d fresh)', config.display_name, len(fresh))
        return self._commit(word, context, config)

    def _commit(self, word: str, context: GameContext, config: BotConfig) -> WordChoice:
        self.history.add(word, config.id, context.room_code)
        front, back = self.choose_padding(word, config)
        return WordChoice(word, front, back)

    def choose_padding(self, word: str, config: BotConfig) -> Tuple[int, int]:
        """Random blanks on each side, scaled down to fit the padded length limit."""
        available = self.max_padded_length - len(word)
        if available <= 0:
            return 0, 0
        side = min(MAX_SIDE_PADDING.get(config.difficulty, 2), available)
        front = self.rng.randint(0, side)
        back = self.rng.randint(0, side)
        if front + back > available:
            front = front * available // (front + back)
            back = available - front
        return front, back

    def _usable(self, word: str) -> bool:
        return (self.validator.is_valid_length(word) and self.validator.has_valid_characters(word)
                and self.validator.is_valid_word(word))

    @staticmethod
    def _suits(word: str, difficulty: str) -> bool:
        if difficulty == Difficulty.EASY:
            return len(word) <= 5
        if difficulty == Difficulty.HARD:
            return bool(RARE_LETTERS & set(word))
        return 6 <= len(word) <= 8

    @staticmethod
    def system_prompt(config: BotConfig) -> str:
        base = 'You are an AI player in a word guessing game.'
        return f'{base} {config.personality}' if config.personality else base

    def build_prompt(self, config: BotConfig, topic: str, avoid: List[str]) -> str:
        lines = [
            'You are playing a word guessing game where opponents guess letters one at a time '
            'to reveal your secret word.',
            '',
            DIFFICULTY_PROMPTS.get(config.difficulty, DIFFICULTY_PROMPTS[Difficulty.MEDIUM]),
            f'Think of a word related to {topic}.',
            '',
            f'- The word must have {self.validator.min_length} to {self.validator.max_length} letters',
            '- Only letters A-Z, no hyphens or spaces',
        ]
        if avoid:
            lines.append(f'- Do NOT use any of these recently used words: {", ".join(avoid)}')
        lines += ['', 'Reply with ONLY the word in UPPERCASE.']
        return '\n'.join(lines)

    @staticmethod
    def extract_word(response: Optional[str]) -> str:
        match = re.search(r'[A-Z]+', (response or '').upper())
        return match.group() if match else ''
