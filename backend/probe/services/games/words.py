"""Secret word validation.

The dictionary is a plain word list, one word per line, loaded on first use.
"""

import os
import re
from typing import Optional, Set

from probe.errors import ValidationFailure

DEFAULT_DICTIONARY_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
                                       'data', 'words.txt')

_LETTERS = re.compile(r'^[A-Z]+$')

# Padding character stored in padded words, and the guess that targets it
BLANK_CHAR = '•'
BLANK_GUESS = 'BLANK'


def build_padded_word(word: str, front_padding: int = 0, back_padding: int = 0) -> str:
    return BLANK_CHAR * front_padding + word.upper() + BLANK_CHAR * back_padding


def is_letter_guess(guess: str) -> bool:
    return len(guess) == 1 and 'A' <= guess <= 'Z'


class WordValidator:
    def __init__(self, dictionary_path: Optional[str] = None, min_length: int = 4, max_length: int = 12):
        self.dictionary_path = dictionary_path or DEFAULT_DICTIONARY_PATH
        self.min_length = min_length
        self.max_length = max_length
        self._dictionary: Optional[Set[str]] = None

    def load_dictionary(self) -> Set[str]:
        if self._dictionary is None:
            words = set()
            with open(self.dictionary_path, 'r', encoding='utf-8') as fh:
                for line in fh:
                    word = line.strip()
                    if word and not word.startswith('#'):
                        words.add(word.upper())
            self._dictionary = words
        return self._dictionary

    def is_valid_length(self, word: str) -> bool:
        return self.min_length <= len(word) <= self.max_length

    def has_valid_characters(self, word: str) -> bool:
        return bool(_LETTERS.match(word))

    def is_valid_word(self, word: str) -> bool:
        return word.upper() in self.load_dictionary()

    def validate(self, word: str) -> None:
        """Raise ValidationFailure naming the first rule ``word`` breaks."""
        if not self.is_valid_length(word):
            raise ValidationFailure(f'Word must be {self.min_length}-{self.max_length} letters', 'length')
        if not self.has_valid_characters(word):
            raise ValidationFailure('Word contains invalid characters', 'characters')
        if not self.is_valid_word(word):
            raise ValidationFailure('Not a valid English word', 'dictionary')
