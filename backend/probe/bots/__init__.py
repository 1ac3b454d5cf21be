"""Bot players: strategies for choosing words and guesses and for defending ambiguous reveals."""

from .types import BotConfig, Difficulty, GameContext, PlayerView
from .letter_guess import LetterGuessStrategy
from .position_selection import PositionSelectionStrategy
from .word_choice import WordChoice, WordHistory, WordSelectionStrategy
from .word_guess import WordGuessStrategy
from .llm import LLMError, OllamaClient

__all__ = [
    'BotConfig',
    'Difficulty',
    'GameContext',
    'PlayerView',
    'LetterGuessStrategy',
    'PositionSelectionStrategy',
    'WordChoice',
    'WordHistory',
    'WordSelectionStrategy',
    'WordGuessStrategy',
    'LLMError',
    'OllamaClient',
]
