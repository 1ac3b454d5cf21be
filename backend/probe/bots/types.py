from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from probe.services.games.words import BLANK_GUESS


class Difficulty:
    EASY = 'easy'
    MEDIUM = 'medium'
    HARD = 'hard'

    ALL = (EASY, MEDIUM, HARD)


@dataclass
class BotConfig:
    id: str
    display_name: str
    model_name: str
    difficulty: str = Difficulty.MEDIUM
    personality: Optional[str] = None
    ollama_options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BotConfig':
        difficulty = data.get('difficulty') or Difficulty.MEDIUM
        if difficulty not in Difficulty.ALL:
            difficulty = Difficulty.MEDIUM
        return cls(
            id=str(data['id']),
            display_name=data.get('display_name') or str(data['id']),
            model_name=data.get('model_name') or '',
            difficulty=difficulty,
            personality=data.get('personality'),
            ollama_options=dict(data.get('ollama_options') or {}),
        )


@dataclass
class PlayerView:
    """What a bot may see of another player: the public reveal state only."""

    id: str
    display_name: str
    word_length: int
    revealed_positions: List[Optional[str]]
    missed_letters: List[str]
    total_score: int = 0
    is_eliminated: bool = False
    turn_order: int = 0
    is_bot: bool = False

    @property
    def revealed_letters(self) -> List[str]:
        return [c for c in self.revealed_positions if c and c != BLANK_GUESS]

    @property
    def hidden_count(self) -> int:
        return sum(1 for c in self.revealed_positions if c is None)

    @property
    def completion(self) -> float:
        if not self.word_length:
            return 0.0
        return (self.word_length - self.hidden_count) / self.word_length


@dataclass
class GameContext:
    room_code: str
    bot_player_id: str
    players: List[PlayerView]
    current_turn_player_id: Optional[str] = None
    round_number: int = 1
    turn_timer_seconds: int = 300
    my_word: Optional[str] = None
    my_padded_word: Optional[str] = None
    my_revealed_positions: List[bool] = field(default_factory=list)

    def player(self, player_id: str) -> Optional[PlayerView]:
        for p in self.players:
            if p.id == player_id:
                return p
        return None
