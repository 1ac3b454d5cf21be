from probe import db
from probe.errors import ValidationFailure
from probe.services.games.words import BLANK_CHAR, BLANK_GUESS
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
import json


class GameStatus:
    WAITING = 'waiting'
    WORD_SELECTION = 'word_selection'
    ACTIVE = 'active'
    COMPLETED = 'completed'

    # Lobby states in which players may still join
    NOT_STARTED = (WAITING, WORD_SELECTION)


@dataclass(frozen=True)
class PlayerIdentity:
    """Tagged player id: a human ``user:<id>`` or a bot ``bot:<id>``."""

    kind: str
    value: str

    HUMAN = 'user'
    BOT = 'bot'

    @classmethod
    def human(cls, user_id):
        return cls(cls.HUMAN, str(user_id))

    @classmethod
    def bot(cls, bot_id):
        return cls(cls.BOT, str(bot_id))

    @classmethod
    def parse(cls, key: str) -> 'PlayerIdentity':
        kind, sep, value = (key or '').partition(':')
        if not sep or not value or kind not in (cls.HUMAN, cls.BOT):
            raise ValidationFailure(f'Invalid player id: {key!r}', 'player_id')
        return cls(kind, value)

    @classmethod
    def coerce(cls, value) -> 'PlayerIdentity':
        if isinstance(value, PlayerIdentity):
            return value
        if isinstance(value, User):
            return cls.human(value.id)
        if isinstance(value, Player):
            return value.identity
        return cls.parse(value)

    @property
    def key(self) -> str:
        return f'{self.kind}:{self.value}'

    @property
    def is_bot(self) -> bool:
        return self.kind == self.BOT

    def __str__(self):
        return self.key


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'user_id', name='uq_player_game_user'),
        db.UniqueConstraint('game_id', 'bot_id', name='uq_player_game_bot'),
    )
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    bot_id = db.Column(db.String(64), nullable=True)
    is_bot = db.Column(db.Boolean, default=False, nullable=False)
    bot_display_name = db.Column(db.String(64), nullable=True)
    bot_config = db.Column(db.Text, nullable=True)  # JSON-encoded BotConfig
    turn_order = db.Column(db.Integer, nullable=False, default=0)
    secret_word = db.Column(db.String(32), nullable=True)
    secret_word_hash = db.Column(db.String(64), nullable=True)
    padded_word = db.Column(db.String(32), nullable=True)
    front_padding = db.Column(db.Integer, default=0, nullable=False)
    back_padding = db.Column(db.Integer, default=0, nullable=False)
    revealed_positions = db.Column(db.Text, default='[]', nullable=False)  # JSON list of bools
    missed_letters = db.Column(db.Text, default='[]', nullable=False)  # JSON list of letters
    total_score = db.Column(db.Integer, default=0, nullable=False)
    is_eliminated = db.Column(db.Boolean, default=False, nullable=False)

    user = db.relationship('User')
    game = db.relationship('Game', back_populates='players')

    @property
    def identity(self) -> PlayerIdentity:
        if self.is_bot:
            return PlayerIdentity.bot(self.bot_id)
        return PlayerIdentity.human(self.user_id)

    @property
    def key(self) -> str:
        return self.identity.key

    @property
    def display_name(self) -> str:
        if self.is_bot:
            return self.bot_display_name or self.bot_id
        return self.user.username if self.user else f'Player {self.user_id}'

    @property
    def revealed(self) -> List[bool]:
        return json.loads(self.revealed_positions or '[]')

    @revealed.setter
    def revealed(self, flags: List[bool]):
        self.revealed_positions = json.dumps([bool(f) for f in flags])

    @property
    def missed(self) -> List[str]:
        return json.loads(self.missed_letters or '[]')

    @missed.setter
    def missed(self, letters: List[str]):
        self.missed_letters = json.dumps(list(letters))

    @property
    def bot_settings(self) -> dict:
        return json.loads(self.bot_config) if self.bot_config else {}

    def add_missed(self, letter: str):
        missed = self.missed
        if letter not in missed:
            missed.append(letter)
            self.missed = missed

    def reveal(self, positions):
        """Mark ``positions`` revealed and re-derive elimination."""
        flags = self.revealed
        for pos in positions:
            flags[pos] = True
        self.revealed = flags
        self.is_eliminated = bool(flags) and all(flags)

    def unrevealed_positions(self, char: str) -> List[int]:
        flags = self.revealed
        return [i for i, c in enumerate(self.padded_word or '') if c == char and not flags[i]]

    def revealed_view(self) -> List[Optional[str]]:
        """Public view of the padded word: letter, 'BLANK', or None if hidden."""
        view = []
        for char, shown in zip(self.padded_word or '', self.revealed):
            if not shown:
                view.append(None)
            else:
                view.append(BLANK_GUESS if char == BLANK_CHAR else char)
        return view

    def to_dict(self, reveal_secret=False):
        data = {
            'id': self.key,
            'user_id': self.user_id,
            'bot_id': self.bot_id,
            'is_bot': self.is_bot,
            'display_name': self.display_name,
            'turn_order': self.turn_order,
            'has_selected_word': bool(self.secret_word),
            'word_length': len(self.padded_word or ''),
            'revealed_positions': self.revealed_view(),
            'missed_letters': self.missed,
            'total_score': self.total_score,
            'is_eliminated': self.is_eliminated,
        }
        if reveal_secret:
            data['secret_word'] = self.secret_word
            data['padded_word'] = self.padded_word
            data['front_padding'] = self.front_padding
            data['back_padding'] = self.back_padding
        return data


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    status = db.Column(db.String(32), default=GameStatus.WAITING, nullable=False, index=True)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    max_players = db.Column(db.Integer, default=4, nullable=False)
    turn_timer_seconds = db.Column(db.Integer, default=300, nullable=False)
    round_number = db.Column(db.Integer, default=1, nullable=False)
    current_turn_player_id = db.Column(db.String(80), nullable=True)
    current_turn_started_at = db.Column(db.Float, nullable=True)  # epoch seconds
    current_turn_card = db.Column(db.String(32), nullable=True)
    turn_card_multiplier = db.Column(db.Integer, default=1, nullable=False)
    turn_card_used = db.Column(db.Boolean, default=False, nullable=False)
    pending_expose_player_id = db.Column(db.String(80), nullable=True)
    # JSON: kind, guesser_id, target_id, letter, candidates
    pending_selection = db.Column(db.Text, nullable=True)
    selection_deadline = db.Column(db.Float, nullable=True)  # epoch seconds
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    host = db.relationship('User')
    players = db.relationship('Player', back_populates='game', order_by='Player.turn_order',
                              cascade='all, delete-orphan')
    turns = db.relationship('Turn', backref='game', order_by='Turn.turn_number',
                            cascade='all, delete-orphan')
    results = db.relationship('GameResult', backref='game', order_by='GameResult.placement',
                              cascade='all, delete-orphan')

    @property
    def ordered_players(self) -> List[Player]:
        return sorted(self.players, key=lambda p: p.turn_order)

    @property
    def active_players(self) -> List[Player]:
        return [p for p in self.ordered_players if not p.is_eliminated]

    def player_by_identity(self, identity) -> Optional[Player]:
        key = PlayerIdentity.coerce(identity).key
        for p in self.players:
            if p.key == key:
                return p
        return None

    def player_by_key(self, key: Optional[str]) -> Optional[Player]:
        if not key:
            return None
        for p in self.players:
            if p.key == key:
                return p
        return None

    @property
    def selection(self) -> Optional[dict]:
        return json.loads(self.pending_selection) if self.pending_selection else None

    @selection.setter
    def selection(self, value: Optional[dict]):
        self.pending_selection = json.dumps(value) if value else None

    def selection_view(self, viewer_key: Optional[str] = None) -> Optional[dict]:
        """Public view of the pending selection; only the target sees the candidates."""
        pending = self.selection
        if not pending:
            return None
        view = {
            'kind': pending['kind'],
            'guesser_id': pending['guesser_id'],
            'target_id': pending['target_id'],
            'letter': pending['letter'],
            'deadline': self.selection_deadline,
        }
        if viewer_key == pending['target_id']:
            view['candidates'] = pending['candidates']
        return view

    def to_dict(self, for_identity=None):
        viewer_key = PlayerIdentity.coerce(for_identity).key if for_identity else None
        return {
            'id': self.id,
            'room_code': self.room_code,
            'status': self.status,
            'host_id': self.host_id,
            'max_players': self.max_players,
            'turn_timer_seconds': self.turn_timer_seconds,
            'round_number': self.round_number,
            'current_turn_player_id': self.current_turn_player_id,
            'current_turn_started_at': self.current_turn_started_at,
            'current_turn_card': self.current_turn_card,
            'turn_card_multiplier': self.turn_card_multiplier,
            'turn_card_used': self.turn_card_used,
            'pending_expose_player_id': self.pending_expose_player_id,
            'pending_selection': self.selection_view(viewer_key),
            'players': [p.to_dict(reveal_secret=(p.key == viewer_key)) for p in self.ordered_players],
            'results': [r.to_dict() for r in self.results],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class Turn(db.Model):
    __tablename__ = 'turn'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    player_id = db.Column(db.String(80), nullable=False)  # guesser identity key
    target_player_id = db.Column(db.String(80), nullable=False)
    guessed_letter = db.Column(db.String(64), nullable=False)
    is_correct = db.Column(db.Boolean, default=False, nullable=False)
    positions_revealed = db.Column(db.Text, default='[]', nullable=False)  # JSON list of ints
    points_scored = db.Column(db.Integer, default=0, nullable=False)
    turn_number = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'target_player_id': self.target_player_id,
            'guessed_letter': self.guessed_letter,
            'is_correct': self.is_correct,
            'positions_revealed': json.loads(self.positions_revealed or '[]'),
            'points_scored': self.points_scored,
            'turn_number': self.turn_number,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class GameResult(db.Model):
    __tablename__ = 'game_result'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    final_score = db.Column(db.Integer, nullable=False)
    placement = db.Column(db.Integer, nullable=False)

    user = db.relationship('User')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'player_id': PlayerIdentity.human(self.user_id).key,
            'display_name': self.user.username if self.user else None,
            'final_score': self.final_score,
            'placement': self.placement,
        }
