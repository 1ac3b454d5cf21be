"""Turn and scoring state machine.

``GameEngine`` owns every rule of play: the lobby, word selection, letter and
word guesses, ambiguous-reveal resolution, turn cards, timeouts and
settlement. Each public method loads the game, checks its preconditions,
mutates the rows and commits before returning a plain dict for transport.

Methods that change a room run under that room's re-entrant lock so that
request threads and timer tasks never interleave their read-modify-write
sequences.
"""

import hashlib
import json
import random
import re
import string
import threading
import time
from datetime import datetime
from functools import wraps
from typing import Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from probe import db
from probe.bots.types import BotConfig
from probe.errors import CapacityError, InvalidState, NotFound, Unauthorized, ValidationFailure
from probe.models import Game, GameResult, GameStatus, Player, PlayerIdentity, Turn, User
from .archive import JsonFileArchiver, ViewerGuessLog, build_snapshot
from .cards import ADDITIONAL, BONUS_20, BONUS_POINTS, EXPOSE_LEFT, NORMAL, TurnCardDeck, get_card
from .scoring import ScoringEngine
from .words import BLANK_CHAR, BLANK_GUESS, WordValidator, build_padded_word, is_letter_guess

BLANK_MISS_PENALTY = 50
WORD_GUESS_PENALTY = 50
WORD_GUESS_EARLY_BONUS = 100
WORD_GUESS_LATE_BONUS = 50
# A correct word guess with at least this many hidden positions earns the early bonus
WORD_GUESS_EARLY_THRESHOLD = 5

# Kinds of ambiguous reveal a target may be asked to settle
BLANK_SELECTION = 'blank'
DUPLICATE_SELECTION = 'duplicate'

_room_locks: Dict[str, threading.RLock] = {}
_room_locks_guard = threading.Lock()


def room_lock(room_code: str) -> threading.RLock:
    with _room_locks_guard:
        lock = _room_locks.get(room_code)
        if lock is None:
            lock = _room_locks[room_code] = threading.RLock()
        return lock


def discard_room_lock(room_code: str) -> None:
    with _room_locks_guard:
        _room_locks.pop(room_code, None)


def serialized(method):
    """Run an engine method under the lock of the room named by its first argument.

    Rows the session already holds may predate the lock, so they are expired
    on entry and every read inside the method comes from the database.
    """
    @wraps(method)
    def wrapper(self, room_code, *args, **kwargs):
        with room_lock(room_code):
            db.session.expire_all()
            return method(self, room_code, *args, **kwargs)
    return wrapper


class GameEngine:
    def __init__(self, validator: Optional[WordValidator] = None, scoring: Optional[ScoringEngine] = None,
                 deck: Optional[TurnCardDeck] = None, archiver: Optional[JsonFileArchiver] = None,
                 rng: Optional[random.Random] = None, max_players: int = 4, min_players: int = 2,
                 default_timer: int = 300, min_timer: int = 10, max_timer: int = 1800,
                 max_padded_length: int = 12, selection_timeout: int = 30):
        self.rng = rng or random.Random()
        self.validator = validator or WordValidator()
        self.scoring = scoring or ScoringEngine()
        self.deck = deck or TurnCardDeck(rng=self.rng)
        self.archiver = archiver
        self.viewer_guesses = ViewerGuessLog()
        self.max_players = max_players
        self.min_players = min_players
        self.default_timer = default_timer
        self.min_timer = min_timer
        self.max_timer = max_timer
        self.max_padded_length = max_padded_length
        self.selection_timeout = selection_timeout

    @classmethod
    def from_config(cls, config) -> 'GameEngine':
        archive_dir = config.get('ARCHIVE_DIR')
        return cls(
            validator=WordValidator(
                config.get('DICTIONARY_PATH'),
                min_length=config.get('MIN_WORD_LENGTH', 4),
                max_length=config.get('MAX_WORD_LENGTH', 12),
            ),
            archiver=JsonFileArchiver(archive_dir) if archive_dir else None,
            max_players=config.get('MAX_PLAYERS', 4),
            min_players=config.get('MIN_PLAYERS', 2),
            default_timer=config.get('DEFAULT_TURN_TIMER_SEC', 300),
            min_timer=config.get('MIN_TURN_TIMER_SEC', 10),
            max_timer=config.get('MAX_TURN_TIMER_SEC', 1800),
            max_padded_length=config.get('MAX_PADDED_LENGTH', 12),
            selection_timeout=config.get('SELECTION_TIMEOUT_SEC', 30),
        )

    # ---- lookups ----

    def load_game(self, room_code: str) -> Game:
        game = Game.query.filter_by(room_code=(room_code or '').strip()).first()
        if not game:
            raise NotFound('Game not found')
        return game

    @staticmethod
    def _resolve_user(user) -> User:
        if isinstance(user, User):
            return user
        found = db.session.get(User, int(user)) if user is not None else None
        if not found:
            raise NotFound('User not found')
        return found

    @staticmethod
    def _require_player(game: Game, identity) -> Player:
        player = game.player_by_identity(identity)
        if not player:
            raise NotFound('Player not in this game')
        return player

    @staticmethod
    def _require_status(game: Game, *statuses: str, message: str) -> None:
        if game.status not in statuses:
            raise InvalidState(message)

    @staticmethod
    def _require_host(game: Game, user: User) -> None:
        if game.host_id != user.id:
            raise Unauthorized('Only the host can do that')

    def _require_turn(self, game: Game, guesser) -> Player:
        player = self._require_player(game, guesser)
        if game.current_turn_player_id != player.key:
            raise Unauthorized('Not your turn')
        if game.pending_expose_player_id:
            raise InvalidState('Waiting for an expose selection')
        if game.pending_selection:
            raise InvalidState('Waiting for the target to choose a position')
        return player

    def _require_target(self, game: Game, guesser: Player, target) -> Player:
        target_player = game.player_by_identity(target)
        if not target_player:
            raise NotFound('Target player not found')
        if target_player.key == guesser.key:
            raise ValidationFailure('You cannot target yourself', 'target')
        if target_player.is_eliminated:
            raise InvalidState('Target player is already eliminated')
        return target_player

    # ---- turn mechanics ----

    @staticmethod
    def _next_active_player(game: Game, current: Optional[Player]) -> Optional[Player]:
        active = game.active_players
        if not active:
            return None
        current_order = current.turn_order if current is not None else -1
        for player in active:
            if player.turn_order > current_order:
                return player
        return active[0]

    @staticmethod
    def _adjacent_player(game: Game, holder: Player, card_type: str) -> Optional[Player]:
        """Left is the next player in turn order, right the previous one."""
        active = game.active_players
        if len(active) < 2 or holder not in active:
            return None
        idx = active.index(holder)
        step = 1 if card_type == EXPOSE_LEFT else -1
        return active[(idx + step) % len(active)]

    def _pass_turn(self, game: Game, current: Optional[Player], draw_card: bool = True) -> Tuple[Optional[Player], Optional[dict]]:
        nxt = self._next_active_player(game, current)
        if nxt is None:
            return None, None
        if current is not None and nxt.turn_order <= current.turn_order:
            game.round_number = (game.round_number or 1) + 1
        if draw_card:
            return nxt, self._begin_turn(game, nxt)
        game.current_turn_player_id = nxt.key
        game.current_turn_started_at = time.time()
        return nxt, None

    def _begin_turn(self, game: Game, player: Player) -> dict:
        """Give ``player`` the turn with a freshly drawn card and apply its immediate effect."""
        card = self.deck.draw()
        game.current_turn_player_id = player.key
        game.current_turn_started_at = time.time()
        game.turn_card_used = False
        game.pending_expose_player_id = None

        affected = None
        if card.is_expose:
            affected = self._adjacent_player(game, player, card.type)
            if affected is None:
                card = get_card(NORMAL)
            else:
                game.pending_expose_player_id = affected.key

        game.current_turn_card = card.type
        game.turn_card_multiplier = card.multiplier or 1
        info = card.to_dict()
        if affected is not None:
            info['affected_player_id'] = affected.key
            info['affected_player_name'] = affected.display_name
        elif card.type == BONUS_20:
            player.total_score += BONUS_POINTS
            info['bonus_points'] = BONUS_POINTS

        current_app.logger.info(
            f"[turn] game={game.id} player={player.key} card={card.type} round={game.round_number}"
        )
        return info

    def _award_hit(self, game: Game, guesser: Player, positions: List[int]) -> int:
        points = self.scoring.calculate_score(positions)
        multiplier = game.turn_card_multiplier or 1
        if points > 0 and multiplier > 1 and not game.turn_card_used:
            points *= multiplier
            game.turn_card_used = True
        if game.current_turn_card == ADDITIONAL:
            game.turn_card_used = True
        guesser.total_score += points
        return points

    @staticmethod
    def _record_turn(game: Game, guesser: Player, target: Player, guessed: str,
                     is_correct: bool, positions: List[int], points: int) -> Turn:
        number = Turn.query.filter_by(game_id=game.id).count() + 1
        turn = Turn(
            game_id=game.id,
            player_id=guesser.key,
            target_player_id=target.key,
            guessed_letter=guessed,
            is_correct=is_correct,
            positions_revealed=json_list(positions),
            points_scored=points,
            turn_number=number,
        )
        db.session.add(turn)
        return turn

    def _settle_if_over(self, game: Game) -> Tuple[bool, Optional[List[dict]]]:
        if game.status == GameStatus.COMPLETED:
            return True, [r.to_dict() for r in game.results]
        if len(game.active_players) <= 1:
            return True, self._finalize(game)
        return False, None

    def _finalize(self, game: Game) -> List[dict]:
        game.status = GameStatus.COMPLETED
        game.completed_at = datetime.utcnow()
        game.pending_expose_player_id = None
        game.selection = None
        game.selection_deadline = None

        humans = [p for p in game.ordered_players if not p.is_bot]
        ranked = sorted(humans, key=lambda p: -(p.total_score or 0))
        results = []
        for placement, player in enumerate(ranked, start=1):
            db.session.add(GameResult(game_id=game.id, user_id=player.user_id,
                                      final_score=player.total_score, placement=placement))
            results.append({
                'user_id': player.user_id,
                'player_id': player.key,
                'display_name': player.display_name,
                'final_score': player.total_score,
                'placement': placement,
            })
        db.session.commit()
        current_app.logger.info(
            f"[game-over] game={game.id} room={game.room_code} winner={results[0]['player_id'] if results else None}"
        )
        self._archive(game, results)
        discard_room_lock(game.room_code)
        return results

    def _archive(self, game: Game, results: List[dict]) -> None:
        viewer_guesses = self.viewer_guesses.flush(game.room_code)
        if not self.archiver:
            return
        try:
            path = self.archiver.archive(build_snapshot(game, results, viewer_guesses))
            current_app.logger.info(f"[archive] game={game.id} room={game.room_code} path={path}")
        except Exception as exc:
            current_app.logger.error(f"[archive-failed] game={game.id} room={game.room_code} error={exc}")

    def rearchive(self, room_code: str):
        """Write the archive file again for a completed game."""
        if not self.archiver:
            raise InvalidState('Archiving is not configured')
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.COMPLETED, message='Game is not completed')
        try:
            viewer_guesses = self.archiver.load_history(game.room_code).get('viewer_guesses', [])
        except NotFound:
            viewer_guesses = []
        return self.archiver.archive(build_snapshot(game, [r.to_dict() for r in game.results], viewer_guesses))

    def _clamp_timer(self, seconds) -> int:
        if seconds is None:
            return self.default_timer
        try:
            seconds = int(seconds)
        except (TypeError, ValueError):
            raise ValidationFailure('Turn timer must be a number of seconds', 'timer')
        return max(self.min_timer, min(self.max_timer, seconds))

    def _generate_room_code(self, username: str) -> str:
        base = re.sub(r'[^a-z0-9]', '', (username or '').lower())[:20] or 'game'
        code = f"{base}_{datetime.now().strftime('%y%m%d%H%M')}"
        candidate = code
        while Game.query.filter_by(room_code=candidate).first():
            suffix = ''.join(self.rng.choices(string.ascii_lowercase + string.digits, k=2))
            candidate = f'{code}{suffix}'
        return candidate

    @staticmethod
    def _new_player(game: Game, turn_order: int, **fields) -> Player:
        player = Player(game_id=game.id, turn_order=turn_order, total_score=0, is_eliminated=False,
                        front_padding=0, back_padding=0, revealed_positions='[]', missed_letters='[]',
                        **fields)
        if player.is_bot is None:
            player.is_bot = False
        game.players.append(player)
        return player

    @staticmethod
    def _densify(game: Game, leaving: Player) -> None:
        order = 0
        for player in game.ordered_players:
            if player is leaving:
                continue
            player.turn_order = order
            order += 1

    # ---- lobby ----

    def create_game(self, host, turn_timer_seconds=None) -> dict:
        host = self._resolve_user(host)
        game = Game(
            room_code=self._generate_room_code(host.username),
            status=GameStatus.WAITING,
            host_id=host.id,
            max_players=self.max_players,
            turn_timer_seconds=self._clamp_timer(turn_timer_seconds),
            round_number=1,
            turn_card_multiplier=1,
            turn_card_used=False,
        )
        db.session.add(game)
        db.session.flush()
        self._new_player(game, 0, user_id=host.id)
        db.session.commit()
        current_app.logger.info(f"[create] game={game.id} room={game.room_code} host={host.id}")
        return game.to_dict(for_identity=PlayerIdentity.human(host.id))

    @serialized
    def join_game(self, room_code: str, user) -> dict:
        user = self._resolve_user(user)
        identity = PlayerIdentity.human(user.id)
        game = self.load_game(room_code)
        if game.player_by_identity(identity):
            return game.to_dict(for_identity=identity)
        self._require_status(game, *GameStatus.NOT_STARTED, message='Game already started')
        if len(game.players) >= game.max_players:
            raise CapacityError('Game is full')

        self._new_player(game, len(game.players), user_id=user.id)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with a concurrent join for the same user; theirs stands
            db.session.rollback()
            current_app.logger.info(f"[join-race] room={room_code} user={user.id}")
            game = self.load_game(room_code)
            self._require_player(game, identity)
            return game.to_dict(for_identity=identity)

        current_app.logger.info(f"[join] game={game.id} user={user.id} players={len(game.players)}")
        return game.to_dict(for_identity=identity)

    @serialized
    def leave_game(self, room_code: str, user) -> dict:
        identity = PlayerIdentity.coerce(user if isinstance(user, (str, PlayerIdentity, Player))
                                         else self._resolve_user(user))
        game = self.load_game(room_code)
        player = self._require_player(game, identity)

        if game.status == GameStatus.WAITING:
            self._densify(game, player)
            game.players.remove(player)
            db.session.delete(player)
            humans = [p for p in game.ordered_players if not p.is_bot]
            if not humans:
                current_app.logger.info(f"[leave] game={game.id} room={game.room_code} emptied, deleting")
                db.session.delete(game)
                db.session.commit()
                discard_room_lock(game.room_code)
                return {'game_ended': True, 'final_results': None, 'game': None}
            if player.user_id is not None and game.host_id == player.user_id:
                game.host_id = humans[0].user_id
                current_app.logger.info(f"[host] game={game.id} new_host={game.host_id}")
            db.session.commit()
            return {'game_ended': False, 'final_results': None, 'game': game.to_dict()}

        if game.status == GameStatus.COMPLETED:
            return {'game_ended': True, 'final_results': [r.to_dict() for r in game.results],
                    'game': game.to_dict()}

        player.is_eliminated = True
        current_app.logger.info(f"[leave] game={game.id} player={player.key} status={game.status}")
        if game.pending_expose_player_id == player.key:
            game.pending_expose_player_id = None
        pending = game.selection
        if pending and player.key in (pending['guesser_id'], pending['target_id']):
            # The ambiguous hit is void once either side is gone
            game.selection = None
            game.selection_deadline = None
        if len(game.active_players) <= 1:
            final = self._finalize(game)
            return {'game_ended': True, 'final_results': final, 'game': game.to_dict()}
        if game.status == GameStatus.WORD_SELECTION and self._all_words_selected(game):
            self._activate(game)
        elif game.current_turn_player_id == player.key:
            self._pass_turn(game, player)
        db.session.commit()
        return {'game_ended': False, 'final_results': None, 'game': game.to_dict()}

    @serialized
    def start_game(self, room_code: str, user) -> dict:
        user = self._resolve_user(user)
        game = self.load_game(room_code)
        self._require_host(game, user)
        self._require_status(game, GameStatus.WAITING, message='Game already started')
        if len(game.players) < self.min_players:
            raise InvalidState(f'Need at least {self.min_players} players to start')
        game.status = GameStatus.WORD_SELECTION
        db.session.commit()
        current_app.logger.info(f"[start] game={game.id} players={len(game.players)}")
        return game.to_dict(for_identity=PlayerIdentity.human(user.id))

    @serialized
    def update_timer(self, room_code: str, user, seconds) -> dict:
        user = self._resolve_user(user)
        game = self.load_game(room_code)
        self._require_host(game, user)
        self._require_status(game, GameStatus.WAITING, message='Timer can only change before the game starts')
        game.turn_timer_seconds = self._clamp_timer(seconds)
        db.session.commit()
        return game.to_dict()

    @serialized
    def add_bot_player(self, room_code: str, bot_config) -> dict:
        if not isinstance(bot_config, BotConfig):
            bot_config = BotConfig.from_dict(bot_config)
        identity = PlayerIdentity.bot(bot_config.id)
        game = self.load_game(room_code)
        if game.player_by_identity(identity):
            return game.to_dict()
        self._require_status(game, *GameStatus.NOT_STARTED, message='Game already started')
        if len(game.players) >= game.max_players:
            raise CapacityError('Game is full')
        self._new_player(
            game, len(game.players),
            bot_id=bot_config.id,
            bot_display_name=bot_config.display_name,
            bot_config=json.dumps(bot_config.to_dict()),
            is_bot=True,
        )
        db.session.commit()
        current_app.logger.info(f"[bot-join] game={game.id} bot={bot_config.id} model={bot_config.model_name}")
        return game.to_dict()

    @serialized
    def remove_bot_player(self, room_code: str, bot_id: str) -> dict:
        game = self.load_game(room_code)
        player = self._require_player(game, PlayerIdentity.bot(bot_id))
        self._require_status(game, GameStatus.WAITING, message='Bots can only be removed before the game starts')
        self._densify(game, player)
        game.players.remove(player)
        db.session.delete(player)
        db.session.commit()
        current_app.logger.info(f"[bot-leave] game={game.id} bot={bot_id}")
        return game.to_dict()

    # ---- word selection ----

    @staticmethod
    def _all_words_selected(game: Game) -> bool:
        return all(p.secret_word for p in game.players if not p.is_eliminated)

    def _activate(self, game: Game) -> dict:
        game.status = GameStatus.ACTIVE
        game.started_at = datetime.utcnow()
        game.round_number = 1
        self.viewer_guesses.open(game.room_code)
        first = game.active_players[0]
        info = self._begin_turn(game, first)
        current_app.logger.info(f"[active] game={game.id} first={first.key}")
        return info

    @serialized
    def select_word(self, room_code: str, player_identity, word: str,
                    front_padding: int = 0, back_padding: int = 0) -> dict:
        word = (word or '').strip().upper()
        try:
            front_padding = int(front_padding or 0)
            back_padding = int(back_padding or 0)
        except (TypeError, ValueError):
            raise ValidationFailure('Padding must be a whole number', 'padding')
        if front_padding < 0 or back_padding < 0:
            raise ValidationFailure('Padding cannot be negative', 'padding')
        if len(word) + front_padding + back_padding > self.max_padded_length:
            raise ValidationFailure(
                f'Total word length with padding cannot exceed {self.max_padded_length}', 'padding')
        self.validator.validate(word)

        game = self.load_game(room_code)
        self._require_status(game, GameStatus.WORD_SELECTION, message='Game is not in word selection phase')
        player = self._require_player(game, player_identity)
        if player.is_eliminated:
            raise InvalidState('Player has left the game')
        if player.secret_word:
            raise InvalidState('Word already selected')

        padded = build_padded_word(word, front_padding, back_padding)
        player.secret_word = word
        player.secret_word_hash = hashlib.sha256(word.encode('utf-8')).hexdigest()
        player.padded_word = padded
        player.front_padding = front_padding
        player.back_padding = back_padding
        player.revealed = [False] * len(padded)
        player.missed = []
        current_app.logger.info(f"[word] game={game.id} player={player.key} length={len(padded)}")

        turn_card_info = None
        if self._all_words_selected(game):
            turn_card_info = self._activate(game)
        db.session.commit()
        state = game.to_dict(for_identity=player.identity)
        state['turn_card_info'] = turn_card_info
        return state

    # ---- guessing ----

    def candidate_positions(self, room_code: str, target, letter: str) -> List[int]:
        """Unrevealed positions of ``target`` a guess of ``letter`` would match."""
        letter = normalize_guess(letter)
        game = self.load_game(room_code)
        player = game.player_by_identity(target)
        if not player:
            raise NotFound('Target player not found')
        return player.unrevealed_positions(BLANK_CHAR if letter == BLANK_GUESS else letter)

    @staticmethod
    def _auto_select_blank(target: Player, positions: List[int]) -> int:
        length = len(target.padded_word)
        back = [p for p in positions if p >= length - (target.back_padding or 0)]
        if back:
            return max(back)
        front = [p for p in positions if p < (target.front_padding or 0)]
        if front:
            return min(front)
        return max(positions)

    def _default_pick(self, target: Player, letter: str, positions: List[int]) -> int:
        if letter == BLANK_GUESS:
            return self._auto_select_blank(target, positions)
        return self.rng.choice(positions)

    def _guess_result(self, game: Game, guesser: Player, target: Player, letter: str, positions: List[int],
                      points: int, is_correct: bool, blank_miss_penalty: bool = False,
                      turn_card_info: Optional[dict] = None) -> dict:
        game_over, final_results = self._settle_if_over(game)
        db.session.commit()
        return {
            'is_correct': is_correct,
            'positions': positions,
            'points_scored': points,
            'blank_miss_penalty': blank_miss_penalty,
            'letter': letter,
            'guessing_player_id': guesser.key,
            'target_player_id': target.key,
            'revealed_word': target.revealed_view(),
            'word_completed': target.is_eliminated,
            'game_over': game_over,
            'final_results': final_results,
            'current_turn_player_id': game.current_turn_player_id,
            'turn_card_info': turn_card_info,
            'pending_selection': game.selection_view(),
            'game': game.to_dict(),
        }

    @serialized
    def process_guess(self, room_code: str, guesser, target, letter: str, defer_to_target: bool = False) -> dict:
        """Guess a letter, or BLANK, against ``target``'s word.

        An ambiguous hit reveals one position chosen by the default policy. With
        ``defer_to_target`` the candidates are parked on the game instead and the
        target picks one through resolve_blank_selection or
        resolve_duplicate_selection; no other turn action runs until then.
        """
        letter = normalize_guess(letter)
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        current = self._require_turn(game, guesser)
        target_player = self._require_target(game, current, target)

        is_blank = letter == BLANK_GUESS
        positions = target_player.unrevealed_positions(BLANK_CHAR if is_blank else letter)
        if len(positions) > 1:
            if defer_to_target:
                return self._open_selection(game, current, target_player, letter, positions)
            positions = [self._default_pick(target_player, letter, positions)]
        is_correct = bool(positions)

        points = 0
        blank_miss_penalty = False
        if is_correct:
            target_player.reveal(positions)
            points = self._award_hit(game, current, positions)
        elif is_blank:
            blank_miss_penalty = True
            points = -BLANK_MISS_PENALTY
            current.total_score += points

        self._record_turn(game, current, target_player, letter, is_correct, positions, points)
        current_app.logger.info(
            f"[guess] game={game.id} guesser={current.key} target={target_player.key} "
            f"letter={letter} hit={is_correct} positions={positions} points={points}"
        )

        turn_card_info = None
        if not is_correct:
            target_player.add_missed(letter)
            if game.current_turn_card == ADDITIONAL and not game.turn_card_used:
                game.turn_card_used = True
                game.current_turn_started_at = time.time()
            else:
                _, turn_card_info = self._pass_turn(game, current)

        return self._guess_result(game, current, target_player, letter, positions, points, is_correct,
                                  blank_miss_penalty, turn_card_info)

    def _open_selection(self, game: Game, guesser: Player, target: Player, letter: str,
                        candidates: List[int]) -> dict:
        game.selection = {
            'kind': BLANK_SELECTION if letter == BLANK_GUESS else DUPLICATE_SELECTION,
            'guesser_id': guesser.key,
            'target_id': target.key,
            'letter': letter,
            'candidates': list(candidates),
        }
        game.selection_deadline = time.time() + self.selection_timeout
        current_app.logger.info(
            f"[selection-open] game={game.id} guesser={guesser.key} target={target.key} "
            f"letter={letter} candidates={len(candidates)}"
        )
        return self._guess_result(game, guesser, target, letter, [], 0, True)

    def _settle_selection(self, game: Game, pending: dict, position: int) -> dict:
        """Reveal the chosen candidate and credit the guesser, who keeps the turn."""
        guesser = game.player_by_key(pending['guesser_id'])
        target = game.player_by_key(pending['target_id'])
        letter = pending['letter']
        game.selection = None
        game.selection_deadline = None

        target.reveal([position])
        points = self._award_hit(game, guesser, [position])
        self._record_turn(game, guesser, target, letter, True, [position], points)
        current_app.logger.info(
            f"[resolve] game={game.id} guesser={guesser.key} target={target.key} "
            f"guess={letter} position={position} points={points}"
        )
        return self._guess_result(game, guesser, target, letter, [position], points, True)

    def _resolve_selection(self, room_code: str, guesser, target, position, kind: str,
                           letter: Optional[str] = None) -> dict:
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        pending = game.selection
        if not pending or pending['kind'] != kind:
            raise InvalidState(f'No {kind} selection is pending')
        chooser = self._require_player(game, target)
        if chooser.key != pending['target_id']:
            raise Unauthorized('Only the target player chooses the position')
        if guesser is not None and PlayerIdentity.coerce(guesser).key != pending['guesser_id']:
            raise Unauthorized('The pending selection belongs to another guess')
        if letter is not None and letter != pending['letter']:
            raise ValidationFailure('Letter does not match the pending guess', 'letter')

        try:
            position = int(position)
        except (TypeError, ValueError):
            raise ValidationFailure('Invalid position', 'position')
        if position not in pending['candidates']:
            raise ValidationFailure('Position is not one of the candidates', 'position')
        return self._settle_selection(game, pending, position)

    @serialized
    def resolve_blank_selection(self, room_code: str, guesser, target, position) -> dict:
        """``target`` picks which of its hidden blanks a pending BLANK guess reveals.

        ``guesser`` may be None, in which case the pending guesser is taken as given.
        """
        return self._resolve_selection(room_code, guesser, target, position, BLANK_SELECTION)

    @serialized
    def resolve_duplicate_selection(self, room_code: str, guesser, target, position, letter: Optional[str] = None) -> dict:
        if letter is not None:
            letter = normalize_guess(letter)
            if letter == BLANK_GUESS:
                raise ValidationFailure('Use blank selection for BLANK guesses', 'letter')
        return self._resolve_selection(room_code, guesser, target, position, DUPLICATE_SELECTION, letter)

    def _auto_resolve(self, game: Game, pending: dict) -> dict:
        target = game.player_by_key(pending['target_id'])
        position = self._default_pick(target, pending['letter'], pending['candidates'])
        current_app.logger.info(
            f"[selection-timeout] game={game.id} target={target.key} letter={pending['letter']} position={position}"
        )
        return self._settle_selection(game, pending, position)

    @serialized
    def auto_resolve_selection(self, room_code: str) -> dict:
        """Settle a pending selection with the default policy; used when the target runs out of time."""
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        pending = game.selection
        if not pending:
            raise InvalidState('No selection is pending')
        return self._auto_resolve(game, pending)

    @serialized
    def resolve_expose_card(self, room_code: str, affected, position) -> dict:
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        identity = PlayerIdentity.coerce(affected)
        if not game.pending_expose_player_id or game.pending_expose_player_id != identity.key:
            raise Unauthorized('No expose selection pending for you')
        player = self._require_player(game, identity)
        holder = game.player_by_key(game.current_turn_player_id)

        try:
            position = int(position)
        except (TypeError, ValueError):
            raise ValidationFailure('Invalid position', 'position')
        if not 0 <= position < len(player.padded_word or ''):
            raise ValidationFailure('Invalid position', 'position')
        if player.revealed[position]:
            raise ValidationFailure('Position already revealed', 'revealed')

        player.reveal([position])
        points = self.scoring.get_position_points(position)
        if holder is not None:
            holder.total_score += points
            self._record_turn(game, holder, player, 'EXPOSE', True, [position], points)
        game.pending_expose_player_id = None
        current_app.logger.info(
            f"[expose] game={game.id} affected={player.key} position={position} "
            f"holder={game.current_turn_player_id} points={points}"
        )

        game_over, final_results = self._settle_if_over(game)
        db.session.commit()
        revealed = player.revealed_view()
        return {
            'affected_player_id': player.key,
            'selected_position': position,
            'revealed_letter': revealed[position],
            'revealed_word': revealed,
            'word_completed': player.is_eliminated,
            'points_scored': points,
            'active_player_id': game.current_turn_player_id,
            'current_turn_player_id': game.current_turn_player_id,
            'game_over': game_over,
            'final_results': final_results,
            'game': game.to_dict(),
        }

    @serialized
    def process_word_guess(self, room_code: str, guesser, target, guessed_word: str) -> dict:
        guessed = (guessed_word or '').strip().upper()
        if not guessed:
            raise ValidationFailure('Guessed word must not be empty', 'word')
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        current = self._require_turn(game, guesser)
        target_player = self._require_target(game, current, target)

        actual = (target_player.secret_word or '').upper()
        flags = target_player.revealed
        unrevealed = flags.count(False)
        is_correct = guessed == actual

        if is_correct:
            points = WORD_GUESS_EARLY_BONUS if unrevealed >= WORD_GUESS_EARLY_THRESHOLD else WORD_GUESS_LATE_BONUS
            positions = [i for i, shown in enumerate(flags) if not shown]
            target_player.reveal(range(len(flags)))
        else:
            points = -WORD_GUESS_PENALTY
            positions = []
        current.total_score += points
        self._record_turn(game, current, target_player, f'WORD:{guessed}', is_correct, positions, points)
        current_app.logger.info(
            f"[word-guess] game={game.id} guesser={current.key} target={target_player.key} "
            f"correct={is_correct} points={points}"
        )

        if not is_correct:
            # The next player starts on a plain turn; no card is drawn here
            self._pass_turn(game, current, draw_card=False)
            game.current_turn_card = NORMAL
            game.turn_card_multiplier = 1
            game.turn_card_used = False

        game_over, final_results = self._settle_if_over(game)
        db.session.commit()
        return {
            'is_correct': is_correct,
            'guessed_word': guessed,
            'actual_word': actual if is_correct or game_over else None,
            'target_player_id': target_player.key,
            'guessing_player_id': current.key,
            'points_change': points,
            'unrevealed_count': unrevealed,
            'revealed_word': target_player.revealed_view(),
            'word_completed': target_player.is_eliminated,
            'game_over': game_over,
            'final_results': final_results,
            'current_turn_player_id': game.current_turn_player_id,
            'game': game.to_dict(),
        }

    # ---- clock and settlement ----

    @serialized
    def handle_turn_timeout(self, room_code: str) -> dict:
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        holder = game.player_by_key(game.current_turn_player_id)
        if holder is None:
            raise NotFound('Current player not found')

        auto_selected = None
        pending = game.selection
        if pending:
            # The hit stands; the target just loses the choice
            auto_selected = self._auto_resolve(game, pending)['positions'][0]
        nxt = None
        if game.status == GameStatus.ACTIVE:
            nxt, _ = self._pass_turn(game, holder, draw_card=False)
            game.pending_expose_player_id = None
            db.session.commit()
        current_app.logger.info(f"[timeout] game={game.id} from={holder.key} to={nxt.key if nxt else None}")
        return {
            'timed_out_player_id': holder.key,
            'timed_out_player_name': holder.display_name,
            'next_player_id': nxt.key if nxt else None,
            'next_player_name': nxt.display_name if nxt else None,
            'auto_selected_position': auto_selected,
            'game': game.to_dict(),
        }

    @serialized
    def end_game(self, room_code: str, user=None, force: bool = False) -> dict:
        game = self.load_game(room_code)
        if not force:
            if user is None:
                raise Unauthorized('Only the host can do that')
            user = self._resolve_user(user)
            self._require_host(game, user)
        if game.status == GameStatus.COMPLETED:
            raise InvalidState('Game already completed')
        final = self._finalize(game)
        return {'final_results': final, 'game': game.to_dict()}

    def get_game_state(self, room_code: str, for_identity=None) -> dict:
        game = self.load_game(room_code)
        state = game.to_dict(for_identity=for_identity)
        state['turns'] = [t.to_dict() for t in game.turns]
        if game.status == GameStatus.COMPLETED:
            state['players_words'] = {p.key: p.secret_word for p in game.players}
        return state

    @serialized
    def submit_viewer_guess(self, room_code: str, viewer_id, viewer_name: str, target, guessed_word: str) -> dict:
        guessed = (guessed_word or '').strip().upper()
        if not guessed:
            raise ValidationFailure('Guessed word must not be empty', 'word')
        game = self.load_game(room_code)
        self._require_status(game, GameStatus.ACTIVE, message='Game is not active')
        if viewer_id is not None and game.player_by_key(PlayerIdentity.human(viewer_id).key):
            raise Unauthorized('Players cannot submit viewer guesses')
        target_player = game.player_by_identity(target)
        if not target_player:
            raise NotFound('Target player not found')

        is_correct = guessed == (target_player.secret_word or '').upper()
        self.viewer_guesses.record(game.room_code, {
            'viewer_id': viewer_id,
            'viewer_name': viewer_name,
            'target_player_id': target_player.key,
            'target_player_name': target_player.display_name,
            'guessed_word': guessed,
            'is_correct': is_correct,
            'timestamp': datetime.utcnow().isoformat(),
        })
        current_app.logger.info(f"[viewer-guess] game={game.id} viewer={viewer_id} target={target_player.key} correct={is_correct}")
        return {'is_correct': is_correct, 'target_player_name': target_player.display_name}


def normalize_guess(letter) -> str:
    letter = (letter or '').strip().upper()
    if letter != BLANK_GUESS and not is_letter_guess(letter):
        raise ValidationFailure('Guess must be a single letter A-Z or BLANK', 'letter')
    return letter


def json_list(values) -> str:
    return json.dumps([int(v) for v in values])

