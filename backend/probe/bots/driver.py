"""Plays bot turns against a GameEngine.

The driver reads game state, asks the strategies (and through them the
language model) what to do, and only then calls into the engine. Model calls
therefore never run while a room lock is held.
"""

import logging
import random
from typing import Optional

from probe.errors import InvalidState, NotFound
from probe.models import GameStatus, PlayerIdentity
from probe.services.games.engine import BLANK_SELECTION
from probe.services.games.words import BLANK_GUESS
from .letter_guess import LetterGuessStrategy
from .llm import OllamaClient
from .position_selection import PositionSelectionStrategy
from .types import BotConfig, GameContext, PlayerView
from .word_choice import WordHistory, WordSelectionStrategy
from .word_guess import WordGuessStrategy

logger = logging.getLogger(__name__)


class BotDriver:
    def __init__(self, engine, letter_strategy: LetterGuessStrategy,
                 position_strategy: PositionSelectionStrategy, rng: Optional[random.Random] = None,
                 word_guess_strategy: Optional[WordGuessStrategy] = None,
                 word_selection_strategy: Optional[WordSelectionStrategy] = None):
        self.engine = engine
        self.letters = letter_strategy
        self.positions = position_strategy
        self.rng = rng or random.Random()
        self.word_guesses = word_guess_strategy or WordGuessStrategy(
            letter_strategy.llm, engine.validator, rng=self.rng)
        self.word_choices = word_selection_strategy or WordSelectionStrategy(
            letter_strategy.llm, engine.validator, rng=self.rng, max_padded_length=engine.max_padded_length)

    @classmethod
    def from_config(cls, engine, config) -> 'BotDriver':
        llm = OllamaClient(config.get('OLLAMA_URL', 'http://localhost:11434'),
                           timeout=config.get('OLLAMA_TIMEOUT_SEC', 20.0))
        history = WordHistory(config.get('BOT_WORD_HISTORY_PATH'))
        return cls(
            engine,
            LetterGuessStrategy(llm),
            PositionSelectionStrategy(llm, engine.scoring),
            word_guess_strategy=WordGuessStrategy(llm, engine.validator),
            word_selection_strategy=WordSelectionStrategy(llm, engine.validator, history,
                                                          max_padded_length=engine.max_padded_length),
        )

    def _bot(self, game, bot):
        identity = PlayerIdentity.coerce(bot)
        if not identity.is_bot:
            raise InvalidState('Player is not a bot')
        player = game.player_by_identity(identity)
        if not player:
            raise NotFound('Bot not in this game')
        return player

    @staticmethod
    def config_for(player) -> BotConfig:
        settings = player.bot_settings or {'id': player.bot_id, 'display_name': player.display_name}
        return BotConfig.from_dict(settings)

    @staticmethod
    def build_context(game, bot_player) -> GameContext:
        views = [
            PlayerView(
                id=p.key,
                display_name=p.display_name,
                word_length=len(p.padded_word or ''),
                revealed_positions=p.revealed_view(),
                missed_letters=p.missed,
                total_score=p.total_score,
                is_eliminated=p.is_eliminated,
                turn_order=p.turn_order,
                is_bot=p.is_bot,
            )
            for p in game.ordered_players
        ]
        return GameContext(
            room_code=game.room_code,
            bot_player_id=bot_player.key,
            players=views,
            current_turn_player_id=game.current_turn_player_id,
            round_number=game.round_number,
            turn_timer_seconds=game.turn_timer_seconds,
            my_word=bot_player.secret_word,
            my_padded_word=bot_player.padded_word,
            my_revealed_positions=bot_player.revealed,
        )

    def choose_word(self, room_code: str, bot) -> dict:
        """Pick and submit a secret word for a bot during word selection."""
        game = self.engine.load_game(room_code)
        player = self._bot(game, bot)
        config = self.config_for(player)
        try:
            choice = self.word_choices.select_word(self.build_context(game, player), config)
        except ValueError as exc:
            raise InvalidState(str(exc))
        logger.info('[bot-word] bot=%s room=%s length=%d padding=%d/%d', config.display_name, room_code,
                    len(choice.word), choice.front_padding, choice.back_padding)
        return self.engine.select_word(room_code, player.identity, choice.word,
                                       choice.front_padding, choice.back_padding)

    def take_turn(self, room_code: str, bot) -> dict:
        """Whatever the bot owes the game right now: an expose, a defence or its own turn."""
        game = self.engine.load_game(room_code)
        if game.status != GameStatus.ACTIVE:
            raise InvalidState('Game is not active')
        player = self._bot(game, bot)
        if game.pending_expose_player_id == player.key:
            return self.expose(room_code, player.identity)
        pending = game.selection
        if pending and pending['target_id'] == player.key:
            return self.defend(room_code, player.identity)
        if game.current_turn_player_id != player.key:
            raise InvalidState('Not this bot\'s turn')

        config = self.config_for(player)
        context = self.build_context(game, player)
        target_id = self.letters.select_target(context, config)
        target = context.player(target_id)
        if self.word_guesses.should_guess_word(context, target, config):
            word = self.word_guesses.guess_word(context, target, config)
            if word:
                return self.engine.process_word_guess(room_code, player.identity, target_id, word)
        if self.letters.should_guess_blank(target, config):
            guess = BLANK_GUESS
        else:
            guess = self.letters.guess_letter(context, target, config)
        return self.route_guess(room_code, player.identity, target_id, guess)

    def route_guess(self, room_code: str, guesser, target, letter: str) -> dict:
        """Submit a guess; the target of an ambiguous reveal chooses the position.

        A bot target chooses at once. A human target gets a pending selection
        to answer through the resolve endpoints.
        """
        target_identity = PlayerIdentity.coerce(target)
        result = self.engine.process_guess(room_code, guesser, target_identity, letter, defer_to_target=True)
        if result.get('pending_selection') and target_identity.is_bot:
            return self.defend(room_code, target_identity)
        return result

    def defend(self, room_code: str, bot) -> dict:
        """Settle the selection pending against this bot's word."""
        game = self.engine.load_game(room_code)
        player = self._bot(game, bot)
        pending = game.selection
        if not pending or pending['target_id'] != player.key:
            raise InvalidState('No selection pending for this bot')
        config = self.config_for(player)
        context = self.build_context(game, player)
        candidates = pending['candidates']
        guesser = PlayerIdentity.parse(pending['guesser_id'])
        if pending['kind'] == BLANK_SELECTION:
            position = self.positions.select_blank_position(candidates, context, config)
            return self.engine.resolve_blank_selection(room_code, guesser, player.identity, position)
        position = self.positions.select_duplicate_position(candidates, pending['letter'], context, config)
        return self.engine.resolve_duplicate_selection(room_code, guesser, player.identity, position,
                                                       pending['letter'])

    def expose(self, room_code: str, bot) -> dict:
        """Reveal the cheapest hidden position of a bot holding a pending expose."""
        game = self.engine.load_game(room_code)
        player = self._bot(game, bot)
        hidden = [i for i, shown in enumerate(player.revealed) if not shown]
        if not hidden:
            raise InvalidState('Nothing left to expose')
        position = self.positions.select_by_scoring(hidden)
        logger.info('[bot-expose] bot=%s room=%s position=%d', player.display_name, room_code, position)
        return self.engine.resolve_expose_card(room_code, player.identity, position)
