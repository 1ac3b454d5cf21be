import json
import random

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import ScriptedDeck, TestConfig as BaseTestConfig, ident
from probe import create_app, db
from probe.errors import CapacityError, InvalidState, NotFound, Unauthorized, ValidationFailure
from probe.models import Game, GameResult, GameStatus, Player, PlayerIdentity, User
from probe.services.games.engine import GameEngine, _room_locks
from probe.services.games.words import BLANK_CHAR, WordValidator


def _player(engine, room, user):
    return engine.load_game(room).player_by_identity(ident(user))


def _assert_reveal_invariants(engine, room):
    for p in engine.load_game(room).players:
        assert len(p.padded_word) == len(p.revealed)
        assert p.is_eliminated == all(p.revealed)


def _word_selection_room(engine, users, count=2):
    room = engine.create_game(users[0])['room_code']
    for user in users[1:count]:
        engine.join_game(room, user)
    engine.start_game(room, users[0])
    return room


# ---- lobby ----

def test_create_game_uses_username_and_timestamp(engine, users):
    state = engine.create_game(users[0], turn_timer_seconds=5)
    assert state['room_code'].startswith('alice_')
    assert state['status'] == GameStatus.WAITING
    assert state['turn_timer_seconds'] == 10
    assert [p['id'] for p in state['players']] == [ident(users[0]).key]


def test_room_code_collision_gets_suffix(engine, users):
    first = engine.create_game(users[0])['room_code']
    second = engine.create_game(users[0])['room_code']
    assert first != second
    assert second.startswith('alice_')


def test_join_is_idempotent(engine, users):
    room = engine.create_game(users[0])['room_code']
    first = engine.join_game(room, users[1])
    second = engine.join_game(room, users[1])
    assert first == second
    assert len(engine.load_game(room).players) == 2


def test_join_race_keeps_the_row_that_won(engine, users, monkeypatch):
    room = engine.create_game(users[0])['room_code']
    game_id = engine.load_game(room).id
    bob_id = users[1].id
    real_commit = db.session.commit
    raced = []

    def racing_commit():
        if raced:
            return real_commit()
        raced.append(True)
        # A concurrent join for the same user lands first
        db.session.rollback()
        db.session.add(Player(game_id=game_id, user_id=bob_id, turn_order=1, total_score=0,
                              is_bot=False, is_eliminated=False, front_padding=0, back_padding=0,
                              revealed_positions='[]', missed_letters='[]'))
        real_commit()
        raise IntegrityError('INSERT INTO player', {}, Exception('UNIQUE constraint failed'))

    monkeypatch.setattr(db.session, 'commit', racing_commit)
    state = engine.join_game(room, users[1])
    monkeypatch.undo()

    assert raced == [True]
    assert [p['id'] for p in state['players']].count(ident(users[1]).key) == 1
    assert Player.query.filter_by(game_id=game_id, user_id=bob_id).count() == 1
    assert len(engine.load_game(room).players) == 2


def test_join_rejects_full_and_started_games(engine, users):
    room = engine.create_game(users[0])['room_code']
    for user in users[1:]:
        engine.join_game(room, user)
    extra = User(username='erin')
    db.session.add(extra)
    db.session.commit()
    with pytest.raises(CapacityError):
        engine.join_game(room, extra)

    other = engine.create_game(users[0])['room_code']
    engine.join_game(other, users[1])
    engine.start_game(other, users[0])
    engine.select_word(other, ident(users[0]), 'CAT')
    engine.select_word(other, ident(users[1]), 'DOG')
    with pytest.raises(InvalidState):
        engine.join_game(other, users[2])


def test_join_unknown_room(engine, users):
    with pytest.raises(NotFound):
        engine.join_game('nobody_0000000000', users[0])


def test_start_requires_host_and_two_players(engine, users):
    room = engine.create_game(users[0])['room_code']
    with pytest.raises(InvalidState):
        engine.start_game(room, users[0])
    engine.join_game(room, users[1])
    with pytest.raises(Unauthorized):
        engine.start_game(room, users[1])
    assert engine.start_game(room, users[0])['status'] == GameStatus.WORD_SELECTION


def test_update_timer_clamps(engine, users):
    room = engine.create_game(users[0])['room_code']
    assert engine.update_timer(room, users[0], 99999)['turn_timer_seconds'] == 1800
    assert engine.update_timer(room, users[0], 45)['turn_timer_seconds'] == 45
    with pytest.raises(Unauthorized):
        engine.update_timer(room, users[1], 45)


def test_leave_waiting_promotes_next_host(engine, users):
    room = engine.create_game(users[0])['room_code']
    engine.join_game(room, users[1])
    engine.join_game(room, users[2])
    result = engine.leave_game(room, users[0])
    assert result['game_ended'] is False
    game = engine.load_game(room)
    assert game.host_id == users[1].id
    assert [p.turn_order for p in game.ordered_players] == [0, 1]


def test_last_player_leaving_deletes_game(engine, users):
    room = engine.create_game(users[0])['room_code']
    assert engine.leave_game(room, users[0])['game_ended'] is True
    with pytest.raises(NotFound):
        engine.load_game(room)
    assert room not in _room_locks


# ---- word selection ----

def test_select_word_builds_padded_word(engine, users, start_game):
    room = start_game('CAT', 'DOG', paddings=[(2, 1), (0, 0)])
    alice = _player(engine, room, users[0])
    assert len(alice.padded_word) == 6
    assert alice.padded_word[0] == BLANK_CHAR and alice.padded_word[1] == BLANK_CHAR
    assert alice.padded_word[2:5] == 'CAT'
    assert alice.padded_word[5] == BLANK_CHAR
    assert alice.revealed == [False] * 6
    assert alice.secret_word_hash and alice.secret_word_hash != 'CAT'


def test_select_word_validation(engine, users):
    room = _word_selection_room(engine, users)
    cases = [
        (('CAT', -1, 0), 'padding'),
        (('ELEPHANT', 3, 2), 'padding'),
        (('C4T', 0, 0), 'characters'),
        (('ZZZ', 0, 0), 'dictionary'),
        (('AB', 0, 0), 'length'),
    ]
    for (word, front, back), reason in cases:
        with pytest.raises(ValidationFailure) as exc:
            engine.select_word(room, ident(users[0]), word, front, back)
        assert exc.value.reason == reason


def test_select_word_only_once_and_only_in_word_selection(engine, users):
    room = engine.create_game(users[0])['room_code']
    engine.join_game(room, users[1])
    with pytest.raises(InvalidState):
        engine.select_word(room, ident(users[0]), 'CAT')
    engine.start_game(room, users[0])
    engine.select_word(room, ident(users[0]), 'cat')
    with pytest.raises(InvalidState):
        engine.select_word(room, ident(users[0]), 'DOG')


def test_last_word_activates_game(engine, users):
    room = _word_selection_room(engine, users)
    state = engine.select_word(room, ident(users[0]), 'CAT')
    assert state['status'] == GameStatus.WORD_SELECTION
    state = engine.select_word(room, ident(users[1]), 'DOG')
    assert state['status'] == GameStatus.ACTIVE
    assert state['current_turn_player_id'] == ident(users[0]).key
    assert state['turn_card_info']['type'] == 'normal'


# ---- guessing ----

def test_hit_keeps_turn(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    result = engine.process_guess(room, ident(users[0]), ident(users[1]), 'd')
    assert result['is_correct'] is True
    assert result['positions'] == [0]
    assert result['points_scored'] == 5
    assert result['current_turn_player_id'] == ident(users[0]).key
    assert result['revealed_word'] == ['D', None, None]


def test_miss_rotates_and_wraps(engine, users, start_game):
    room = start_game('CAT', 'DOG', 'JOB')
    a, b, c = (ident(u) for u in users[:3])
    assert engine.process_guess(room, a, b, 'Z')['current_turn_player_id'] == b.key
    assert engine.process_guess(room, b, c, 'Z')['current_turn_player_id'] == c.key
    result = engine.process_guess(room, c, a, 'Z')
    assert result['current_turn_player_id'] == a.key
    assert engine.load_game(room).round_number == 2


def test_miss_records_letter_once(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'Z')
    engine.process_guess(room, b, a, 'Q')
    engine.process_guess(room, a, b, 'Z')
    assert _player(engine, room, users[1]).missed == ['Z']


def test_blank_miss_costs_fifty(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    result = engine.process_guess(room, ident(users[0]), ident(users[1]), 'BLANK')
    assert result['is_correct'] is False
    assert result['blank_miss_penalty'] is True
    assert result['points_scored'] == -50
    assert _player(engine, room, users[0]).total_score == -50
    bob = _player(engine, room, users[1])
    assert bob.revealed == [False, False, False]
    assert 'BLANK' in bob.missed


def test_blank_disambiguation_order(engine, users, start_game):
    room = start_game('CAT', 'ELEPHANT', paddings=[(0, 0), (2, 2)])
    a, b = ident(users[0]), ident(users[1])
    picks = [engine.process_guess(room, a, b, 'BLANK')['positions'] for _ in range(3)]
    assert picks == [[11], [10], [0]]
    assert _player(engine, room, users[0]).total_score == 15 + 10 + 5


def test_duplicate_letter_reveals_one_occurrence(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    result = engine.process_guess(room, ident(users[0]), ident(users[1]), 'A')
    assert len(result['positions']) == 1
    assert result['positions'][0] in (1, 3, 5)
    assert engine.candidate_positions(room, ident(users[1]), 'A') == \
        [p for p in (1, 3, 5) if p != result['positions'][0]]


def test_guess_preconditions(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    with pytest.raises(Unauthorized):
        engine.process_guess(room, b, a, 'C')
    with pytest.raises(ValidationFailure):
        engine.process_guess(room, a, a, 'C')
    with pytest.raises(ValidationFailure):
        engine.process_guess(room, a, b, 'AB')
    with pytest.raises(NotFound):
        engine.process_guess(room, a, PlayerIdentity.bot('ghost'), 'C')


def test_full_game_to_completion(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])

    result = engine.process_guess(room, a, b, 'C')
    assert result['is_correct'] is False
    assert result['current_turn_player_id'] == b.key
    assert result['turn_card_info'] is not None
    assert 'C' in _player(engine, room, users[1]).missed

    result = engine.process_guess(room, b, a, 'D')
    assert result['current_turn_player_id'] == a.key

    result = engine.process_guess(room, a, b, 'D')
    assert result['positions'] == [0]
    assert result['points_scored'] == 5
    assert result['current_turn_player_id'] == a.key

    engine.process_guess(room, a, b, 'O')
    result = engine.process_guess(room, a, b, 'G')
    assert result['game_over'] is True
    assert result['word_completed'] is True
    assert [r['player_id'] for r in result['final_results']] == [a.key, b.key]
    assert [r['final_score'] for r in result['final_results']] == [30, 0]

    game = engine.load_game(room)
    assert game.status == GameStatus.COMPLETED
    assert not game.player_by_identity(a).is_eliminated
    assert GameResult.query.filter_by(game_id=game.id).count() == 2
    _assert_reveal_invariants(engine, room)


def test_turn_log_is_numbered(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'D')
    engine.process_guess(room, a, b, 'Z')
    turns = engine.get_game_state(room)['turns']
    assert [t['turn_number'] for t in turns] == [1, 2]
    assert [t['is_correct'] for t in turns] == [True, False]
    assert turns[0]['positions_revealed'] == [0]


# ---- word guesses ----

def test_correct_word_guess_eliminates_target(engine, users, start_game):
    room = start_game('CAT', 'ELEPHANT', 'JOB')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'L')
    engine.process_guess(room, a, b, 'P')
    before = _player(engine, room, users[0]).total_score

    result = engine.process_word_guess(room, a, b, 'elephant')
    assert result['is_correct'] is True
    assert result['unrevealed_count'] == 6
    assert result['points_change'] == 100
    assert result['word_completed'] is True
    assert result['current_turn_player_id'] == a.key
    assert result['game_over'] is False
    assert _player(engine, room, users[0]).total_score == before + 100
    assert engine.get_game_state(room)['turns'][-1]['guessed_letter'] == 'WORD:ELEPHANT'


def test_late_correct_word_guess_earns_fifty(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    result = engine.process_word_guess(room, ident(users[0]), ident(users[1]), 'DOG')
    assert result['points_change'] == 50
    assert result['game_over'] is True


def test_wrong_word_guess_rotates_without_revealing(engine, users, start_game):
    room = start_game('CAT', 'DOG', 'JOB')
    a, b = ident(users[0]), ident(users[1])
    result = engine.process_word_guess(room, a, b, 'DIG')
    assert result['is_correct'] is False
    assert result['points_change'] == -50
    assert result['actual_word'] is None
    assert result['current_turn_player_id'] == b.key
    assert _player(engine, room, users[1]).revealed == [False, False, False]
    assert engine.load_game(room).current_turn_card == 'normal'


# ---- turn cards ----

def test_multiplier_applies_to_first_hit_only(engine, users, start_game):
    engine.deck = ScriptedDeck('triple')
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    assert engine.process_guess(room, a, b, 'D')['points_scored'] == 15
    assert engine.process_guess(room, a, b, 'O')['points_scored'] == 10


def test_miss_hands_next_player_a_fresh_card(engine, users, start_game):
    engine.deck = ScriptedDeck('double', 'additional')
    room = start_game('CAT', 'DOG', 'JOB')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'BLANK')
    game = engine.load_game(room)
    assert game.current_turn_player_id == b.key
    assert game.current_turn_card == 'additional'


def test_additional_card_grants_one_extra_miss(engine, users, start_game):
    engine.deck = ScriptedDeck('additional')
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    assert engine.process_guess(room, a, b, 'Z')['current_turn_player_id'] == a.key
    assert engine.load_game(room).turn_card_used is True
    assert engine.process_guess(room, a, b, 'Q')['current_turn_player_id'] == b.key


def test_additional_card_spent_by_hit(engine, users, start_game):
    engine.deck = ScriptedDeck('additional')
    room = start_game('CAT', 'DOG')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'D')
    assert engine.process_guess(room, a, b, 'Z')['current_turn_player_id'] == b.key


def test_bonus_card_credits_immediately(engine, users, start_game):
    engine.deck = ScriptedDeck('bonus_20', 'bonus_20')
    room = start_game('CAT', 'DOG')
    assert _player(engine, room, users[0]).total_score == 20
    result = engine.process_guess(room, ident(users[0]), ident(users[1]), 'Z')
    assert result['turn_card_info']['bonus_points'] == 20
    assert _player(engine, room, users[1]).total_score == 20


def test_expose_left_targets_next_player(engine, users, start_game):
    engine.deck = ScriptedDeck('expose_left')
    room = start_game('CAT', 'DOG', 'JOB')
    a, b, c = (ident(u) for u in users[:3])
    game = engine.load_game(room)
    assert game.pending_expose_player_id == b.key

    with pytest.raises(InvalidState):
        engine.process_guess(room, a, c, 'J')
    with pytest.raises(Unauthorized):
        engine.resolve_expose_card(room, c, 0)
    with pytest.raises(ValidationFailure):
        engine.resolve_expose_card(room, b, 7)

    result = engine.resolve_expose_card(room, b, 2)
    assert result['revealed_letter'] == 'G'
    assert result['points_scored'] == 15
    assert result['active_player_id'] == a.key
    assert _player(engine, room, users[0]).total_score == 15
    assert engine.load_game(room).pending_expose_player_id is None
    assert engine.process_guess(room, a, c, 'J')['is_correct'] is True


def test_expose_right_targets_previous_player(engine, users, start_game):
    engine.deck = ScriptedDeck('expose_right')
    room = start_game('CAT', 'DOG', 'JOB')
    assert engine.load_game(room).pending_expose_player_id == ident(users[2]).key


# ---- target-chosen positions ----

def test_ambiguous_guess_waits_for_target(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    result = engine.process_guess(room, a, b, 'A', defer_to_target=True)
    assert result['is_correct'] is True
    assert result['positions'] == []
    assert result['points_scored'] == 0
    assert result['current_turn_player_id'] == a.key
    pending = result['pending_selection']
    assert pending['kind'] == 'duplicate'
    assert (pending['guesser_id'], pending['target_id'], pending['letter']) == (a.key, b.key, 'A')
    assert 'candidates' not in pending
    assert _player(engine, room, users[1]).revealed == [False] * 6
    with pytest.raises(InvalidState):
        engine.process_guess(room, a, b, 'N')
    with pytest.raises(InvalidState):
        engine.process_word_guess(room, a, b, 'BANANA')


def test_only_target_sees_candidates(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'A', defer_to_target=True)
    assert engine.get_game_state(room, for_identity=b)['pending_selection']['candidates'] == [1, 3, 5]
    assert 'candidates' not in engine.get_game_state(room, for_identity=a)['pending_selection']


def test_target_resolves_duplicate_with_multiplier(engine, users, start_game):
    engine.deck = ScriptedDeck('double')
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'a', defer_to_target=True)
    result = engine.resolve_duplicate_selection(room, a, b, 5, 'a')
    assert result['positions'] == [5]
    assert result['points_scored'] == 30
    assert result['current_turn_player_id'] == a.key
    assert result['pending_selection'] is None
    assert _player(engine, room, users[0]).total_score == 30
    turns = engine.get_game_state(room)['turns']
    assert len(turns) == 1
    assert turns[0]['positions_revealed'] == [5]
    # a second guess may go ahead now
    assert engine.process_guess(room, a, b, 'Z')['current_turn_player_id'] == b.key


def test_target_resolves_blank(engine, users, start_game):
    room = start_game('CAT', 'DOG', paddings=[(0, 0), (1, 1)])
    a, b = ident(users[0]), ident(users[1])
    result = engine.process_guess(room, a, b, 'BLANK', defer_to_target=True)
    assert result['pending_selection']['kind'] == 'blank'
    assert engine.get_game_state(room, for_identity=b)['pending_selection']['candidates'] == [0, 4]
    result = engine.resolve_blank_selection(room, None, b, 0)
    assert result['positions'] == [0]
    assert result['points_scored'] == 5
    assert result['revealed_word'][0] == 'BLANK'


def test_resolve_rejects_guesser_and_bystanders(engine, users, start_game):
    room = start_game('CAT', 'BANANA', 'JOB')
    a, b, c = (ident(u) for u in users[:3])
    engine.process_guess(room, a, b, 'A', defer_to_target=True)
    with pytest.raises(Unauthorized):
        engine.resolve_duplicate_selection(room, a, a, 5)
    with pytest.raises(Unauthorized):
        engine.resolve_duplicate_selection(room, a, c, 5)
    with pytest.raises(Unauthorized):
        engine.resolve_duplicate_selection(room, c, b, 5)
    assert engine.load_game(room).selection is not None


def test_resolve_rejects_positions_outside_candidates(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'A', defer_to_target=True)
    for position in (2, 0, 99, 'x'):
        with pytest.raises(ValidationFailure) as exc:
            engine.resolve_duplicate_selection(room, a, b, position)
        assert exc.value.reason == 'position'
    with pytest.raises(ValidationFailure) as exc:
        engine.resolve_duplicate_selection(room, a, b, 1, 'N')
    assert exc.value.reason == 'letter'
    assert _player(engine, room, users[1]).revealed == [False] * 6


def test_resolve_without_pending_selection(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    with pytest.raises(InvalidState):
        engine.resolve_duplicate_selection(room, a, b, 1, 'A')
    with pytest.raises(InvalidState):
        engine.auto_resolve_selection(room)
    engine.process_guess(room, a, b, 'A', defer_to_target=True)
    with pytest.raises(InvalidState):
        engine.resolve_blank_selection(room, a, b, 1)


def test_auto_resolve_blank_prefers_back_padding(engine, users, start_game):
    room = start_game('CAT', 'DOG', paddings=[(0, 0), (1, 1)])
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'BLANK', defer_to_target=True)
    result = engine.auto_resolve_selection(room)
    assert result['positions'] == [4]
    assert result['points_scored'] == 10
    assert result['current_turn_player_id'] == a.key
    assert engine.load_game(room).selection_deadline is None


def test_timeout_settles_pending_selection_then_passes(engine, users, start_game):
    room = start_game('CAT', 'BANANA')
    a, b = ident(users[0]), ident(users[1])
    engine.process_guess(room, a, b, 'A', defer_to_target=True)
    result = engine.handle_turn_timeout(room)
    assert result['auto_selected_position'] in (1, 3, 5)
    assert result['next_player_id'] == b.key
    game = engine.load_game(room)
    assert game.selection is None
    assert game.player_by_identity(a).total_score > 0
    assert game.player_by_identity(b).revealed.count(True) == 1


def test_leaving_target_voids_pending_selection(engine, users, start_game):
    room = start_game('CAT', 'BANANA', 'JOB')
    a, c = ident(users[0]), ident(users[2])
    engine.process_guess(room, a, ident(users[1]), 'A', defer_to_target=True)
    engine.leave_game(room, users[1])
    game = engine.load_game(room)
    assert game.selection is None
    assert game.current_turn_player_id == a.key
    assert engine.process_guess(room, a, c, 'J')['positions'] == [0]


# ---- timeouts, leaving, settlement ----

def test_timeout_moves_turn_only(engine, users, start_game):
    engine.deck = ScriptedDeck('triple')
    room = start_game('CAT', 'DOG')
    result = engine.handle_turn_timeout(room)
    assert result['timed_out_player_id'] == ident(users[0]).key
    assert result['next_player_id'] == ident(users[1]).key
    game = engine.load_game(room)
    assert game.current_turn_card == 'triple'
    assert game.turn_card_multiplier == 3


def test_leaving_turn_holder_passes_turn(engine, users, start_game):
    room = start_game('CAT', 'DOG', 'JOB')
    result = engine.leave_game(room, users[0])
    assert result['game_ended'] is False
    game = engine.load_game(room)
    assert game.player_by_identity(ident(users[0])).is_eliminated
    assert game.current_turn_player_id == ident(users[1]).key


def test_leaving_two_player_game_ends_it(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    result = engine.leave_game(room, users[1])
    assert result['game_ended'] is True
    assert result['final_results'][0]['player_id'] == ident(users[0]).key
    assert engine.load_game(room).status == GameStatus.COMPLETED


def test_end_game_host_only_and_once(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    with pytest.raises(Unauthorized):
        engine.end_game(room, users[1])
    result = engine.end_game(room, users[0])
    assert result['game']['status'] == GameStatus.COMPLETED
    # equal scores keep turn order
    assert [r['placement'] for r in result['final_results']] == [1, 2]
    assert result['final_results'][0]['player_id'] == ident(users[0]).key
    with pytest.raises(InvalidState):
        engine.end_game(room, force=True)


def test_end_game_without_user_needs_force(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    with pytest.raises(Unauthorized):
        engine.end_game(room)
    assert engine.load_game(room).status == GameStatus.ACTIVE
    assert engine.end_game(room, force=True)['game']['status'] == GameStatus.COMPLETED


def test_completed_game_drops_its_lock(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    engine.process_guess(room, ident(users[0]), ident(users[1]), 'D')
    assert room in _room_locks
    engine.end_game(room, users[0])
    assert room not in _room_locks


def test_settlement_ranks_humans_by_score(engine, users, start_game):
    room = start_game('CAT', 'DOG', 'JOB')
    a, b, c = (ident(u) for u in users[:3])
    engine.process_guess(room, a, b, 'Z')
    engine.process_guess(room, b, c, 'B')
    result = engine.end_game(room, force=True)
    assert [r['player_id'] for r in result['final_results']] == [b.key, a.key, c.key]


def test_archive_written_with_viewer_guesses(engine, users, start_game, archive_dir):
    room = start_game('CAT', 'DOG')
    with pytest.raises(Unauthorized):
        engine.submit_viewer_guess(room, users[0].id, 'alice', ident(users[1]), 'DOG')
    outcome = engine.submit_viewer_guess(room, users[2].id, 'cara', ident(users[1]), 'dog')
    assert outcome == {'is_correct': True, 'target_player_name': 'bob'}

    engine.end_game(room, users[0])
    files = list(archive_dir.glob(f'{room}_*.json'))
    assert len(files) == 1
    data = json.loads(files[0].read_text())
    assert data['room_code'] == room
    assert [p['secret_word'] for p in data['players']] == ['CAT', 'DOG']
    assert data['viewer_guesses'][0]['viewer_name'] == 'cara'
    assert engine.viewer_guesses.get(room) == []
    assert engine.archiver.load_history(room)['room_code'] == room


def test_archive_failure_does_not_block_completion(engine, users, start_game):
    class BrokenArchiver:
        def archive(self, snapshot):
            raise OSError('disk full')

    engine.archiver = BrokenArchiver()
    room = start_game('CAT', 'DOG')
    result = engine.end_game(room, users[0])
    assert result['game']['status'] == GameStatus.COMPLETED
    assert Game.query.filter_by(room_code=room).first().status == GameStatus.COMPLETED


def test_state_hides_other_secret_words(engine, users, start_game):
    room = start_game('CAT', 'DOG')
    state = engine.get_game_state(room, ident(users[0]))
    mine, theirs = state['players']
    assert mine['secret_word'] == 'CAT'
    assert 'secret_word' not in theirs
    assert 'players_words' not in state


# ---- concurrency ----

def test_serialized_calls_reread_rows_changed_elsewhere(tmp_path):
    class FileConfig(BaseTestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'games.db'}"

    app = create_app(FileConfig)
    eng = GameEngine(validator=WordValidator(min_length=3), deck=ScriptedDeck(), rng=random.Random(7))
    with app.app_context():
        db.create_all()
        alice, bob = User(username='alice'), User(username='bob')
        db.session.add_all([alice, bob])
        db.session.commit()
        room = eng.create_game(alice)['room_code']
        eng.join_game(room, bob)
        eng.start_game(room, alice)
        eng.select_word(room, ident(alice), 'CAT')
        eng.select_word(room, ident(bob), 'DOG')
        a, b = ident(alice), ident(bob)
        assert eng.load_game(room).current_turn_player_id == a.key

        # Another request, with its own session, times the turn out
        with app.app_context():
            assert eng.handle_turn_timeout(room)['next_player_id'] == b.key

        with pytest.raises(Unauthorized):
            eng.process_guess(room, a, b, 'D')
        assert eng.load_game(room).current_turn_player_id == b.key
        assert eng.process_guess(room, b, a, 'C')['positions'] == [0]

        db.session.remove()
        db.drop_all()
