from flask import Blueprint, jsonify, request, current_app
from probe.errors import GameError, ValidationFailure
from probe.models import GameStatus, PlayerIdentity
from probe.services.games import get_engine
from probe.services.games.scheduler import schedule_selection_timer, schedule_turn_timer
from probe.socketio_events import broadcast


games = Blueprint('games', __name__)


@games.errorhandler(GameError)
def handle_game_error(err):
    current_app.logger.info(f"[rejected] path={request.path} kind={err.kind} error={err.message}")
    return jsonify(err.to_dict()), err.status_code


def _bot_driver():
    return current_app.extensions['probe.bot_driver']


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _require(data: dict, *fields):
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationFailure(f"Missing required field(s): {', '.join(missing)}", 'missing')
    return [data[f] for f in fields]


def _identity(value):
    return PlayerIdentity.parse(value)


def _announce(room_code: str, event: str = None, payload: dict = None) -> None:
    if event:
        broadcast(room_code, event, payload or {})
    broadcast(room_code, 'state_update', {'room_code': room_code})


def _restart_timer(result: dict) -> None:
    game = (result or {}).get('game') or {}
    if game.get('status') == GameStatus.ACTIVE:
        schedule_turn_timer(current_app._get_current_object(), game['id'])


def _announce_guess(room_code: str, result: dict) -> None:
    if result.get('game_over'):
        _announce(room_code, 'game_over', result)
    elif result.get('pending_selection'):
        _announce(room_code, 'selection_pending', result['pending_selection'])
        schedule_selection_timer(current_app._get_current_object(), result['game']['id'])
    else:
        _announce(room_code, 'letter_guessed', result)
    _restart_timer(result)


@games.route('/create', methods=['POST'])
def create_game():
    data = _body()
    user_id, = _require(data, 'user_id')
    state = get_engine().create_game(user_id, data.get('turn_timer_seconds'))
    return jsonify(state), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = _body()
    room_code, user_id = _require(data, 'room_code', 'user_id')
    state = get_engine().join_game(room_code, user_id)
    _announce(state['room_code'])
    return jsonify(state), 200


@games.route('/<string:room_code>/leave', methods=['POST'])
def leave_game(room_code):
    data = _body()
    if data.get('player_id'):
        who = _identity(data['player_id'])
    else:
        who, = _require(data, 'user_id')
    result = get_engine().leave_game(room_code, who)
    if result.get('game_ended'):
        _announce(room_code, 'game_over', {'final_results': result.get('final_results')})
    else:
        _announce(room_code)
        _restart_timer(result)
    return jsonify(result), 200


@games.route('/<string:room_code>/start', methods=['POST'])
def start_game(room_code):
    user_id, = _require(_body(), 'user_id')
    state = get_engine().start_game(room_code, user_id)
    _announce(room_code)
    return jsonify(state), 200


@games.route('/<string:room_code>/timer', methods=['POST'])
def update_timer(room_code):
    data = _body()
    user_id, seconds = _require(data, 'user_id', 'turn_timer_seconds')
    state = get_engine().update_timer(room_code, user_id, seconds)
    _announce(room_code)
    return jsonify(state), 200


@games.route('/<string:room_code>/bots', methods=['POST'])
def add_bot(room_code):
    data = _body()
    _require(data, 'id', 'model_name')
    state = get_engine().add_bot_player(room_code, data)
    _announce(room_code)
    return jsonify(state), 201


@games.route('/<string:room_code>/bots/<string:bot_id>', methods=['DELETE'])
def remove_bot(room_code, bot_id):
    state = get_engine().remove_bot_player(room_code, bot_id)
    _announce(room_code)
    return jsonify(state), 200


@games.route('/<string:room_code>/bots/<string:bot_id>/word', methods=['POST'])
def bot_choose_word(room_code, bot_id):
    state = _bot_driver().choose_word(room_code, PlayerIdentity.bot(bot_id))
    _announce(room_code)
    _restart_timer(state)
    return jsonify(state), 200


@games.route('/<string:room_code>/bots/<string:bot_id>/turn', methods=['POST'])
def bot_take_turn(room_code, bot_id):
    result = _bot_driver().take_turn(room_code, PlayerIdentity.bot(bot_id))
    if 'guessed_word' in result and not result['game_over']:
        _announce(room_code, 'word_guessed', result)
        _restart_timer(result)
    elif 'selected_position' in result and not result['game_over']:
        _announce(room_code, 'letter_exposed', result)
    else:
        _announce_guess(room_code, result)
    return jsonify(result), 200


@games.route('/<string:room_code>/words', methods=['POST'])
def select_word(room_code):
    data = _body()
    player_id, word = _require(data, 'player_id', 'word')
    state = get_engine().select_word(room_code, _identity(player_id), word,
                                     data.get('front_padding', 0), data.get('back_padding', 0))
    _announce(room_code)
    _restart_timer(state)
    return jsonify(state), 200


@games.route('/<string:room_code>/candidates', methods=['GET'])
def candidate_positions(room_code):
    target = request.args.get('target_player_id')
    letter = request.args.get('letter')
    if not target or not letter:
        raise ValidationFailure('target_player_id and letter are required', 'missing')
    positions = get_engine().candidate_positions(room_code, _identity(target), letter)
    return jsonify({'positions': positions}), 200


@games.route('/<string:room_code>/guess', methods=['POST'])
def guess_letter(room_code):
    data = _body()
    player_id, target, letter = _require(data, 'player_id', 'target_player_id', 'letter')
    result = _bot_driver().route_guess(room_code, _identity(player_id), _identity(target), letter)
    _announce_guess(room_code, result)
    return jsonify(result), 200


@games.route('/<string:room_code>/word-guess', methods=['POST'])
def guess_word(room_code):
    data = _body()
    player_id, target, word = _require(data, 'player_id', 'target_player_id', 'word')
    result = get_engine().process_word_guess(room_code, _identity(player_id), _identity(target), word)
    _announce(room_code, 'game_over' if result['game_over'] else 'word_guessed', result)
    _restart_timer(result)
    return jsonify(result), 200


def _guesser(data: dict):
    return _identity(data['guesser_player_id']) if data.get('guesser_player_id') else None


@games.route('/<string:room_code>/resolve/blank', methods=['POST'])
def resolve_blank(room_code):
    data = _body()
    player_id, position = _require(data, 'player_id', 'position')
    result = get_engine().resolve_blank_selection(room_code, _guesser(data), _identity(player_id), position)
    _announce(room_code, 'game_over' if result['game_over'] else 'letter_guessed', result)
    return jsonify(result), 200


@games.route('/<string:room_code>/resolve/duplicate', methods=['POST'])
def resolve_duplicate(room_code):
    data = _body()
    player_id, position = _require(data, 'player_id', 'position')
    result = get_engine().resolve_duplicate_selection(room_code, _guesser(data), _identity(player_id),
                                                      position, data.get('letter'))
    _announce(room_code, 'game_over' if result['game_over'] else 'letter_guessed', result)
    return jsonify(result), 200


@games.route('/<string:room_code>/resolve/expose', methods=['POST'])
def resolve_expose(room_code):
    data = _body()
    player_id, position = _require(data, 'player_id', 'position')
    result = get_engine().resolve_expose_card(room_code, _identity(player_id), position)
    _announce(room_code, 'game_over' if result['game_over'] else 'letter_exposed', result)
    return jsonify(result), 200


@games.route('/<string:room_code>/timeout', methods=['POST'])
def turn_timeout(room_code):
    result = get_engine().handle_turn_timeout(room_code)
    _announce(room_code, 'turn_timeout', result)
    _restart_timer(result)
    return jsonify(result), 200


@games.route('/<string:room_code>/end', methods=['POST'])
def end_game(room_code):
    data = _body()
    result = get_engine().end_game(room_code, data.get('user_id'), force=bool(data.get('force')))
    _announce(room_code, 'game_over', {'final_results': result['final_results']})
    return jsonify(result), 200


@games.route('/<string:room_code>/state', methods=['GET'])
def get_game_state(room_code):
    player_id = request.args.get('player_id')
    state = get_engine().get_game_state(room_code, _identity(player_id) if player_id else None)
    return jsonify(state), 200


@games.route('/<string:room_code>/viewer-guess', methods=['POST'])
def viewer_guess(room_code):
    data = _body()
    viewer_name, target, word = _require(data, 'viewer_name', 'target_player_id', 'word')
    result = get_engine().submit_viewer_guess(room_code, data.get('viewer_id'), viewer_name,
                                              _identity(target), word)
    return jsonify(result), 200


@games.route('/history', methods=['GET'])
def list_history():
    archiver = get_engine().archiver
    return jsonify({'games': archiver.list_history() if archiver else []}), 200


@games.route('/history/<string:room_code>', methods=['GET'])
def get_history(room_code):
    archiver = get_engine().archiver
    if not archiver:
        return jsonify({'error': 'Archive not configured'}), 404
    return jsonify(archiver.load_history(room_code)), 200
