import time
from typing import Set, Tuple

from probe import db, socketio
from probe.models import Game, GameStatus
from . import get_engine
from .engine import room_lock


_scheduled_turn_keys: Set[Tuple[int, str, float]] = set()
_scheduled_selection_keys: Set[Tuple[int, float]] = set()


def _scheduler_disabled(app) -> bool:
    return bool(app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'))


def _sleep(app, gid: int, label: str, delay: float) -> None:
    hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
    if hb > 0:
        slept = 0
        while slept < delay:
            step = min(hb, delay - slept)
            time.sleep(step)
            slept += step
            app.logger.info(f"[timer-heartbeat] game={gid} {label} remaining={max(0, delay - slept)}s")
    else:
        time.sleep(delay)


def _run(app, worker, *args) -> None:
    if app.config.get('TESTING'):
        worker(*args)
    else:
        socketio.start_background_task(worker, *args)


def _emit(room_code: str, event: str, payload: dict) -> None:
    socketio.emit(event, payload, to=f"game:{room_code}", namespace='/ws')
    socketio.emit('state_update', {'room_code': room_code}, to=f"game:{room_code}", namespace='/ws')


def schedule_turn_timer(app, game_id: int) -> None:
    """Schedule the timeout for the current turn of the given game.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (game_id, turn holder, turn start)
    - Fires handle_turn_timeout only if that same turn is still running,
      then schedules the next turn's timer
    """
    if _scheduler_disabled(app):
        return

    with app.app_context():
        game = Game.query.filter_by(id=game_id).first()
        if not game or game.status != GameStatus.ACTIVE or not game.current_turn_player_id:
            return

        holder = game.current_turn_player_id
        started = float(game.current_turn_started_at or 0)
        key = (game.id, holder, started)
        if key in _scheduled_turn_keys:
            app.logger.info(f"[timer-skip] game={game.id} player={holder} already scheduled")
            return
        _scheduled_turn_keys.add(key)

        delay = int(game.turn_timer_seconds or app.config.get('DEFAULT_TURN_TIMER_SEC', 300))
        room_code = game.room_code
        app.logger.info(f"[timer-set] game={game.id} player={holder} duration={delay}s")

    def _worker(gid: int, expected_holder: str, expected_started: float, delay: int):
        _sleep(app, gid, f"player={expected_holder}", delay)

        with app.app_context():
            _scheduled_turn_keys.discard((gid, expected_holder, expected_started))
            g = Game.query.filter_by(id=gid).first()
            if not g:
                return
            if (g.status != GameStatus.ACTIVE or g.current_turn_player_id != expected_holder
                    or float(g.current_turn_started_at or 0) != expected_started):
                app.logger.info(f"[timer-abort] game={gid} turn already moved on")
                return

            app.logger.info(f"[timer-fire] game={gid} player={expected_holder}")
            with room_lock(room_code):
                db.session.refresh(g)
                if g.current_turn_player_id != expected_holder:
                    return
                result = get_engine().handle_turn_timeout(room_code)
            _emit(room_code, 'turn_timeout', result)
            if not app.config.get('TESTING'):
                schedule_turn_timer(app, gid)

    _run(app, _worker, game_id, holder, started, delay)


def schedule_selection_timer(app, game_id: int) -> None:
    """Auto-resolve a pending blank/duplicate selection once its deadline passes.

    Keyed by (game_id, deadline); a selection settled or replaced in the
    meantime leaves the worker with nothing to do.
    """
    if _scheduler_disabled(app):
        return

    with app.app_context():
        game = Game.query.filter_by(id=game_id).first()
        if not game or game.status != GameStatus.ACTIVE or not game.pending_selection:
            return

        deadline = float(game.selection_deadline or 0)
        key = (game.id, deadline)
        if key in _scheduled_selection_keys:
            return
        _scheduled_selection_keys.add(key)

        delay = max(0.0, deadline - time.time())
        room_code = game.room_code
        app.logger.info(f"[selection-timer-set] game={game.id} duration={delay:.0f}s")

    def _worker(gid: int, expected_deadline: float, delay: float):
        _sleep(app, gid, 'selection', delay)

        with app.app_context():
            _scheduled_selection_keys.discard((gid, expected_deadline))
            with room_lock(room_code):
                g = Game.query.filter_by(id=gid).first()
                if not g:
                    return
                db.session.refresh(g)
                if (g.status != GameStatus.ACTIVE or not g.pending_selection
                        or float(g.selection_deadline or 0) != expected_deadline):
                    app.logger.info(f"[selection-timer-abort] game={gid} selection already settled")
                    return
                app.logger.info(f"[selection-timer-fire] game={gid}")
                result = get_engine().auto_resolve_selection(room_code)
            _emit(room_code, 'game_over' if result['game_over'] else 'letter_guessed', result)

    _run(app, _worker, game_id, deadline, delay)
