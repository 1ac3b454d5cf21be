from flask import request
from flask_socketio import join_room, leave_room, emit
from probe import socketio
from typing import Dict, Any


# Socket id -> room code / player id the socket announced on join
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    return request.sid  # type: ignore


def room_name(room_code: str) -> str:
    return f"game:{room_code}"


def broadcast(room_code: str, event: str, payload: Dict[str, Any]) -> None:
    """Emit to everyone watching a game; safe to call outside a socket handler."""
    socketio.emit(event, payload, to=room_name(room_code), namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(reason=None):
    # Tell the room which player dropped, if the socket announced one on join
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or not ctx.get('player_id'):
        return
    broadcast(ctx['room_code'], 'player_disconnected', {
        'player_id': ctx['player_id'],
        'reason': str(reason) if reason is not None else None,
    })


def handle_join_game(data):
    room_code = ((data or {}).get('room_code') or '').strip()
    if not room_code:
        emit('error', {'message': 'room_code is required'})
        return
    room = room_name(room_code)
    join_room(room)
    _sid_to_ctx[_get_sid()] = {
        'room_code': room_code,
        'player_id': (data or {}).get('player_id'),
    }
    emit('joined', {'room': room})


def handle_leave_game(data):
    room_code = ((data or {}).get('room_code') or '').strip()
    if not room_code:
        emit('error', {'message': 'room_code is required'})
        return
    room = room_name(room_code)
    leave_room(room)
    ctx = _sid_to_ctx.get(_get_sid())
    if ctx and ctx.get('room_code') == room_code:
        _sid_to_ctx.pop(_get_sid(), None)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'disconnect': handle_disconnect,
        'join_game': handle_join_game,
        'leave_game': handle_leave_game,
        'ping': handle_ping,
    }
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
