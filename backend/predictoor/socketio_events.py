from flask_socketio import join_room, leave_room, emit
from flask import request
from predictoor import socketio
from predictoor.engine import get_engine
from predictoor.services.sync import ROUNDS_ROOM, round_room
from typing import Dict, Any


# Socket context: sid -> {'participant_id', 'round_id'}
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def handle_connect():
    # Everyone receives round, results and leaderboard broadcasts
    join_room(ROUNDS_ROOM)
    emit('connected', {
        'message': 'Connected to /ws',
        'round': get_engine().gateway.current_round_snapshot(),
    })


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx:
        get_engine().gateway.unregister_socket(_get_sid(), ctx.get('participant_id'))


def handle_join_round(data):
    data = data or {}
    round_id = data.get('round_id')
    participant_id = data.get('participant_id')
    if not isinstance(round_id, int) or isinstance(round_id, bool):
        emit('error', {'message': 'round_id is required', 'code': 'InvalidValue'})
        return
    sid = _get_sid()
    gateway = get_engine().gateway
    previous = _sid_to_ctx.get(sid)
    if previous:
        leave_room(round_room(previous['round_id']))
        gateway.unregister_socket(sid, previous.get('participant_id'))
    room = round_room(round_id)
    join_room(room)
    # Own submissions are skipped when ghosts are broadcast to this room
    _sid_to_ctx[sid] = {'round_id': round_id, 'participant_id': participant_id}
    gateway.register_socket(sid, participant_id)
    emit('joined', {'room': room})


def handle_leave_round(data):
    round_id = (data or {}).get('round_id')
    if round_id is None:
        emit('error', {'message': 'round_id is required', 'code': 'InvalidValue'})
        return
    sid = _get_sid()
    room = round_room(round_id)
    leave_room(room)
    ctx = _sid_to_ctx.pop(sid, None)
    if ctx:
        get_engine().gateway.unregister_socket(sid, ctx.get('participant_id'))
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    namespaces = ['/ws', '/'] if testing else ['/ws']
    for namespace in namespaces:
        socketio.on_event('connect', handle_connect, namespace=namespace)
        socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
        socketio.on_event('join_round', handle_join_round, namespace=namespace)
        socketio.on_event('leave_round', handle_leave_round, namespace=namespace)
        socketio.on_event('ping', handle_ping, namespace=namespace)
