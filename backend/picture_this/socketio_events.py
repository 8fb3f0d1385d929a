from flask_socketio import join_room, leave_room, emit
from flask import request, current_app
from picture_this import socketio, engine
from picture_this.services.games.errors import GameError
from picture_this.services.games.events import GameEvent
from typing import Dict, Any


def broadcast_event(event: GameEvent) -> None:
    """Fan an engine event out to everyone in the game's room."""
    # socketio.emit works outside a request context (timers, image workers)
    socketio.emit(event.name, event.to_payload(), to=f"game:{event.code}", namespace='/ws')


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    # Mark the player disconnected; the session survives until the sweeper evicts it
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if not ctx or not ctx.get('player_id'):
        return
    try:
        engine.set_connected(ctx['game_code'], ctx['player_id'], False)
    except GameError as exc:
        current_app.logger.info(f"[ws-disconnect] game={ctx['game_code']} player={ctx['player_id']} {exc.code}")


def handle_join_game(data):
    game_code = (data or {}).get('game_code')
    player_id = (data or {}).get('player_id')
    if not game_code:
        emit('error', {'message': 'game_code is required'})
        return
    game_code = game_code.upper()
    room = f"game:{game_code}"
    join_room(room)
    _sid_to_ctx[_get_sid()] = {'game_code': game_code, 'player_id': player_id}
    if player_id:
        try:
            engine.set_connected(game_code, player_id, True)
        except GameError as exc:
            emit('error', exc.to_dict())
            return
    emit('joined', {'room': room})


def handle_leave_game(data):
    game_code = (data or {}).get('game_code')
    if not game_code:
        emit('error', {'message': 'game_code is required'})
        return
    room = f"game:{game_code.upper()}"
    leave_room(room)
    emit('left', {'room': room})
    # Explicit quit removes the player from the session
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx and ctx.get('player_id') and ctx.get('game_code') == game_code.upper():
        try:
            engine.leave_session(ctx['game_code'], ctx['player_id'])
        except GameError as exc:
            emit('error', exc.to_dict())


def handle_image_loaded(data):
    data = data or {}
    ctx = _sid_to_ctx.get(_get_sid()) or {}
    game_code = data.get('game_code') or ctx.get('game_code')
    candidate_id = data.get('player_id')
    judge_id = ctx.get('player_id')
    if not game_code or not candidate_id:
        emit('error', {'message': 'game_code and player_id are required'})
        return
    if not judge_id:
        emit('error', {'message': 'Join the game as the judge before reporting loaded images', 'code': 'not_judge'})
        return
    try:
        all_loaded = engine.mark_image_loaded(game_code, candidate_id, judge_id=judge_id)
    except GameError as exc:
        emit('error', exc.to_dict())
        return
    emit('image_loaded_ack', {'player_id': candidate_id, 'all_loaded': all_loaded})


def handle_ping(data):
    emit('pong', data or {})

# ---- socket context ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}

def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = (
        ('connect', handle_connect),
        ('disconnect', handle_disconnect),
        ('join_game', handle_join_game),
        ('leave_game', handle_leave_game),
        ('image_loaded', handle_image_loaded),
        ('ping', handle_ping),
    )
    for name, handler in handlers:
        socketio.on_event(name, handler, namespace='/ws')
        if testing:
            socketio.on_event(name, handler, namespace='/')
