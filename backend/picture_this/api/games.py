from flask import Blueprint, jsonify, request, current_app
from picture_this import engine
from picture_this.models import ArchivedSession
from picture_this.services.games.errors import (
    GameError,
    ConfigurationError,
    ResourceExhaustedError,
    SessionNotFound,
    PlayerNotFound,
    PlayerNotInSession,
    NotHost,
    NotJudge,
    JudgeCannotSubmit,
    InvalidSelectionShape,
    UnknownCandidate,
    UnknownSlot,
)
import time
import uuid


games = Blueprint('games', __name__)

_last_controller_action: dict[str, float] = {}

# Most specific first; anything else in the StateError family is a 409
_STATUS_BY_ERROR = (
    ((SessionNotFound, PlayerNotFound, PlayerNotInSession), 404),
    ((NotHost, NotJudge, JudgeCannotSubmit), 403),
    ((InvalidSelectionShape, UnknownCandidate, UnknownSlot, ConfigurationError), 400),
    ((ResourceExhaustedError,), 503),
)


def _status_for(exc: GameError) -> int:
    for classes, status in _STATUS_BY_ERROR:
        if isinstance(exc, classes):
            return status
    return 409


@games.errorhandler(GameError)
def handle_game_error(exc: GameError):
    status = _status_for(exc)
    current_app.logger.info(f"[api-error] {exc.code} status={status} {exc.message}")
    return jsonify(exc.to_dict()), status


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _debounced(game_code: str, action: str) -> bool:
    try:
        debounce_ms = int(current_app.config.get('CONTROLLER_DEBOUNCE_MS', 0))
    except Exception:
        debounce_ms = 0
    if debounce_ms <= 0:
        return False
    key = f"{game_code.upper()}:{action}"
    now = time.time() * 1000
    last = _last_controller_action.get(key, 0)
    if now - last < debounce_ms:
        return True
    _last_controller_action[key] = now
    return False


def _int_or_default(value, default):
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


@games.route('/create', methods=['POST'])
def create_game():
    data = _payload()
    host_id = data.get('player_id') or str(uuid.uuid4())
    session = engine.create_session(
        host_id,
        host_name=data.get('name'),
        host_avatar=data.get('avatar'),
        max_rounds=_int_or_default(data.get('max_rounds'), current_app.config.get('DEFAULT_MAX_ROUNDS', 5)),
        max_players=_int_or_default(data.get('max_players'), current_app.config.get('DEFAULT_MAX_PLAYERS', 8)),
    )
    return jsonify({
        'message': 'New game created!',
        'game_code': session.code,
        'player_id': host_id,
        'game': session.to_dict(viewer_id=host_id),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = _payload()
    game_code = data.get('game_code')
    name = data.get('name')
    if not all([game_code, name]):
        return jsonify({'error': 'Game code and player name are required', 'code': 'bad_request'}), 400
    player_id = data.get('player_id') or str(uuid.uuid4())
    session = engine.join_session(game_code, player_id, name=name, avatar=data.get('avatar'))
    player = session.find_player(player_id)
    return jsonify({'game_code': session.code, **player.to_dict(include_hand=True)}), 201


@games.route('/<string:game_code>/leave', methods=['POST'])
def leave_game(game_code):
    player_id = _payload().get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required', 'code': 'bad_request'}), 400
    session = engine.leave_session(game_code, player_id)
    return jsonify({'message': 'Left game', 'game_ended': session is None}), 200


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    return jsonify(engine.snapshot(game_code, viewer_id=request.args.get('player_id'))), 200


@games.route('/<string:game_code>/start', methods=['POST'])
def start_game(game_code):
    player_id = _payload().get('player_id')
    if _debounced(game_code, 'start'):
        return jsonify({'message': 'debounced'}), 202
    engine.start_game(game_code, player_id)
    return jsonify(engine.snapshot(game_code, viewer_id=player_id)), 200


@games.route('/<string:game_code>/advance', methods=['POST'])
def advance_game(game_code):
    player_id = _payload().get('player_id')
    if _debounced(game_code, 'advance'):
        return jsonify({'message': 'debounced'}), 202
    fired = engine.advance(game_code, player_id)
    state = engine.snapshot(game_code, viewer_id=player_id)
    state['advanced'] = fired
    return jsonify(state), 200


@games.route('/<string:game_code>/selections', methods=['POST'])
def submit_selection(game_code):
    data = _payload()
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required', 'code': 'bad_request'}), 400
    engine.submit_selection(game_code, player_id, data.get('cards'), data.get('art_style'))
    return jsonify({'message': 'Selection received'}), 201


@games.route('/<string:game_code>/images/<string:candidate_id>/loaded', methods=['POST'])
def image_loaded(game_code, candidate_id):
    judge_id = _payload().get('judge_id')
    if not judge_id:
        return jsonify({'error': 'judge_id is required', 'code': 'bad_request'}), 400
    all_loaded = engine.mark_image_loaded(game_code, candidate_id, judge_id=judge_id)
    return jsonify({'all_loaded': all_loaded}), 200


@games.route('/<string:game_code>/ranking', methods=['POST'])
def select_rank(game_code):
    data = _payload()
    engine.select_rank(game_code, data.get('judge_id'), data.get('slot'), data.get('player_id'))
    return jsonify(engine.snapshot(game_code)['ranking']), 200


@games.route('/<string:game_code>/ranking/<string:slot>', methods=['DELETE'])
def deselect_rank(game_code, slot):
    engine.deselect_rank(game_code, _payload().get('judge_id') or request.args.get('judge_id'), slot)
    return jsonify(engine.snapshot(game_code)['ranking']), 200


@games.route('/<string:game_code>/ranking/submit', methods=['POST'])
def submit_ranking(game_code):
    data = _payload()
    judge_id = data.get('judge_id')
    if 'first_place_id' in data:
        engine.submit_judge_ranking(game_code, judge_id, data.get('first_place_id'), data.get('second_place_id'))
    else:
        engine.finalize_ranking(game_code, judge_id)
    return jsonify(engine.snapshot(game_code, viewer_id=judge_id)), 200


@games.route('/<string:game_code>/end', methods=['POST'])
def end_game(game_code):
    player_id = _payload().get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required', 'code': 'bad_request'}), 400
    engine.end_session(game_code, player_id=player_id)
    return jsonify({'message': 'Session ended'}), 200


@games.route('/stats', methods=['GET'])
def stats():
    return jsonify(engine.statistics()), 200


@games.route('/archive/<string:game_code>', methods=['GET'])
def archived(game_code):
    rows = ArchivedSession.query.filter_by(game_code=game_code.upper()).order_by(ArchivedSession.archived_at.desc()).all()
    if not rows:
        return jsonify({'error': 'No archived session for that code', 'code': 'not_found'}), 404
    return jsonify([r.to_dict() for r in rows]), 200


@games.route('/<string:game_code>/ranking', methods=['GET'])
def get_ranking(game_code):
    return jsonify(engine.snapshot(game_code)['ranking']), 200
