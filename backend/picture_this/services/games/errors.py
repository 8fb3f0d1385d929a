"""Typed failures raised by the round orchestration engine.

Each error carries a stable ``code`` the transport layer can map to its own
status codes. State errors are always raised before a session is mutated.
"""


class GameError(Exception):
    code = 'game_error'

    def __init__(self, message: str = '', **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self):
        return {'error': self.message, 'code': self.code, **self.context}


# ---- configuration ----

class ConfigurationError(GameError):
    code = 'invalid_config'


class InvalidConfig(ConfigurationError):
    code = 'invalid_config'


# ---- resource exhaustion ----

class ResourceExhaustedError(GameError):
    code = 'resource_exhausted'
    retryable = True


class CodeExhausted(ResourceExhaustedError):
    code = 'code_exhausted'


# ---- state ----

class StateError(GameError):
    code = 'state_error'


class SessionNotFound(StateError):
    code = 'session_not_found'


class SessionFull(StateError):
    code = 'session_full'


class AlreadyStarted(StateError):
    code = 'already_started'


class PlayerNotFound(StateError):
    code = 'player_not_found'


class PlayerNotInSession(StateError):
    code = 'player_not_in_session'


class NotEnoughPlayers(StateError):
    code = 'not_enough_players'


class NotHost(StateError):
    code = 'not_host'


class NotJudge(StateError):
    code = 'not_judge'


class WrongPhase(StateError):
    code = 'wrong_phase'


class InvalidTransition(StateError):
    code = 'invalid_transition'

    def __init__(self, source, target):
        source = getattr(source, 'value', source)
        target = getattr(target, 'value', target)
        super().__init__(f'Invalid transition from {source} to {target}', source=source, target=target)
        self.source = source
        self.target = target


class JudgeCannotSubmit(StateError):
    code = 'judge_cannot_submit'


class InvalidSelectionShape(StateError):
    code = 'invalid_selection_shape'


class NotReady(StateError):
    code = 'not_ready'


class UnknownCandidate(StateError):
    code = 'unknown_candidate'


class UnknownSlot(StateError):
    code = 'unknown_slot'


class DuplicateAssignment(StateError):
    code = 'duplicate_assignment'


class IncompleteRanking(StateError):
    code = 'incomplete_ranking'


# ---- external dependency ----

class ImageServiceError(Exception):
    """Failure reported by the image-generation vendor.

    Never escapes the pipeline; converted to a placeholder result.
    """

    def __init__(self, message: str, status_code=None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
