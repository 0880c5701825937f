"""Error taxonomy for game actions."""


class GameError(Exception):
    """Base class for errors raised while handling a client event."""


class ValidationError(GameError):
    """Missing or invalid name / room code. Reported to the joining client."""


class NotFoundError(GameError):
    """Room code does not exist. Reported to the joining client."""


class RuleViolation(GameError):
    """Action not allowed right now (double submit, non-judge pick, ...).

    Handlers raise this before mutating anything; the dispatcher logs it and
    drops the event without broadcasting.
    """


class CapacityError(GameError):
    """Too few active players to keep a game going, or too many rooms."""


class IllegalTransition(RuntimeError):
    """A state machine was asked for a transition its table does not allow."""
