from enum import Enum, auto


class TurnState(Enum):
    IDLE = auto()
    LISTENING = auto()
    USER_SPEAKING = auto()
    PROCESSING = auto()
    AI_SPEAKING = auto()


VALID_TRANSITIONS: dict[TurnState, set[TurnState]] = {
    TurnState.IDLE: {TurnState.LISTENING},
    TurnState.LISTENING: {TurnState.USER_SPEAKING, TurnState.IDLE},
    TurnState.USER_SPEAKING: {TurnState.LISTENING, TurnState.PROCESSING, TurnState.IDLE},
    TurnState.PROCESSING: {TurnState.AI_SPEAKING, TurnState.LISTENING, TurnState.IDLE},
    TurnState.AI_SPEAKING: {TurnState.LISTENING, TurnState.IDLE},
}


class InvalidTransitionError(Exception):
    pass


def validate_transition(current: TurnState, target: TurnState) -> None:
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot transition from {current.name} to {target.name}")
