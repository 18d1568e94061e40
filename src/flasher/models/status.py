"""Action and stage enums with per-action transition tables."""

from enum import Enum


class Action(str, Enum):
    """Operations the engine can run against one adapter."""

    DIAGNOSE = "diagnose"
    INSTALL = "install"
    UPDATE = "update"
    ERASE = "erase"
    RECOVER = "recover"
    UPDATE_BRIDGE = "updateBridge"


class StageEnum(str, Enum):
    """Stages of an engine operation.

    install/update:
    idle → connecting → downloading → verifying → enteringBootloader → flashing → success
                ↓            ↓             ↓               ↓               ↓
              failed ←──────────────────────────────────────────────────────

    recover:
    idle → connecting → diagnosing → [startingApplication] → (success | repairing | downloading → flashing chain above)

    updateBridge:
    idle → downloading → verifying → enteringBootloader → flashing → waitingPowerCycle → success
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    DIAGNOSING = "diagnosing"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    ENTERING_BOOTLOADER = "enteringBootloader"
    FLASHING = "flashing"
    ERASING = "erasing"
    STARTING_APPLICATION = "startingApplication"
    REPAIRING = "repairing"
    WAITING_POWER_CYCLE = "waitingPowerCycle"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_STAGES = frozenset({StageEnum.SUCCESS, StageEnum.FAILED})

_S = StageEnum

TRANSITIONS: dict[Action, dict[StageEnum, frozenset[StageEnum]]] = {
    Action.DIAGNOSE: {
        _S.IDLE: frozenset({_S.CONNECTING}),
        _S.CONNECTING: frozenset({_S.DIAGNOSING}),
        _S.DIAGNOSING: frozenset({_S.STARTING_APPLICATION}),
        _S.STARTING_APPLICATION: frozenset(),
    },
    Action.INSTALL: {
        _S.IDLE: frozenset({_S.CONNECTING}),
        _S.CONNECTING: frozenset({_S.DOWNLOADING}),
        _S.DOWNLOADING: frozenset({_S.VERIFYING}),
        _S.VERIFYING: frozenset({_S.ENTERING_BOOTLOADER, _S.FLASHING}),
        _S.ENTERING_BOOTLOADER: frozenset({_S.FLASHING}),
        _S.FLASHING: frozenset(),
    },
    Action.UPDATE: {
        _S.IDLE: frozenset({_S.CONNECTING}),
        _S.CONNECTING: frozenset({_S.VERIFYING}),
        _S.VERIFYING: frozenset({_S.ENTERING_BOOTLOADER, _S.FLASHING}),
        _S.ENTERING_BOOTLOADER: frozenset({_S.FLASHING}),
        _S.FLASHING: frozenset(),
    },
    Action.ERASE: {
        _S.IDLE: frozenset({_S.CONNECTING}),
        _S.CONNECTING: frozenset({_S.ENTERING_BOOTLOADER}),
        _S.ENTERING_BOOTLOADER: frozenset({_S.ERASING}),
        _S.ERASING: frozenset({_S.STARTING_APPLICATION}),
        _S.STARTING_APPLICATION: frozenset(),
    },
    Action.RECOVER: {
        _S.IDLE: frozenset({_S.CONNECTING}),
        _S.CONNECTING: frozenset({_S.DIAGNOSING}),
        _S.DIAGNOSING: frozenset(
            {_S.STARTING_APPLICATION, _S.REPAIRING, _S.DOWNLOADING, _S.VERIFYING}
        ),
        _S.STARTING_APPLICATION: frozenset({_S.REPAIRING, _S.DOWNLOADING, _S.VERIFYING}),
        _S.REPAIRING: frozenset(),
        _S.DOWNLOADING: frozenset({_S.VERIFYING}),
        _S.VERIFYING: frozenset({_S.ENTERING_BOOTLOADER, _S.FLASHING}),
        _S.ENTERING_BOOTLOADER: frozenset({_S.FLASHING}),
        _S.FLASHING: frozenset(),
    },
    Action.UPDATE_BRIDGE: {
        _S.IDLE: frozenset({_S.DOWNLOADING}),
        _S.DOWNLOADING: frozenset({_S.VERIFYING}),
        _S.VERIFYING: frozenset({_S.ENTERING_BOOTLOADER}),
        _S.ENTERING_BOOTLOADER: frozenset({_S.FLASHING}),
        _S.FLASHING: frozenset({_S.WAITING_POWER_CYCLE}),
        _S.WAITING_POWER_CYCLE: frozenset(),
    },
}


class InvalidTransition(ValueError):
    """Raised when a stage change is not allowed for an action."""


def next_stage(action: Action, current: StageEnum, target: StageEnum) -> StageEnum:
    """Validate a stage change and return the new stage.

    Any non-terminal stage may move to SUCCESS or FAILED; a terminal
    stage may only restart from IDLE.

    Raises:
        InvalidTransition: If the transition is not in the action's table
    """
    if current == target:
        return target
    if current in TERMINAL_STAGES:
        if target == StageEnum.IDLE:
            return target
        raise InvalidTransition(
            f"{action.value}: cannot leave terminal stage {current.value} for {target.value}"
        )
    if target in TERMINAL_STAGES:
        return target
    allowed = TRANSITIONS[action].get(current, frozenset())
    if target not in allowed:
        raise InvalidTransition(
            f"{action.value}: {current.value} → {target.value} is not allowed"
        )
    return target
