"""State manager for the in-memory progress snapshot."""

import logging
from typing import Optional

from flasher.api.models import ProgressData
from flasher.models.results import OperationResult
from flasher.models.status import Action, StageEnum, next_stage
from flasher.utils.progress import MonotonicProgress

IDLE_MESSAGE = "Flasher ready"


class StateManager:
    """Singleton state manager for engine operations.

    Manages the in-memory status (for GET /progress): current action,
    stage, monotonic progress, message, error and the last terminal result.
    Nothing is persisted; the device is the only source of truth.
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("flasher.state_manager")

        self._clear(None, IDLE_MESSAGE)

        self._initialized = True
        self.logger.info("StateManager initialized")

    @property
    def action(self) -> Optional[Action]:
        return self._action

    @property
    def stage(self) -> StageEnum:
        return self._stage

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint.

        Returns:
            ProgressData with current action, stage, progress, message, error
        """
        return ProgressData(
            action=self._action,
            stage=self._stage,
            progress=self._percent,
            message=self._message,
            error=self._error,
            result=self._result,
        )

    def begin(self, action: Action, message: str) -> None:
        """Start tracking a new action from IDLE."""
        self._clear(action, message)
        self.logger.info(f"Action started: {action.value}")

    def update_stage(self, stage: StageEnum, message: str) -> None:
        """Move to a new stage.

        Progress restarts at 0 for every stage.

        Raises:
            InvalidTransition: If the action does not allow the change
        """
        if self._action is None:
            raise RuntimeError("No action in progress")
        new_stage = next_stage(self._action, self._stage, stage)
        if new_stage != self._stage:
            self._restart_progress()
        self._stage = new_stage
        self._message = message
        self.logger.debug(f"Stage updated: action={self._action.value}, stage={stage.value}")

    def update_progress(self, percent: float) -> None:
        """Record progress of the current stage; lower values are dropped."""
        self._progress(percent)

    def finish(self, result: OperationResult) -> None:
        """Record the terminal result and move to SUCCESS or FAILED."""
        target = StageEnum.SUCCESS if result.success else StageEnum.FAILED
        if self._action is not None:
            self._stage = next_stage(self._action, self._stage, target)
        else:
            self._stage = target
        if result.success:
            self._progress.complete()
            self._error = None
        else:
            self._error = (
                f"{result.error.value}: {result.message}" if result.error else result.message
            )
        self._message = result.message
        self._result = result
        self.logger.info(
            f"Action finished: action={self._action.value if self._action else None}, "
            f"success={result.success}, outcome={result.outcome}"
        )

    def reset(self) -> None:
        """Reset to idle state."""
        self._clear(None, IDLE_MESSAGE)
        self.logger.info("State reset to idle")

    def _clear(self, action: Optional[Action], message: str) -> None:
        self._action = action
        self._stage = StageEnum.IDLE
        self._message = message
        self._error: Optional[str] = None
        self._result: Optional[OperationResult] = None
        self._restart_progress()

    def _restart_progress(self) -> None:
        self._percent = 0
        self._progress = MonotonicProgress(self._store_progress)

    def _store_progress(self, percent: int) -> None:
        self._percent = percent
