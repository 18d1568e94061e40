"""Orchestration engine: runs one action at a time against one adapter."""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from flasher.config import EngineConfig
from flasher.drivers.controller import ControllerBinding, DriverFactory
from flasher.models.firmware import BridgeFirmwareSource, FirmwareImage
from flasher.models.results import (
    BootloaderEntryError,
    BootloaderEntryOutcome,
    DiagnosisResult,
    ErrorKind,
    FirmwareSourceError,
    FlasherError,
    OperationResult,
    RecoveryChoice,
    RecoveryOutcome,
    Remediation,
    Severity,
    summarize_outcome,
)
from flasher.models.status import Action, StageEnum
from flasher.services.bootloader import BootloaderEntry
from flasher.services.bridge import BridgeCommandMode, VersionCheck
from flasher.services.diagnosis import diagnose, remediation_for
from flasher.services.download import FirmwareSource
from flasher.services.erase import NVMEraser
from flasher.services.esp_flasher import BridgeFlasher, EsptoolFlasher
from flasher.services.flash import FlashPipeline
from flasher.services.reporter import ReportService
from flasher.services.state_manager import StateManager
from flasher.transport.session import SerialSession

# Node ID some controller firmwares end up with after a bad NVM migration
INVALID_CONTROLLER_NODE_ID = 239

BridgeFlasherFactory = Callable[[str], BridgeFlasher]


class FlasherEngine:
    """Runs diagnose, install, update, erase, recover and bridge update.

    Only one action runs at a time; a second one fails with
    OPERATION_IN_PROGRESS. Every action ends in exactly one OperationResult,
    which is also recorded in the StateManager. Reader/writer locks are
    released after every action; a cancelled action additionally detaches
    the driver and closes the link.
    """

    def __init__(
        self,
        session: SerialSession,
        driver_factory: DriverFactory,
        config: Optional[EngineConfig] = None,
        source: Optional[FirmwareSource] = None,
        state_manager: Optional[StateManager] = None,
        reporter: Optional[ReportService] = None,
        bridge_flasher_factory: Optional[BridgeFlasherFactory] = None,
    ):
        self.logger = logging.getLogger("flasher.engine")
        self.config = config or EngineConfig()
        self.session = session
        self.binding = ControllerBinding(session, driver_factory, self.config)
        self.bridge = BridgeCommandMode(session, self.config)
        self.bootloader_entry = BootloaderEntry(self.binding, self.bridge, self.config)
        self.pipeline = FlashPipeline(self.binding, self.bootloader_entry, self.config)
        self.eraser = NVMEraser(self.binding, self.bootloader_entry, self.config)
        self.source = source or FirmwareSource(self.config)
        self.state = state_manager or StateManager()
        self.reporter = reporter or ReportService(self.config.report_url)
        self.bridge_flasher_factory = bridge_flasher_factory or self._esptool_flasher

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        if self._running:
            return True
        return self._task is not None and not self._task.done()

    def launch(self, operation: Awaitable[OperationResult]) -> asyncio.Task:
        """Run an action in the background.

        Raises:
            FlasherError: OPERATION_IN_PROGRESS if an action is running
        """
        if self.busy:
            operation.close()
            raise FlasherError(ErrorKind.OPERATION_IN_PROGRESS)
        self._task = asyncio.create_task(operation)
        return self._task

    async def cancel(self) -> bool:
        """Cancel the running action.

        Returns:
            True if an action was running
        """
        task = self._task
        if task is None or task.done() or task is asyncio.current_task():
            return False
        self.logger.info("Cancelling the running action")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def close(self) -> None:
        """Cancel any action and release the link."""
        await self.cancel()
        await self._cleanup()

    # Actions

    async def diagnose(self) -> OperationResult:
        """Connect and classify the adapter's health."""
        return await self._run(Action.DIAGNOSE, self._diagnose)

    async def install_latest(self) -> OperationResult:
        """Download and flash the newest controller firmware."""
        return await self._run(Action.INSTALL, self._install_latest)

    async def update(self, path: Union[str, Path]) -> OperationResult:
        """Flash a controller firmware file supplied by the user."""
        return await self._run(Action.UPDATE, lambda: self._update(path))

    async def erase(self) -> OperationResult:
        """Wipe the controller's NVM and start the application again."""
        return await self._run(Action.ERASE, self._erase)

    async def recover(
        self,
        choice: RecoveryChoice = RecoveryChoice.LATEST,
        path: Optional[Union[str, Path]] = None,
    ) -> OperationResult:
        """Diagnose and, if the firmware is broken, reinstall it.

        Args:
            choice: What to install if diagnosis calls for recovery
            path: Firmware file for RecoveryChoice.CUSTOM
        """
        return await self._run(Action.RECOVER, lambda: self._recover(choice, path))

    async def update_bridge(
        self,
        source: BridgeFirmwareSource = BridgeFirmwareSource.LATEST,
        path: Optional[Union[str, Path]] = None,
        load_offset: int = 0,
        manifest_url: Optional[str] = None,
        chip_family: Optional[str] = None,
        bridge_port: Optional[str] = None,
        version_check: Optional[VersionCheck] = None,
    ) -> OperationResult:
        """Reset the bridge chip into its ROM bootloader and flash it.

        Args:
            source: Newest release, manifest build or a local file
            path: Firmware file for BridgeFirmwareSource.FILE
            load_offset: Flash offset for a local file
            manifest_url: Overrides the configured manifest URL
            chip_family: Overrides the configured chip family
            bridge_port: Port of the ROM bootloader, defaults to the adapter port
            version_check: Returns False to leave an up to date bridge untouched
        """
        return await self._run(
            Action.UPDATE_BRIDGE,
            lambda: self._update_bridge(
                source, path, load_offset, manifest_url, chip_family, bridge_port, version_check
            ),
        )

    # Runner

    async def _run(
        self,
        action: Action,
        operation: Callable[[], Awaitable[OperationResult]],
    ) -> OperationResult:
        current = asyncio.current_task()
        if self._running or (
            self._task is not None and not self._task.done() and self._task is not current
        ):
            self.logger.warning(f"Rejected {action.value}: another action is running")
            return OperationResult.failed(FlasherError(ErrorKind.OPERATION_IN_PROGRESS))

        self._running = True
        # Directly awaited actions are tracked so cancel() can reach them
        if self._task is None or self._task.done():
            self._task = current
        try:
            return await self._execute(action, operation)
        finally:
            self._running = False
            if self._task is current:
                self._task = None

    async def _execute(
        self,
        action: Action,
        operation: Callable[[], Awaitable[OperationResult]],
    ) -> OperationResult:
        self.state.begin(action, f"Starting {action.value}")
        self.logger.info(f"Running {action.value}")
        try:
            await self._report()
            result = await operation()
        except asyncio.CancelledError:
            self.logger.warning(f"{action.value} cancelled")
            await self._cleanup()
            self._finish(OperationResult.failed(FlasherError(ErrorKind.CANCELLED)))
            raise
        except FlasherError as e:
            self.logger.error(f"{action.value} failed: {e.kind.value}: {e.message}")
            result = OperationResult.failed(e)
        except Exception as e:
            self.logger.error(f"{action.value} failed unexpectedly: {e}", exc_info=True)
            result = OperationResult(
                success=False,
                severity=Severity.ERROR,
                message=f"Unexpected error: {e}",
            )
        finally:
            self.session.release_locks()

        self._finish(result)
        await self._report()
        return result

    def _finish(self, result: OperationResult) -> None:
        self.state.finish(result)
        self.logger.info(
            f"Result: success={result.success}, outcome={result.outcome}, "
            f"error={result.error.value if result.error else None}"
        )

    async def _stage(self, stage: StageEnum, message: str) -> None:
        self.state.update_stage(stage, message)
        self.logger.info(f"Stage {stage.value}: {message}")
        await self._report()

    async def _starting_application(self) -> None:
        await self._stage(StageEnum.STARTING_APPLICATION, "Starting the application")

    async def _report(self) -> None:
        if self.reporter.enabled:
            await self.reporter.report(self.state.get_status())

    async def _cleanup(self) -> None:
        await self.binding.destroy_driver()
        self.session.release_locks()
        if self.session.is_open:
            try:
                await self.session.close()
            except Exception as e:
                self.logger.warning(f"Error closing the link during cleanup: {e}")

    # Workflows

    async def _connect(self) -> None:
        await self._stage(StageEnum.CONNECTING, "Connecting to the adapter")
        if not await self.binding.create_driver():
            raise FlasherError(ErrorKind.CONNECTION_FAILED)
        self.logger.info(f"Connected, device is in {self.binding.mode.value} mode")

    async def _diagnose(self) -> OperationResult:
        await self._stage(StageEnum.CONNECTING, "Connecting to the adapter")
        await self._stage(StageEnum.DIAGNOSING, "Diagnosing the adapter")
        result = await diagnose(self.binding, self._starting_application)
        return self._diagnosis_result(result)

    async def _install_latest(self) -> OperationResult:
        await self._connect()
        await self._stage(StageEnum.DOWNLOADING, "Downloading the latest firmware")
        image = await self.source.download_latest_controller_firmware(
            on_progress=self.state.update_progress
        )
        return await self._flash_controller(image)

    async def _update(self, path: Union[str, Path]) -> OperationResult:
        await self._connect()
        await self._stage(StageEnum.VERIFYING, f"Reading {Path(path).name}")
        image = await self.source.open_firmware_file(path)
        return await self._flash_controller(image)

    async def _flash_controller(self, image: FirmwareImage) -> OperationResult:
        await self._stage(StageEnum.VERIFYING, f"Firmware {image.file_name} is valid")

        await self.pipeline.flash_controller(
            image,
            on_progress=self.state.update_progress,
            on_bootloader_entry=lambda: self._stage(
                StageEnum.ENTERING_BOOTLOADER, "Entering bootloader"
            ),
            on_flashing=lambda: self._stage(StageEnum.FLASHING, f"Installing {image.file_name}"),
        )
        return OperationResult.ok(
            f"Firmware {image.file_name} installed successfully"
        )

    async def _erase(self) -> OperationResult:
        await self._connect()
        await self._stage(StageEnum.ENTERING_BOOTLOADER, "Entering bootloader")
        await self.eraser.enter_bootloader()
        await self._stage(StageEnum.ERASING, "Erasing NVM")
        await self.eraser.erase_nvm()

        await self._starting_application()
        if not await self.binding.run_application():
            self.logger.warning("NVM erased but the application did not start")
            return OperationResult.ok(
                "NVM erased but the application did not start. "
                "Unplug the adapter and plug it back in.",
                severity=Severity.WARNING,
            )
        return OperationResult.ok("NVM erased successfully")

    async def _recover(
        self, choice: RecoveryChoice, path: Optional[Union[str, Path]]
    ) -> OperationResult:
        await self._stage(StageEnum.CONNECTING, "Connecting to the adapter")
        await self._stage(StageEnum.DIAGNOSING, "Diagnosing the adapter")
        diagnosis = await diagnose(self.binding, self._starting_application)

        if diagnosis == DiagnosisResult.NO_ISSUES:
            return await self._check_controller_node_id()
        if remediation_for(diagnosis) == Remediation.SUMMARY:
            return self._diagnosis_result(diagnosis)

        if choice == RecoveryChoice.ABORT:
            self.logger.info(f"Recovery declined after {diagnosis.value}")
            return self._diagnosis_result(diagnosis)

        try:
            if choice == RecoveryChoice.CUSTOM:
                if path is None:
                    raise FirmwareSourceError(
                        ErrorKind.UNSUPPORTED_FIRMWARE_FORMAT, "No firmware file supplied"
                    )
                await self._stage(StageEnum.VERIFYING, f"Reading {Path(path).name}")
                image = await self.source.open_firmware_file(path)
            else:
                await self._stage(StageEnum.DOWNLOADING, "Downloading the latest firmware")
                image = await self.source.download_latest_controller_firmware(
                    on_progress=self.state.update_progress
                )
        except FirmwareSourceError as e:
            if e.kind == ErrorKind.DOWNLOAD_FAILED:
                return OperationResult.failed(e, outcome=RecoveryOutcome.DOWNLOAD_FAILED.value)
            return OperationResult.failed(e, outcome=RecoveryOutcome.RECOVERY_FAILED.value)

        try:
            await self._flash_controller(image)
        except FlasherError as e:
            return OperationResult.failed(e, outcome=RecoveryOutcome.RECOVERY_FAILED.value)
        return self._outcome_result(RecoveryOutcome.RECOVERED)

    async def _check_controller_node_id(self) -> OperationResult:
        driver = self.binding.driver
        try:
            node_id = await driver.get_own_node_id()
        except Exception as e:
            self.logger.warning(f"Could not read the controller node ID: {e}")
            return self._diagnosis_result(DiagnosisResult.NO_ISSUES)

        if node_id != INVALID_CONTROLLER_NODE_ID:
            return self._diagnosis_result(DiagnosisResult.NO_ISSUES)

        self.logger.warning(f"Controller has the invalid node ID {node_id}, repairing")
        await self._stage(StageEnum.REPAIRING, "Correcting the controller node ID")
        try:
            repaired = await driver.repair_own_node_id()
        except Exception as e:
            self.logger.error(f"Repairing the controller node ID raised: {e}", exc_info=True)
            repaired = False

        if repaired:
            return self._outcome_result(RecoveryOutcome.FIXED_INVALID_CONTROLLER_ID)
        return self._outcome_result(RecoveryOutcome.FIX_INVALID_CONTROLLER_ID_FAILED)

    async def _update_bridge(
        self,
        source: BridgeFirmwareSource,
        path: Optional[Union[str, Path]],
        load_offset: int,
        manifest_url: Optional[str],
        chip_family: Optional[str],
        bridge_port: Optional[str],
        version_check: Optional[VersionCheck],
    ) -> OperationResult:
        await self._stage(StageEnum.DOWNLOADING, "Fetching bridge firmware")
        if source == BridgeFirmwareSource.FILE:
            if path is None:
                raise FirmwareSourceError(
                    ErrorKind.UNSUPPORTED_FIRMWARE_FORMAT, "No firmware file supplied"
                )
            image = await self.source.open_firmware_file(path, load_offset=load_offset)
        elif source == BridgeFirmwareSource.MANIFEST:
            image = await self.source.download_from_manifest(
                manifest_url, chip_family, on_progress=self.state.update_progress
            )
        else:
            image = await self.source.download_latest_bridge_firmware(
                on_progress=self.state.update_progress
            )
        await self._stage(StageEnum.VERIFYING, f"Firmware {image.file_name} is valid")

        await self._stage(StageEnum.ENTERING_BOOTLOADER, "Entering bridge bootloader")
        await self.binding.destroy_driver()
        outcome = await self.bridge.enter_bootloader(version_check)
        if outcome == BootloaderEntryOutcome.NO_UPDATE_NEEDED:
            return OperationResult.ok(
                "Bridge firmware is already up to date", outcome=outcome.value
            )
        if outcome != BootloaderEntryOutcome.SUCCESS:
            raise BootloaderEntryError(
                ErrorKind.BOOTLOADER_ENTRY_FAILED, "Failed to enter bridge bootloader mode"
            )
        # The ROM bootloader re-enumerates; the flasher waits for and opens its port
        self.session.release_locks()
        if self.session.is_open:
            await self.session.close()

        await self._stage(StageEnum.FLASHING, f"Installing {image.file_name}")
        flasher = self.bridge_flasher_factory(bridge_port or self.config.port)

        def on_waiting_power_cycle() -> None:
            self.state.update_stage(
                StageEnum.WAITING_POWER_CYCLE, "Unplug the adapter and plug it back in"
            )
            self.logger.info("Stage waitingPowerCycle: waiting for the user")

        await self.pipeline.flash_bridge(
            flasher,
            image,
            on_progress=self.state.update_progress,
            on_waiting_power_cycle=on_waiting_power_cycle,
        )
        return OperationResult.ok(
            f"Bridge firmware {image.file_name} installed successfully",
            outcome=outcome.value,
        )

    # Results

    def _diagnosis_result(self, diagnosis: DiagnosisResult) -> OperationResult:
        if diagnosis == DiagnosisResult.CONNECTION_FAILED:
            _, message = summarize_outcome(diagnosis)
            return OperationResult.failed(
                FlasherError(ErrorKind.CONNECTION_FAILED, message), outcome=diagnosis.value
            )
        return self._outcome_result(diagnosis)

    @staticmethod
    def _outcome_result(tag: Union[DiagnosisResult, RecoveryOutcome]) -> OperationResult:
        severity, message = summarize_outcome(tag)
        return OperationResult(
            success=severity != Severity.ERROR,
            severity=severity,
            message=message,
            outcome=tag.value,
        )

    def _esptool_flasher(self, port: str) -> BridgeFlasher:
        return EsptoolFlasher(
            port,
            baudrate=self.config.bridge_baudrate,
            poll_interval=self.config.poll_interval,
            port_timeout=self.config.bridge_port_timeout,
        )
