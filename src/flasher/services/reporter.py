"""Progress reporting service for an optional HTTP callback."""

import logging
from typing import Optional

import httpx

from flasher.api.models import ProgressData, ReportPayload


class ReportService:
    """POSTs progress snapshots to a configured URL."""

    def __init__(self, report_url: Optional[str] = None, timeout: float = 5.0):
        """Initialize report service.

        Args:
            report_url: Callback URL; reporting is disabled when None
            timeout: Per-request timeout in seconds
        """
        self.logger = logging.getLogger("flasher.reporter")
        self.report_url = report_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.report_url)

    async def report(self, status: ProgressData) -> None:
        """Send a progress snapshot.

        Args:
            status: Current snapshot from the StateManager

        Note:
            Failures are logged but not raised to avoid blocking device operations
        """
        if not self.enabled:
            return

        payload = ReportPayload(**status.model_dump())

        self.logger.debug(
            f"Reporting: stage={status.stage.value}, progress={status.progress}%"
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.report_url,
                    json=payload.model_dump(mode="json"),
                )
                response.raise_for_status()
                self.logger.debug("Report sent successfully")

        except httpx.HTTPError as e:
            self.logger.warning(
                f"Failed to report progress to {self.report_url}: {e}. "
                f"Continuing operation..."
            )
        except Exception as e:
            self.logger.error(
                f"Unexpected error reporting progress: {e}",
                exc_info=True,
            )
