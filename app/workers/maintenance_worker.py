from __future__ import annotations

from dataclasses import dataclass
import logging
import time
import uuid
from typing import Callable

from app.core.db import session_scope
from app.core.observability import correlation_context
from app.services import exceptions as service_exceptions
from app.services.bootstrap import AuthComponents

logger = logging.getLogger("app.maintenance")


@dataclass(slots=True)
class MaintenanceReport:
    codes_purged: int
    sessions_deactivated: int
    sessions_deleted: int


class MaintenanceWorker:
    """Purges stale codes and expired sessions. Every step is idempotent, so runs may overlap."""

    RETRY_DELAY_SECONDS = 5.0

    def __init__(
        self,
        components: AuthComponents,
        *,
        worker_id: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.components = components
        self.worker_id = worker_id or f"maintenance-worker-{uuid.uuid4().hex[:8]}"
        self.interval = components.settings.MAINTENANCE_INTERVAL_SECONDS
        self._sleep = sleep
        self._metrics: dict[str, int] = {"iterations": 0, "failures": 0}

    def run_forever(self, *, max_iterations: int | None = None) -> None:
        logger.info("maintenance_worker_started", extra={"worker_id": self.worker_id, "interval": self.interval})
        while max_iterations is None or self._metrics["iterations"] < max_iterations:
            self._metrics["iterations"] += 1
            try:
                self.run_once()
            except service_exceptions.BackendError:
                self._metrics["failures"] += 1
                logger.warning(
                    "maintenance_run_failed retrying in %ss", self.RETRY_DELAY_SECONDS,
                    extra={"worker_id": self.worker_id},
                )
                self._sleep(self.RETRY_DELAY_SECONDS)
                continue
            self._sleep(self.interval)

    def run_once(self) -> MaintenanceReport:
        with correlation_context(f"maint-{uuid.uuid4().hex[:12]}"), session_scope(
            self.components.session_factory
        ) as db:
            codes_purged = self.components.otp_service(db).purge_stale_codes()
            cleanup = self.components.session_service(db).cleanup_expired_sessions()
        report = MaintenanceReport(
            codes_purged=codes_purged,
            sessions_deactivated=cleanup.deactivated,
            sessions_deleted=cleanup.deleted,
        )
        logger.info(
            "maintenance_run_complete codes_purged=%s sessions_deactivated=%s sessions_deleted=%s",
            report.codes_purged,
            report.sessions_deactivated,
            report.sessions_deleted,
            extra={"worker_id": self.worker_id},
        )
        return report
