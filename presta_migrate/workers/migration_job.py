# ---------------------------
# presta_migrate/workers/migration_job.py
# ---------------------------
# Full-catalogue migration as a background task. One job at a time; the
# stop event is honoured between batches.
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from presta_migrate.migrate_log import MigrationLog
from presta_migrate.presta.source import ProductSource
from presta_migrate.sync.runner import BatchRunner, MigrationTotals, migrate_all
from presta_migrate.woo.store import TargetStore

logger = logging.getLogger("uvicorn.error")


class MigrationJob:
    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None
        self._log: Optional[MigrationLog] = None
        self.totals: Optional[MigrationTotals] = None
        self.error: Optional[str] = None
        self.started_at: Optional[str] = None
        self.finished_at: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        source: ProductSource,
        store: TargetStore,
        log: MigrationLog,
        *,
        page_size: int,
        batch_size: int,
        update_existing: bool,
    ) -> bool:
        if self.running:
            return False
        self._stop = asyncio.Event()
        self._log = log
        self.totals, self.error, self.finished_at = None, None, None
        self.started_at = time.strftime("%Y-%m-%d %H:%M:%S")
        runner = BatchRunner(source, store, log)
        self._task = asyncio.create_task(
            self._run(runner, source, page_size, batch_size, update_existing)
        )
        return True

    async def _run(self, runner: BatchRunner, source: ProductSource,
                   page_size: int, batch_size: int, update_existing: bool) -> None:
        logger.info("[WORKER] migration started")
        try:
            self.totals = await migrate_all(
                runner,
                page_size=page_size,
                batch_size=batch_size,
                update_existing=update_existing,
                stop_event=self._stop,
            )
        except Exception as e:
            self.error = str(e)
            logger.error("[WORKER] migration aborted: %s", e, exc_info=e)
        finally:
            await source.aclose()
            self.finished_at = time.strftime("%Y-%m-%d %H:%M:%S")
            logger.info("[WORKER] migration finished: %s", self.totals)

    def stop(self) -> bool:
        if not self.running or self._stop is None:
            return False
        self._stop.set()
        return True

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stop_requested": bool(self._stop and self._stop.is_set()),
            "totals": self.totals.model_dump() if self.totals else None,
            "error": self.error,
            "events": self._log.entries()[-50:] if self._log else [],
        }


migration_job = MigrationJob()
