"""RQ worker for the periodic pipeline jobs.

Launch with:
    rq worker --worker-class worker_class.SafewatchWorker safewatch
"""

from __future__ import annotations

import logging
import os

from rq import SimpleWorker

from logging_config import setup_logging

logger = logging.getLogger(__name__)


class SafewatchWorker(SimpleWorker):
    """Runs jobs in-process and makes sure the scheduler, batch and budget
    jobs have a next run queued before it starts taking work."""

    def __init__(self, *args, **kwargs):
        setup_logging(f"Worker-{os.getpid()}")
        super().__init__(*args, **kwargs)

    def work(self, *args, **kwargs):
        # enqueue_in needs the RQ scheduler to move due jobs onto the queue
        kwargs.setdefault("with_scheduler", True)

        from services.scheduler import recover_periodic_jobs

        queued = recover_periodic_jobs()
        logger.info("Worker %s starting on %s, %d periodic jobs queued",
                    self.name, ", ".join(self.queue_names()), queued)
        return super().work(*args, **kwargs)
