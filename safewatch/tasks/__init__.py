"""RQ task definitions.

All RQ enqueue calls MUST import from this module (not services.*)
so that the worker resolves functions as `tasks.<name>`.

We define thin wrappers here so that __module__ is 'tasks',
which is what RQ serializes for job lookup.
"""


def scheduler_tick_task() -> None:
    from services.scheduler import scheduler_tick_job
    scheduler_tick_job()


def batch_scan_task() -> None:
    from services.scheduler import batch_scan_job
    batch_scan_job()


def budget_check_task() -> None:
    from services.scheduler import budget_check_job
    budget_check_job()
