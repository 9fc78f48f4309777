import logging
from dataclasses import dataclass

from supportassist.services.job_store import JobStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    pruned: int
    failed: int
    message: str

    def to_dict(self) -> dict:
        return {"success": True, "pruned": self.pruned, "failed": self.failed, "message": self.message}


async def sweep_expired_jobs(store: JobStore) -> SweepReport:
    """
    Deletes job records whose retention window has passed.

    A failed deletion is logged and skipped; the next scheduled run picks it up
    again. Deleting a key that is already gone is a no-op.
    """
    pruned = 0
    failed = 0

    async for job in store.list_expired():
        try:
            await store.delete(job.job_id)
            pruned += 1
        except Exception as e:
            failed += 1
            logger.warning(f"Failed to delete expired job {job.job_id}: {e}")

    if pruned == 0 and failed == 0:
        message = "No expired jobs to delete."
    else:
        message = f"Removed {pruned} expired job{'' if pruned == 1 else 's'} from storage."
        if failed:
            message += f" {failed} deletion{'' if failed == 1 else 's'} failed."

    if pruned or failed:
        logger.info(f"Cleanup: {message}")
    return SweepReport(pruned=pruned, failed=failed, message=message)
