from salon_booking.integrations.base import ProviderResult, SyncOperation, SyncReport
from salon_booking.worker import ArqSyncDispatcher, WorkerSettings, sync_appointment_task


class StubCoordinator:
    def __init__(self):
        self.calls = []

    async def sync(self, operation, appointment_id):
        self.calls.append((operation, appointment_id))
        return SyncReport(operation, appointment_id, [ProviderResult("google", True), ProviderResult("trinks", False)])


class RecordingPool:
    def __init__(self):
        self.jobs = []

    async def enqueue_job(self, name, *args):
        self.jobs.append((name, args))
        return None


async def test_task_runs_one_sync_and_returns_provider_flags():
    coordinator = StubCoordinator()

    result = await sync_appointment_task({"sync_coordinator": coordinator}, "update", "appt-1")

    assert coordinator.calls == [(SyncOperation.UPDATE, "appt-1")]
    assert result == {"google": True, "trinks": False}


async def test_dispatcher_enqueues_the_sync_task():
    pool = RecordingPool()

    await ArqSyncDispatcher(pool).enqueue(SyncOperation.CREATE, "appt-1")

    assert pool.jobs == [("sync_appointment_task", ("create", "appt-1"))]


def test_sync_jobs_are_never_retried():
    assert WorkerSettings.max_tries == 1
    assert sync_appointment_task in WorkerSettings.functions
