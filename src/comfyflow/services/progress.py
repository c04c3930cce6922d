"""Difusión del progreso de los trabajos a los clientes conectados."""

import asyncio
import logging
from collections import OrderedDict, defaultdict

from comfyflow.schemas import JobResponse

logger = logging.getLogger(__name__)


class ProgressHub:
    """
    Keeps the last snapshot of every job and forwards each update to the
    queues subscribed to the job's client id. Snapshots are kept per job and
    per client, each map holding at most ``max_jobs`` of the most recent ones.
    """

    def __init__(self, max_jobs: int = 500):
        self.max_jobs = max_jobs
        self._jobs: OrderedDict[str, JobResponse] = OrderedDict()
        self._latest: OrderedDict[str, JobResponse] = OrderedDict()
        self._subscribers: defaultdict[str, set[asyncio.Queue]] = defaultdict(set)

    def publish(self, job) -> None:
        snapshot = JobResponse.from_job(job)
        self._remember(self._latest, job.client_id, snapshot)
        if job.job_id:
            self._remember(self._jobs, job.job_id, snapshot)
        for queue in self._subscribers.get(job.client_id, ()):
            queue.put_nowait(snapshot)

    def _remember(self, store: OrderedDict, key: str, snapshot: JobResponse) -> None:
        store[key] = snapshot
        store.move_to_end(key)
        while len(store) > self.max_jobs:
            store.popitem(last=False)

    def subscribe(self, client_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers[client_id].add(queue)
        latest = self._latest.get(client_id)
        if latest is not None:
            queue.put_nowait(latest)
        return queue

    def unsubscribe(self, client_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(client_id)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[client_id]

    def get_job(self, job_id: str) -> JobResponse | None:
        return self._jobs.get(job_id)
