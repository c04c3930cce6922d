"""
Ejecución de trabajos en ComfyUI

Gestiona el ciclo de vida completo de un workflow enviado:
- Envío del grafo con un identificador de cliente nuevo
- Consulta periódica del historial hasta un estado terminal
- Progreso estimado, porque ComfyUI no expone un porcentaje real
- Límite de tiempo fijo, independiente de lo que responda el backend

Estados: queued -> running -> succeeded | failed | timed_out.
Un estado terminal es definitivo. No existe cancelación remota: quien llama
puede cancelar la tarea asyncio y el trabajo sigue en el servidor.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from comfyflow.comfyui import ComfyUIClient, OutputImage, PollResult
from comfyflow.config import JOB_TIMEOUT, POLL_INTERVAL
from comfyflow.errors import PollTransientError, SubmissionError
from comfyflow.schemas import GenerationParameters, JobStatus, utcnow
from comfyflow.utils import new_client_id
from comfyflow.workflows.graph import WorkflowGraph

logger = logging.getLogger(__name__)

SUBMITTED_PROGRESS = 25.0
PROGRESS_BAND = 70.0
MAX_PENDING_PROGRESS = SUBMITTED_PROGRESS + PROGRESS_BAND


class InvalidTransition(RuntimeError):
    pass


@dataclass
class GenerationJob:
    parameters: GenerationParameters
    client_id: str
    seed: int | None = None
    job_id: str | None = None
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    stage: str = "Queued"
    outputs: list[str] = field(default_factory=list)
    output_images: list[OutputImage] = field(default_factory=list)
    error: str | None = None
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def _check_open(self):
        if self.is_terminal:
            raise InvalidTransition(f"Job {self.job_id} is already {self.status.value}")

    def advance(self, progress: float, stage: str):
        """Report intermediate progress; it never regresses and stays below 100."""
        self._check_open()
        self.progress = max(self.progress, min(progress, MAX_PENDING_PROGRESS))
        self.stage = stage

    def mark_running(self):
        self._check_open()
        self.status = JobStatus.RUNNING

    def succeed(self, outputs: list[str], images: list[OutputImage]):
        self._check_open()
        self.outputs = list(outputs)
        self.output_images = list(images)
        self._finish(JobStatus.SUCCEEDED, "Completed")
        self.progress = 100.0

    def fail(self, error: str):
        self._check_open()
        self.error = error
        self._finish(JobStatus.FAILED, "Failed")

    def time_out(self, error: str):
        self._check_open()
        self.error = error
        self._finish(JobStatus.TIMED_OUT, "Timed out")

    def _finish(self, status: JobStatus, stage: str):
        self.status = status
        self.stage = stage
        self.finished_at = utcnow()


def notify_progress(listener: Callable[[GenerationJob], None] | None, job: GenerationJob):
    if listener is None:
        return
    try:
        listener(job)
    except Exception:
        logger.exception("Progress listener failed for job %s", job.job_id)


def estimate_progress(attempts: int, max_attempts: int) -> float:
    return SUBMITTED_PROGRESS + min(attempts / max_attempts * PROGRESS_BAND, PROGRESS_BAND)


def _processing_label(elapsed: float, timeout: float) -> str:
    elapsed, timeout = int(elapsed), int(timeout)
    return (
        f"Processing... ({elapsed // 60}:{elapsed % 60:02d} / "
        f"{timeout // 60}:{timeout % 60:02d})"
    )


class JobRunner:
    """Submits one workflow graph and polls it until it reaches a terminal state."""

    def __init__(
        self,
        client: ComfyUIClient,
        poll_interval: float = POLL_INTERVAL,
        timeout: float = JOB_TIMEOUT,
        on_progress: Callable[[GenerationJob], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.on_progress = on_progress
        self.clock = clock
        self.sleep = sleep
        self.job: GenerationJob | None = None

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.timeout / self.poll_interval))

    def _notify(self, job: GenerationJob):
        notify_progress(self.on_progress, job)

    async def run(
        self,
        graph: WorkflowGraph,
        parameters: GenerationParameters,
        client_id: str | None = None,
        job: GenerationJob | None = None,
    ) -> GenerationJob:
        """
        Submit ``graph`` and supervise it to completion.

        ``job`` lets the caller pass the job it already reported progress on
        (uploads happen before submission). Raises ``SubmissionError`` when the
        backend rejects the graph; every other outcome is reported through the
        returned job's status.
        """
        if job is None:
            job = GenerationJob(parameters=parameters, client_id=client_id or new_client_id())
        job.parameters = parameters
        job.seed = graph.seed
        self.job = job
        await self._submit(job, graph)
        await self._poll_until_terminal(job)
        return job

    async def _submit(self, job: GenerationJob, graph: WorkflowGraph):
        graph.freeze()
        job.advance(SUBMITTED_PROGRESS, "Queuing generation...")
        self._notify(job)
        try:
            response = await asyncio.to_thread(
                self.client.queue_prompt, graph.to_prompt(), job.client_id
            )
        except SubmissionError as e:
            # Not retried: a duplicate submission would run the job twice.
            logger.error("Submission failed: %s", e)
            job.fail(str(e))
            self._notify(job)
            raise
        job.job_id = response["prompt_id"]
        logger.info("Queued job %s (client %s)", job.job_id, job.client_id)

    async def _poll_until_terminal(self, job: GenerationJob):
        start = self.clock()
        attempts = 0
        while True:
            elapsed = self.clock() - start
            if elapsed >= self.timeout:
                logger.error("Job %s timed out after %.0fs", job.job_id, elapsed)
                job.time_out(
                    f"Generation timed out after {int(self.timeout)}s; "
                    "the job may still be running on the backend"
                )
                self._notify(job)
                return

            job.advance(
                estimate_progress(attempts, self.max_attempts),
                _processing_label(elapsed, self.timeout),
            )
            self._notify(job)

            try:
                result = await asyncio.to_thread(self.client.poll, job.job_id)
            except PollTransientError as e:
                logger.warning("Status check failed for job %s: %s", job.job_id, e)
                result = None

            if result is not None and self._apply(job, result):
                self._notify(job)
                return

            attempts += 1
            job.attempts = attempts
            await self.sleep(self.poll_interval)

    def _apply(self, job: GenerationJob, result: PollResult) -> bool:
        """Apply one poll result. Returns True once the job is terminal."""
        if result.status == "queued":
            return False
        if job.status == JobStatus.QUEUED:
            job.mark_running()

        if result.status == "completed":
            job.advance(MAX_PENDING_PROGRESS, "Retrieving images...")
            urls = [self.client.image_url(image) for image in result.outputs]
            if not urls:
                logger.warning("Job %s completed without images", job.job_id)
            job.succeed(urls, result.outputs)
            logger.info("Job %s succeeded with %d image(s)", job.job_id, len(urls))
            return True

        if result.status == "error":
            error = result.error_text or "Generation failed with error"
            logger.error("Job %s failed: %s", job.job_id, error)
            job.fail(error)
            return True

        return False
