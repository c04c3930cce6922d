"""
Servicios de generación de imágenes

Coordina una petición de generación de principio a fin, actuando como capa
intermedia entre los endpoints de la API y el cliente ComfyUI.

Responsabilidades:
- Exportar la imagen y la máscara del editor y subirlas a ComfyUI
- Construir el workflow y supervisar su ejecución
- Guardar localmente las imágenes generadas (sin que un fallo sea fatal)
- Crear los registros de la galería y persistirlos en segundo plano
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

import requests

from comfyflow.comfyui import ComfyUIClient
from comfyflow.config import CACHE_DIR, JOB_TIMEOUT, POLL_INTERVAL
from comfyflow.errors import (
    BackendExecutionError,
    GenerationTimeoutError,
    UploadError,
    ValidationError,
)
from comfyflow.mask import MaskSurface
from comfyflow.schemas import (
    GeneratedImageRecord,
    GenerationMode,
    GenerationParameters,
    JobStatus,
)
from comfyflow.services.gallery import GalleryStore
from comfyflow.services.images import AssetKind, Uploader, cache_output
from comfyflow.services.jobs import GenerationJob, JobRunner, notify_progress
from comfyflow.utils import new_client_id
from comfyflow.workflows.builder import (
    build_image_to_image,
    build_text_to_image,
    resolve_style_model,
)

logger = logging.getLogger(__name__)

FILENAME_PREFIXES = {
    GenerationMode.TEXT_TO_IMAGE: "text2image",
    GenerationMode.IMAGE_TO_IMAGE: "image2image",
}


def _export_assets(surface: MaskSurface) -> tuple[bytes, bytes | None]:
    mask_bytes = surface.export_mask() if surface.has_mask else None
    return surface.export_source(), mask_bytes


@dataclass
class GenerationResult:
    job: GenerationJob
    records: list[GeneratedImageRecord]


class GenerationSession:
    """
    Runs one generation request at a time through upload, build, submit and
    poll. Each session owns its own runner; sessions share no mutable state.
    """

    def __init__(
        self,
        client: ComfyUIClient,
        gallery: GalleryStore | None = None,
        cache_dir: str | None = CACHE_DIR,
        on_progress: Callable[[GenerationJob], None] | None = None,
        poll_interval: float = POLL_INTERVAL,
        timeout: float = JOB_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.client = client
        self.gallery = gallery
        self.cache_dir = cache_dir
        self.on_progress = on_progress
        self.uploader = Uploader(client)
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self.diagnostics: list[str] = []
        self._background: set[asyncio.Task] = set()

    def _notify(self, job: GenerationJob):
        notify_progress(self.on_progress, job)

    def _new_runner(self) -> JobRunner:
        return JobRunner(
            self.client,
            poll_interval=self.poll_interval,
            timeout=self.timeout,
            on_progress=self.on_progress,
            clock=self.clock,
            sleep=self.sleep,
        )

    async def text_to_image(
        self, params: GenerationParameters, client_id: str | None = None
    ) -> GenerationResult:
        params = params.model_copy(update={"mode": GenerationMode.TEXT_TO_IMAGE})
        graph = build_text_to_image(params)
        job = GenerationJob(parameters=params, client_id=client_id or new_client_id())
        job.advance(20, "Building workflow...")
        self._notify(job)
        return await self._execute(graph, params, job)

    async def image_to_image(
        self,
        params: GenerationParameters,
        surface: MaskSurface,
        client_id: str | None = None,
    ) -> GenerationResult:
        if not surface.is_bound:
            raise ValidationError("Please upload a reference image")
        resolve_style_model(params.style_model_id, params.style_strength)

        source_bytes, mask_bytes = await asyncio.to_thread(_export_assets, surface)

        job = GenerationJob(parameters=params, client_id=client_id or new_client_id())
        job.advance(10, "Uploading image...")
        self._notify(job)
        try:
            image_ref = await self.uploader.upload(source_bytes, AssetKind.IMAGE)
        except UploadError as e:
            logger.error("Reference image upload failed: %s", e)
            job.fail(str(e))
            self._notify(job)
            raise

        mask_ref = None
        if mask_bytes is not None:
            job.advance(15, "Uploading mask...")
            self._notify(job)
            try:
                mask_ref = await self.uploader.upload(mask_bytes, AssetKind.MASK)
            except UploadError as e:
                # the mask is optional: carry on without it
                logger.warning("Mask upload failed, generating without mask: %s", e)
                self.diagnostics.append(f"mask upload failed: {e}")

        params = params.model_copy(
            update={
                "mode": GenerationMode.IMAGE_TO_IMAGE,
                "reference_image_asset_ref": image_ref,
                "mask_asset_ref": mask_ref,
            }
        )
        job.advance(20, "Building workflow...")
        self._notify(job)
        graph = build_image_to_image(params)
        return await self._execute(graph, params, job)

    async def _execute(self, graph, params: GenerationParameters, job: GenerationJob) -> GenerationResult:
        job = await self._new_runner().run(graph, params, job=job)

        if job.status == JobStatus.FAILED:
            raise BackendExecutionError(job.error or "Generation failed", job=job)
        if job.status == JobStatus.TIMED_OUT:
            raise GenerationTimeoutError(job.error or "Generation timed out", job=job)

        records = await self._materialize(job)
        self._persist(records)
        return GenerationResult(job=job, records=records)

    async def _materialize(self, job: GenerationJob) -> list[GeneratedImageRecord]:
        params = job.parameters
        prefix = FILENAME_PREFIXES[params.mode]
        records = []
        for index, url in enumerate(job.outputs):
            filename = f"{prefix}_{job.job_id}_{index}.png"
            records.append(
                GeneratedImageRecord(
                    id=f"{job.job_id}_{index}",
                    image_url=url,
                    local_cache_ref=await self._cache(url, filename),
                    filename=filename,
                    prompt=params.prompt,
                    negative_prompt=params.negative_prompt,
                    parameters=params,
                    seed=job.seed,
                    status=job.status,
                )
            )
        return records

    async def _cache(self, url: str, filename: str) -> str | None:
        if not self.cache_dir:
            return None
        try:
            return await cache_output(self.client, url, filename, self.cache_dir)
        except (requests.exceptions.RequestException, OSError) as e:
            # the remote URL stays usable
            logger.warning("Could not cache %s: %s", url, e)
            return None

    def _persist(self, records: list[GeneratedImageRecord]):
        if self.gallery is None or not records:
            return
        task = asyncio.create_task(self._append_to_gallery(records))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _append_to_gallery(self, records: list[GeneratedImageRecord]):
        try:
            await asyncio.to_thread(self.gallery.append, records)
        except Exception as e:
            logger.error("Error saving generated images to gallery: %s", e)
            self.diagnostics.append(f"gallery append failed: {e}")

    async def drain(self):
        """Wait for pending gallery writes."""
        if self._background:
            await asyncio.gather(*list(self._background))
