import asyncio
import logging

import requests
from fastapi import APIRouter, Depends, HTTPException

from comfyflow.comfyui import ComfyUIClient
from comfyflow.config import STYLE_MODELS
from comfyflow.deps import get_client, get_progress_hub, get_session
from comfyflow.errors import (
    GenerationError,
    GenerationTimeoutError,
    MaskSurfaceError,
    ValidationError,
)
from comfyflow.mask import MaskSurface
from comfyflow.schemas import (
    GenerationMode,
    GenerationResponse,
    ImageRequest,
    JobResponse,
    MaskRequest,
)
from comfyflow.services.generation import GenerationResult, GenerationSession
from comfyflow.services.images import load_image, prepare_img_bytes
from comfyflow.services.progress import ProgressHub

logger = logging.getLogger(__name__)

router = APIRouter()


def _http_error(e: GenerationError) -> HTTPException:
    if isinstance(e, (ValidationError, MaskSurfaceError)):
        status_code = 400
    elif isinstance(e, GenerationTimeoutError):
        status_code = 504
    else:
        status_code = 502
    return HTTPException(status_code=status_code, detail=str(e))


def _paint_surface(req: MaskRequest) -> MaskSurface:
    img_bytes = prepare_img_bytes(req.image_b64, "image")
    surface = MaskSurface()
    surface.bind(load_image(img_bytes, "image"))
    surface.replay(req.strokes)
    return surface


def _to_response(result: GenerationResult) -> GenerationResponse:
    return GenerationResponse(job=JobResponse.from_job(result.job), images=result.records)


@router.post("/generate/text", response_model=GenerationResponse)
async def generate_text_image(
    req: ImageRequest, session: GenerationSession = Depends(get_session)
):
    """Generate images from a prompt."""
    try:
        result = await session.text_to_image(
            req.to_parameters(GenerationMode.TEXT_TO_IMAGE), client_id=req.client_id
        )
    except GenerationError as e:
        logger.error("Text to image generation failed: %s", e)
        raise _http_error(e) from e
    return _to_response(result)


@router.post("/generate/image", response_model=GenerationResponse)
async def generate_image_to_image(
    req: MaskRequest, session: GenerationSession = Depends(get_session)
):
    """Generate images from a reference image, optionally constrained by painted strokes."""
    try:
        surface = await asyncio.to_thread(_paint_surface, req)

        result = await session.image_to_image(
            req.to_parameters(GenerationMode.IMAGE_TO_IMAGE),
            surface,
            client_id=req.client_id,
        )
    except GenerationError as e:
        logger.error("Image to image generation failed: %s", e)
        raise _http_error(e) from e
    return _to_response(result)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, hub: ProgressHub = Depends(get_progress_hub)):
    job = hub.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.get("/models/styles")
async def get_style_models(client: ComfyUIClient = Depends(get_client)):
    """Lists the style catalog plus the LoRA models available on the ComfyUI server."""
    try:
        backend = await asyncio.to_thread(client.list_style_models)
    except requests.exceptions.RequestException as e:
        raise HTTPException(
            status_code=502,
            detail=f"Error al obtener los modelos LORA: {e}",
        ) from e
    return {"catalog": STYLE_MODELS, "backend": backend}


@router.get("/health")
async def health(client: ComfyUIClient = Depends(get_client)):
    try:
        stats = await asyncio.to_thread(client.check_connection)
    except requests.exceptions.RequestException as e:
        return {"connected": False, "error": str(e)}
    return {"connected": True, "system": stats}


def get_router():
    return router
