"""
Proporciona instancias compartidas de servicios y clientes que pueden ser inyectados en cualquier punto de la aplicación

Gestiona:
- Cliente ComfyUI
- Difusión del progreso de los trabajos
- Almacén de la galería
- Una sesión de generación nueva por petición

Este módulo es fundamental para mantener un solo punto para las dependencias compartidas y evitar la inicialización repetida
"""

import asyncio
import logging
from contextlib import asynccontextmanager

import requests

from comfyflow.comfyui import ComfyUIClient
from comfyflow.config import CACHE_DIR, COMFYUI_SERVER, GALLERY_URL
from comfyflow.services.gallery import HttpGalleryStore, InMemoryGalleryStore
from comfyflow.services.generation import GenerationSession
from comfyflow.services.progress import ProgressHub

logger = logging.getLogger(__name__)

comfyUiClient = ComfyUIClient(COMFYUI_SERVER)

progress_hub = ProgressHub()

gallery_store = HttpGalleryStore(GALLERY_URL) if GALLERY_URL else InMemoryGalleryStore()


def get_client() -> ComfyUIClient:
    return comfyUiClient


def get_progress_hub() -> ProgressHub:
    return progress_hub


def get_session() -> GenerationSession:
    return GenerationSession(
        comfyUiClient,
        gallery=gallery_store,
        cache_dir=CACHE_DIR,
        on_progress=progress_hub.publish,
    )


@asynccontextmanager
async def lifespan(app):

    try:
        await asyncio.to_thread(comfyUiClient.check_connection)
        logger.info("Connected to ComfyUI at %s", COMFYUI_SERVER)
    except requests.exceptions.RequestException as e:
        logger.warning("ComfyUI not reachable at %s: %s", COMFYUI_SERVER, e)
    yield

    logger.info("Shutting down.")
