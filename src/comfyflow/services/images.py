"""
Servicios de procesamiento de imágenes

Proporciona funcionalidad especializada en preparar las imágenes antes
de enviarlas a ComfyUI y en guardar localmente los resultados.

Características:
- Conversión de base64, data URLs y URLs remotas a bytes
- Subida de imágenes y máscaras al almacén de entrada de ComfyUI
- Copia local de las imágenes generadas
"""

import asyncio
import base64
import binascii
import logging
import time
from enum import Enum
from io import BytesIO
from pathlib import Path

import requests
from PIL import Image, UnidentifiedImageError

from comfyflow.comfyui import ComfyUIClient
from comfyflow.errors import UploadError, ValidationError
from comfyflow.utils import get_image_bytes_from_url, is_remote_url, new_client_id, remove_b64_header

logger = logging.getLogger(__name__)


class AssetKind(str, Enum):
    IMAGE = "image"
    MASK = "mask"


def prepare_img_bytes(img_data: str, img_type: str) -> bytes:
    if not img_data:
        raise ValidationError(f"Missing {img_type}")
    if is_remote_url(img_data):
        try:
            return get_image_bytes_from_url(img_data)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ValidationError(f"Could not fetch {img_type}: {e}") from e

    img_b64 = remove_b64_header(img_data)
    try:
        return base64.b64decode(img_b64, validate=True)
    except binascii.Error as e:
        raise ValidationError(f"Invalid base64 for {img_type}: {e}") from e


def load_image(img_bytes: bytes, img_type: str) -> Image.Image:
    try:
        img = Image.open(BytesIO(img_bytes))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise ValidationError(f"Could not read {img_type}: {e}") from e
    return img


def _asset_filename(kind: AssetKind) -> str:
    if kind == AssetKind.MASK:
        return f"clipspace-mask-{int(time.time() * 1000)}-{new_client_id()}.png"
    return f"input_image_{new_client_id()}.png"


class Uploader:
    """Pushes raw image bytes to the backend's input store."""

    def __init__(self, client: ComfyUIClient):
        self.client = client

    async def upload(self, data: bytes, kind: AssetKind) -> str:
        filename = _asset_filename(kind)
        result = await asyncio.to_thread(self.client.post_image, filename, data, kind.value)
        name = result.get("name") if isinstance(result, dict) else None
        if not name:
            raise UploadError(f"Error uploading {kind.value}: unexpected response {result}")

        subfolder = result.get("subfolder") or ""
        asset_ref = f"{subfolder}/{name}" if subfolder else name
        logger.info("Uploaded %s as %s", kind.value, asset_ref)
        return asset_ref


async def cache_output(client: ComfyUIClient, url: str, filename: str, cache_dir: str) -> str:
    """Download one generated image into ``cache_dir`` and return its local path."""
    content = await asyncio.to_thread(client.fetch_asset, url)
    target = Path(cache_dir) / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(target.write_bytes, content)
    return str(target)
