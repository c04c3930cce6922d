"""
Persistencia de la galería

El almacén de la galería es un colaborador externo: sólo se usa su operación
``append(records)``. Su fallo nunca convierte una generación correcta en un
error.
"""

import logging
from typing import Protocol

import requests

from comfyflow.config import HTTP_TIMEOUT
from comfyflow.schemas import GeneratedImageRecord

logger = logging.getLogger(__name__)


class GalleryStore(Protocol):
    def append(self, records: list[GeneratedImageRecord]) -> None: ...


class InMemoryGalleryStore:

    def __init__(self):
        self.records: list[GeneratedImageRecord] = []

    def append(self, records: list[GeneratedImageRecord]) -> None:
        # newest first, like the history list shown to the user
        self.records[:0] = records


class HttpGalleryStore:
    """Posts generated records as a JSON list to an external gallery service."""

    def __init__(self, url: str, timeout: float = HTTP_TIMEOUT):
        self.url = url
        self.timeout = timeout

    def append(self, records: list[GeneratedImageRecord]) -> None:
        payload = [record.model_dump(mode="json") for record in records]
        resp = requests.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        logger.debug("Stored %d record(s) in gallery (%s)", len(records), resp.status_code)
