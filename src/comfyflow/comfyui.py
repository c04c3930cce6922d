"""
Cliente para la interacción con ComfyUI.

Este módulo contiene toda la comunicación con el servidor de ComfyUI, proporcionando métodos para subir imágenes, enviar flujos de trabajo, consultar el estado de una ejecución y obtener las imágenes generadas.

Responsabilidades:
- Gestionar las conexiones HTTP con ComfyUI
- Enviar workflows para su procesamiento
- Traducir el historial de ComfyUI a un estado de ejecución
- Convertir los fallos HTTP en errores del dominio
"""

import logging
from dataclasses import dataclass, field
from io import BytesIO
from urllib.parse import urlencode

import requests

from comfyflow.config import HTTP_TIMEOUT
from comfyflow.errors import PollTransientError, SubmissionError, UploadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputImage:
    node_id: str
    filename: str
    subfolder: str = ""
    type: str = "output"

    @property
    def asset_ref(self) -> str:
        return f"{self.subfolder}/{self.filename}" if self.subfolder else self.filename


@dataclass(frozen=True)
class PollResult:
    status: str  # queued | running | completed | error
    outputs: list[OutputImage] = field(default_factory=list)
    error_text: str | None = None


def _describe_execution_error(detail) -> str:
    if isinstance(detail, dict):
        return str(detail.get("exception_message") or detail)
    return str(detail)


def parse_history(prompt_id: str, history: dict) -> PollResult:
    """Interpret the ``/history/{prompt_id}`` payload of one prompt."""
    execution = history.get(prompt_id)
    if not execution:
        # ComfyUI only records a prompt in the history once it has finished.
        return PollResult(status="running")

    status = execution.get("status") or {}
    if status.get("status_str") == "error":
        errors = [
            _describe_execution_error(message[1])
            for message in status.get("messages") or []
            if len(message) > 1 and message[0] == "execution_error"
        ]
        error_text = "Generation failed with error"
        if errors:
            error_text += f": {', '.join(errors)}"
        return PollResult(status="error", error_text=error_text)

    if status.get("completed"):
        outputs = [
            OutputImage(
                node_id=node_id,
                filename=image["filename"],
                subfolder=image.get("subfolder", ""),
                type=image.get("type", "output"),
            )
            for node_id, node_output in (execution.get("outputs") or {}).items()
            for image in node_output.get("images") or []
        ]
        return PollResult(status="completed", outputs=outputs)

    return PollResult(status="running")


class ComfyUIClient:

    def __init__(self, comfyui_server: str, timeout: float = HTTP_TIMEOUT):
        self.comfyui_server = comfyui_server.rstrip("/")
        self.prompt_url = f"{self.comfyui_server}/prompt"
        self.upload_url = f"{self.comfyui_server}/upload/image"
        self.history_url = f"{self.comfyui_server}/history/"
        self.view_url = f"{self.comfyui_server}/view"
        self.stats_url = f"{self.comfyui_server}/system_stats"
        self.object_info_url = f"{self.comfyui_server}/object_info/"
        self.timeout = timeout

    def post_image(self, filename: str, file_bytes: bytes, file_type: str) -> dict:
        files = {"image": (filename, BytesIO(file_bytes), "image/png")}
        data = {"type": "input", "overwrite": "true", "subfolder": ""}
        try:
            resp = requests.post(self.upload_url, data=data, files=files, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise UploadError(f"Error uploading {file_type}: {e}") from e
        if resp.status_code != 200:
            raise UploadError(f"Error uploading {file_type}: {resp.status_code} - {resp.text}")
        try:
            return resp.json()
        except ValueError as e:
            raise UploadError(f"Error uploading {file_type}: invalid response {resp.text[:200]!r}") from e

    def queue_prompt(self, prompt: dict, client_id: str) -> dict:
        payload = {"prompt": prompt, "client_id": client_id}
        try:
            resp = requests.post(self.prompt_url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SubmissionError(f"Error communicating with ComfyUI: {e}") from e
        if not resp.ok:
            logger.error("Prompt rejected: %s %s", resp.status_code, resp.text)
            raise SubmissionError(f"Failed to queue prompt: {resp.status_code} {resp.reason} - {resp.text}")

        try:
            body = resp.json()
        except ValueError as e:
            raise SubmissionError(f"Failed to queue prompt: invalid response {resp.text[:200]!r}") from e
        if not isinstance(body, dict) or "prompt_id" not in body:
            raise SubmissionError(f"Failed to queue prompt: unexpected response {body}")
        return body

    def get_history(self, prompt_id: str) -> dict:
        resp = requests.get(f"{self.history_url}{prompt_id}", timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def poll(self, prompt_id: str) -> PollResult:
        try:
            history = self.get_history(prompt_id)
        except (requests.exceptions.RequestException, ValueError) as e:
            raise PollTransientError(f"History check failed: {e}") from e
        return parse_history(prompt_id, history)

    def image_url(self, image: OutputImage) -> str:
        query = urlencode(
            {"filename": image.filename, "subfolder": image.subfolder, "type": image.type}
        )
        return f"{self.view_url}?{query}"

    def fetch_asset(self, url: str) -> bytes:
        resp = requests.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.content

    def check_connection(self) -> dict:
        """Returns the backend's ``/system_stats`` payload."""
        resp = requests.get(self.stats_url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def list_style_models(self) -> list[str]:
        """Fetches the LoRA filenames the backend can load."""
        resp = requests.get(f"{self.object_info_url}LoraLoader", timeout=self.timeout)
        resp.raise_for_status()
        info = resp.json().get("LoraLoader") or {}
        choices = info.get("input", {}).get("required", {}).get("lora_name") or [[]]
        return list(choices[0])
