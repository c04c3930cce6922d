"""Este módulo contiene las variables de configuración de la aplicación."""

import json
import os

COMFYUI_SERVER: str = os.getenv("COMFYUI_SERVER", "http://127.0.0.1:8188").rstrip("/")
HTTP_TIMEOUT: float = float(os.getenv("HTTP_TIMEOUT", "30"))  # seconds

POLL_INTERVAL: float = float(os.getenv("POLL_INTERVAL", "1"))  # seconds
JOB_TIMEOUT: float = float(os.getenv("JOB_TIMEOUT", "600"))  # seconds

CACHE_DIR: str = os.getenv("CACHE_DIR", ".cache/generations")
GALLERY_URL: str = os.getenv("GALLERY_URL", "")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
ALLOWED_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]

# Modelos cargados en el backend
UNET_MODEL: str = os.getenv("UNET_MODEL", "flux1-dev.safetensors")
UNET_WEIGHT_DTYPE: str = "fp8_e4m3fn"
CLIP_MODEL_1: str = os.getenv("CLIP_MODEL_1", "t5xxl_fp8_e4m3fn.safetensors")
CLIP_MODEL_2: str = os.getenv("CLIP_MODEL_2", "clip_l.safetensors")
VAE_MODEL: str = os.getenv("VAE_MODEL", "ae.safetensors")
REDUX_MODEL: str = os.getenv("REDUX_MODEL", "flux1-redux-dev.safetensors")
CLIP_VISION_MODEL: str = os.getenv("CLIP_VISION_MODEL", "sigclip_vision_patch14_384.safetensors")

# Style adapters (LoRA) known to the service: id -> filename on the backend.
DEFAULT_STYLE_MODEL: str = "aidmaImageUprader-FLUX-v0.3.safetensors"
STYLE_MODELS: dict[str, str] = json.loads(
    os.getenv(
        "STYLE_MODELS",
        json.dumps({"image-upgrader": DEFAULT_STYLE_MODEL}),
    )
)

DEFAULT_NEGATIVE_PROMPT: str = (
    "blurry, low quality, distorted, watermark, signature, text, logo, "
    "bad anatomy, deformed, ugly"
)

DEFAULT_BRUSH_SIZE: int = 40
MASK_OVERLAY_OPACITY: float = 0.5
