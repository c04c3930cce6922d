import random
import uuid

import requests

from comfyflow.config import HTTP_TIMEOUT

MAX_SEED = 2**32 - 1


def define_seed(seed: int | None) -> int:
    """
    Resolve the sampler seed: a fresh unsigned 32-bit value when none is given,
    otherwise the seed itself.
    """
    return random.randint(0, MAX_SEED) if seed is None else seed


def new_client_id() -> str:
    return uuid.uuid4().hex


def is_remote_url(data):
    """
    Whether the image payload points to an http(s) resource instead of carrying base64
    """
    return data.startswith(("http://", "https://"))


def get_image_bytes_from_url(url):
    resp = requests.get(url, timeout=HTTP_TIMEOUT)
    if resp.status_code != 200:
        raise ValueError(f"Failed to fetch image from {url}: HTTP {resp.status_code}")
    return resp.content


def remove_b64_header(data):
    """
    Strip the ``data:image/...;base64,`` prefix of a data URL, dropping
    whitespace and restoring the padding browsers sometimes omit.
    """
    if not data.startswith("data:image/"):
        return data
    _, _, payload = data.partition(",")
    payload = "".join(payload.split())
    return payload + "=" * (-len(payload) % 4)
