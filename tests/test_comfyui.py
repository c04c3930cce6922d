import pytest
import requests

import comfyflow.comfyui as comfyui
from comfyflow.comfyui import ComfyUIClient, OutputImage, parse_history
from comfyflow.errors import PollTransientError, SubmissionError, UploadError


class FakeResponse:
    def __init__(self, status_code=200, body=None, text="", reason="OK"):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.text = text
        self.reason = reason
        self.content = b"bytes"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    def raise_for_status(self):
        if not self.ok:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def client():
    return ComfyUIClient("http://comfy:8188/")


def test_history_absent_means_running():
    assert parse_history("abc", {}).status == "running"


def test_history_completed_collects_all_output_images():
    history = {
        "abc": {
            "status": {"status_str": "success", "completed": True, "messages": []},
            "outputs": {
                "9": {"images": [
                    {"filename": "a_00001_.png", "subfolder": "", "type": "output"},
                    {"filename": "a_00002_.png", "subfolder": "", "type": "output"},
                ]},
                "12": {"images": [{"filename": "b.png", "subfolder": "sub", "type": "temp"}]},
            },
        }
    }
    result = parse_history("abc", history)
    assert result.status == "completed"
    assert [o.filename for o in result.outputs] == ["a_00001_.png", "a_00002_.png", "b.png"]
    assert result.outputs[2].asset_ref == "sub/b.png"
    assert result.outputs[2].node_id == "12"


def test_history_error_extracts_exception_message():
    history = {
        "abc": {
            "status": {
                "status_str": "error",
                "completed": False,
                "messages": [
                    ["execution_start", {"prompt_id": "abc"}],
                    ["execution_error", {"exception_message": "CUDA out of memory"}],
                ],
            },
            "outputs": {},
        }
    }
    result = parse_history("abc", history)
    assert result.status == "error"
    assert result.error_text == "Generation failed with error: CUDA out of memory"


def test_history_entry_without_completion_is_running():
    history = {"abc": {"status": {"status_str": "success", "completed": False}, "outputs": {}}}
    assert parse_history("abc", history).status == "running"


def test_image_url(client):
    url = client.image_url(OutputImage(node_id="9", filename="a b.png", subfolder="x"))
    assert url == "http://comfy:8188/view?filename=a+b.png&subfolder=x&type=output"


def test_post_image_returns_backend_name(client, monkeypatch):
    calls = {}

    def fake_post(url, data=None, files=None, timeout=None):
        calls["url"] = url
        calls["data"] = data
        return FakeResponse(body={"name": "mask.png", "subfolder": "", "type": "input"})

    monkeypatch.setattr(comfyui.requests, "post", fake_post)
    assert client.post_image("mask.png", b"png", "mask")["name"] == "mask.png"
    assert calls["url"] == "http://comfy:8188/upload/image"
    assert calls["data"]["overwrite"] == "true"


def test_post_image_rejected(client, monkeypatch):
    monkeypatch.setattr(
        comfyui.requests, "post", lambda *a, **kw: FakeResponse(status_code=500, text="disk full")
    )
    with pytest.raises(UploadError, match="500"):
        client.post_image("a.png", b"png", "image")


def test_post_image_connection_error(client, monkeypatch):
    def fail(*a, **kw):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(comfyui.requests, "post", fail)
    with pytest.raises(UploadError):
        client.post_image("a.png", b"png", "image")


def test_queue_prompt_sends_client_id(client, monkeypatch):
    sent = {}

    def fake_post(url, json=None, timeout=None):
        sent.update(json)
        return FakeResponse(body={"prompt_id": "p1", "number": 3})

    monkeypatch.setattr(comfyui.requests, "post", fake_post)
    assert client.queue_prompt({"1": {}}, "client-9")["prompt_id"] == "p1"
    assert sent == {"prompt": {"1": {}}, "client_id": "client-9"}


def test_queue_prompt_rejected(client, monkeypatch):
    monkeypatch.setattr(
        comfyui.requests,
        "post",
        lambda *a, **kw: FakeResponse(status_code=400, reason="Bad Request", text='{"error": "invalid prompt"}'),
    )
    with pytest.raises(SubmissionError, match="400 Bad Request"):
        client.queue_prompt({}, "c")


def test_queue_prompt_without_prompt_id(client, monkeypatch):
    monkeypatch.setattr(comfyui.requests, "post", lambda *a, **kw: FakeResponse(body={"error": "?"}))
    with pytest.raises(SubmissionError):
        client.queue_prompt({}, "c")


def test_poll_wraps_transport_failures(client, monkeypatch):
    monkeypatch.setattr(comfyui.requests, "get", lambda *a, **kw: FakeResponse(status_code=502))
    with pytest.raises(PollTransientError):
        client.poll("p1")


def test_poll_parses_history(client, monkeypatch):
    urls = []

    def fake_get(url, timeout=None):
        urls.append(url)
        return FakeResponse(body={})

    monkeypatch.setattr(comfyui.requests, "get", fake_get)
    assert client.poll("p1").status == "running"
    assert urls == ["http://comfy:8188/history/p1"]


def test_list_style_models(client, monkeypatch):
    body = {"LoraLoader": {"input": {"required": {"lora_name": [["a.safetensors", "b.safetensors"]]}}}}
    monkeypatch.setattr(comfyui.requests, "get", lambda *a, **kw: FakeResponse(body=body))
    assert client.list_style_models() == ["a.safetensors", "b.safetensors"]


def _html_page():
    return FakeResponse(body=requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0), text="<html>proxy</html>")


def test_post_image_non_json_body(client, monkeypatch):
    monkeypatch.setattr(comfyui.requests, "post", lambda *a, **kw: _html_page())
    with pytest.raises(UploadError, match="invalid response"):
        client.post_image("mask.png", b"png", "mask")


def test_queue_prompt_non_json_body(client, monkeypatch):
    monkeypatch.setattr(comfyui.requests, "post", lambda *a, **kw: _html_page())
    with pytest.raises(SubmissionError, match="invalid response"):
        client.queue_prompt({}, "c")
