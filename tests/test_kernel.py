"""OllamaKernel against a mocked Ollama HTTP API."""

import json

import httpx
import pytest

from cerebellum_router import OllamaKernel, resolve_config

CONFIG = resolve_config({"model": "qwen2.5:0.5b", "baseUrl": "http://ollama.test:11434/"})


def _transport(models=("qwen2.5:0.5b",), generate=None, tags_error=None, pull_status=200):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            if tags_error:
                raise tags_error(request)
            return httpx.Response(200, json={"models": [{"name": m} for m in models]})
        if request.url.path == "/api/generate":
            seen["generate"] = json.loads(request.content)
            if generate is not None:
                return generate(request)
            return httpx.Response(200, json={
                "model": "qwen2.5:0.5b",
                "response": "Paris",
                "done": True,
                "prompt_eval_count": 7,
                "eval_count": 3,
            })
        if request.url.path == "/api/pull":
            seen["pull"] = json.loads(request.content)
            return httpx.Response(pull_status, text="pull failed" if pull_status >= 400 else "{}")
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


@pytest.mark.asyncio
async def test_generate_success():
    transport, seen = _transport()
    kernel = OllamaKernel(CONFIG, transport=transport)

    r = await kernel.generate("Capital of France?", "Be brief", temperature=0.5, max_tokens=512)

    assert r.success is True
    assert r.text == "Paris"
    assert r.error is None
    assert r.usage.input == 7 and r.usage.output == 3 and r.usage.total == 10
    assert r.duration_ms >= 0
    body = seen["generate"]
    assert body["model"] == "qwen2.5:0.5b"
    assert body["stream"] is False
    assert body["system"] == "Be brief"
    assert body["options"] == {"temperature": 0.5, "num_predict": 512, "top_p": 0.9, "top_k": 40}


@pytest.mark.asyncio
async def test_generate_without_system_prompt():
    transport, seen = _transport()
    await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert "system" not in seen["generate"]
    assert seen["generate"]["options"]["num_predict"] == 2048


@pytest.mark.asyncio
async def test_generate_backend_down():
    transport, _ = _transport(tags_error=lambda req: httpx.ConnectError("refused", request=req))
    r = await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert r.success is False
    assert r.text == ""
    assert "not available" in r.error


@pytest.mark.asyncio
async def test_generate_model_missing():
    transport, seen = _transport(models=("llama3:latest",))
    r = await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert r.success is False
    assert "ollama pull qwen2.5:0.5b" in r.error
    assert "generate" not in seen


@pytest.mark.asyncio
async def test_generate_http_error():
    transport, _ = _transport(generate=lambda req: httpx.Response(500, text="out of memory"))
    r = await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert r.success is False
    assert "Ollama API error (500)" in r.error
    assert "out of memory" in r.error


@pytest.mark.asyncio
async def test_generate_timeout():
    def slow(req):
        raise httpx.ReadTimeout("timed out", request=req)

    transport, _ = _transport(generate=slow)
    r = await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert r.success is False
    assert "timed out" in r.error


@pytest.mark.asyncio
async def test_generate_bad_json():
    transport, _ = _transport(generate=lambda req: httpx.Response(200, text="<html>"))
    r = await OllamaKernel(CONFIG, transport=transport).generate("hi")
    assert r.success is False
    assert r.error


@pytest.mark.asyncio
async def test_model_prefix_match():
    transport, _ = _transport(models=("llama3:latest",))
    kernel = OllamaKernel(resolve_config({"model": "llama3"}), transport=transport)
    assert await kernel.is_model_available() is True
    assert await kernel.is_model_available("llama") is False
    assert await kernel.list_models() == ["llama3:latest"]


@pytest.mark.asyncio
async def test_list_models_on_error():
    transport, _ = _transport(tags_error=lambda req: httpx.ConnectTimeout("slow", request=req))
    kernel = OllamaKernel(CONFIG, transport=transport)
    assert await kernel.list_models() == []
    assert await kernel.is_available() is False


@pytest.mark.asyncio
async def test_pull_model():
    transport, seen = _transport()
    ok, error = await OllamaKernel(CONFIG, transport=transport).pull_model("phi3")
    assert ok is True and error is None
    assert seen["pull"]["name"] == "phi3"
    assert seen["pull"]["stream"] is False

    transport, _ = _transport(pull_status=500)
    ok, error = await OllamaKernel(CONFIG, transport=transport).pull_model()
    assert ok is False
    assert "pull failed" in error


@pytest.mark.asyncio
async def test_get_status():
    transport, _ = _transport(models=())
    status = await OllamaKernel(CONFIG, transport=transport).get_status()
    assert status.available is True
    assert status.model_available is False
    assert status.model == "qwen2.5:0.5b"
