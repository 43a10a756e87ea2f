from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from config.defaults import COMFY_POLL_INTERVAL_SECONDS
from config.defaults import COMFY_TIMEOUT_SECONDS
from services.http_retry import request_with_retry

ZIMAGE_ARCH = "ZImage"
ZIMAGE_UNET = "z_image_turbo_bf16.safetensors"
ZIMAGE_CLIP = "qwen_3_4b.safetensors"
ZIMAGE_VAE = "flux1_ae.safetensors"

DEFAULT_NEGATIVE = "text, watermark, blurry"
DEFAULT_IMG2IMG_DENOISE = 0.8


class ComfyError(RuntimeError):
    pass


@dataclass(slots=True)
class ImageRequest:
    checkpoint: str
    prompt: str
    width: int
    height: int
    seed: int
    negative: str = DEFAULT_NEGATIVE
    arch: str = ""
    steps: int | None = None
    cfg: float | None = None
    sampler: str = "euler"
    scheduler: str | None = None
    denoise: float | None = None
    source_image: str | None = None  # name returned by /upload/image


def _sampler_defaults(arch: str) -> tuple[int, float, str]:
    if arch == ZIMAGE_ARCH:
        return (9, 1.0, "simple")
    return (20, 8.0, "normal")


class _Graph:
    def __init__(self) -> None:
        self.nodes: dict[str, dict] = {}

    def add(self, class_type: str, **inputs) -> str:
        node_id = str(len(self.nodes) + 1)
        self.nodes[node_id] = {"class_type": class_type, "inputs": inputs}
        return node_id


def build_workflow(request: ImageRequest) -> tuple[dict[str, dict], str]:
    """
    Build a ComfyUI API-format prompt graph for `request`.

    Returns (graph, output_node_id). Links are `[node_id, output_index]` pairs.
    """
    g = _Graph()
    if request.arch == ZIMAGE_ARCH:
        model = [g.add("UNETLoader", unet_name=ZIMAGE_UNET, weight_dtype="default"), 0]
        clip = [g.add("CLIPLoader", clip_name=ZIMAGE_CLIP, type="lumina2", device="default"), 0]
        vae = [g.add("VAELoader", vae_name=ZIMAGE_VAE), 0]
    else:
        ckpt = g.add("CheckpointLoaderSimple", ckpt_name=request.checkpoint)
        model, clip, vae = [ckpt, 0], [ckpt, 1], [ckpt, 2]

    if request.source_image:
        loaded = g.add("LoadImage", image=request.source_image)
        scaled = g.add(
            "ImageScale",
            image=[loaded, 0],
            width=int(request.width),
            height=int(request.height),
            upscale_method="bicubic",
            crop="disabled",
        )
        latent = [g.add("VAEEncode", pixels=[scaled, 0], vae=vae), 0]
        denoise = DEFAULT_IMG2IMG_DENOISE if request.denoise is None else float(request.denoise)
    else:
        latent_type = "EmptySD3LatentImage" if request.arch == ZIMAGE_ARCH else "EmptyLatentImage"
        latent = [g.add(latent_type, width=int(request.width), height=int(request.height), batch_size=1), 0]
        denoise = 1.0 if request.denoise is None else float(request.denoise)

    steps, cfg, scheduler = _sampler_defaults(request.arch)
    positive = g.add("CLIPTextEncode", text=request.prompt, clip=clip)
    negative = g.add("CLIPTextEncode", text=request.negative, clip=clip)
    sampler = g.add(
        "KSampler",
        model=model,
        seed=int(request.seed),
        steps=int(request.steps if request.steps is not None else steps),
        cfg=float(request.cfg if request.cfg is not None else cfg),
        sampler_name=request.sampler or "euler",
        scheduler=request.scheduler or scheduler,
        positive=[positive, 0],
        negative=[negative, 0],
        latent_image=latent,
        denoise=denoise,
    )
    decoded = g.add("VAEDecode", samples=[sampler, 0], vae=vae)
    preview = g.add("PreviewImage", images=[decoded, 0])
    return (g.nodes, preview)


class ComfyClient:
    def __init__(
        self,
        http_client: httpx.Client,
        *,
        base_url: str,
        poll_interval: float = COMFY_POLL_INTERVAL_SECONDS,
        timeout: float = COMFY_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.poll_interval = float(poll_interval)
        self.timeout = float(timeout)
        self.client_id = uuid.uuid4().hex
        self._sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def upload_image(self, filename: str, data: bytes) -> str:
        response = request_with_retry(
            self.http_client,
            "POST",
            self._url("/upload/image"),
            files={"image": (filename, data, "application/octet-stream")},
            data={"overwrite": "true"},
        )
        payload = response.json()
        name = str(payload.get("name") or "")
        if not name:
            raise ComfyError("upload returned no image name")
        subfolder = str(payload.get("subfolder") or "")
        return f"{subfolder}/{name}" if subfolder else name

    def queue(self, graph: dict) -> str:
        response = request_with_retry(
            self.http_client,
            "POST",
            self._url("/prompt"),
            json={"prompt": graph, "client_id": self.client_id},
        )
        payload = response.json()
        if payload.get("node_errors"):
            raise ComfyError(f"workflow rejected: {payload['node_errors']}")
        prompt_id = str(payload.get("prompt_id") or "")
        if not prompt_id:
            raise ComfyError("queue returned no prompt id")
        return prompt_id

    def _forget(self, prompt_id: str) -> None:
        try:
            self.http_client.post(self._url("/queue"), json={"delete": [prompt_id]})
        except httpx.HTTPError as e:
            print(f"[Comfy] failed to dequeue {prompt_id}: {e}")

    def wait_for(self, prompt_id: str, *, check_cancelled: Callable[[], None] | None = None) -> dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        while True:
            if check_cancelled is not None:
                try:
                    check_cancelled()
                except Exception:
                    self._forget(prompt_id)
                    raise
            response = request_with_retry(self.http_client, "GET", self._url(f"/history/{prompt_id}"))
            entry = response.json().get(prompt_id)
            if entry:
                status = entry.get("status") or {}
                if status.get("status_str") == "error":
                    raise ComfyError(f"generation failed: {status.get('messages') or 'unknown error'}")
                if status.get("completed", True):
                    return entry.get("outputs") or {}
            if time.monotonic() > deadline:
                self._forget(prompt_id)
                raise ComfyError(f"timed out after {self.timeout:.0f}s waiting for {prompt_id}")
            self._sleep(self.poll_interval)

    def download(self, image: dict) -> bytes:
        params = {
            "filename": str(image.get("filename") or ""),
            "subfolder": str(image.get("subfolder") or ""),
            "type": str(image.get("type") or "output"),
        }
        response = request_with_retry(self.http_client, "GET", self._url("/view"), params=params)
        return response.content

    def generate(
        self,
        request: ImageRequest,
        *,
        source_image: bytes | None = None,
        check_cancelled: Callable[[], None] | None = None,
    ) -> list[bytes]:
        if source_image is not None:
            request.source_image = self.upload_image(f"source_{uuid.uuid4().hex[:8]}.png", source_image)
        graph, output_node = build_workflow(request)
        prompt_id = self.queue(graph)
        print(f"[Comfy] queued {prompt_id} seed={request.seed} checkpoint={request.checkpoint}")
        outputs = self.wait_for(prompt_id, check_cancelled=check_cancelled)
        images = (outputs.get(output_node) or {}).get("images") or []
        return [self.download(image) for image in images]
