"""Replicate-hosted face-swap and face restoration models."""

import asyncio
import logging
from dataclasses import dataclass

import httpx
import replicate

from story_personalizer.services.images import to_data_url
from story_personalizer.services.postprocess import (
    IdentityTransferClient,
    RestorationClient,
)

_logger = logging.getLogger(__name__)

DEFAULT_SWAP_MODEL = "cdingram/face-swap"
CODEFORMER_MODEL = (
    "sczhou/codeformer:cc4956dd26fa5a7185d5660cc9100fab1b8070a1d1654a8bb5eb6d443b020bb2"
)
GFPGAN_MODEL = (
    "tencentarc/gfpgan:0fbacf7afc6c144e5be9767cff80f25aff23e52b0708f17e20f9879b2f21516c"
)


@dataclass(frozen=True)
class SwapModelConfig:
    """Pinned version and input names of a face-swap model."""

    version: str | None
    target_input: str = "input_image"
    source_input: str = "swap_image"


SWAP_MODELS: dict[str, SwapModelConfig] = {
    "cdingram/face-swap": SwapModelConfig(
        version="d1d6ea8c8be89d664a07a457526f7128109dee7030fdac424788d762c71ed111"
    ),
    "codeplugtech/face-swap": SwapModelConfig(
        version="278a81e7ebb22db98bcba54de985d22cc1abeead2754eb1f2af717247be69b34"
    ),
    "easel/advanced-face-swap": SwapModelConfig(
        version=None, target_input="target_image"
    ),
}


def resolve_swap_model(model: str) -> tuple[str, SwapModelConfig]:
    """Return the versioned model reference and its input names."""
    name = model.split(":", 1)[0]
    config = SWAP_MODELS.get(name, SwapModelConfig(version=None))
    if ":" in model or not config.version:
        return model, config
    return f"{model}:{config.version}", config


@dataclass
class ReplicateFaceClient(IdentityTransferClient, RestorationClient):
    """Runs face models on Replicate and downloads their outputs."""

    client: replicate.Client
    http_client: httpx.AsyncClient
    swap_timeout_seconds: float = 120
    restore_timeout_seconds: float = 60

    @classmethod
    def create(cls, api_token: str) -> "ReplicateFaceClient":
        """Create a Replicate client with a managed httpx session."""
        return cls(
            client=replicate.Client(api_token=api_token),
            http_client=httpx.AsyncClient(),
        )

    async def transfer(
        self, *, image: bytes, reference: bytes, model: str | None = None
    ) -> bytes:
        """Swap the reference face onto the generated image."""
        model_ref, config = resolve_swap_model(model or DEFAULT_SWAP_MODEL)
        _logger.info("Running face swap with %s", model_ref)
        output = await self._run(
            model_ref,
            {
                config.target_input: to_data_url(image),
                config.source_input: to_data_url(reference),
            },
            self.swap_timeout_seconds,
        )
        return await self._download(output)

    async def restore(self, *, image: bytes, model: str, fidelity: float) -> bytes:
        """Restore facial detail with CodeFormer or GFPGAN."""
        if model == "gfpgan":
            model_ref = GFPGAN_MODEL
            payload: dict[str, object] = {
                "img": to_data_url(image),
                "version": "v1.4",
                "scale": 2,
            }
        else:
            model_ref = CODEFORMER_MODEL
            payload = {
                "image": to_data_url(image),
                "codeformer_fidelity": fidelity,
                "background_enhance": True,
                "face_upsample": True,
                "upscale": 2,
            }
        _logger.info("Running face restoration with %s", model_ref)
        output = await self._run(model_ref, payload, self.restore_timeout_seconds)
        return await self._download(output)

    async def _run(
        self, model_ref: str, payload: dict[str, object], timeout: float
    ) -> object:
        try:
            return await asyncio.wait_for(
                self.client.async_run(model_ref, input=payload), timeout=timeout
            )
        except TimeoutError as exc:
            raise RuntimeError(f"Replicate timed out after {timeout:g}s") from exc

    async def _download(self, output: object) -> bytes:
        url = _output_url(output)
        response = await self.http_client.get(url, timeout=60)
        response.raise_for_status()
        return response.content

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()


def _output_url(output: object) -> str:
    if isinstance(output, list | tuple):
        if not output:
            raise RuntimeError("Replicate returned an empty output list")
        output = output[0]
    if isinstance(output, str):
        return output
    url = getattr(output, "url", None)
    if isinstance(url, str) and url:
        return url
    raise RuntimeError(f"Unexpected Replicate output: {type(output).__name__}")
