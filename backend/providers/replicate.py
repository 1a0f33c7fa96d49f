"""
Replicate Integration
Background removal (rembg) followed by TripoSR image-to-3D, both as Replicate
predictions that are polled until they settle.

Prediction status literals: starting, processing, succeeded, failed, canceled.
"""
import logging
from typing import Any, Dict, List, Optional

from gateway.errors import ProviderResponseError
from gateway.normalizer import guess_file_type
from gateway.schemas import (
    BodyModel3D,
    BodyScanOptions,
    ClothingGenOptions,
    ClothingModel3D,
    ImagePayload,
    VideoPayload,
    new_model_id,
)
from providers.base import JOB_FAILED, JOB_PENDING, JOB_SUCCEEDED, HTTPProviderClient, JobState

logger = logging.getLogger(__name__)

REMOVE_BG_MODEL = "cjwbw/rembg:fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003"

# mc_resolution by requested quality
BODY_MC_RESOLUTION = {"high": 256, "medium": 192, "low": 128}
CLOTHING_MC_RESOLUTION = 192

PENDING_STATUSES = ("starting", "processing")


def interpret_prediction(prediction: Dict, provider: str = "replicate") -> JobState:
    """Map a Replicate prediction payload onto a JobState."""
    status = prediction.get("status")
    if status == "succeeded":
        return JobState(JOB_SUCCEEDED, output=prediction.get("output"), raw_status=status)
    if status == "failed":
        return JobState(JOB_FAILED, error=prediction.get("error") or "prediction failed", raw_status=status)
    if status == "canceled":
        return JobState(JOB_FAILED, error="prediction canceled", raw_status=status)
    if status in PENDING_STATUSES:
        return JobState(JOB_PENDING, raw_status=status)
    raise ProviderResponseError(provider, f"unknown prediction status {status!r}")


def first_url(output: Any) -> Optional[str]:
    """Replicate outputs are a URL string or a list of URLs."""
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list):
        for item in output:
            if isinstance(item, str) and item:
                return item
    return None


class ReplicateClient(HTTPProviderClient):
    tag = "Replicate"
    poll_interval = 5.0
    max_poll_attempts = 60

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.config.api_key}"}

    async def run_prediction(self, model: str, inputs: Dict) -> Any:
        """
        Create a prediction and poll it to completion.

        ``owner/name:version`` posts to /predictions with the version hash;
        a bare ``owner/name`` uses the model's own predictions endpoint.
        """
        if ":" in model:
            url = self.url("/predictions")
            body = {"version": model.split(":", 1)[1], "input": inputs}
        else:
            url = self.url(f"/models/{model}/predictions")
            body = {"input": inputs}

        logger.info(f"[{self.tag}] Creating prediction on {model.split(':')[0]}")
        created = await self.request_json("POST", url, json=body)
        prediction_id = created.get("id") if isinstance(created, dict) else None
        if not prediction_id:
            raise ProviderResponseError(self.name, "prediction response carried no id")

        async def fetch_status():
            return await self.request_json("GET", self.url(f"/predictions/{prediction_id}"))

        return await self.poll_job(
            prediction_id,
            fetch_status,
            self.interpret,
            self.poll_interval,
            self.max_poll_attempts,
        )

    def interpret(self, prediction: Dict) -> JobState:
        if not isinstance(prediction, dict):
            raise ProviderResponseError(self.name, "prediction status is not a JSON object")
        return interpret_prediction(prediction, self.name)

    async def remove_background(self, image: ImagePayload) -> str:
        output = await self.run_prediction(REMOVE_BG_MODEL, {"image": image.to_data_uri()})
        cleaned = first_url(output)
        if not cleaned:
            raise ProviderResponseError(self.name, "background removal returned no image")
        return cleaned

    def _model_url(self, output: Any) -> str:
        url = first_url(output)
        if not url:
            raise ProviderResponseError(self.name, f"prediction output has no model URL: {output!r}")
        return url

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        self.require_images(images, video)
        cleaned = await self.remove_background(images[0])
        output = await self.run_prediction(self.config.model, {
            "image": cleaned,
            "foreground_ratio": 0.85,
            "mc_resolution": BODY_MC_RESOLUTION[options.quality],
        })
        url = self._model_url(output)
        logger.info(f"[{self.tag}] Body model ready: {url[:80]}")
        return BodyModel3D(
            id=new_model_id("replicate_body"),
            provider=self.name,
            download_url=url,
            source_format=guess_file_type(url) or "glb",
        )

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        cleaned = await self.remove_background(image)
        output = await self.run_prediction(self.config.model, {
            "image": cleaned,
            "foreground_ratio": 0.9,
            "mc_resolution": CLOTHING_MC_RESOLUTION,
        })
        url = self._model_url(output)
        logger.info(f"[{self.tag}] Clothing model ready: {url[:80]}")
        return ClothingModel3D(
            id=new_model_id("replicate_clothing"),
            provider=self.name,
            category=options.category,
            download_url=url,
            source_format=guess_file_type(url) or "glb",
        )
