"""
Luma AI Integration
Creates a capture from a set of images (sent inline as data URIs) or from a
video, then polls the capture until Luma finishes reconstructing it.

Capture status literals: pending, processing, completed, failed.
"""
import logging
import time
from typing import Dict, List, Optional

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

CAPTURE_QUALITY = {"high": "high", "medium": "standard", "low": "draft"}


class LumaClient(HTTPProviderClient):
    tag = "Luma"
    health_path = "/captures"
    poll_interval = 10.0
    max_poll_attempts = 60

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"luma-api-key={self.config.api_key}"}

    def interpret(self, capture: Dict) -> JobState:
        if not isinstance(capture, dict):
            raise ProviderResponseError(self.name, "capture status is not a JSON object")
        status = capture.get("status")
        if status == "completed":
            return JobState(JOB_SUCCEEDED, output=capture, raw_status=status)
        if status == "failed":
            return JobState(JOB_FAILED, error=capture.get("error") or "capture failed", raw_status=status)
        if status in ("pending", "processing"):
            return JobState(JOB_PENDING, raw_status=status)
        raise ProviderResponseError(self.name, f"unknown capture status {status!r}")

    async def create_capture(
        self,
        title: str,
        images: List[ImagePayload],
        video: Optional[VideoPayload],
        quality: str,
        texture_resolution: int,
        output_type: str = "mesh",
    ) -> Dict:
        """
        Submit a capture and wait for it to complete.

        Returns:
            The completed capture payload (downloadUrl/previewUrl).
        """
        if video is not None:
            source = {"type": "video", "url": video.to_data_uri()}
        else:
            source = {"type": "images", "urls": [image.to_data_uri() for image in images]}

        logger.info(
            f"[{self.tag}] Creating capture '{title}' from {source['type']} "
            f"(quality={quality}, texture={texture_resolution})"
        )
        created = await self.request_json("POST", self.url("/captures"), json={
            "title": title,
            "input": source,
            "output": {
                "type": output_type,
                "quality": quality,
                "texture_resolution": texture_resolution,
            },
        })
        capture_id = created.get("id") if isinstance(created, dict) else None
        if not capture_id:
            raise ProviderResponseError(self.name, "capture response carried no id")

        async def fetch_status():
            return await self.request_json("GET", self.url(f"/captures/{capture_id}"))

        return await self.poll_job(
            capture_id,
            fetch_status,
            self.interpret,
            self.poll_interval,
            self.max_poll_attempts,
        )

    def _download_url(self, capture: Dict) -> str:
        url = capture.get("downloadUrl")
        if not url:
            raise ProviderResponseError(self.name, "completed capture has no downloadUrl")
        return url

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        capture = await self.create_capture(
            f"body_scan_{int(time.time() * 1000)}",
            images,
            video,
            quality=CAPTURE_QUALITY[options.quality],
            texture_resolution=4096 if options.quality == "high" else 2048,
        )
        url = self._download_url(capture)
        logger.info(f"[{self.tag}] Body capture ready: {url[:80]}")
        return BodyModel3D(
            id=capture.get("id") or new_model_id("luma_body"),
            provider=self.name,
            download_url=url,
            preview_url=capture.get("previewUrl"),
            source_format=guess_file_type(url) or "glb",
        )

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        capture = await self.create_capture(
            f"clothing_{options.category}_{int(time.time() * 1000)}",
            [image],
            None,
            quality="standard",
            texture_resolution=2048,
        )
        url = self._download_url(capture)
        logger.info(f"[{self.tag}] Clothing capture ready: {url[:80]}")
        return ClothingModel3D(
            id=capture.get("id") or new_model_id("luma_clothing"),
            provider=self.name,
            category=options.category,
            download_url=url,
            preview_url=capture.get("previewUrl"),
            source_format=guess_file_type(url) or "glb",
        )
