"""
Gaussian Splatting Integration
Open-source 3D gaussian splatting models hosted on Replicate: a set of images
or an orbit video becomes a .splat/.ply point cloud, optionally converted to a
GLB mesh afterwards.

Training takes long, so predictions are polled every 10s for up to 30 minutes.
"""
import logging
from typing import Any, Dict, List, Optional

from gateway.errors import ProviderError, ProviderResponseError
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
from providers.replicate import ReplicateClient, first_url

logger = logging.getLogger(__name__)

VIDEO_TO_SPLAT_MODEL = "cjwbw/gaussian-splatting:latest"
SPLAT_TO_MESH_MODEL = "camenduru/sugar:latest"

SPLAT_TRAINING = {
    "num_iterations": 7000,
    "sh_degree": 3,
    "densify_grad_threshold": 0.0002,
    "densify_until_iter": 15000,
}


def parse_splat_output(output: Any) -> Dict[str, Optional[str]]:
    """Normalize a splat prediction output (dict of URLs or list of URLs)."""
    if isinstance(output, dict):
        return {
            "splat": output.get("splat") or first_url(output.get("output")),
            "ply": output.get("ply"),
            "mesh": output.get("mesh"),
            "preview": output.get("preview"),
        }
    return {"splat": first_url(output), "ply": None, "mesh": None, "preview": None}


class GaussianSplattingClient(ReplicateClient):
    tag = "GaussianSplatting"
    poll_interval = 10.0
    max_poll_attempts = 180
    convert_to_mesh = True

    async def create_splat(
        self,
        images: List[ImagePayload],
        video: Optional[VideoPayload] = None,
    ) -> Dict[str, Optional[str]]:
        if video is not None:
            logger.info(f"[{self.tag}] Training splat from video ({video.size_bytes} bytes)")
            output = await self.run_prediction(VIDEO_TO_SPLAT_MODEL, {
                "video": video.to_data_uri(),
                "num_iterations": 7000,
                "extract_frames": True,
                "frame_interval": 5,
            })
        else:
            logger.info(f"[{self.tag}] Training splat from {len(images)} image(s)")
            output = await self.run_prediction(self.config.model, {
                "images": [image.to_data_uri() for image in images],
                **SPLAT_TRAINING,
            })

        result = parse_splat_output(output)
        if not (result["splat"] or result["ply"] or result["mesh"]):
            raise ProviderResponseError(self.name, f"splat output has no usable URL: {output!r}")
        return result

    async def convert_splat_to_mesh(self, splat_url: str) -> Optional[str]:
        """Run SuGaR on the splat. A failed conversion keeps the splat result."""
        try:
            output = await self.run_prediction(SPLAT_TO_MESH_MODEL, {
                "splat_file": splat_url,
                "output_format": "glb",
                "simplify": True,
                "target_faces": 50000,
            })
        except ProviderError as e:
            logger.warning(f"[{self.tag}] Mesh conversion failed, keeping splat: {e}")
            return None
        return first_url(output)

    async def _build(self, images: List[ImagePayload], video: Optional[VideoPayload]) -> Dict:
        result = await self.create_splat(images, video)
        splat_url = result["splat"] or result["ply"]
        if self.convert_to_mesh and not result["mesh"] and splat_url:
            result["mesh"] = await self.convert_splat_to_mesh(splat_url)

        download_url = result["mesh"] or splat_url
        if result["mesh"]:
            source_format = guess_file_type(result["mesh"]) or "glb"
        else:
            source_format = guess_file_type(download_url) or "ply"
        return {
            "download_url": download_url,
            "preview_url": result["preview"],
            "source_format": source_format,
        }

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        fields = await self._build(images, video)
        logger.info(f"[{self.tag}] Body model ready: {fields['download_url'][:80]}")
        return BodyModel3D(id=new_model_id("gs_body"), provider=self.name, **fields)

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        fields = await self._build([image], None)
        logger.info(f"[{self.tag}] Clothing model ready: {fields['download_url'][:80]}")
        return ClothingModel3D(
            id=new_model_id("gs_clothing"),
            provider=self.name,
            category=options.category,
            **fields,
        )
