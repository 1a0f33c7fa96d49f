"""
Stability AI Integration
Upscales the input photos with ESRGAN, then builds a basic parametric body or
garment mesh locally. The geometry is a placeholder, not a reconstruction.
"""
import logging
from typing import List, Optional

from gateway.errors import ProviderError
from gateway.normalizer import DEFAULT_MEASUREMENTS, synthesize_body_mesh, synthesize_clothing_mesh
from gateway.schemas import (
    Bone,
    BodyModel3D,
    BodyScanOptions,
    ClothingGenOptions,
    ClothingModel3D,
    ImagePayload,
    Joint,
    MaterialProperties,
    PhysicsProperties,
    SkeletonData,
    VideoPayload,
    new_model_id,
)
from providers.base import HTTPProviderClient

logger = logging.getLogger(__name__)

UPSCALE_WIDTH = 1024


def basic_skeleton() -> SkeletonData:
    """Spine -> chest -> head, one ball joint per bone."""
    return SkeletonData(
        bones=[
            Bone(id="spine", name="Spine", position=(0.0, 0.0, 0.0)),
            Bone(id="chest", name="Chest", parent="spine", position=(0.0, 0.3, 0.0)),
            Bone(id="head", name="Head", parent="chest", position=(0.0, 0.5, 0.0)),
        ],
        joints=[
            Joint(id="spine_joint", position=(0.0, 0.0, 0.0)),
            Joint(id="chest_joint", position=(0.0, 0.3, 0.0)),
            Joint(id="neck_joint", position=(0.0, 0.5, 0.0)),
        ],
    )


def basic_fabric() -> MaterialProperties:
    return MaterialProperties(name="fabric", diffuse="#ffffff", roughness=0.8, metallic=0.0)


def basic_physics() -> PhysicsProperties:
    return PhysicsProperties(mass=0.5, elasticity=0.3, friction=0.7, damping=0.1)


class StabilityClient(HTTPProviderClient):
    tag = "Stability"
    health_path = "/v1/user/account"

    def upscale_url(self) -> str:
        engine = self.config.model or "esrgan-v1-x2plus"
        return self.url(f"/v1/generation/{engine}/image-to-image/upscale")

    async def upscale_image(self, image: ImagePayload) -> ImagePayload:
        response = await self.request(
            "POST",
            self.upscale_url(),
            files={"image": (image.name or "image", image.data, image.mime_type)},
            data={"width": str(UPSCALE_WIDTH)},
            headers={"Accept": "image/*"},
        )
        return ImagePayload(data=response.content, mime_type=image.mime_type, name=image.name)

    async def enhance_images(self, images: List[ImagePayload]) -> List[ImagePayload]:
        """Upscale each image; an image whose upscale fails is kept as-is."""
        enhanced = []
        for image in images:
            try:
                enhanced.append(await self.upscale_image(image))
            except (ProviderError, ValueError) as e:
                logger.warning(f"[{self.tag}] Upscale failed, using original image: {e}")
                enhanced.append(image)
        return enhanced

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        self.require_images(images, video)
        enhanced = await self.enhance_images(images)
        logger.info(f"[{self.tag}] Enhanced {len(enhanced)} image(s), building basic body mesh")

        # TODO: send the upscaled image to /v2beta/3d/stable-fast-3d for real geometry
        vertices, faces, normals, uvs = synthesize_body_mesh(DEFAULT_MEASUREMENTS, options.quality)
        return BodyModel3D(
            id=new_model_id("stability_body"),
            provider=self.name,
            vertices=vertices,
            faces=faces,
            normals=normals,
            uv_coordinates=uvs,
            is_placeholder_geometry=True,
            measurements=DEFAULT_MEASUREMENTS if options.generate_measurements else None,
            skeleton=basic_skeleton(),
        )

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        await self.enhance_images([image])
        logger.info(f"[{self.tag}] Building basic {options.category} mesh")

        vertices, faces, normals, uvs = synthesize_clothing_mesh(options.category)
        return ClothingModel3D(
            id=new_model_id("stability_clothing"),
            provider=self.name,
            vertices=vertices,
            faces=faces,
            normals=normals,
            uv_coordinates=uvs,
            is_placeholder_geometry=True,
            category=options.category,
            materials=[basic_fabric()] if options.extract_material else [],
            physics_properties=basic_physics() if options.generate_physics else None,
        )
