"""
OpenAI Vision Integration
Sends the photos to a vision chat model with a structured-extraction prompt
and validates the JSON it returns. The mesh is then synthesized locally from
the extracted measurements, so results are flagged as placeholder geometry.

OpenRouter keys (sk-or-...) are routed to OpenRouter's OpenAI-compatible API.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError

from gateway.errors import (
    ProviderConnectionError,
    ProviderError,
    ProviderHTTPError,
    ProviderResponseError,
)
from gateway.normalizer import synthesize_body_mesh, synthesize_clothing_mesh
from gateway.schemas import (
    BodyMeasurements,
    BodyModel3D,
    BodyScanOptions,
    ClothingGenOptions,
    ClothingModel3D,
    ImagePayload,
    MaterialProperties,
    PhysicsProperties,
    ProviderConfig,
    VideoPayload,
    new_model_id,
)
from providers.base import ProviderClient

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENAI_ENDPOINT = "https://api.openai.com/v1"
MAX_TOKENS = 2000

BODY_PROMPT = """Analyze these photos of a person for 3D body reconstruction.

Return a JSON object with exactly these fields:
{
  "measurements": {"height": cm, "chest": cm, "waist": cm, "hips": cm, "shoulder_width": cm},
  "keypoints": [{"name": "left_shoulder", "x": 0-1, "y": 0-1, "confidence": 0-1}]
}

Measurements are circumferences in centimetres (height and shoulder_width are lengths).
Keypoint x/y are normalized image coordinates of the first photo."""

CLOTHING_PROMPT = """Analyze this photo of a clothing item ({category}) for 3D garment modelling.

Return a JSON object with exactly these fields:
{{
  "dimensions": {{"width": cm, "length": cm}},
  "materials": [{{"name": "cotton", "diffuse": "#RRGGBB", "roughness": 0-1, "metallic": 0-1}}],
  "physics": {{"mass": kg, "elasticity": 0-1, "friction": 0-1, "damping": 0-1}}
}}

Dimensions are measured with the garment laid flat."""


# ============================================================================
# Analysis payloads
# ============================================================================

class Keypoint(BaseModel):
    name: str
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)
    confidence: float = Field(default=1.0, ge=0, le=1)


class BodyAnalysis(BaseModel):
    measurements: BodyMeasurements
    keypoints: List[Keypoint] = Field(default_factory=list)


class GarmentDimensions(BaseModel):
    width: float = Field(gt=0)
    length: float = Field(gt=0)


class ClothingAnalysis(BaseModel):
    dimensions: GarmentDimensions
    materials: List[MaterialProperties] = Field(default_factory=list)
    physics: Optional[PhysicsProperties] = None


def strip_code_fences(text: str) -> str:
    """Models sometimes wrap JSON in ```json fences even in JSON mode."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_analysis(text: Optional[str], model_cls, provider: str = "openai"):
    """
    Parse the model's generated text into ``model_cls``.

    Raises:
        ProviderResponseError: empty text, invalid JSON, not an object, or the
        object fails validation
    """
    if not text:
        raise ProviderResponseError(provider, "vision model returned no content")
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ProviderResponseError(provider, f"vision model returned invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise ProviderResponseError(provider, "vision model JSON is not an object")
    try:
        return model_cls.model_validate(payload)
    except ValidationError as e:
        raise ProviderResponseError(
            provider, f"{model_cls.__name__} failed validation: {e.error_count()} error(s)"
        )


# ============================================================================
# Client
# ============================================================================

class OpenAIVisionClient(ProviderClient):
    tag = "OpenAI"

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        self.model = config.model or "gpt-4o"
        if client is not None:
            self._client = client
            return

        base_url = config.endpoint
        default_headers = None
        if config.api_key.startswith("sk-or-") and config.endpoint == DEFAULT_OPENAI_ENDPOINT:
            base_url = OPENROUTER_BASE_URL
            default_headers = {"X-Title": "3D Generation Gateway"}
            if "/" not in self.model:
                self.model = f"openai/{self.model}"
            logger.info(f"[{self.tag}] Using OpenRouter (key: {config.api_key[:6]}...)")

        self._client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=base_url,
            default_headers=default_headers,
            max_retries=0,
            timeout=config.request_timeout,
        )

    async def close(self) -> None:
        await self._client.close()

    async def _call(self, fn: Callable[..., Awaitable], *args, **kwargs) -> Any:
        try:
            return await fn(*args, **kwargs)
        except openai.APIStatusError as e:
            raise ProviderHTTPError(self.name, e.status_code, e.message)
        except openai.APIConnectionError as e:
            raise ProviderConnectionError(self.name, f"network error: {e}")
        except openai.OpenAIError as e:
            raise ProviderError(self.name, str(e))

    async def analyze(self, prompt: str, images: List[ImagePayload]) -> Optional[str]:
        content: List[Dict] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append({"type": "image_url", "image_url": {"url": image.to_data_uri()}})

        logger.info(f"[{self.tag}] Analyzing {len(images)} image(s) with {self.model}")
        response = await self._call(
            self._client.chat.completions.create,
            model=self.model,
            messages=[{"role": "user", "content": content}],
            max_tokens=MAX_TOKENS,
            response_format={"type": "json_object"},
        )
        try:
            return response.choices[0].message.content
        except (AttributeError, IndexError):
            raise ProviderResponseError(self.name, "completion has no choices")

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: BodyScanOptions,
        video: Optional[VideoPayload] = None,
    ) -> BodyModel3D:
        self.require_images(images, video)
        analysis = parse_analysis(await self.analyze(BODY_PROMPT, images), BodyAnalysis, self.name)
        m = analysis.measurements
        logger.info(
            f"[{self.tag}] Measurements: height={m.height} chest={m.chest} "
            f"waist={m.waist} hips={m.hips} ({len(analysis.keypoints)} keypoints)"
        )

        vertices, faces, normals, uvs = synthesize_body_mesh(m, options.quality)
        return BodyModel3D(
            id=new_model_id("openai_body"),
            provider=self.name,
            vertices=vertices,
            faces=faces,
            normals=normals,
            uv_coordinates=uvs,
            is_placeholder_geometry=True,
            measurements=m if options.generate_measurements else None,
        )

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
    ) -> ClothingModel3D:
        prompt = CLOTHING_PROMPT.format(category=options.category)
        analysis = parse_analysis(await self.analyze(prompt, [image]), ClothingAnalysis, self.name)
        logger.info(
            f"[{self.tag}] Garment {analysis.dimensions.width}x{analysis.dimensions.length}cm, "
            f"{len(analysis.materials)} material(s)"
        )

        vertices, faces, normals, uvs = synthesize_clothing_mesh(
            options.category,
            width_cm=analysis.dimensions.width,
            length_cm=analysis.dimensions.length,
        )
        return ClothingModel3D(
            id=new_model_id("openai_clothing"),
            provider=self.name,
            vertices=vertices,
            faces=faces,
            normals=normals,
            uv_coordinates=uvs,
            is_placeholder_geometry=True,
            category=options.category,
            materials=analysis.materials if options.extract_material else [],
            physics_properties=analysis.physics if options.generate_physics else None,
        )

    async def health_check(self) -> None:
        await self._call(self._client.models.list)
