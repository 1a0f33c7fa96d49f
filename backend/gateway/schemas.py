"""
Gateway Data Models
Provider configuration, generation requests/options, the canonical 3D model
and the service health snapshot.
"""
import base64
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gateway.geometry import (
    as_float32,
    as_uint32,
    empty_float32,
    empty_uint32,
    validate_geometry,
)


# ============================================================================
# Provider configuration
# ============================================================================

class ProviderName(str, Enum):
    OPENAI = "openai"
    REPLICATE = "replicate"
    STABILITY = "stability"
    LUMA = "luma"
    GAUSSIAN_SPLATTING = "gaussian-splatting"


class RateLimit(BaseModel):
    """Fixed-window budget: max_requests per window_ms."""
    max_requests: int = Field(gt=0)
    window_ms: int = Field(gt=0)


class ProviderConfig(BaseModel):
    """Static provider configuration, loaded once at startup."""
    provider: ProviderName
    api_key: str
    endpoint: str
    model: str = ""
    priority: int = 100  # lower = tried first
    rate_limit: Optional[RateLimit] = None  # None = never limited
    fallback_provider: Optional[ProviderName] = None
    request_timeout: float = Field(default=60.0, gt=0)

    @field_validator("endpoint")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def name(self) -> str:
        return self.provider.value


class RateLimitState(BaseModel):
    """Mutable per-provider window counter."""
    count: int = 0
    reset_time: float = 0.0
    pending: int = 0  # admitted attempts not yet recorded/released


# ============================================================================
# Generation requests
# ============================================================================

class _MediaPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str
    name: Optional[str] = None

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class ImagePayload(_MediaPayload):
    """Raw image bytes owned by the caller."""

    @field_validator("mime_type")
    @classmethod
    def _must_be_image(cls, value: str) -> str:
        if not value.startswith("image/"):
            raise ValueError(f"expected an image/* MIME type, got {value!r}")
        return value

    @field_validator("data")
    @classmethod
    def _not_empty(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("image payload is empty")
        return value


class VideoPayload(_MediaPayload):
    """Raw video bytes owned by the caller."""

    @field_validator("mime_type")
    @classmethod
    def _must_be_video(cls, value: str) -> str:
        if not value.startswith("video/"):
            raise ValueError(f"expected a video/* MIME type, got {value!r}")
        return value

    @field_validator("data")
    @classmethod
    def _not_empty(cls, value: bytes) -> bytes:
        if not value:
            raise ValueError("video payload is empty")
        return value


class BodyScanOptions(BaseModel):
    quality: Literal["low", "medium", "high"] = "medium"
    output_format: Literal["gltf", "obj", "fbx"] = "gltf"
    generate_measurements: bool = True


class ClothingGenOptions(BaseModel):
    category: Literal["tops", "bottoms", "shoes", "accessories"]
    extract_material: bool = True
    generate_physics: bool = True


class GenerationKind(str, Enum):
    BODY = "body"
    CLOTHING = "clothing"


class GenerationRequest(BaseModel):
    """One caller request; payloads are shared read-only across attempts."""
    kind: GenerationKind
    images: List[ImagePayload] = Field(default_factory=list)
    video: Optional[VideoPayload] = None
    options: Union[BodyScanOptions, ClothingGenOptions]

    @model_validator(mode="after")
    def _check_inputs(self) -> "GenerationRequest":
        if self.kind == GenerationKind.BODY:
            if not isinstance(self.options, BodyScanOptions):
                raise ValueError("body requests need BodyScanOptions")
            if not self.images and self.video is None:
                raise ValueError("body requests need at least one image or a video")
        else:
            if not isinstance(self.options, ClothingGenOptions):
                raise ValueError("clothing requests need ClothingGenOptions")
            if len(self.images) != 1 or self.video is not None:
                raise ValueError("clothing requests need exactly one image")
        return self

    @classmethod
    def body(cls, images: List[ImagePayload], options: Optional[BodyScanOptions] = None,
             video: Optional[VideoPayload] = None) -> "GenerationRequest":
        return cls(kind=GenerationKind.BODY, images=list(images), video=video,
                   options=options or BodyScanOptions())

    @classmethod
    def clothing(cls, image: ImagePayload, options: ClothingGenOptions) -> "GenerationRequest":
        return cls(kind=GenerationKind.CLOTHING, images=[image], options=options)


# ============================================================================
# Canonical 3D model
# ============================================================================

Vec3 = Tuple[float, float, float]
Quat = Tuple[float, float, float, float]


class BodyMeasurements(BaseModel):
    """Centimetres."""
    height: float = Field(gt=0)
    chest: float = Field(gt=0)
    waist: float = Field(gt=0)
    hips: float = Field(gt=0)
    shoulder_width: float = Field(gt=0)


class Bone(BaseModel):
    id: str
    name: str
    parent: Optional[str] = None
    position: Vec3
    rotation: Quat = (0.0, 0.0, 0.0, 1.0)


class Joint(BaseModel):
    id: str
    position: Vec3
    type: str = "ball"


class SkeletonData(BaseModel):
    bones: List[Bone] = Field(default_factory=list)
    joints: List[Joint] = Field(default_factory=list)

    @model_validator(mode="after")
    def _parents_exist(self) -> "SkeletonData":
        ids = {bone.id for bone in self.bones}
        for bone in self.bones:
            if bone.parent is not None and bone.parent not in ids:
                raise ValueError(f"bone {bone.id!r} has unknown parent {bone.parent!r}")
        return self


class MaterialProperties(BaseModel):
    name: str
    diffuse: str
    normal: Optional[str] = None
    roughness: float = Field(default=0.5, ge=0, le=1)
    metallic: float = Field(default=0.0, ge=0, le=1)


class PhysicsProperties(BaseModel):
    mass: float = Field(gt=0)
    elasticity: float = Field(ge=0, le=1)
    friction: float = Field(ge=0, le=1)
    damping: float = Field(ge=0, le=1)


def new_model_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class CanonicalModel3D(BaseModel):
    """Provider-independent 3D asset. Geometry buffers are flat numpy arrays."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    provider: str
    vertices: np.ndarray = Field(default_factory=empty_float32)
    faces: np.ndarray = Field(default_factory=empty_uint32)
    normals: np.ndarray = Field(default_factory=empty_float32)
    uv_coordinates: np.ndarray = Field(default_factory=empty_float32)
    download_url: Optional[str] = None
    preview_url: Optional[str] = None
    source_format: Optional[str] = None
    is_placeholder_geometry: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("vertices", "normals", "uv_coordinates", mode="before")
    @classmethod
    def _coerce_float32(cls, value):
        return as_float32(value)

    @field_validator("faces", mode="before")
    @classmethod
    def _coerce_uint32(cls, value):
        return as_uint32(value)

    @model_validator(mode="after")
    def _check_geometry(self):
        validate_geometry(self.vertices, self.faces, self.normals, self.uv_coordinates)
        return self

    @property
    def vertex_count(self) -> int:
        return self.vertices.size // 3

    @property
    def face_count(self) -> int:
        return self.faces.size // 3


class BodyModel3D(CanonicalModel3D):
    measurements: Optional[BodyMeasurements] = None
    skeleton: Optional[SkeletonData] = None


class ClothingModel3D(CanonicalModel3D):
    category: str
    materials: List[MaterialProperties] = Field(default_factory=list)
    physics_properties: Optional[PhysicsProperties] = None


class ModelSummary(BaseModel):
    """What the outer HTTP layer hands back to its client."""
    id: str
    provider: str
    kind: GenerationKind
    vertex_count: int
    face_count: int
    measurements: Optional[BodyMeasurements] = None
    category: Optional[str] = None
    materials: List[MaterialProperties] = Field(default_factory=list)
    download_url: Optional[str] = None
    preview_url: Optional[str] = None
    is_placeholder_geometry: bool = False


# ============================================================================
# Service health
# ============================================================================

class ServiceState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"


class ServiceStatus(BaseModel):
    provider: str
    status: ServiceState
    response_time: float  # ms, -1 if unreachable
    error_rate: float  # static 0/1, not computed from history
    last_check: datetime
    detail: Optional[str] = None
