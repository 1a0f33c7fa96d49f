"""
Result Normalizer
Turns raw provider output into canonical geometry.

The synthesized meshes here are placeholders: lathe surfaces whose radius
profile follows the extracted measurements. They are NOT reconstructions of
the photographed person or garment, and every model built from them carries
is_placeholder_geometry=True.
"""
import io
import logging
import math
from typing import Optional, Sequence, Tuple

import httpx
import numpy as np
import trimesh

from gateway.geometry import validate_geometry  # noqa: F401
from gateway.schemas import (
    BodyMeasurements,
    BodyModel3D,
    CanonicalModel3D,
    GenerationKind,
    ModelSummary,
)

logger = logging.getLogger(__name__)

DEFAULT_MEASUREMENTS = BodyMeasurements(
    height=170.0, chest=90.0, waist=75.0, hips=95.0, shoulder_width=42.0
)

# quality -> (radial segments, rings)
MESH_RESOLUTION = {
    "low": (16, 24),
    "medium": (24, 48),
    "high": (32, 96),
}

MIN_RADIUS = 0.005  # metres; keeps the lathe caps free of degenerate triangles

GEOMETRY_SUFFIXES = {
    ".glb": "glb",
    ".gltf": "gltf",
    ".obj": "obj",
    ".ply": "ply",
    ".stl": "stl",
    ".splat": "ply",
}


# ============================================================================
# Mesh construction
# ============================================================================

def compute_vertex_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """
    Area-weighted per-vertex normals for a flat vertex/face buffer pair.

    Vertices that touch no (non-degenerate) face get (0, 0, 1).
    """
    verts = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    tris = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    normals = np.zeros_like(verts)

    if len(tris):
        p0, p1, p2 = verts[tris[:, 0]], verts[tris[:, 1]], verts[tris[:, 2]]
        face_normals = np.cross(p1 - p0, p2 - p0)
        for corner in range(3):
            np.add.at(normals, tris[:, corner], face_normals)

    lengths = np.linalg.norm(normals, axis=1)
    empty = lengths == 0
    normals[empty] = (0.0, 0.0, 1.0)
    lengths[empty] = 1.0
    normals /= lengths[:, None]
    return normals.astype(np.float32).reshape(-1)


def lathe_mesh(
    heights: Sequence[float],
    radii: Sequence[float],
    segments: int,
    depth_scale: float = 1.0,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Revolve a radius profile around the Y axis.

    Args:
        heights: ring heights, bottom to top (metres)
        radii: ring radii, same length as heights
        segments: vertices per ring
        depth_scale: squash factor on Z for an elliptical cross section

    Returns:
        (vertices, faces, normals, uvs) as flat float32/uint32 buffers
    """
    heights = np.asarray(heights, dtype=np.float64)
    radii = np.maximum(np.asarray(radii, dtype=np.float64), MIN_RADIUS)
    rings = len(heights)
    if rings < 2 or segments < 3:
        raise ValueError("a lathe needs at least 2 rings and 3 segments")

    theta = np.linspace(0.0, 2.0 * math.pi, segments, endpoint=False)
    x = radii[:, None] * np.cos(theta)[None, :]
    z = radii[:, None] * np.sin(theta)[None, :] * depth_scale
    y = np.repeat(heights[:, None], segments, axis=1)
    vertices = np.stack([x, y, z], axis=-1).reshape(-1, 3)

    ring = np.arange(rings - 1)[:, None]
    seg = np.arange(segments)[None, :]
    a = ring * segments + seg
    b = ring * segments + (seg + 1) % segments
    c = a + segments
    d = b + segments
    # (a, c, b) and (b, c, d) wind counter-clockwise seen from outside
    faces = np.concatenate(
        [np.stack([a, c, b], axis=-1).reshape(-1, 3), np.stack([b, c, d], axis=-1).reshape(-1, 3)]
    )

    u = np.tile(np.arange(segments) / segments, rings)
    v = np.repeat(np.arange(rings) / (rings - 1), segments)
    uvs = np.stack([u, v], axis=-1)

    flat_vertices = vertices.astype(np.float32).reshape(-1)
    flat_faces = faces.astype(np.uint32).reshape(-1)
    return (
        flat_vertices,
        flat_faces,
        compute_vertex_normals(flat_vertices, flat_faces),
        uvs.astype(np.float32).reshape(-1),
    )


def _radius(circumference_cm: float) -> float:
    return circumference_cm / (2.0 * math.pi) / 100.0


def synthesize_body_mesh(
    measurements: Optional[BodyMeasurements] = None,
    quality: str = "medium",
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Placeholder body: a lathe whose silhouette passes through the hip, waist,
    chest and shoulder radii, with the feet at y=0 and the head at y=height.
    """
    m = measurements or DEFAULT_MEASUREMENTS
    segments, rings = MESH_RESOLUTION.get(quality, MESH_RESOLUTION["medium"])
    height = m.height / 100.0
    head = 0.06 * height

    # (fraction of height, radius in metres)
    profile = [
        (0.00, 0.25 * _radius(m.hips)),
        (0.05, 0.30 * _radius(m.hips)),
        (0.28, 0.55 * _radius(m.hips)),
        (0.50, _radius(m.hips)),
        (0.62, _radius(m.waist)),
        (0.72, _radius(m.chest)),
        (0.80, m.shoulder_width / 200.0),
        (0.86, 0.35 * _radius(m.waist)),
        (0.88, 0.30 * _radius(m.waist)),
        (0.93, head),
        (0.99, 0.6 * head),
        (1.00, MIN_RADIUS),
    ]
    fractions = np.linspace(0.0, 1.0, rings)
    radii = np.interp(fractions, [p[0] for p in profile], [p[1] for p in profile])
    return lathe_mesh(fractions * height, radii, segments, depth_scale=0.7)


# category -> (bottom height, top height, radius scale, Z squash), metres on a 170 cm frame
GARMENT_PROFILES = {
    "tops": (1.00, 1.40, 1.05, 0.75),
    "bottoms": (0.05, 1.00, 0.55, 0.85),
    "shoes": (0.00, 0.12, 0.30, 2.20),
    "accessories": (1.45, 1.60, 0.45, 1.00),
}


def synthesize_clothing_mesh(
    category: str,
    width_cm: Optional[float] = None,
    length_cm: Optional[float] = None,
    segments: int = 24,
    rings: int = 24,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Placeholder garment: an open tube sized by the garment's flat width and length."""
    bottom, top, radius_scale, squash = GARMENT_PROFILES.get(category, GARMENT_PROFILES["tops"])
    if length_cm:
        top = bottom + length_cm / 100.0

    base_radius = 0.16 * radius_scale
    if width_cm:
        # a garment laid flat is half its circumference wide
        base_radius = (2.0 * width_cm) / (2.0 * math.pi) / 100.0

    heights = np.linspace(bottom, top, rings)
    t = np.linspace(0.0, 1.0, rings)
    radii = base_radius * (1.0 + 0.08 * np.sin(t * math.pi))
    return lathe_mesh(heights, radii, segments, depth_scale=squash)


# ============================================================================
# Downloaded geometry
# ============================================================================

def guess_file_type(url: str) -> Optional[str]:
    path = url.split("?", 1)[0].lower()
    for suffix, file_type in GEOMETRY_SUFFIXES.items():
        if path.endswith(suffix):
            return file_type
    return None


async def download_model_bytes(url: str, timeout: float = 60.0) -> bytes:
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content


def hydrate_geometry(model: CanonicalModel3D, data: bytes, file_type: str) -> CanonicalModel3D:
    """
    Load a downloaded GLB/GLTF/PLY/OBJ/STL through trimesh and return a copy of
    ``model`` with its canonical buffers filled in.

    Point clouds (e.g. gaussian splat PLYs) come back with vertices only.

    Raises:
        ValueError: trimesh could not read the data or it violates the
        canonical geometry invariants
    """
    loaded = trimesh.load(io.BytesIO(data), file_type=file_type, force="mesh")

    vertices = np.asarray(getattr(loaded, "vertices", []), dtype=np.float32)
    faces = np.asarray(getattr(loaded, "faces", []), dtype=np.int64)
    if vertices.size == 0:
        raise ValueError(f"no vertices found in {file_type} data")

    normals = np.zeros(0, dtype=np.float32)
    if faces.size:
        normals = np.asarray(loaded.vertex_normals, dtype=np.float32)

    uvs = np.zeros(0, dtype=np.float32)
    visual = getattr(loaded, "visual", None)
    uv = getattr(visual, "uv", None)
    if uv is not None and len(uv) == len(vertices):
        uvs = np.asarray(uv, dtype=np.float32)

    fields = dict(model)
    fields.update(
        vertices=vertices,
        faces=faces,
        normals=normals,
        uv_coordinates=uvs,
        source_format=file_type,
        is_placeholder_geometry=False,
    )
    hydrated = type(model)(**fields)
    logger.info(
        f"[Normalizer] Loaded {file_type} geometry for {model.id}: "
        f"{hydrated.vertex_count} vertices, {hydrated.face_count} faces"
    )
    return hydrated


# ============================================================================
# Caller-facing summary
# ============================================================================

def summarize(model: CanonicalModel3D) -> ModelSummary:
    if isinstance(model, BodyModel3D):
        return ModelSummary(
            id=model.id,
            provider=model.provider,
            kind=GenerationKind.BODY,
            vertex_count=model.vertex_count,
            face_count=model.face_count,
            measurements=model.measurements,
            download_url=model.download_url,
            preview_url=model.preview_url,
            is_placeholder_geometry=model.is_placeholder_geometry,
        )
    return ModelSummary(
        id=model.id,
        provider=model.provider,
        kind=GenerationKind.CLOTHING,
        vertex_count=model.vertex_count,
        face_count=model.face_count,
        category=getattr(model, "category", None),
        materials=list(getattr(model, "materials", [])),
        download_url=model.download_url,
        preview_url=model.preview_url,
        is_placeholder_geometry=model.is_placeholder_geometry,
    )
