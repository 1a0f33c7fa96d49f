"""
Geometry array helpers.
Flat float32/uint32 buffers plus the invariants every canonical model must satisfy.
"""
from typing import Any

import numpy as np


def empty_float32() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


def empty_uint32() -> np.ndarray:
    return np.zeros(0, dtype=np.uint32)


def as_float32(value: Any) -> np.ndarray:
    """Coerce a sequence or array into a flat float32 buffer."""
    if value is None:
        return empty_float32()
    array = np.asarray(value, dtype=np.float32).reshape(-1)
    if not np.all(np.isfinite(array)):
        raise ValueError("geometry buffer contains NaN or infinite values")
    return array


def as_uint32(value: Any) -> np.ndarray:
    """Coerce face indices into a flat uint32 buffer, rejecting negatives."""
    if value is None:
        return empty_uint32()
    raw = np.asarray(value).reshape(-1)
    if raw.size == 0:
        return empty_uint32()
    if not np.issubdtype(raw.dtype, np.integer):
        if not np.all(np.mod(raw, 1) == 0):
            raise ValueError("face indices must be integers")
    if np.any(raw < 0):
        raise ValueError("face indices must be non-negative")
    return raw.astype(np.uint32)


def validate_geometry(
    vertices: np.ndarray,
    faces: np.ndarray,
    normals: np.ndarray,
    uv_coordinates: np.ndarray,
) -> None:
    """
    Enforce the canonical mesh invariants.

    Raises:
        ValueError: if any buffer has the wrong cardinality or a face index
        points past the last vertex.
    """
    if vertices.size % 3 != 0:
        raise ValueError(f"vertices length {vertices.size} is not a multiple of 3")
    if faces.size % 3 != 0:
        raise ValueError(f"faces length {faces.size} is not a multiple of 3")

    vertex_count = vertices.size // 3
    if faces.size and int(faces.max()) >= vertex_count:
        raise ValueError(
            f"face index {int(faces.max())} out of range for {vertex_count} vertices"
        )
    if normals.size not in (0, vertices.size):
        raise ValueError(
            f"normals length {normals.size} does not match vertices length {vertices.size}"
        )
    if uv_coordinates.size not in (0, vertex_count * 2):
        raise ValueError(
            f"uv length {uv_coordinates.size} does not match {vertex_count} vertices"
        )
