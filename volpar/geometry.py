"""Triangle buffers, planar projection and ray crossing tests."""
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import DegenerateProjectionError, MalformedGeometryError

PRECISION = np.dtype(np.float64)

DEFAULT_PLANE_NORMAL = (0.0, 0.0, 1.0)
DEFAULT_PLANE_DISTANCE = -30.0

PARALLEL_TOLERANCE = 1e-12


def extract_triangles(
    positions: ArrayLike, indices: Optional[ArrayLike] = None, dtype=PRECISION
) -> NDArray:
    """Turn a position buffer (and optional index buffer) into triangles.

    :param positions: flat sequence of floats, or anything which flattens to one
        (e.g. an Nx3 array of vertices)
    :param indices: optional flat (or Mx3) sequence of ints,
        consumed 3 at a time to describe each triangle.
        If not given, positions are consumed 9 floats (3 vertices) at a time.
    :raises MalformedGeometryError: buffer lengths are not multiples of 3 (or 9),
        coordinates are not finite, or an index is out of bounds
    :return: Tx3x3 array of triangle corners, in buffer order
    """
    pos = np.asarray(positions, dtype).ravel()
    if not np.isfinite(pos).all():
        raise MalformedGeometryError("Position buffer contains non-finite values")

    if indices is None:
        if len(pos) % 9:
            raise MalformedGeometryError(
                f"Non-indexed position buffer length {len(pos)} "
                "is not a multiple of 9"
            )
        return pos.reshape(-1, 3, 3).copy()

    if len(pos) % 3:
        raise MalformedGeometryError(
            f"Position buffer length {len(pos)} is not a multiple of 3"
        )
    vertices = pos.reshape(-1, 3)

    idx = _as_index_buffer(indices)
    if len(idx) % 3:
        raise MalformedGeometryError(
            f"Index buffer length {len(idx)} is not a multiple of 3"
        )
    if len(idx) and (idx.min() < 0 or idx.max() >= len(vertices)):
        raise MalformedGeometryError(
            f"Index buffer refers to vertices outside [0, {len(vertices)})"
        )

    return vertices[idx.reshape(-1, 3)]


def _as_index_buffer(indices: ArrayLike) -> NDArray[np.int64]:
    idx = np.asarray(indices).ravel()
    if idx.size == 0:
        return np.zeros(0, np.int64)
    if idx.dtype.kind not in "iu":
        if idx.dtype.kind != "f" or not np.array_equal(idx, np.round(idx)):
            raise MalformedGeometryError("Index buffer must contain integers")
    return idx.astype(np.int64)


def bounding_box(positions: ArrayLike, dtype=PRECISION) -> NDArray:
    """Axis-aligned bounding box of a position buffer.

    :return: 2x3 numpy array of floats,
      where the first row is mins and the second row is maxes.
    """
    pos = np.asarray(positions, dtype).ravel()
    if len(pos) == 0 or len(pos) % 3:
        raise MalformedGeometryError("Cannot compute bounding box of position buffer")
    vertices = pos.reshape(-1, 3)
    return np.array([vertices.min(axis=0), vertices.max(axis=0)], dtype)


def _unit(vec: ArrayLike, name: str) -> NDArray:
    arr = np.asarray(vec, PRECISION)
    if arr.shape != (3,):
        raise ValueError(f"Projection {name} is not a 3-length array-like")
    norm = np.linalg.norm(arr)
    if not np.isfinite(norm) or norm == 0:
        raise DegenerateProjectionError(f"Projection {name} has no direction")
    return arr / norm


def _plane_basis(normal: NDArray) -> NDArray:
    # start from the world axis least aligned with the normal,
    # so that a z normal gives u = x and v = y
    axis = np.zeros(3, PRECISION)
    axis[np.argmin(np.abs(normal))] = 1
    u = axis - (axis @ normal) * normal
    u /= np.linalg.norm(u)
    v = np.cross(normal, u)
    return np.array([u, v])


class Projector:
    """Orthographic projection of points onto a fixed plane.

    The plane is every ``p`` with ``p . normal == distance``.
    Points travel along ``direction`` (by default the normal) to reach it.
    """

    def __init__(
        self,
        normal: ArrayLike = DEFAULT_PLANE_NORMAL,
        distance: float = DEFAULT_PLANE_DISTANCE,
        direction: Optional[ArrayLike] = None,
    ):
        self.normal = _unit(normal, "normal")
        self.distance = float(distance)
        if direction is None:
            self.direction = self.normal.copy()
        else:
            self.direction = _unit(direction, "direction")

        self._denom = float(self.direction @ self.normal)
        if abs(self._denom) < PARALLEL_TOLERANCE:
            raise DegenerateProjectionError(
                "Projection direction is parallel to the projection plane"
            )

        self.basis = _plane_basis(self.normal)

    def __repr__(self):
        return (
            f"{type(self).__name__}(normal={self.normal.tolist()}, "
            f"distance={self.distance}, direction={self.direction.tolist()})"
        )

    def signed_distance(self, points: ArrayLike) -> NDArray:
        return np.asarray(points, PRECISION) @ self.normal - self.distance

    def project(self, points: ArrayLike) -> NDArray:
        """Project a point (3,) or points (N, 3) onto the plane."""
        p = np.asarray(points, PRECISION)
        t = self.signed_distance(p) / self._denom
        return p - np.expand_dims(t, -1) * self.direction

    def to_plane(self, points: ArrayLike) -> NDArray:
        """2D coordinates of points in the plane's own basis.

        Points are not projected first: for points on the plane these are their
        in-plane coordinates, for others the coordinates of their orthogonal
        projection.
        """
        return np.asarray(points, PRECISION) @ self.basis.T

    def flatten(self, points: ArrayLike) -> NDArray:
        """In-plane 2D coordinates of the projections of points."""
        return self.to_plane(self.project(points))

    def ray_directions(self, points: ArrayLike) -> NDArray:
        """Unit vectors from each point toward the plane, along the projection direction.

        Points already on the plane get the direction pointing against the normal.
        """
        t = self.signed_distance(points) / self._denom
        fallback = -np.sign(self._denom)
        sign = np.where(t == 0, fallback, -np.sign(t))
        return np.expand_dims(sign, -1) * self.direction


def _cross2(a: NDArray, b: NDArray) -> NDArray:
    return a[..., 0] * b[..., 1] - a[..., 1] * b[..., 0]


def flat_triangle_contains(points: NDArray, triangles: NDArray) -> NDArray[np.bool_]:
    """Whether each 2D point lies in its 2D triangle.

    Points and triangles are paired row by row.
    A point exactly on an edge belongs to only one of the two triangles
    on either side of that edge: the one on the left of the edge,
    when it is walked from its lexicographically smaller end.
    Triangles with no area contain nothing.

    :param points: Kx2 array
    :param triangles: Kx3x2 array
    :return: K-length bool array
    """
    inside = np.ones(len(points), bool)
    for i in range(3):
        p = triangles[:, i]
        q = triangles[:, (i + 1) % 3]
        r = triangles[:, (i + 2) % 3]
        edge = q - p

        interior = np.sign(_cross2(edge, r - p))
        side = np.sign(_cross2(edge, points - p))

        flipped = (p[:, 0] > q[:, 0]) | ((p[:, 0] == q[:, 0]) & (p[:, 1] > q[:, 1]))
        owns_edge = np.where(flipped, -interior, interior) > 0

        inside &= (side * interior > 0) | ((side == 0) & owns_edge)
    return inside


def ray_plane_distances(
    origins: NDArray, directions: NDArray, triangles: NDArray
) -> NDArray:
    """Distance along each ray to the plane of its triangle.

    Rays and triangles are paired row by row.
    Directions must be unit vectors.
    Distances are negative for planes behind the origin,
    and NaN where the ray is parallel to the plane.

    :param origins: Kx3 ray origins
    :param directions: Kx3 unit ray directions
    :param triangles: Kx3x3 triangle corners
    :return: K-length float array
    """
    a = triangles[:, 0]
    normals = np.cross(triangles[:, 1] - a, triangles[:, 2] - a)
    denom = np.einsum("ij,ij->i", directions, normals)
    num = np.einsum("ij,ij->i", a - origins, normals)

    out = np.full(len(origins), np.nan, origins.dtype)
    np.divide(num, denom, out=out, where=np.abs(denom) > PARALLEL_TOLERANCE)
    return out
