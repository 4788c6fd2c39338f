import logging
import warnings
from timeit import default_timer
from typing import TYPE_CHECKING, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import MalformedGeometryError
from .geometry import (
    DEFAULT_PLANE_DISTANCE,
    DEFAULT_PLANE_NORMAL,
    PRECISION,
    Projector,
    bounding_box,
    extract_triangles,
    flat_triangle_contains,
    ray_plane_distances,
)
from .index import TriangleIndex

if TYPE_CHECKING:
    import meshio
    import trimesh

    from .fill import FillMetrics


logger = logging.getLogger(__name__)

DEFAULT_SEED = 1991
RAY_NEAR = 1e-9
RAY_FAR = 1e6


class Volume:
    dtype: np.dtype = PRECISION
    """Float data type used internally"""

    def __init__(
        self,
        positions: ArrayLike,
        indices: Optional[ArrayLike] = None,
        validate=False,
        normal: ArrayLike = DEFAULT_PLANE_NORMAL,
        distance: float = DEFAULT_PLANE_DISTANCE,
        direction: Optional[ArrayLike] = None,
        ray_near: float = RAY_NEAR,
        ray_far: float = RAY_FAR,
    ):
        f"""
        Create a volume described by a closed triangular mesh.

        The triangles are projected onto a plane and indexed by their 2D bounding
        boxes once, here; the volume is read-only afterwards.

        :param positions: flat sequence of floats (or Nx3 array-like),
            coordinates of triangle corners
        :param indices: optional flat (or Mx3) sequence of ints,
            indices of vertices in ``positions`` which describe each triangle.
            If None, every 3 consecutive vertices of ``positions`` form a triangle.
        :param validate: bool, whether to validate the mesh.
            If trimesh is installed, the mesh is checked for watertightness and
            correct winding, and repairs made if possible.
            Otherwise, only very basic checks are made.
        :param normal: normal of the projection plane,
            default {DEFAULT_PLANE_NORMAL}
        :param distance: signed distance of the projection plane from the origin,
            default {DEFAULT_PLANE_DISTANCE}
        :param direction: optional direction in which points are projected.
            Defaults to the plane normal; must not be parallel to the plane.
        :param ray_near: float (default {RAY_NEAR}),
            surfaces closer than this to a point are ignored by its ray cast.
        :param ray_far: float (default {RAY_FAR}),
            surfaces further than this from a point are ignored by its ray cast.
        :raises MalformedGeometryError: buffers do not describe triangles,
            or there are no positions to bound. An empty index buffer over
            non-empty positions is a valid volume which contains no points.
        :raises DegenerateProjectionError: direction is parallel to the plane
        """
        t0 = default_timer()
        self.projector = Projector(normal, distance, direction)
        self.ray_near = float(ray_near)
        self.ray_far = float(ray_far)

        if validate:
            positions, indices = self._validate(positions, indices)

        triangles = extract_triangles(positions, indices, self.dtype)
        triangles.flags.writeable = False
        self._triangles = triangles
        self._extents = bounding_box(positions, self.dtype)
        self._flat_triangles = self.projector.flatten(triangles)
        self._index = TriangleIndex.from_projected(self._flat_triangles)

        self.build_ms = (default_timer() - t0) * 1000
        logger.info(
            "Prepared volume of %s triangles in %.1fms", len(triangles), self.build_ms
        )

    def _validate(self, positions: ArrayLike, indices: Optional[ArrayLike]):
        triangles = extract_triangles(positions, indices, self.dtype)
        vertices = triangles.reshape(-1, 3)
        faces = np.arange(len(vertices)).reshape(-1, 3)
        try:
            import trimesh

            tm = trimesh.Trimesh(vertices, faces, validate=True)
            if not tm.is_volume:
                logger.info("Mesh not valid, attempting to fix")
                tm.fill_holes()
                tm.fix_normals()
                if not tm.is_volume:
                    raise MalformedGeometryError(
                        "Mesh is not a volume "
                        "(e.g. not watertight, incorrect winding) "
                        "and could not be fixed"
                    )

            return tm.vertices.astype(self.dtype), tm.faces.astype(np.int64)
        except ImportError:
            warnings.warn("trimesh not installed; full validation not possible")
            return vertices, faces

    def __repr__(self):
        return f"{type(self).__name__}(n_triangles={self.n_triangles})"

    def __contains__(self, item: ArrayLike) -> bool:
        """Check whether a single point is in the volume."""
        return self.is_inside(item)

    def is_inside(self, point: ArrayLike) -> bool:
        p = np.asarray(point, self.dtype)
        if p.shape != (3,):
            raise ValueError("Item is not a 3-length array-like")
        return bool(self.contains(p[np.newaxis])[0])

    def contains(
        self, coords: ArrayLike, metrics: Optional["FillMetrics"] = None
    ) -> NDArray[np.bool_]:
        """Check whether multiple points (as a Px3 array-like) are in the volume.

        Each point is projected onto the plane and only the triangles whose
        projected bounding box contains it are considered.
        A ray is cast from the point toward the plane:
        an odd number of crossings means the point is inside.
        Points with no candidate triangles are outside without casting a ray.

        :param coords:
        :param metrics: optional FillMetrics,
            whose projection, query and raycast timers are increased
            by the time spent in each phase.
        :return: np.ndarray of bools, whether each point is inside the volume
        """
        points = self._as_points(coords)

        t0 = default_timer()
        plane_points = self.projector.flatten(points)
        t1 = default_timer()
        pt_idx, tri_idx = self._index.query(plane_points)
        t2 = default_timer()

        out = np.zeros(len(points), bool)
        if len(pt_idx):
            crossed = flat_triangle_contains(
                plane_points[pt_idx], self._flat_triangles[tri_idx]
            )
            pt_idx = pt_idx[crossed]
            tri_idx = tri_idx[crossed]

            origins = points[pt_idx]
            dists = ray_plane_distances(
                origins,
                self.projector.ray_directions(origins),
                self._triangles[tri_idx],
            )
            hits = (dists >= self.ray_near) & (dists <= self.ray_far)
            crossings = np.bincount(pt_idx[hits], minlength=len(points))
            out = crossings % 2 == 1
        t3 = default_timer()

        if metrics is not None:
            timings = np.diff([t0, t1, t2, t3]) * 1000
            metrics.projection_ms += timings[0]
            metrics.query_ms += timings[1]
            metrics.raycast_ms += timings[2]

        return out

    def _as_points(self, points: ArrayLike) -> NDArray:
        p = np.asarray(points, self.dtype)
        if p.shape[1:] != (3,):
            raise ValueError("Points must be Nx3 array-like")
        return p

    @classmethod
    def from_meshio(cls, mesh: "meshio.Mesh", validate=False, **kwargs) -> "Volume":
        """
        Convenience function for instantiating a Volume from a meshio Mesh.

        :param mesh: meshio Mesh whose only cells are triangles.
        :param validate: as passed to ``__init__``, defaults to False
        :param kwargs: passed to ``__init__``
        :raises ValueError: if Mesh does not have triangle cells
        :return: Volume instance
        """
        try:
            triangles = mesh.cells_dict["triangle"]
        except KeyError:
            raise ValueError("Must have triangle cells")

        return cls(mesh.points, triangles, validate, **kwargs)

    @classmethod
    def from_trimesh(cls, mesh: "trimesh.Trimesh", validate=False, **kwargs) -> "Volume":
        """
        Convenience function for instantiating a Volume from a trimesh Trimesh.

        :param mesh: trimesh Trimesh
        :param validate: as passed to ``__init__``, defaults to False
        :param kwargs: passed to ``__init__``
        :return: Volume instance
        """
        return cls(mesh.vertices, mesh.faces, validate, **kwargs)

    @property
    def triangles(self) -> NDArray:
        """
        Tx3x3 read-only array of triangle corners, in buffer order
        """
        return self._triangles

    @property
    def n_triangles(self) -> int:
        return len(self._triangles)

    @property
    def index(self) -> TriangleIndex:
        return self._index

    @property
    def extents(self) -> NDArray:
        """Axis-aligned bounding box of the volume.

        :return: 2x3 numpy array of floats,
          where the first row is mins and the second row is maxes.
        """
        return self._extents.copy()

    @property
    def center(self) -> NDArray:
        return self._extents.mean(axis=0)

    @property
    def size(self) -> NDArray:
        return self._extents[1] - self._extents[0]


def points_around_vol(vol: Volume, n: int, pad: float = 0.2, seed=DEFAULT_SEED):
    ext = vol.extents
    ranges = ext[1] - ext[0]
    to_pad = ranges * pad

    rng = np.random.default_rng(seed)
    return rng.uniform(ext[0] - to_pad, ext[1] + to_pad, (n, 3))
