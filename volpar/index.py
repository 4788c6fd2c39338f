"""2D rectangle index over the projections of a mesh's triangles."""
import logging
from typing import Tuple

import numpy as np
import shapely
from numpy.typing import ArrayLike, NDArray

from .geometry import Projector

logger = logging.getLogger(__name__)

AABB_EPSILON = 1.0
"""Width given to projected bounding boxes which are flat along an axis"""


def projected_aabbs(flat_triangles: NDArray) -> NDArray:
    """2D bounding boxes of triangles already projected into plane coordinates.

    Boxes with zero extent along an axis are widened by ``AABB_EPSILON``
    on their max side, so that every box has a non-zero area.

    :param flat_triangles: Tx3x2 array of projected triangle corners
    :return: Tx4 array of ``minX, minY, maxX, maxY``
    """
    if len(flat_triangles) == 0:
        return np.zeros((0, 4), flat_triangles.dtype)

    mins = flat_triangles.min(axis=1)
    maxes = flat_triangles.max(axis=1)
    flat_axes = maxes <= mins
    maxes[flat_axes] = mins[flat_axes] + AABB_EPSILON
    return np.concatenate([mins, maxes], axis=1)


class TriangleIndex:
    """Read-only index from 2D boxes to the triangles they were projected from.

    Entry ``i`` refers to row ``i`` of the triangle array the index was built from.
    The index cannot be updated: build a new one for new geometry.
    """

    def __init__(self, entries: NDArray):
        self._entries = np.asarray(entries)
        self._entries.flags.writeable = False
        if len(self._entries):
            self._tree = shapely.STRtree(shapely.box(*self._entries.T))
        else:
            self._tree = None

    @classmethod
    def build(cls, triangles: NDArray, projector: Projector) -> "TriangleIndex":
        """Index the projected bounding box of every triangle."""
        return cls.from_projected(projector.flatten(triangles))

    @classmethod
    def from_projected(cls, flat_triangles: NDArray) -> "TriangleIndex":
        """Index the bounding boxes of triangles in plane coordinates (Tx3x2)."""
        index = cls(projected_aabbs(flat_triangles))
        logger.debug("Indexed %s triangles", len(index))
        return index

    def __len__(self):
        return len(self._entries)

    @property
    def entries(self) -> NDArray:
        """
        Tx4 array of ``minX, minY, maxX, maxY`` for each indexed triangle
        """
        return self._entries

    def query(self, plane_points: ArrayLike) -> Tuple[NDArray, NDArray]:
        """Find the boxes containing each of some points.

        Box boundaries count as inside.

        :param plane_points: Nx2 array-like of in-plane coordinates
        :return: tuple of
          int array of indices into ``plane_points``,
          int array of indices of the matching triangles;
          sorted by point then by triangle
        """
        pts = np.asarray(plane_points, np.float64).reshape(-1, 2)
        if self._tree is None or len(pts) == 0:
            empty = np.zeros(0, np.intp)
            return empty, empty.copy()

        pt_idx, tri_idx = self._tree.query(shapely.points(pts))
        order = np.lexsort((tri_idx, pt_idx))
        return pt_idx[order], tri_idx[order]
