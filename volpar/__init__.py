# -*- coding: utf-8 -*-

"""Top-level package for volpar."""

from .errors import DegenerateProjectionError  # noqa: F401
from .errors import FillExhaustedError  # noqa: F401
from .errors import MalformedGeometryError  # noqa: F401
from .errors import SessionAlreadyActiveError  # noqa: F401
from .errors import VolparError  # noqa: F401
from .fill import DEFAULT_BATCH_SIZE  # noqa: F401
from .fill import FillMetrics  # noqa: F401
from .fill import Filler  # noqa: F401
from .fill import FillState  # noqa: F401
from .fill import ParticleStore  # noqa: F401
from .fill import StepResult  # noqa: F401
from .geometry import PRECISION  # noqa: F401
from .geometry import Projector  # noqa: F401
from .geometry import extract_triangles  # noqa: F401
from .index import TriangleIndex  # noqa: F401
from .main import DEFAULT_SEED  # noqa: F401
from .main import Volume  # noqa: F401

__version__ = "0.1.0"
__version_info__ = tuple(int(n) for n in __version__.split("-")[0].split("."))

__all__ = ["Volume", "Filler"]
