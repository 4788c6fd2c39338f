"""Step-driven filling of a volume with random particles.

The filler does one bounded unit of work per ``step`` and returns;
whoever owns the frame loop decides when the next step runs.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import FillExhaustedError, SessionAlreadyActiveError
from .main import DEFAULT_SEED, Volume

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10_000
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1_000_000

FRAME_BUDGET_MIN = 12.0
FRAME_BUDGET_MAX = 16.0
MIN_DURATION = 1e-3
"""Shortest step duration used for rescaling, to avoid dividing by zero"""

DEFAULT_MAX_ATTEMPTS_FACTOR = 1000


def default_clock() -> float:
    """Monotonic time in milliseconds."""
    return time.perf_counter() * 1000


class ParticleStore:
    """Accepted points, in the order they were accepted."""

    def __init__(self):
        self._chunks: List[NDArray] = []
        self._len = 0

    def __len__(self):
        return self._len

    def append(self, points: ArrayLike):
        pts = np.array(points, np.float64).reshape(-1, 3)
        if len(pts):
            self._chunks.append(pts)
            self._len += len(pts)

    def clear(self):
        self._chunks = []
        self._len = 0

    def as_array(self) -> NDArray:
        """Nx3 array of particle coordinates."""
        if not self._chunks:
            return np.zeros((0, 3), np.float64)
        return np.concatenate(self._chunks)

    def flat(self) -> List[float]:
        """Coordinates as ``[x0, y0, z0, x1, y1, z1, ...]``, as a renderer buffer wants."""
        return self.as_array().ravel().tolist()


@dataclass
class FillMetrics:
    """Time (ms) and work spent preparing and filling a volume."""

    build_ms: float = 0.0
    fill_ms: float = 0.0
    projection_ms: float = 0.0
    query_ms: float = 0.0
    raycast_ms: float = 0.0
    steps: int = 0
    attempts: int = 0
    accepted: int = 0

    def _percent(self, value: float) -> int:
        if self.fill_ms <= 0:
            return 0
        return round(100 * value / self.fill_ms)

    def summary(self) -> str:
        lines = [
            f"Index build: {self.build_ms:.0f}ms",
            f"Fill: {self.fill_ms:.0f}ms over {self.steps} steps, "
            f"{self.accepted}/{self.attempts} candidates accepted",
            f"Projection: {self.projection_ms:.0f}ms "
            f"({self._percent(self.projection_ms)}%)",
            f"Index query: {self.query_ms:.0f}ms ({self._percent(self.query_ms)}%)",
            f"Ray cast: {self.raycast_ms:.0f}ms ({self._percent(self.raycast_ms)}%)",
        ]
        return "\n".join(lines)


class FillState(Enum):
    IDLE = "idle"
    FILLING = "filling"
    COMPLETE = "complete"


@dataclass
class StepResult:
    state: FillState
    accepted: int
    target: int
    attempts: int
    batch_size: float
    duration: float
    particles: Optional[NDArray] = field(default=None, repr=False)
    """Nx3 particles, only on the step which completes the session"""
    metrics: Optional[FillMetrics] = None
    """Session metrics, only on the step which completes the session"""

    @property
    def complete(self) -> bool:
        return self.state is FillState.COMPLETE

    @property
    def progress(self) -> float:
        return self.accepted / self.target


CompletionSink = Callable[[NDArray, FillMetrics], None]


class Filler:
    def __init__(
        self,
        volume: Volume,
        seed: Optional[int] = DEFAULT_SEED,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = default_clock,
        batch_size: float = DEFAULT_BATCH_SIZE,
        auto_size=True,
        max_attempts_factor: float = DEFAULT_MAX_ATTEMPTS_FACTOR,
        on_complete: Optional[CompletionSink] = None,
    ):
        f"""
        Fill a volume with uniformly distributed random particles, a batch at a time.

        Candidates are drawn in the volume's bounding box and kept if inside it.
        After each step, the batch size is rescaled so that a step takes
        between {FRAME_BUDGET_MIN} and {FRAME_BUDGET_MAX} clock units.

        A session moves from IDLE to FILLING on ``start``, then to COMPLETE on the
        step which reaches its target. COMPLETE behaves as IDLE: ``step`` raises,
        and ``start`` or ``abandon`` may be called.

        :param volume: Volume to fill
        :param seed: int >=0 (default {DEFAULT_SEED}), used for generating candidates.
            If None (and no ``rng`` is given), use a random seed.
        :param rng: optional numpy Generator, overrides ``seed``
        :param clock: zero-argument callable returning a time in milliseconds.
            It is called exactly twice per step, at its start and its end.
        :param batch_size: initial number of candidates per step
            (default {DEFAULT_BATCH_SIZE})
        :param auto_size: bool (default True), whether to rescale the batch size
            to fit the frame budget
        :param max_attempts_factor: a session fails once it has tried more than
            this many candidates per requested particle
            (default {DEFAULT_MAX_ATTEMPTS_FACTOR})
        :param on_complete: optional callable receiving the Nx3 particles and the
            FillMetrics, once per session, when it completes
        """
        self.volume = volume
        if rng is None:
            if seed is None:
                logger.warning(
                    "Using unseeded random number generator for particles; "
                    "results may be inconsistent across repeats."
                )
            rng = np.random.default_rng(seed)
        self.rng = rng
        self.clock = clock
        self.initial_batch_size = float(batch_size)
        self.auto_size = auto_size
        self.max_attempts_factor = max_attempts_factor
        self.on_complete = on_complete

        self.particles = ParticleStore()
        self.metrics = FillMetrics()
        self._state = FillState.IDLE
        self._target = 0
        self._attempts = 0
        self.batch_size = self.initial_batch_size

    @property
    def state(self) -> FillState:
        return self._state

    @property
    def accepted(self) -> int:
        return len(self.particles)

    @property
    def target(self) -> int:
        return self._target

    @property
    def max_attempts(self) -> float:
        return self.max_attempts_factor * self._target

    def start(self, target: int):
        """Begin a new session aiming for ``target`` particles.

        :raises SessionAlreadyActiveError: a session is still filling
        :raises ValueError: target is not a positive integer
        """
        if self._state is FillState.FILLING:
            raise SessionAlreadyActiveError(
                f"Already filling ({self.accepted}/{self._target} particles)"
            )
        if int(target) != target or target < 1:
            raise ValueError(f"Target must be a positive integer, got {target}")

        self._target = int(target)
        self._attempts = 0
        self.particles.clear()
        self.metrics = FillMetrics(build_ms=self.volume.build_ms)
        self.batch_size = self.initial_batch_size
        self._state = FillState.FILLING
        logger.info("Filling %s with %s particles", self.volume, self._target)

    def abandon(self):
        """Drop the current session, if any."""
        if self._state is FillState.FILLING:
            logger.info(
                "Abandoning fill at %s/%s particles", self.accepted, self._target
            )
        self._state = FillState.IDLE

    def _candidates(self, n: int) -> NDArray:
        center = self.volume.center
        size = self.volume.size
        return center + size * (self.rng.random((n, 3)) - 0.5)

    def _rescale(self, duration: float):
        if duration > FRAME_BUDGET_MAX or duration < FRAME_BUDGET_MIN:
            factor = FRAME_BUDGET_MAX / max(duration, MIN_DURATION)
            self.batch_size = min(
                max(self.batch_size * factor, MIN_BATCH_SIZE), MAX_BATCH_SIZE
            )

    def step(self) -> StepResult:
        """Generate and classify one batch of candidates.

        :raises RuntimeError: no session is filling
        :raises FillExhaustedError: the session ran out of attempts;
            it is abandoned, but its particles can still be read
        :return: StepResult; on the step which completes the session,
            it carries the particles and metrics
        """
        if self._state is not FillState.FILLING:
            raise RuntimeError(f"Cannot step a filler which is {self._state.value}")

        t0 = self.clock()

        candidates = self._candidates(math.ceil(self.batch_size))
        inside = self.volume.contains(candidates, self.metrics)
        needed = self._target - self.accepted
        accepted_idx = np.flatnonzero(inside)[:needed]
        if len(accepted_idx) == needed:
            # stop at the candidate which reached the target
            attempts = accepted_idx[-1] + 1
        else:
            attempts = len(candidates)
        self.particles.append(candidates[accepted_idx])
        self._attempts += int(attempts)

        duration = self.clock() - t0

        self.metrics.fill_ms += duration
        self.metrics.steps += 1
        self.metrics.attempts = self._attempts
        self.metrics.accepted = self.accepted
        logger.debug(
            "Fill step: %.1fms, %s/%s (%.0f%%)",
            duration,
            self.accepted,
            self._target,
            100 * self.accepted / self._target,
        )

        if self.auto_size:
            self._rescale(duration)

        if self.accepted == self._target:
            return self._complete(duration)

        if self._attempts > self.max_attempts:
            self._state = FillState.IDLE
            raise FillExhaustedError(
                f"Accepted {self.accepted}/{self._target} particles "
                f"after {self._attempts} attempts"
            )

        return StepResult(
            self._state,
            self.accepted,
            self._target,
            self._attempts,
            self.batch_size,
            duration,
        )

    def _complete(self, duration: float) -> StepResult:
        self._state = FillState.COMPLETE
        particles = self.particles.as_array()
        logger.info("Fill complete\n%s", self.metrics.summary())
        if self.on_complete is not None:
            self.on_complete(particles, self.metrics)
        return StepResult(
            self._state,
            self.accepted,
            self._target,
            self._attempts,
            self.batch_size,
            duration,
            particles,
            self.metrics,
        )

    def run(self, target: int) -> StepResult:
        """Start a session and step it until it completes."""
        self.start(target)
        while True:
            result = self.step()
            if result.complete:
                return result
