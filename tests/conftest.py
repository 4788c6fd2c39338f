from itertools import product
from pathlib import Path

import numpy as np
import pytest

from volpar import Filler, Volume

test_dir = Path(__file__).resolve().parent
project_dir = test_dir.parent
mesh_dir = project_dir / "meshes"

HALF_EXTENT = 10
OCTAHEDRON_SIZE = 20

# corner i has x, y, z high where bits 0, 1, 2 of i are set
CUBE_VERTICES = [
    [HALF_EXTENT * (2 * bit - 1) for bit in reversed(bits)]
    for bits in product([0, 1], repeat=3)
]
CUBE_FACES = [
    [0, 2, 1], [1, 2, 3],  # z low
    [4, 5, 6], [5, 7, 6],  # z high
    [0, 1, 4], [1, 5, 4],  # y low
    [2, 6, 3], [3, 6, 7],  # y high
    [0, 4, 2], [2, 4, 6],  # x low
    [1, 3, 5], [3, 7, 5],  # x high
]

OCTAHEDRON_VERTICES = [
    [OCTAHEDRON_SIZE, 0, 0],
    [-OCTAHEDRON_SIZE, 0, 0],
    [0, OCTAHEDRON_SIZE, 0],
    [0, -OCTAHEDRON_SIZE, 0],
    [0, 0, OCTAHEDRON_SIZE],
    [0, 0, -OCTAHEDRON_SIZE],
]
OCTAHEDRON_FACES = [
    [0, 2, 4], [2, 1, 4], [1, 3, 4], [3, 0, 4],
    [2, 0, 5], [1, 2, 5], [3, 1, 5], [0, 3, 5],
]


class FakeClock:
    """Clock whose every step (two readings) lasts ``duration``."""

    def __init__(self, duration=14.0):
        self.duration = duration
        self.now = 0.0
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls % 2 == 0:
            self.now += self.duration
        return self.now


@pytest.fixture
def cube_positions():
    return np.array(CUBE_VERTICES, float).ravel()


@pytest.fixture
def cube_indices():
    return np.array(CUBE_FACES, np.uint32).ravel()


@pytest.fixture
def cube_soup(cube_positions, cube_indices):
    """Non-indexed position buffer of the same cube."""
    return cube_positions.reshape(-1, 3)[cube_indices].ravel()


@pytest.fixture
def cube_volume(cube_positions, cube_indices):
    return Volume(cube_positions, cube_indices)


@pytest.fixture
def octahedron_volume():
    return Volume(OCTAHEDRON_VERTICES, OCTAHEDRON_FACES)


@pytest.fixture
def empty_volume(cube_positions):
    return Volume(cube_positions, [])


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def filler(cube_volume, fake_clock):
    return Filler(cube_volume, seed=1991, clock=fake_clock, batch_size=500)


@pytest.fixture
def stl_path():
    return mesh_dir / "cube.stl"
