import logging
import sys
from pathlib import Path

import meshio
import trimesh
from matplotlib import pyplot as plt
from matplotlib.figure import Figure
from mpl_toolkits.mplot3d import Axes3D

from volpar import Filler, FillState, Volume

N_PARTICLES = 50_000

logging.basicConfig(level=logging.INFO)

if len(sys.argv) > 1:
    vol = Volume.from_meshio(meshio.read(str(Path(sys.argv[1]))), validate=True)
else:
    vol = Volume.from_trimesh(trimesh.creation.torus(20, 8))


def plot(particles, metrics):
    extents = vol.extents

    fig: Figure = plt.figure()
    ax: Axes3D = fig.add_subplot(111, projection="3d")

    ax.set_xlim(extents[:, 0])
    ax.set_ylim(extents[:, 1])
    ax.set_zlim(extents[:, 2])
    ax.scatter(particles[:, 0], particles[:, 1], particles[:, 2], s=1.2, c="#e02020")
    ax.set_title(f"{len(particles)} particles in {metrics.fill_ms:.0f}ms")

    plt.show()


filler = Filler(vol, on_complete=plot)
filler.start(N_PARTICLES)

# stand-in for a render loop: one step per frame
while filler.state is FillState.FILLING:
    filler.step()
