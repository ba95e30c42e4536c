"""
Weighted target hypotheses of the particle filter.
"""
from dataclasses import dataclass, replace
from operator import attrgetter
from typing import Tuple


@dataclass(eq=False)
class Particle:
    """
    One hypothesis of the target state: an aspect-locked region centered at
    (x, y) whose width is ``size`` and whose height is ``size * aspect_ratio``.

    ``vsize`` records the last size change as a factor (1.0 means no change);
    unlike the position velocity it is not carried into the next prediction.
    ``score`` is the calibrated classifier probability of the last measurement
    and ``weight`` is derived from it. Copies made by resampling keep the ``cluster_id`` of the
    particle they were drawn from.
    """
    x: int
    y: int
    size: int
    vx: int = 0
    vy: int = 0
    vsize: float = 1.0
    weight: float = 1.0
    target: bool = False
    cluster_id: int = 0
    aspect_ratio: float = 1.0
    score: float = 0.0

    @property
    def width(self) -> int:
        return self.size

    @property
    def height(self) -> int:
        return int(round(self.aspect_ratio * self.size))

    @property
    def bounds(self) -> Tuple[int, int, int, int]:
        """Bounding box as (x, y, w, h) with (x, y) the top-left corner."""
        w, h = self.width, self.height
        return self.x - w // 2, self.y - h // 2, w, h

    def copy(self, **changes):
        return replace(self, **changes)

    def __lt__(self, other):
        return self.weight < other.weight

    @classmethod
    def from_bounds(cls, rect, aspect_ratio=None, **kwargs):
        """Center a particle on a (x, y, w, h) box; the box width becomes the size."""
        x, y, w, h = rect
        if aspect_ratio is None:
            aspect_ratio = h / float(w)
        return cls(x + w // 2, y + int(round(aspect_ratio * w)) // 2, w,
                   aspect_ratio=aspect_ratio, **kwargs)


by_weight = attrgetter('weight')
by_weight_then_size = attrgetter('weight', 'size')


def rank_by_weight(particles):
    """
    Particles sorted by descending weight. Among equal weights the larger region
    comes first, otherwise the order is kept.
    """
    return sorted(particles, key=by_weight_then_size, reverse=True)
