"""
Condensation (particle filter) state estimation

Each frame the population is predicted with a stochastic motion model, measured
with the current classifier snapshot, normalized, summarized into an estimate
and resampled into the next generation of the same size.
"""
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .particle import Particle, rank_by_weight

logger = logging.getLogger(__name__)


@dataclass
class FilterResult:
    estimate: Optional[Particle]
    particles: List[Particle] = field(default_factory=list)  # weighted generation behind the estimate
    recovered: bool = False                                  # population was empty and reinitialized

    @property
    def confidence(self):
        return self.estimate.score if self.estimate is not None else 0.0

    @property
    def present(self):
        return self.estimate is not None and self.estimate.target


class ParticleFilter:
    """
    Args:
        config: FilterConfig
        confidence_threshold: estimate probability needed to report the object as present
        rng: numpy Generator; a new one seeded from ``config.seed`` if omitted
    """

    def __init__(self, config, confidence_threshold=0.95, rng=None):
        self.config = config
        self.confidence_threshold = confidence_threshold
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.aspect_ratio = config.aspect_ratio if config.aspect_ratio is not None else 1.0
        self.particles: List[Particle] = []
        self.image_size = None  # (width, height)
        self._cluster_ids = itertools.count()

    # ---------- helpers ----------
    def _new_particle(self, x, y, size, vx=0, vy=0, vsize=1.0):
        return Particle(int(x), int(y), int(size), int(vx), int(vy), float(vsize),
                        weight=1.0, cluster_id=next(self._cluster_ids),
                        aspect_ratio=self.aspect_ratio)

    def _set_image(self, image_or_shape):
        shape = image_or_shape.shape if hasattr(image_or_shape, 'shape') else image_or_shape
        self.image_size = (int(shape[1]), int(shape[0]))

    def size_bounds(self):
        """(min, max) particle size for the current image."""
        W, H = self.image_size
        largest = max(1, min(W, int(H / self.aspect_ratio)))
        min_size = self.config.min_size if self.config.min_size is not None else max(1, int(0.1 * largest))
        max_size = self.config.max_size if self.config.max_size is not None else largest
        return min(min_size, largest), min(max(max_size, min_size), largest)

    def _random_particle(self):
        W, H = self.image_size
        min_size, max_size = self.size_bounds()
        size = int(self.rng.integers(min_size, max_size + 1))
        p = self._new_particle(0, 0, size)
        w, h = p.width, p.height
        p.x = int(self.rng.integers(w // 2, max(w // 2, W - w + w // 2) + 1))
        p.y = int(self.rng.integers(h // 2, max(h // 2, H - h + h // 2) + 1))
        return p

    def is_inside(self, p):
        x, y, w, h = p.bounds
        W, H = self.image_size
        return x >= 0 and y >= 0 and x + w <= W and y + h <= H

    def is_visible(self, p):
        x, y, w, h = p.bounds
        W, H = self.image_size
        return x < W and y < H and x + w > 0 and y + h > 0

    def _clip(self, p):
        W, H = self.image_size
        largest = max(1, min(W, int(H / self.aspect_ratio)))
        if p.size > largest:
            p.size = largest
        w, h = p.width, min(p.height, H)
        p.x = min(max(p.x, w // 2), W - w + w // 2)
        p.y = min(max(p.y, h // 2), H - h + h // 2)

    # ---------- initialization ----------
    def initialize_uniform(self, image_or_shape):
        """Draw the whole population from the uniform prior over the image."""
        self._set_image(image_or_shape)
        self.particles = [self._random_particle() for _ in range(self.config.particle_count)]

    def initialize_around(self, target: Particle, image_or_shape):
        """Place the whole population on a known target state."""
        self._set_image(image_or_shape)
        self.aspect_ratio = target.aspect_ratio
        self.particles = [self._new_particle(target.x, target.y, target.size)
                          for _ in range(self.config.particle_count)]

    # ---------- condensation steps ----------
    def predict(self):
        """Move every particle by its damped velocity plus Gaussian noise; sizes get log-normal noise."""
        cfg = self.config
        noise = self.rng.standard_normal((len(self.particles), 3))
        min_size, max_size = (cfg.min_size, cfg.max_size)
        for p, (nx, ny, ns) in zip(self.particles, noise):
            deviation = cfg.position_deviation * p.size
            dx = int(round(cfg.velocity_damping * p.vx + deviation * nx))
            dy = int(round(cfg.velocity_damping * p.vy + deviation * ny))
            # size follows a random walk; the last change is recorded but not carried forward
            factor = math.exp(cfg.size_deviation * ns)
            size = max(1, int(round(p.size * factor)))
            if min_size is not None:
                size = max(size, min_size)
            if max_size is not None:
                size = min(size, max_size)
            p.vx, p.vy, p.vsize = dx, dy, size / float(p.size)
            p.x += dx
            p.y += dy
            p.size = size
        self._apply_boundary_policy()

    def _apply_boundary_policy(self):
        if self.config.boundary_policy == 'clip':
            for p in self.particles:
                self._clip(p)
            return
        inside = [p for p in self.particles if self.is_inside(p)]
        dropped = 0
        for i, p in enumerate(self.particles):
            if self.is_inside(p):
                continue
            dropped += 1
            if inside:
                self.particles[i] = inside[int(self.rng.integers(len(inside)))].copy()
            else:
                self.particles[i] = self._random_particle()
        if dropped:
            logger.debug("Replaced %d particles that left the image", dropped)

    def measure(self, image, extractor, model):
        """
        Weight every particle by the calibrated probability of its region.

        ``model`` is one classifier snapshot used for the whole population; with
        no model all weights become zero.
        """
        self._set_image(image)
        for p in self.particles:
            p.weight, p.score, p.target = 0.0, 0.0, False
        if model is None:
            return
        visible = [p for p in self.particles if self.is_visible(p)]
        if not visible:
            return
        features = extractor.extract_all(image, [p.bounds for p in visible])
        decisions, probabilities = model.probabilities(features)
        for p, decision, probability in zip(visible, decisions, probabilities):
            p.weight = p.score = float(probability)
            p.target = bool(decision)

    def total_weight(self):
        return math.fsum(p.weight for p in self.particles)

    def normalize(self):
        """Scale weights to sum to one; False if the population carries no weight."""
        total = self.total_weight()
        if not total > self.config.min_total_weight:
            return False
        for p in self.particles:
            p.weight /= total
        return True

    def resample(self):
        """
        Draw the next generation proportionally to the normalized weights. A
        ``random_rate`` fraction of it comes from the uniform prior instead.
        """
        n = self.config.particle_count
        weights = np.array([p.weight for p in self.particles], dtype=np.float64)
        weights /= weights.sum()
        random_count = min(int(round(self.config.random_rate * n)), n - 1)
        drawn = n - random_count

        cumulative = np.cumsum(weights)
        cumulative[-1] = 1.0
        if self.config.resampling == 'systematic':
            positions = (self.rng.random() + np.arange(drawn)) / drawn
        else:
            positions = self.rng.random(drawn)
        indexes = np.searchsorted(cumulative, positions, side='right')
        indexes = np.minimum(indexes, len(self.particles) - 1)

        generation = [self.particles[i].copy(weight=1.0 / n) for i in indexes]
        for _ in range(random_count):
            p = self._random_particle()
            p.weight = 1.0 / n
            generation.append(p)
        self.particles = generation
        return indexes

    def estimate(self, image=None, extractor=None, model=None):
        """
        Target estimate from the normalized population: the best particle, or the
        weighted mean of the top-K particles. The mean region is scored again when
        an extractor and model are given; otherwise it inherits the weighted mean
        score.
        """
        if not self.particles:
            return None
        ranked = rank_by_weight(self.particles)
        if self.config.estimator == 'max':
            best = ranked[0]
            estimate = best.copy()
        else:
            top = ranked[:self.config.top_k]
            # larger regions count more so that sub-regions nested in the target do not pull the size down
            weights = np.array([p.weight * p.size for p in top], dtype=np.float64)
            if weights.sum() <= 0:
                return None
            weights = weights / weights.sum()
            x = float(np.dot(weights, [p.x for p in top]))
            y = float(np.dot(weights, [p.y for p in top]))
            size = float(np.dot(weights, [p.size for p in top]))
            estimate = self._new_particle(round(x), round(y), max(1, round(size)))
            estimate.weight = float(sum(p.weight for p in top))
            estimate.score = float(np.dot(weights, [p.score for p in top]))
            if model is not None and extractor is not None and self.is_visible(estimate):
                features = extractor.extract(image, estimate.bounds)
                _, probabilities = model.probabilities(features)
                estimate.score = float(probabilities[0])
        estimate.target = estimate.score >= self.confidence_threshold
        return estimate

    def update(self, image, extractor, model) -> FilterResult:
        """One full predict / measure / estimate / resample cycle."""
        if not self.particles:
            self.initialize_uniform(image)
        self._set_image(image)
        self.predict()
        self.measure(image, extractor, model)

        if not self.normalize():
            # empty population: start over from the uniform prior, object lost this frame
            logger.warning("All %d particle weights collapsed, reinitializing from uniform prior",
                           len(self.particles))
            weighted = self.particles
            self.initialize_uniform(image)
            return FilterResult(None, weighted, recovered=True)

        estimate = self.estimate(image, extractor, model)
        weighted = [p.copy() for p in self.particles]
        self.resample()
        return FilterResult(estimate, weighted)
