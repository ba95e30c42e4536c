"""
Self-learning loop

Feeds the tracker's own confident estimates back into the sample store as
positive examples, harvests background regions as negatives and retrains the
classifier once both stores hold enough examples.

States:
    INITIALIZING -> TRACKING   first confident estimate from a trained classifier
    TRACKING     -> LOST       estimate confidence falls below the threshold
    LOST         -> TRACKING   a confident estimate reappears
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from .evaluation import iou
from .particle import Particle, rank_by_weight
from .sample_store import Label

logger = logging.getLogger(__name__)


class TrackingStatus(Enum):
    """Status of the tracked object."""
    INITIALIZING = "initializing"  # no confident estimate from a trained classifier yet
    TRACKING = "tracking"          # confident estimate this frame
    LOST = "lost"                  # estimate below the confidence threshold


@dataclass
class FrameResult:
    frame_index: int
    status: TrackingStatus
    estimate: Optional[Particle] = None
    particles: List[Particle] = field(default_factory=list)
    recovered: bool = False     # particle population collapsed and was reinitialized
    retrained: bool = False     # a new classifier model was swapped in after this frame
    positives_added: int = 0
    negatives_added: int = 0

    @property
    def bounds(self):
        return self.estimate.bounds if self.estimate is not None else None

    @property
    def confidence(self):
        return self.estimate.score if self.estimate is not None else 0.0


class SelfLearningLoop:
    """
    Args:
        particle_filter: ParticleFilter estimating the target state
        extractor: FeatureExtractor for particle regions
        classifier: SvmClassifier scoring regions, retrained by ``trainer``
        store: SampleStore collecting training examples
        trainer: Trainer refitting ``classifier`` from ``store``
        config: LearningConfig
        rng: numpy Generator for background sampling
    """

    def __init__(self, particle_filter, extractor, classifier, store, trainer, config, rng=None):
        self.filter = particle_filter
        self.extractor = extractor
        self.classifier = classifier
        self.store = store
        self.trainer = trainer
        self.config = config
        self.rng = rng if rng is not None else particle_filter.rng
        self.status = TrackingStatus.INITIALIZING
        self.frame_index = 0
        self.logger = logging.getLogger(f"{__name__}.SelfLearningLoop")

    def _transition(self, status):
        if status != self.status:
            self.logger.info("Frame %d: %s -> %s", self.frame_index, self.status.value, status.value)
            self.status = status

    # ---------- bootstrap ----------
    def initialize(self, image, rect) -> bool:
        """
        Learn the target from a known region: the region becomes a positive
        example, ``initial_negatives`` background regions become negatives and
        the classifier is trained. Returns whether training succeeded.
        """
        target = Particle.from_bounds(rect, self.filter.config.aspect_ratio)
        self.filter.initialize_around(target, image)
        bounds = target.bounds

        self.store.add_features(self.extractor.extract(image, bounds), Label.POSITIVE, [1.0])
        negatives = self.background_regions(image, bounds, self.config.initial_negatives)
        if negatives:
            features = self.extractor.extract_all(image, negatives)
            self.store.add_features(features, Label.NEGATIVE, np.zeros(len(negatives)))
        trained = self.trainer.train()
        if not trained:
            self.logger.warning("Bootstrap training skipped, positives/negatives: %s", self.store.sizes())
        self.status = TrackingStatus.INITIALIZING
        return trained

    def is_background(self, region, target_bounds):
        """
        A region counts as background when its IoU with the target is below
        ``allowed_overlap`` and the target covers at most that share of the
        region itself. The second test rejects small regions nested inside the
        target, whose IoU is low although they show nothing but the target.
        """
        allowed = self.config.allowed_overlap
        if iou(region, target_bounds) >= allowed:
            return False
        x, y, w, h = region
        tx, ty, tw, th = target_bounds
        inter_w = max(0, min(x + w, tx + tw) - max(x, tx))
        inter_h = max(0, min(y + h, ty + th) - max(y, ty))
        area = w * h
        if area <= 0 or inter_w * inter_h >= area:
            return False
        return inter_w * inter_h <= allowed * area

    def background_regions(self, image, target_bounds, count, max_attempts_per_region=20):
        """Uniformly drawn target-sized regions that barely overlap the target."""
        H, W = image.shape[:2]
        _, _, w, h = target_bounds
        w, h = min(w, W), min(h, H)
        regions = []
        attempts = 0
        while len(regions) < count and attempts < count * max_attempts_per_region:
            attempts += 1
            x = int(self.rng.integers(0, W - w + 1))
            y = int(self.rng.integers(0, H - h + 1))
            region = (x, y, w, h)
            if self.is_background(region, target_bounds):
                regions.append(region)
        return regions

    def hard_negatives(self, particles, target_bounds, count):
        """Highest-weighted particle regions inside the image that do not overlap the target."""
        W, H = self.filter.image_size
        chosen = []
        for p in rank_by_weight(particles):
            if len(chosen) >= count:
                break
            bounds = p.bounds
            x, y, w, h = bounds
            if x < 0 or y < 0 or x + w > W or y + h > H or bounds in chosen:
                continue
            if self.is_background(bounds, target_bounds):
                chosen.append(bounds)
        return chosen

    # ---------- per frame ----------
    def process(self, image) -> FrameResult:
        self.frame_index += 1
        self.store.advance()
        model = self.classifier.model
        outcome = self.filter.update(image, self.extractor, model)

        confident = model is not None and outcome.present
        if confident:
            self._transition(TrackingStatus.TRACKING)
        elif self.status == TrackingStatus.TRACKING or (outcome.recovered and model is not None):
            self._transition(TrackingStatus.LOST)

        result = FrameResult(self.frame_index, self.status, outcome.estimate,
                             outcome.particles, recovered=outcome.recovered)
        if confident:
            self._learn(image, outcome, model, result)
        self.logger.debug("Frame %d: %s confidence=%.3f store=%s", self.frame_index,
                          self.status.value, result.confidence, self.store.sizes())
        return result

    def _learn(self, image, outcome, model, result):
        estimate = outcome.estimate
        target_bounds = estimate.bounds
        result.positives_added = self.store.add_features(
            self.extractor.extract(image, target_bounds), Label.POSITIVE, [estimate.score])

        limit = self.config.max_negatives_per_frame
        if self.store.negatives is not None and limit > 0:
            regions = self.hard_negatives(outcome.particles, target_bounds, limit)
            if len(regions) < limit:
                regions += self.background_regions(image, target_bounds, limit - len(regions))
            if regions:
                features = self.extractor.extract_all(image, regions)
                _, probabilities = model.probabilities(features)
                result.negatives_added = self.store.add_features(features, Label.NEGATIVE, probabilities)

        if self.store.meets_minimum():
            result.retrained = self.trainer.train()
