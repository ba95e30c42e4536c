import logging
import os
import time

import numpy as np

from .classifier import build_classifier, load_model, save_model
from .config import TrackerConfig, load_config
from .exceptions import ConfigurationError, DimensionMismatch, EndOfStream, InsufficientExamples
from .features import build_feature_extractor
from .particle_filter import ParticleFilter
from .sample_store import SampleStore
from .self_learning import SelfLearningLoop, TrackingStatus
from .training import Trainer
from .utils import draw_result, save_frame, save_prediction, save_meta


def validate_roi(roi, shape):
    """Reject regions without area and regions that do not touch the image."""
    try:
        x, y, w, h = (int(v) for v in roi)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"region must be (x, y, w, h), got {roi!r}") from e
    H, W = shape[:2]
    if w <= 0 or h <= 0:
        raise ConfigurationError(f"region {tuple(roi)} has no area")
    if x >= W or y >= H or x + w <= 0 or y + h <= 0:
        raise ConfigurationError(f"region {tuple(roi)} lies outside the {W}x{H} frame")
    return x, y, w, h


class AdaptiveTracker:
    """
    Condensation tracker with a self-trained SVM measurement model.

    Args:
        config: TrackerConfig, defaults if omitted
        model_path: persisted classifier model to start from
        rng: numpy Generator shared by filter and background sampling
    """
    __slots__ = ('config', 'extractor', 'classifier', 'store', 'trainer',
                 'filter', 'loop', 'history', 'logger')

    def __init__(self, config: TrackerConfig = None, model_path=None, rng=None):
        self.config = config if config is not None else TrackerConfig()
        self.logger = logging.getLogger("AdaptiveTracker")
        rng = rng if rng is not None else np.random.default_rng(self.config.filter.seed)

        self.extractor = build_feature_extractor(self.config.feature)
        model = load_model(model_path) if model_path is not None else None
        self.classifier = build_classifier(self.config.classifier, model)
        if self.classifier.dimensions is not None and self.classifier.dimensions != self.extractor.dimensions:
            raise DimensionMismatch(self.classifier.dimensions, self.extractor.dimensions,
                                    'feature extractor for the loaded model')

        self.store = SampleStore.from_config(self.config.classifier.training)
        self.trainer = Trainer(self.classifier, self.store)
        self.filter = ParticleFilter(self.config.filter, self.config.learning.confidence_threshold, rng)
        self.loop = SelfLearningLoop(self.filter, self.extractor, self.classifier,
                                     self.store, self.trainer, self.config.learning, rng)
        self.history = []

    @property
    def status(self) -> TrackingStatus:
        return self.loop.status

    def initialize(self, frame, roi):
        """
        Learn the target in ``roi`` (x, y, w, h) of the first frame.

        Raises:
            ConfigurationError: the region is empty or lies outside the frame
            InsufficientExamples: bootstrap training failed and no model was loaded
        """
        validate_roi(roi, frame.shape)
        trained = self.loop.initialize(frame, roi)
        if not trained and not self.classifier.trained:
            positives, negatives = self.store.sizes()
            required_pos, required_neg = self.classifier.required_counts()
            raise InsufficientExamples(positives, negatives, required_pos, required_neg)
        self.logger.info("Initialized on %s with %d features, %s examples",
                         tuple(roi), self.extractor.dimensions, self.store.sizes())
        return trained

    def update(self, frame):
        result = self.loop.process(frame)
        self.history.append(result)
        return result

    def save_model(self, path):
        if self.classifier.model is None:
            raise ValueError("classifier has not been trained")
        save_model(self.classifier.model, path)

    def track(self, source, roi=None, save_result=False, draw_particles=False,
              output_dir='results/frames', max_frames=None):
        """
        Run the tracker over an ImageSource. The first frame is used for
        initialization when ``roi`` is given; otherwise the classifier must have
        been loaded or initialized already.
        """
        results = []
        if save_result:
            stale = os.path.join(output_dir, 'predictions.csv')
            if os.path.exists(stale):
                os.remove(stale)
        if roi is not None:
            try:
                first = source.next_frame()
            except EndOfStream:
                self.logger.error("Source has no frames")
                return results
            self.initialize(first, roi)
            if save_result:
                save_prediction(output_dir, 0, tuple(roi))

        start_time = time.time()
        while max_frames is None or len(results) < max_frames:
            try:
                frame = source.next_frame()
            except EndOfStream:
                break
            result = self.update(frame)
            results.append(result)

            if save_result:
                save_frame(draw_result(frame, result, draw_particles), result.frame_index, output_dir)
                save_prediction(output_dir, result.frame_index, result.bounds)

        total_time = time.time() - start_time
        if save_result:
            save_meta(output_dir, len(results), total_time,
                      retrainings=self.trainer.trainings,
                      lost_frames=sum(r.status == TrackingStatus.LOST for r in results))
        self.logger.info("Tracked %d frames in %.2fs (%d retrainings)",
                         len(results), total_time, self.trainer.trainings)
        return results


def build_tracker(config=None, model_path=None, **kwargs):
    """AdaptiveTracker from a TrackerConfig, a nested dict or a JSON file path."""
    if config is None or isinstance(config, dict):
        config = TrackerConfig.from_dict(config)
    elif isinstance(config, (str, os.PathLike)):
        config = load_config(config)
    return AdaptiveTracker(config, model_path=model_path, **kwargs)
