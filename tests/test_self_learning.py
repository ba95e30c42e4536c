"""
Self-learning loop: bootstrap, status transitions and example harvesting.
"""
import pytest

from adaptive_tracker import AdaptiveTracker
from adaptive_tracker.evaluation import iou
from adaptive_tracker.particle import Particle
from adaptive_tracker.self_learning import TrackingStatus

from conftest import ZeroModel


@pytest.fixture
def tracker(config, sequence):
    frames, boxes = sequence
    tracker = AdaptiveTracker(config)
    tracker.initialize(frames[0], boxes[0])
    return tracker


def test_initialize_stores_examples_and_trains(tracker):
    assert tracker.store.sizes() == (1, 10)
    assert tracker.classifier.trained
    assert tracker.trainer.trainings == 1
    assert tracker.status == TrackingStatus.INITIALIZING
    assert all(p.aspect_ratio == 1.0 for p in tracker.filter.particles)


def test_background_regions_avoid_the_target(tracker, sequence):
    frames, boxes = sequence
    regions = tracker.loop.background_regions(frames[0], boxes[0], 20)
    assert len(regions) == 20
    for x, y, w, h in regions:
        assert (w, h) == (24, 24)
        assert 0 <= x <= 160 - w and 0 <= y <= 120 - h
        assert iou((x, y, w, h), boxes[0]) < tracker.config.learning.allowed_overlap


def test_hard_negatives_are_ranked_and_outside_the_target(tracker):
    target = (40, 40, 20, 20)
    particles = [Particle(50, 50, 20, weight=0.9),    # the target itself
                 Particle(100, 60, 20, weight=0.6),
                 Particle(20, 90, 20, weight=0.3),
                 Particle(5, 5, 20, weight=0.8),      # partly outside the image
                 Particle(130, 30, 20, weight=0.1)]
    chosen = tracker.loop.hard_negatives(particles, target, 2)
    assert chosen == [particles[1].bounds, particles[2].bounds]


def test_confident_frame_tracks_and_learns(tracker, sequence):
    frames, boxes = sequence
    result = tracker.update(frames[1])
    assert result.status == TrackingStatus.TRACKING
    assert result.confidence >= tracker.config.learning.confidence_threshold
    assert iou(result.bounds, boxes[1]) > 0.3
    assert result.positives_added == 1
    assert result.negatives_added == tracker.config.learning.max_negatives_per_frame
    assert result.retrained
    assert tracker.store.sizes() == (2, 15)


def test_collapsed_population_reports_lost(tracker, sequence):
    frames, _ = sequence
    tracker.classifier.set_model(ZeroModel())
    sizes = tracker.store.sizes()
    result = tracker.update(frames[1])
    assert result.status == TrackingStatus.LOST
    assert result.recovered
    assert result.estimate is None
    assert result.bounds is None
    assert not result.retrained
    assert tracker.store.sizes() == sizes


def test_untrained_loop_stays_initializing(config, sequence):
    frames, _ = sequence
    tracker = AdaptiveTracker(config)
    result = tracker.update(frames[0])
    assert result.status == TrackingStatus.INITIALIZING
    assert result.recovered


def test_lost_object_is_reacquired(tracker, sequence):
    frames, boxes = sequence
    model = tracker.classifier.model
    tracker.classifier.set_model(ZeroModel())
    assert tracker.update(frames[1]).status == TrackingStatus.LOST

    tracker.classifier.set_model(model)
    tracker.filter.initialize_around(Particle.from_bounds(boxes[2]), frames[2])
    result = tracker.update(frames[2])
    assert result.status == TrackingStatus.TRACKING
    assert iou(result.bounds, boxes[2]) > 0.3


def test_regions_nested_in_the_target_are_never_negatives(tracker):
    target = (40, 40, 30, 30)
    particles = [Particle(55, 55, 12, weight=0.9),    # centered inside the target
                 Particle(45, 48, 8, weight=0.8),     # in a corner of the target
                 Particle(72, 55, 14, weight=0.7),    # a third of it covered by the target
                 Particle(110, 60, 20, weight=0.2)]
    chosen = tracker.loop.hard_negatives(particles, target, 3)
    assert chosen == [particles[3].bounds]
    for p in particles[:3]:
        assert iou(p.bounds, target) < tracker.config.learning.allowed_overlap
        assert not tracker.loop.is_background(p.bounds, target)


def test_negatives_never_come_from_inside_the_target(tracker, sequence):
    frames, boxes = sequence
    added = []
    original = tracker.loop.hard_negatives

    def record(particles, target_bounds, count):
        chosen = original(particles, target_bounds, count)
        added.extend((bounds, target_bounds) for bounds in chosen)
        return chosen

    tracker.loop.hard_negatives = record
    for frame in frames[1:8]:
        tracker.update(frame)
    for (x, y, w, h), (tx, ty, tw, th) in added:
        inside = tx <= x and ty <= y and x + w <= tx + tw and y + h <= ty + th
        assert not inside
