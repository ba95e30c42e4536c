"""
Shared fixtures: a synthetic scene with a bright square moving over a noisy
dark background, and a small, fast tracker configuration.
"""
import numpy as np
import pytest

from adaptive_tracker.config import TrackerConfig

FRAME_WIDTH, FRAME_HEIGHT = 160, 120
TARGET_SIZE = 24


def make_frame(x, y, rng, size=TARGET_SIZE, width=FRAME_WIDTH, height=FRAME_HEIGHT):
    """BGR frame with the target's top-left corner at (x, y)."""
    frame = np.clip(rng.normal(60, 12, (height, width)), 0, 255).astype(np.uint8)
    frame[y:y + size, x:x + size] = 220
    return np.dstack([frame, frame, frame])


def make_sequence(count, start=(30, 40), step=(2, 1), seed=3):
    """Frames and ground-truth boxes of a target moving at constant velocity."""
    rng = np.random.default_rng(seed)
    frames, boxes = [], []
    for i in range(count):
        x, y = start[0] + i * step[0], start[1] + i * step[1]
        frames.append(make_frame(x, y, rng))
        boxes.append((x, y, TARGET_SIZE, TARGET_SIZE))
    return frames, boxes


def small_config(**sections):
    mapping = {
        'feature': {'type': 'intensity', 'patch_width': 12, 'patch_height': 12},
        'filter': {'particle_count': 150, 'seed': 7},
        'learning': {'confidence_threshold': 0.5, 'allowed_overlap': 0.3},
    }
    for name, values in sections.items():
        mapping.setdefault(name, {}).update(values)
    return TrackerConfig.from_dict(mapping)


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def sequence():
    return make_sequence(12)


@pytest.fixture
def config():
    return small_config()


class ZeroModel:
    """Classifier snapshot that rejects every region with probability zero."""

    dimensions = None

    def probabilities(self, features):
        n = len(np.atleast_2d(features))
        return np.zeros(n, bool), np.zeros(n)


class ConstantModel:
    """Classifier snapshot that gives every region the same probability."""

    dimensions = None

    def __init__(self, probability):
        self.probability = probability

    def probabilities(self, features):
        n = len(np.atleast_2d(features))
        return np.full(n, self.probability >= 0.5), np.full(n, float(self.probability))
