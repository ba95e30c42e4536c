"""
Bounded stores of training examples

Each class (positive, negative) keeps its own insertion-ordered collection with
an eviction policy:

- unlimited: never evicts
- agebased: evicts the oldest example once the capacity is reached
- confidencebased: evicts the least supportive example, i.e. the positive with
  the lowest or the negative with the highest classifier confidence
"""
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional

import numpy as np

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Label(IntEnum):
    NEGATIVE = -1
    POSITIVE = 1


@dataclass(eq=False)
class TrainingExample:
    features: np.ndarray
    label: Label
    confidence: float = 0.0   # classifier probability when the example was captured
    age: int = 0              # frames since insertion


class ExampleStore:
    """Examples of one class, oldest first."""

    policy = None

    def __init__(self, label: Label, capacity: Optional[int] = None, required: int = 1):
        self.label = Label(label)
        self.capacity = capacity
        self.required = required
        self._examples: List[TrainingExample] = []

    def __len__(self):
        return len(self._examples)

    def __iter__(self):
        return iter(self._examples)

    def size(self):
        return len(self._examples)

    def all(self):
        return list(self._examples)

    def meets_minimum(self):
        return len(self._examples) >= self.required

    def features(self):
        if not self._examples:
            return np.empty((0, 0), np.float32)
        return np.vstack([e.features for e in self._examples]).astype(np.float32)

    def add(self, example: TrainingExample):
        if example.label != self.label:
            raise ValueError(f"cannot add a {example.label.name} example to the {self.label.name} store")
        if self.capacity is not None and len(self._examples) >= self.capacity:
            evicted = self._examples.pop(self._eviction_index())
            logger.debug("%s store evicted example (age %d, confidence %.3f)",
                         self.label.name.lower(), evicted.age, evicted.confidence)
        self._examples.append(example)

    def advance(self):
        """Age every stored example by one frame."""
        for example in self._examples:
            example.age += 1

    def clear(self):
        self._examples.clear()

    def _eviction_index(self):
        raise NotImplementedError


class UnlimitedExampleStore(ExampleStore):
    policy = 'unlimited'

    def __init__(self, label, required=1):
        super().__init__(label, None, required)


class AgeBasedExampleStore(ExampleStore):
    policy = 'agebased'

    def _eviction_index(self):
        return 0


class ConfidenceBasedExampleStore(ExampleStore):
    policy = 'confidencebased'

    def _eviction_index(self):
        confidences = [e.confidence for e in self._examples]
        # first occurrence wins, so ties evict the older example
        if self.label == Label.POSITIVE:
            return int(np.argmin(confidences))
        return int(np.argmax(confidences))


def build_example_store(config, label):
    """Create the store described by an ``ExampleStoreConfig``."""
    if config.policy == 'unlimited':
        return UnlimitedExampleStore(label, required=config.required)
    if config.policy == 'agebased':
        return AgeBasedExampleStore(label, config.capacity, config.required)
    if config.policy == 'confidencebased':
        return ConfidenceBasedExampleStore(label, config.capacity, config.required)
    raise ConfigurationError(f"Unknown example store policy: {config.policy}")


class SampleStore:
    """The positive and negative example stores of one tracker."""

    def __init__(self, positives: ExampleStore, negatives: Optional[ExampleStore] = None):
        self.positives = positives
        self.negatives = negatives

    @classmethod
    def from_config(cls, training):
        negatives = None
        if training.mode == 'binary':
            negatives = build_example_store(training.negatives, Label.NEGATIVE)
        return cls(build_example_store(training.positives, Label.POSITIVE), negatives)

    def store_for(self, label):
        if Label(label) == Label.POSITIVE:
            return self.positives
        return self.negatives

    def add(self, example: TrainingExample):
        store = self.store_for(example.label)
        if store is None:
            # one-class training keeps no negatives
            return False
        store.add(example)
        return True

    def add_features(self, features, label, confidences=None):
        """Add one example per feature row."""
        features = np.atleast_2d(features)
        if confidences is None:
            confidences = np.zeros(len(features))
        added = 0
        for row, confidence in zip(features, confidences):
            added += self.add(TrainingExample(row.copy(), Label(label), float(confidence)))
        return added

    def meets_minimum(self):
        if not self.positives.meets_minimum():
            return False
        return self.negatives is None or self.negatives.meets_minimum()

    def advance(self):
        self.positives.advance()
        if self.negatives is not None:
            self.negatives.advance()

    def sizes(self):
        return len(self.positives), len(self.negatives) if self.negatives is not None else 0

    def clear(self):
        self.positives.clear()
        if self.negatives is not None:
            self.negatives.clear()
