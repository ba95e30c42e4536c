"""
Error taxonomy of the adaptive tracker.

Only configuration problems are fatal. Per-frame anomalies (an empty particle
population, regions leaving the image, a lost object) are recovered locally and
reported on the frame result instead of being raised.
"""


class TrackerError(Exception):
    """Base class for all tracker errors."""


class ConfigurationError(TrackerError, ValueError):
    """Invalid or inconsistent configuration, detected before tracking starts."""


class DimensionMismatch(ConfigurationError):
    """Feature dimensionality does not match what a collaborator expects."""

    def __init__(self, expected, actual, what='feature vector'):
        super().__init__(f"{what} has {actual} dimensions, expected {expected}")
        self.expected = expected
        self.actual = actual


class InsufficientExamples(TrackerError):
    """Too few training examples to fit a decision function."""

    def __init__(self, positives, negatives, required_positives, required_negatives):
        super().__init__(
            f"need {required_positives} positive and {required_negatives} negative examples, "
            f"have {positives} and {negatives}")
        self.positives = positives
        self.negatives = negatives
        self.required_positives = required_positives
        self.required_negatives = required_negatives


class EndOfStream(TrackerError):
    """The image source has no more frames."""


class ModelFormatError(TrackerError):
    """A persisted classifier model could not be read."""
