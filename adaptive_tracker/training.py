"""
Retraining of the classifier from the sample store.
"""
import logging

from .exceptions import InsufficientExamples

logger = logging.getLogger(__name__)


class Trainer:
    """Refits the classifier on everything currently held by the sample store."""

    def __init__(self, classifier, store):
        self.classifier = classifier
        self.store = store
        self.trainings = 0

    def train(self) -> bool:
        """
        Returns True if a new model was swapped in. When examples are missing the
        cycle is skipped and the previous model stays active.
        """
        negatives = self.store.negatives.features() if self.store.negatives is not None else None
        try:
            self.classifier.train(self.store.positives.features(), negatives)
        except InsufficientExamples as e:
            logger.debug("Skipping retraining: %s", e)
            return False
        self.trainings += 1
        logger.debug("Retraining #%d done, positives/negatives: %s", self.trainings, self.store.sizes())
        return True
