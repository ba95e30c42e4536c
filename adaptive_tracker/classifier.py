"""
SVM classifier with pseudo-probabilistic output

The decision value (hyperplane distance) d of a feature vector is mapped to a
probability with the logistic function p(d) = 1 / (1 + exp(a + b * d)).
Training is delegated to OpenCV's SVM solver; the resulting support vectors are
evaluated here so that the trained model is a plain immutable value. A retrained
model replaces the previous one with a single reference assignment, so scoring
code that grabbed ``classifier.model`` keeps a consistent snapshot.
"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .exceptions import ConfigurationError, DimensionMismatch, InsufficientExamples, ModelFormatError

logger = logging.getLogger(__name__)


# ---------- kernels ----------

class Kernel:
    name = None

    def configure(self, svm):
        raise NotImplementedError

    def compute(self, features, support_vectors):
        """Kernel matrix of shape (len(features), len(support_vectors))."""
        raise NotImplementedError

    def params(self):
        return {'type': self.name}


class LinearKernel(Kernel):
    name = 'linear'

    def configure(self, svm):
        svm.setKernel(cv2.ml.SVM_LINEAR)

    def compute(self, features, support_vectors):
        return features @ support_vectors.T


class RbfKernel(Kernel):
    """exp(-gamma * |x - y|^2)"""
    name = 'rbf'

    def __init__(self, gamma=0.1):
        if gamma <= 0:
            raise ConfigurationError("rbf kernel needs a positive gamma")
        self.gamma = gamma

    def configure(self, svm):
        svm.setKernel(cv2.ml.SVM_RBF)
        svm.setGamma(self.gamma)

    def compute(self, features, support_vectors):
        sq = ((features ** 2).sum(axis=1)[:, None] + (support_vectors ** 2).sum(axis=1)[None, :]
              - 2.0 * features @ support_vectors.T)
        return np.exp(-self.gamma * np.maximum(sq, 0.0))

    def params(self):
        return {'type': self.name, 'gamma': self.gamma}


class PolyKernel(Kernel):
    """(alpha * x.y + constant)^degree"""
    name = 'poly'

    def __init__(self, alpha=0.05, constant=0.0, degree=2):
        if alpha <= 0 or degree < 1:
            raise ConfigurationError("poly kernel needs a positive alpha and degree")
        self.alpha = alpha
        self.constant = constant
        self.degree = degree

    def configure(self, svm):
        svm.setKernel(cv2.ml.SVM_POLY)
        svm.setGamma(self.alpha)
        svm.setCoef0(self.constant)
        svm.setDegree(self.degree)

    def compute(self, features, support_vectors):
        return (self.alpha * (features @ support_vectors.T) + self.constant) ** self.degree

    def params(self):
        return {'type': self.name, 'alpha': self.alpha, 'constant': self.constant, 'degree': self.degree}


class HikKernel(Kernel):
    """Histogram intersection: sum_i min(x_i, y_i)"""
    name = 'hik'

    def configure(self, svm):
        svm.setKernel(cv2.ml.SVM_INTER)

    def compute(self, features, support_vectors):
        return np.minimum(features[:, None, :], support_vectors[None, :, :]).sum(axis=2)


def build_kernel(config):
    """Kernel from a ``KernelConfig`` or a dict of kernel parameters."""
    params = dict(config) if isinstance(config, dict) else {
        'type': config.type, 'gamma': config.gamma, 'alpha': config.alpha,
        'constant': config.constant, 'degree': config.degree}
    kind = params.get('type')
    if kind == 'linear':
        return LinearKernel()
    if kind == 'rbf':
        return RbfKernel(params.get('gamma', 0.1))
    if kind == 'poly':
        return PolyKernel(params.get('alpha', 0.05), params.get('constant', 0.0), params.get('degree', 2))
    if kind == 'hik':
        return HikKernel()
    raise ConfigurationError(f"Unknown kernel: {kind}")


# ---------- decision function ----------

def _frozen(array, dtype=np.float64):
    array = np.array(array, dtype=dtype)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class DecisionFunction:
    """d(x) = sum_k coefficients[k] * K(x, support_vectors[k]) + bias, positive for the target."""
    kernel: Kernel
    support_vectors: np.ndarray
    coefficients: np.ndarray
    bias: float

    @property
    def dimensions(self):
        return self.support_vectors.shape[1]

    def values(self, features):
        features = np.atleast_2d(np.asarray(features, dtype=np.float64))
        if features.shape[1] != self.dimensions:
            raise DimensionMismatch(self.dimensions, features.shape[1])
        return self.kernel.compute(features, self.support_vectors) @ self.coefficients + self.bias


def train_svm(features, labels, kernel, c=1.0, one_class=False, nu=0.5):
    """
    Fit an SVM with OpenCV and return its decision function.

    Args:
        features: (n, d) training vectors
        labels: +1 / -1 per row (ignored for one-class training)
        kernel: Kernel used by the solver and by the returned function
    """
    samples = np.asarray(features, dtype=np.float32)
    svm = cv2.ml.SVM_create()
    if one_class:
        svm.setType(cv2.ml.SVM_ONE_CLASS)
        svm.setNu(nu)
        responses = np.ones((len(samples), 1), np.int32)
    else:
        svm.setType(cv2.ml.SVM_C_SVC)
        svm.setC(c)
        responses = np.asarray(labels, dtype=np.int32).reshape(-1, 1)
    kernel.configure(svm)
    svm.setTermCriteria((cv2.TERM_CRITERIA_MAX_ITER | cv2.TERM_CRITERIA_EPS, 10000, 1e-6))
    svm.train(samples, cv2.ml.ROW_SAMPLE, responses)

    rho, alpha, svidx = svm.getDecisionFunction(0)
    support_vectors = svm.getSupportVectors()[svidx.ravel()]
    raw = DecisionFunction(kernel, _frozen(support_vectors), _frozen(alpha.ravel()), -float(rho))

    # the solver's sign convention depends on label ordering; orient the raw
    # values so that the side predicted as target is positive
    values = raw.values(samples)
    predicted = svm.predict(samples)[1].ravel() > 0
    pivot = int(np.argmax(np.abs(values)))
    if values[pivot] != 0 and (values[pivot] > 0) != predicted[pivot]:
        return DecisionFunction(kernel, raw.support_vectors, _frozen(-raw.coefficients), -raw.bias)
    return raw


# ---------- calibration ----------

def logistic_parameters(positive_probability, negative_probability, positive_mean, negative_mean):
    """
    Parameters (a, b) of p(d) = 1 / (1 + exp(a + b * d)) such that
    p(positive_mean) = positive_probability and p(negative_mean) = negative_probability.
    """
    if positive_mean <= negative_mean:
        raise ValueError("positive mean must exceed negative mean")
    pos_logit = math.log(1.0 / positive_probability - 1.0)
    neg_logit = math.log(1.0 / negative_probability - 1.0)
    b = (pos_logit - neg_logit) / (positive_mean - negative_mean)
    a = pos_logit - b * positive_mean
    return a, b


def logistic(distance, a, b):
    z = np.clip(a + b * np.asarray(distance, dtype=np.float64), -500.0, 500.0)
    return 1.0 / (1.0 + np.exp(z))


def threshold_for_probability(probability, a, b):
    """Decision value at which the calibrated probability equals ``probability``."""
    return (math.log(1.0 / probability - 1.0) - a) / b


class FixedCalibration:
    """Logistic parameters derived from configured class means and target probabilities."""

    def __init__(self, config):
        self.config = config
        self.a, self.b = logistic_parameters(config.positive_probability, config.negative_probability,
                                             config.positive_mean, config.negative_mean)

    def fit(self, decision, positives, negatives):
        return self.a, self.b


class AdaptiveCalibration(FixedCalibration):
    """
    Measures the mean decision value of the most recent training examples of
    each class and fits the logistic function to them. Falls back to the fixed
    parameters while fewer than two examples per class exist or the measured
    means are not ordered.
    """

    def fit(self, decision, positives, negatives):
        cfg = self.config
        if len(positives) < 2 or negatives is None or len(negatives) < 2:
            return self.a, self.b
        positive_mean = float(np.mean(decision.values(positives[-cfg.positive_examples:])))
        negative_mean = float(np.mean(decision.values(negatives[-cfg.negative_examples:])))
        if positive_mean <= negative_mean:
            logger.debug("Calibration means not ordered (%.3f <= %.3f), keeping fixed parameters",
                         positive_mean, negative_mean)
            return self.a, self.b
        return logistic_parameters(cfg.positive_probability, cfg.negative_probability,
                                   positive_mean, negative_mean)


def build_calibration(config):
    if config.mode == 'fixed':
        return FixedCalibration(config)
    if config.mode == 'adaptive':
        return AdaptiveCalibration(config)
    raise ConfigurationError(f"Unknown calibration mode: {config.mode}")


# ---------- model ----------

@dataclass(frozen=True, eq=False)
class SvmModel:
    """A trained decision function together with its calibration and threshold."""
    decision: DecisionFunction
    logistic_a: float
    logistic_b: float
    threshold: float = 0.0

    @property
    def dimensions(self):
        return self.decision.dimensions

    def confidences(self, features) -> Tuple[np.ndarray, np.ndarray]:
        values = self.decision.values(features)
        return values >= self.threshold, values

    def probabilities(self, features) -> Tuple[np.ndarray, np.ndarray]:
        decisions, values = self.confidences(features)
        return decisions, logistic(values, self.logistic_a, self.logistic_b)

    def probability_of(self, distance):
        return float(logistic(distance, self.logistic_a, self.logistic_b))


class SvmClassifier:
    """
    Binary (or one-class) SVM classifier that is retrained from scratch on the
    current training examples.

    Args:
        kernel: Kernel of the decision function
        training: TrainingConfig with mode, C / nu and required example counts
        calibration: FixedCalibration or AdaptiveCalibration
        threshold: decision value at and above which a vector is classified positive
        adjust_threshold: probability the threshold is moved to after training
    """

    def __init__(self, kernel, training, calibration, threshold=0.0, adjust_threshold=None,
                 model: Optional[SvmModel] = None):
        self.kernel = kernel
        self.training = training
        self.calibration = calibration
        self.threshold = threshold
        self.adjust_threshold = adjust_threshold
        self._model = model

    @property
    def model(self) -> Optional[SvmModel]:
        return self._model

    @property
    def trained(self):
        return self._model is not None

    @property
    def dimensions(self):
        return self._model.dimensions if self._model is not None else None

    def set_model(self, model: Optional[SvmModel]):
        self._model = model

    def classify(self, feature_vector) -> bool:
        return self.get_confidence(feature_vector)[0]

    def get_confidence(self, feature_vector) -> Tuple[bool, float]:
        """Classification result and signed hyperplane distance."""
        model = self._model
        if model is None:
            return False, 0.0
        decisions, values = model.confidences(feature_vector)
        return bool(decisions[0]), float(values[0])

    def get_probability(self, feature_vector) -> Tuple[bool, float]:
        """Classification result and calibrated probability of being the target."""
        model = self._model
        if model is None:
            return False, 0.0
        decisions, probabilities = model.probabilities(feature_vector)
        return bool(decisions[0]), float(probabilities[0])

    @property
    def one_class(self):
        return self.training.mode == 'one-class'

    def required_counts(self):
        positives = max(1, self.training.positives.required)
        negatives = 0 if self.one_class else max(1, self.training.negatives.required)
        return positives, negatives

    def train(self, positives, negatives=None) -> SvmModel:
        """
        Fit a new model and swap it in.

        Raises:
            InsufficientExamples: fewer examples than required; the current model is kept
        """
        positives = np.asarray(positives, dtype=np.float32)
        negatives = None if negatives is None or len(negatives) == 0 else np.asarray(negatives, dtype=np.float32)
        n_pos = len(positives)
        n_neg = 0 if negatives is None else len(negatives)
        required_pos, required_neg = self.required_counts()
        if n_pos < required_pos or n_neg < required_neg:
            raise InsufficientExamples(n_pos, n_neg, required_pos, required_neg)

        if self.one_class:
            decision = train_svm(positives, None, self.kernel, one_class=True, nu=self.training.nu)
            negatives = None
        else:
            features = np.vstack([positives, negatives])
            labels = np.concatenate([np.ones(n_pos, np.int32), -np.ones(n_neg, np.int32)])
            decision = train_svm(features, labels, self.kernel, c=self.training.c)

        a, b = self.calibration.fit(decision, positives, negatives)
        threshold = self.threshold
        if self.adjust_threshold is not None:
            threshold = threshold_for_probability(self.adjust_threshold, a, b)
        model = SvmModel(decision, a, b, threshold)
        self._model = model
        logger.debug("Trained %s SVM on %d positive / %d negative examples (%d support vectors)",
                     self.kernel.name, n_pos, n_neg, len(decision.support_vectors))
        return model


def build_classifier(config, model=None):
    """Create an ``SvmClassifier`` from a ``ClassifierConfig``."""
    return SvmClassifier(build_kernel(config.kernel), config.training,
                         build_calibration(config.calibration),
                         threshold=config.threshold,
                         adjust_threshold=config.calibration.adjust_threshold,
                         model=model)


# ---------- persistence ----------

def save_model(model: SvmModel, path):
    """Write a trained model to an ``.npz`` archive."""
    decision = model.decision
    with open(path, 'wb') as f:
        np.savez(f,
                 kernel=np.array(json.dumps(decision.kernel.params())),
                 support_vectors=decision.support_vectors,
                 coefficients=decision.coefficients,
                 bias=np.array(decision.bias),
                 logistic=np.array([model.logistic_a, model.logistic_b]),
                 threshold=np.array(model.threshold))


def load_model(path) -> SvmModel:
    try:
        with np.load(path, allow_pickle=False) as data:
            kernel = build_kernel(json.loads(str(data['kernel'])))
            decision = DecisionFunction(kernel, _frozen(data['support_vectors']),
                                        _frozen(data['coefficients']), float(data['bias']))
            a, b = (float(v) for v in data['logistic'])
            threshold = float(data['threshold'])
    except (KeyError, ValueError, OSError) as e:
        raise ModelFormatError(f"cannot read classifier model from {path}: {e}") from e
    if decision.support_vectors.ndim != 2 or len(decision.coefficients) != len(decision.support_vectors):
        raise ModelFormatError(f"inconsistent support vectors in {path}")
    return SvmModel(decision, a, b, threshold)
