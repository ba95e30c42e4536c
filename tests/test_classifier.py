"""
SVM training, calibration and persistence.
"""
import numpy as np
import pytest

from adaptive_tracker.classifier import (
    SvmModel,
    build_classifier,
    load_model,
    logistic_parameters,
    save_model,
    threshold_for_probability,
)
from adaptive_tracker.config import ClassifierConfig, TrackerConfig
from adaptive_tracker.exceptions import DimensionMismatch, InsufficientExamples, ModelFormatError


def clusters(n_pos=8, n_neg=12, dims=10, seed=0):
    rng = np.random.default_rng(seed)
    positives = (0.8 + 0.1 * rng.standard_normal((n_pos, dims))).astype(np.float32)
    negatives = (0.2 + 0.1 * rng.standard_normal((n_neg, dims))).astype(np.float32)
    return positives, negatives


def classifier_config(**sections):
    return TrackerConfig.from_dict({'classifier': sections}).classifier


def test_fixed_logistic_parameters_hit_target_probabilities():
    a, b = logistic_parameters(0.95, 0.05, 1.01, -1.01)
    assert a == pytest.approx(0.0, abs=1e-9)
    assert b == pytest.approx(-2.9155, abs=1e-3)
    p = lambda d: 1.0 / (1.0 + np.exp(a + b * d))
    assert p(1.01) == pytest.approx(0.95)
    assert p(-1.01) == pytest.approx(0.05)


def test_probability_is_monotonic_in_decision_value():
    positives, negatives = clusters()
    classifier = build_classifier(ClassifierConfig())
    model = classifier.train(positives, negatives)
    distances = np.linspace(-5, 5, 101)
    probabilities = [model.probability_of(d) for d in distances]
    assert all(np.diff(probabilities) >= 0)
    assert 0.0 <= min(probabilities) and max(probabilities) <= 1.0


def test_train_with_one_example_per_class():
    classifier = build_classifier(ClassifierConfig())
    positive = np.ones((1, 4), np.float32)
    negative = np.zeros((1, 4), np.float32)
    classifier.train(positive, negative)
    assert classifier.trained
    assert classifier.classify(positive[0])
    assert not classifier.classify(negative[0])
    decision, distance = classifier.get_confidence(positive[0])
    assert decision and distance > 0
    decision, probability = classifier.get_probability(negative[0])
    assert not decision and probability < 0.5


def test_missing_negatives_keeps_previous_model():
    classifier = build_classifier(ClassifierConfig())
    positives, negatives = clusters()
    with pytest.raises(InsufficientExamples):
        classifier.train(positives, np.empty((0, 10), np.float32))
    assert classifier.model is None

    model = classifier.train(positives, negatives)
    with pytest.raises(InsufficientExamples) as info:
        classifier.train(positives, None)
    assert info.value.negatives == 0
    assert classifier.model is model


def test_required_counts_are_enforced():
    config = classifier_config(training={'positives': {'policy': 'unlimited', 'required': 5}})
    classifier = build_classifier(config)
    positives, negatives = clusters(n_pos=3)
    with pytest.raises(InsufficientExamples):
        classifier.train(positives, negatives)


def test_untrained_classifier_rejects():
    classifier = build_classifier(ClassifierConfig())
    assert classifier.classify(np.zeros(3)) is False
    assert classifier.get_probability(np.zeros(3)) == (False, 0.0)


def test_retraining_is_deterministic():
    positives, negatives = clusters()
    probe = np.random.default_rng(9).random((30, 10)).astype(np.float32)
    outputs = []
    for _ in range(2):
        classifier = build_classifier(ClassifierConfig())
        model = classifier.train(positives, negatives)
        outputs.append(model.confidences(probe))
    np.testing.assert_array_equal(outputs[0][0], outputs[1][0])
    np.testing.assert_allclose(outputs[0][1], outputs[1][1])


@pytest.mark.parametrize('kernel', [
    {'type': 'linear'},
    {'type': 'rbf', 'gamma': 0.5},
    {'type': 'poly', 'alpha': 0.5, 'constant': 1.0, 'degree': 2},
    {'type': 'hik'},
])
def test_kernels_separate_clusters(kernel):
    positives, negatives = clusters()
    classifier = build_classifier(classifier_config(kernel=kernel, training={'c': 10.0}))
    model = classifier.train(np.abs(positives), np.abs(negatives))
    decisions, _ = model.confidences(np.abs(np.vstack([positives, negatives])))
    assert decisions[:len(positives)].all()
    assert not decisions[len(positives):].any()


def test_one_class_training_prefers_the_cluster():
    positives, _ = clusters(n_pos=20)
    config = classifier_config(kernel={'type': 'rbf', 'gamma': 0.5},
                               training={'mode': 'one-class', 'nu': 0.2})
    classifier = build_classifier(config)
    model = classifier.train(positives)
    center = positives.mean(axis=0)
    far = np.full(10, 5.0, np.float32)
    _, values = model.confidences(np.vstack([center, far]))
    assert values[0] > values[1]
    assert classifier.classify(center)


def test_threshold_adjustment_moves_operating_point():
    positives, negatives = clusters()
    config = classifier_config(calibration={'adjust_threshold': 0.7})
    model = build_classifier(config).train(positives, negatives)
    assert model.threshold == pytest.approx(
        threshold_for_probability(0.7, model.logistic_a, model.logistic_b))
    assert model.probability_of(model.threshold) == pytest.approx(0.7)


def test_adaptive_calibration_uses_measured_means():
    positives, negatives = clusters()
    config = classifier_config(calibration={'mode': 'adaptive'})
    model = build_classifier(config).train(positives, negatives)
    positive_mean = model.decision.values(positives).mean()
    negative_mean = model.decision.values(negatives).mean()
    assert model.probability_of(positive_mean) == pytest.approx(0.95)
    assert model.probability_of(negative_mean) == pytest.approx(0.05)


def test_wrong_dimensionality_is_rejected():
    positives, negatives = clusters()
    model = build_classifier(ClassifierConfig()).train(positives, negatives)
    with pytest.raises(DimensionMismatch):
        model.confidences(np.zeros(7))


def test_model_round_trip(tmp_path):
    positives, negatives = clusters()
    model = build_classifier(classifier_config(kernel={'type': 'rbf', 'gamma': 0.3})).train(positives, negatives)
    path = tmp_path / 'model.npz'
    save_model(model, path)
    loaded = load_model(path)
    assert isinstance(loaded, SvmModel)
    assert loaded.decision.kernel.gamma == 0.3
    probe = np.vstack([positives, negatives])
    np.testing.assert_allclose(loaded.probabilities(probe)[1], model.probabilities(probe)[1])


def test_corrupt_model_file(tmp_path):
    path = tmp_path / 'broken.npz'
    path.write_bytes(b'not a model')
    with pytest.raises(ModelFormatError):
        load_model(path)
