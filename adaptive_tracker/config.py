"""
Configuration settings for the adaptive tracker

The defaults below reproduce the reference tracking setup (HOG features, linear
SVM, confidence-based positives, age-based negatives, fixed calibration).
Every option can be overridden through ``TrackerConfig.from_dict`` or a JSON
file passed to ``load_config``.
"""
import json
from dataclasses import dataclass, field, fields, asdict
from typing import Optional, Tuple

from .exceptions import ConfigurationError

# Self-learning
DEFAULT_CONFIDENCE_THRESHOLD = 0.95   # probability needed to call the object present
DEFAULT_MAX_NEGATIVES_PER_FRAME = 5   # negatives harvested per confident frame
DEFAULT_INITIAL_NEGATIVES = 10        # background regions used for bootstrapping
DEFAULT_ALLOWED_OVERLAP = 0.5         # IoU below which a region counts as background

# Training sample stores
DEFAULT_POSITIVE_CAPACITY = 10
DEFAULT_NEGATIVE_CAPACITY = 50

# Calibration (p = 0.95 at distance 1.01, p = 0.05 at distance -1.01)
DEFAULT_POSITIVE_PROBABILITY = 0.95
DEFAULT_NEGATIVE_PROBABILITY = 0.05
DEFAULT_POSITIVE_MEAN = 1.01
DEFAULT_NEGATIVE_MEAN = -1.01

# Particle filter
DEFAULT_PARTICLE_COUNT = 500
DEFAULT_POSITION_DEVIATION = 0.1      # std of position noise, relative to particle size
DEFAULT_SIZE_DEVIATION = 0.05         # std of log size change
DEFAULT_RANDOM_RATE = 0.1             # fraction of each generation drawn from the prior

FEATURE_TYPES = ('intensity', 'histeq', 'hog', 'lbp', 'haar')
NORMALIZATIONS = ('none', 'l2norm', 'l2hys', 'l1norm', 'l1sqrt')
KERNEL_TYPES = ('linear', 'rbf', 'poly', 'hik')
STORE_POLICIES = ('unlimited', 'agebased', 'confidencebased')
TRAINING_MODES = ('binary', 'one-class')
CALIBRATION_MODES = ('fixed', 'adaptive')
RESAMPLING_SCHEMES = ('systematic', 'multinomial')
BOUNDARY_POLICIES = ('clip', 'drop')
ESTIMATORS = ('weighted_mean', 'max')


def _check_choice(name, value, choices):
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


@dataclass
class FeatureConfig:
    type: str = 'hog'
    patch_width: int = 30
    patch_height: int = 30
    filters: Tuple[str, ...] = ()         # extra pre-processing, e.g. ('histeq',)
    # hog
    bins: int = 9
    signed: bool = False
    signed_and_unsigned: bool = False
    # hog / lbp
    cell_size: int = 6
    normalization: str = 'l2norm'
    # lbp
    lbp_type: str = 'lbp8uniform'
    # haar
    haar_sizes: Tuple[float, ...] = (0.2, 0.4)
    grid_rows: int = 7
    grid_cols: int = 7
    haar_types: Tuple[str, ...] = ('2rect', '3rect')
    # checked against the extractor at startup when given
    dimensions: Optional[int] = None

    def __post_init__(self):
        _check_choice('feature.type', self.type, FEATURE_TYPES)
        _check_choice('feature.normalization', self.normalization, NORMALIZATIONS)
        if self.patch_width < 4 or self.patch_height < 4:
            raise ConfigurationError("feature patch must be at least 4x4 pixels")
        if self.cell_size < 1:
            raise ConfigurationError("feature.cell_size must be positive")
        self.filters = tuple(self.filters)
        self.haar_sizes = tuple(self.haar_sizes)
        self.haar_types = tuple(self.haar_types)


@dataclass
class KernelConfig:
    type: str = 'linear'
    gamma: float = 0.1      # rbf
    alpha: float = 0.05     # poly
    constant: float = 0.0   # poly
    degree: int = 2         # poly

    def __post_init__(self):
        _check_choice('kernel.type', self.type, KERNEL_TYPES)


@dataclass
class ExampleStoreConfig:
    policy: str = 'agebased'
    capacity: Optional[int] = DEFAULT_NEGATIVE_CAPACITY
    required: int = 1

    def __post_init__(self):
        _check_choice('examples.policy', self.policy, STORE_POLICIES)
        if self.policy != 'unlimited' and (self.capacity is None or self.capacity < 1):
            raise ConfigurationError(f"{self.policy} example store needs a positive capacity")
        if self.required < 0:
            raise ConfigurationError("examples.required must not be negative")


def _positive_store():
    return ExampleStoreConfig('confidencebased', DEFAULT_POSITIVE_CAPACITY, 1)


def _negative_store():
    return ExampleStoreConfig('agebased', DEFAULT_NEGATIVE_CAPACITY, 1)


@dataclass
class TrainingConfig:
    mode: str = 'binary'
    c: float = 1.0          # binary
    nu: float = 0.5         # one-class outlier fraction
    positives: ExampleStoreConfig = field(default_factory=_positive_store)
    negatives: ExampleStoreConfig = field(default_factory=_negative_store)

    def __post_init__(self):
        _check_choice('training.mode', self.mode, TRAINING_MODES)
        if not 0.0 < self.nu <= 1.0:
            raise ConfigurationError("training.nu must be in (0, 1]")


@dataclass
class CalibrationConfig:
    mode: str = 'fixed'
    positive_probability: float = DEFAULT_POSITIVE_PROBABILITY
    negative_probability: float = DEFAULT_NEGATIVE_PROBABILITY
    positive_mean: float = DEFAULT_POSITIVE_MEAN
    negative_mean: float = DEFAULT_NEGATIVE_MEAN
    # adaptive: how many of the most recent examples per class to measure
    positive_examples: int = DEFAULT_POSITIVE_CAPACITY
    negative_examples: int = DEFAULT_NEGATIVE_CAPACITY
    # probability the decision threshold is moved to, None keeps it
    adjust_threshold: Optional[float] = None

    def __post_init__(self):
        _check_choice('calibration.mode', self.mode, CALIBRATION_MODES)
        for name in ('positive_probability', 'negative_probability'):
            if not 0.0 < getattr(self, name) < 1.0:
                raise ConfigurationError(f"calibration.{name} must be in (0, 1)")
        if self.positive_probability <= self.negative_probability:
            raise ConfigurationError("calibration.positive_probability must exceed negative_probability")
        if self.positive_mean <= self.negative_mean:
            raise ConfigurationError("calibration.positive_mean must exceed negative_mean")
        if self.positive_examples < 1 or self.negative_examples < 1:
            raise ConfigurationError("calibration.positive_examples and negative_examples must be at least 1")
        if self.adjust_threshold is not None and not 0.0 < self.adjust_threshold < 1.0:
            raise ConfigurationError("calibration.adjust_threshold must be in (0, 1)")


@dataclass
class ClassifierConfig:
    kernel: KernelConfig = field(default_factory=KernelConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    threshold: float = 0.0


@dataclass
class FilterConfig:
    particle_count: int = DEFAULT_PARTICLE_COUNT
    aspect_ratio: Optional[float] = None   # height / width, taken from the initial region if None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    position_deviation: float = DEFAULT_POSITION_DEVIATION
    size_deviation: float = DEFAULT_SIZE_DEVIATION
    velocity_damping: float = 0.8
    random_rate: float = DEFAULT_RANDOM_RATE
    resampling: str = 'systematic'
    boundary_policy: str = 'clip'
    estimator: str = 'weighted_mean'
    top_k: int = 10
    min_total_weight: float = 1e-12       # below this the population counts as empty
    seed: Optional[int] = None

    def __post_init__(self):
        _check_choice('filter.resampling', self.resampling, RESAMPLING_SCHEMES)
        _check_choice('filter.boundary_policy', self.boundary_policy, BOUNDARY_POLICIES)
        _check_choice('filter.estimator', self.estimator, ESTIMATORS)
        if self.particle_count < 1:
            raise ConfigurationError("filter.particle_count must be positive")
        if not 0.0 <= self.random_rate < 1.0:
            raise ConfigurationError("filter.random_rate must be in [0, 1)")
        if self.aspect_ratio is not None and self.aspect_ratio <= 0:
            raise ConfigurationError("filter.aspect_ratio must be positive")
        if self.min_size is not None and self.max_size is not None and self.min_size > self.max_size:
            raise ConfigurationError("filter.min_size must not exceed filter.max_size")
        if self.top_k < 1:
            raise ConfigurationError("filter.top_k must be positive")


@dataclass
class LearningConfig:
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    max_negatives_per_frame: int = DEFAULT_MAX_NEGATIVES_PER_FRAME
    initial_negatives: int = DEFAULT_INITIAL_NEGATIVES
    allowed_overlap: float = DEFAULT_ALLOWED_OVERLAP

    def __post_init__(self):
        if not 0.0 <= self.allowed_overlap <= 1.0:
            raise ConfigurationError("learning.allowed_overlap must be in [0, 1]")


@dataclass
class TrackerConfig:
    feature: FeatureConfig = field(default_factory=FeatureConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    filter: FilterConfig = field(default_factory=FilterConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)

    @classmethod
    def from_dict(cls, mapping):
        return _from_mapping(cls, mapping, 'config')

    def to_dict(self):
        return asdict(self)


# nested sections, keyed by (owner class, field name)
_NESTED = {
    (TrackerConfig, 'feature'): FeatureConfig,
    (TrackerConfig, 'classifier'): ClassifierConfig,
    (TrackerConfig, 'filter'): FilterConfig,
    (TrackerConfig, 'learning'): LearningConfig,
    (ClassifierConfig, 'kernel'): KernelConfig,
    (ClassifierConfig, 'training'): TrainingConfig,
    (ClassifierConfig, 'calibration'): CalibrationConfig,
    (TrainingConfig, 'positives'): ExampleStoreConfig,
    (TrainingConfig, 'negatives'): ExampleStoreConfig,
}


def _from_mapping(cls, mapping, path):
    if mapping is None:
        return cls()
    if not isinstance(mapping, dict):
        raise ConfigurationError(f"{path}: expected a mapping, got {type(mapping).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(mapping) - known)
    if unknown:
        raise ConfigurationError(f"{path}: unknown option(s) {', '.join(unknown)}")

    kwargs = {}
    for name, value in mapping.items():
        nested = _NESTED.get((cls, name))
        kwargs[name] = _from_mapping(nested, value, f"{path}.{name}") if nested else value
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise ConfigurationError(f"{path}: {e}") from e


def load_config(path):
    """Read a ``TrackerConfig`` from a JSON file of nested sections."""
    with open(path) as f:
        try:
            mapping = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path}: invalid JSON ({e})") from e
    return TrackerConfig.from_dict(mapping)
