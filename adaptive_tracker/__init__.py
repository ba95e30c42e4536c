"""
Adaptive tracking package initialization
"""
from .tracker import AdaptiveTracker, build_tracker
from .config import TrackerConfig, load_config
from .particle import Particle
from .particle_filter import ParticleFilter, FilterResult
from .sample_store import (
    Label,
    TrainingExample,
    SampleStore,
    build_example_store,
)
from .classifier import SvmClassifier, SvmModel, build_classifier, save_model, load_model
from .features import FeatureExtractor, build_feature_extractor
from .self_learning import SelfLearningLoop, TrackingStatus, FrameResult
from .training import Trainer
from .sources import VideoFileSource, ImageDirectorySource, SequenceSource, open_source
from .exceptions import (
    TrackerError,
    ConfigurationError,
    DimensionMismatch,
    InsufficientExamples,
    EndOfStream,
    ModelFormatError,
)

__all__ = [
    'AdaptiveTracker',
    'build_tracker',
    'TrackerConfig',
    'load_config',
    'Particle',
    'ParticleFilter',
    'FilterResult',
    'Label',
    'TrainingExample',
    'SampleStore',
    'build_example_store',
    'SvmClassifier',
    'SvmModel',
    'build_classifier',
    'save_model',
    'load_model',
    'FeatureExtractor',
    'build_feature_extractor',
    'SelfLearningLoop',
    'TrackingStatus',
    'FrameResult',
    'Trainer',
    'VideoFileSource',
    'ImageDirectorySource',
    'SequenceSource',
    'open_source',
    'TrackerError',
    'ConfigurationError',
    'DimensionMismatch',
    'InsufficientExamples',
    'EndOfStream',
    'ModelFormatError',
]
