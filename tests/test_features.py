import numpy as np
import pytest

from adaptive_tracker.config import FeatureConfig
from adaptive_tracker.exceptions import ConfigurationError, DimensionMismatch
from adaptive_tracker.features import (
    HaarFeature,
    HogFeature,
    IntensityFeature,
    LbpFeature,
    build_feature_extractor,
    build_filters,
    crop_region,
    validate_dimensions,
)

from conftest import make_frame


@pytest.mark.parametrize('extractor, dimensions', [
    (IntensityFeature(patch_size=(12, 12)), 144),
    (HogFeature(), 225),
    (HogFeature(bins=18, signed=True, signed_and_unsigned=True), 675),
    (LbpFeature(lbp_type='lbp8uniform', cell_size=10), 531),
    (LbpFeature(lbp_type='lbp4', cell_size=10), 144),
    (HaarFeature(), 392),
])
def test_dimensions(extractor, dimensions, rng):
    assert extractor.dimensions == dimensions
    frame = make_frame(40, 40, rng)
    assert extractor.extract(frame, (40, 40, 24, 24)).shape == (dimensions,)


def test_same_region_gives_same_vector(rng):
    frame = make_frame(40, 40, rng)
    extractor = HogFeature()
    np.testing.assert_array_equal(extractor.extract(frame, (35, 35, 30, 30)),
                                  extractor.extract(frame, (35, 35, 30, 30)))


def test_intensity_values_are_scaled(rng):
    frame = make_frame(40, 40, rng)
    vector = IntensityFeature(patch_size=(8, 8)).extract(frame, (44, 44, 16, 16))
    assert vector.min() >= 0.0 and vector.max() <= 1.0
    assert vector.mean() == pytest.approx(220 / 255.0, abs=1e-3)


def test_partially_outside_region_is_padded(rng):
    frame = make_frame(0, 0, rng)
    patch = crop_region(frame, (-5, -5, 20, 20))
    assert patch.shape[:2] == (20, 20)
    np.testing.assert_array_equal(patch[0, 0], frame[0, 0])
    assert IntensityFeature(patch_size=(10, 10)).extract(frame, (-5, -5, 20, 20)).shape == (100,)


def test_region_outside_image_is_rejected(rng):
    frame = make_frame(0, 0, rng)
    with pytest.raises(ValueError):
        crop_region(frame, (500, 500, 10, 10))


def test_hog_separates_target_from_background(rng):
    frame = make_frame(40, 40, rng)
    extractor = HogFeature()
    edge = extractor.extract(frame, (28, 28, 24, 24))
    flat = extractor.extract(frame, (100, 80, 24, 24))
    assert np.linalg.norm(edge - flat) > 0.5


def test_histeq_filter_works_on_color(rng):
    frame = make_frame(40, 40, rng)
    extractor = build_feature_extractor(FeatureConfig(type='histeq', patch_width=10, patch_height=10))
    patch = extractor.patch(frame, (30, 30, 40, 40))
    assert patch.shape == (10, 10)
    assert patch.max() == 255


def test_unknown_filter():
    with pytest.raises(ConfigurationError):
        build_filters(['blur'])


def test_configured_dimensions_are_checked():
    with pytest.raises(DimensionMismatch) as info:
        build_feature_extractor(FeatureConfig(type='hog', dimensions=100))
    assert info.value.expected == 100
    assert info.value.actual == 225
    extractor = build_feature_extractor(FeatureConfig(type='lbp', cell_size=10, normalization='none'))
    assert validate_dimensions(extractor, 531) == 531


def test_invalid_hog_options():
    with pytest.raises(ConfigurationError):
        HogFeature(bins=9, signed=True, signed_and_unsigned=True)
    with pytest.raises(ConfigurationError):
        LbpFeature(lbp_type='lbp16')
    with pytest.raises(ConfigurationError):
        HaarFeature(types=('5rect',))
