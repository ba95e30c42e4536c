"""
Feature extraction for tracking
Maps image regions to fixed-length vectors: raw intensities, histograms of
oriented gradients, local binary patterns and Haar-like responses
"""
import cv2
import numpy as np

from .exceptions import ConfigurationError, DimensionMismatch


def crop_region(image, rect):
    """
    Cut the (x, y, w, h) region out of the image. Parts outside the image are
    filled by replicating the border pixels, so the result always has the
    requested size.
    """
    x, y, w, h = (int(v) for v in rect)
    H, W = image.shape[:2]
    x1, y1 = max(0, x), max(0, y)
    x2, y2 = min(W, x + w), min(H, y + h)
    if x1 >= x2 or y1 >= y2:
        raise ValueError(f"region {tuple(rect)} lies outside the {W}x{H} image")
    patch = image[y1:y2, x1:x2]
    if (x1, y1, x2, y2) != (x, y, x + w, y + h):
        patch = cv2.copyMakeBorder(patch, y1 - y, y + h - y2, x1 - x, x + w - x2,
                                   cv2.BORDER_REPLICATE)
    return patch


def to_grayscale(image):
    if image.ndim == 3:
        code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
        return cv2.cvtColor(image, code)
    return image


def compute_gradients(image, threshold=0):
    """
    Gradient orientations and magnitudes of a (grayscale or BGR) image

    Returns:
        orientations: gradient direction in radians, shape (H, W)
        magnitudes: gradient magnitude, shape (H, W)
        mask: pixels whose magnitude exceeds the threshold, shape (H, W)
    """
    gray = to_grayscale(image)

    grad_x = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)

    magnitudes = np.sqrt(grad_x**2 + grad_y**2)
    orientations = np.arctan2(grad_y, grad_x)
    mask = magnitudes > threshold

    return orientations, magnitudes, mask


def normalize_histograms(hists, mode, eps=1e-6):
    """Normalize each row of a (cells, bins) histogram array."""
    hists = hists.astype(np.float32)
    if mode == 'none':
        return hists
    if mode in ('l2norm', 'l2hys'):
        norm = np.sqrt((hists ** 2).sum(axis=1, keepdims=True) + eps ** 2)
        hists = hists / norm
        if mode == 'l2hys':
            hists = np.minimum(hists, 0.2)
            norm = np.sqrt((hists ** 2).sum(axis=1, keepdims=True) + eps ** 2)
            hists = hists / norm
        return hists
    if mode in ('l1norm', 'l1sqrt'):
        hists = hists / (np.abs(hists).sum(axis=1, keepdims=True) + eps)
        return np.sqrt(hists) if mode == 'l1sqrt' else hists
    raise ConfigurationError(f"Unknown normalization: {mode}")


def cell_histograms(values, weights, cell_size, bins):
    """Sum weights into per-cell histograms of the binned values."""
    rows, cols = values.shape[0] // cell_size, values.shape[1] // cell_size
    values = values[:rows * cell_size, :cols * cell_size]
    weights = weights[:rows * cell_size, :cols * cell_size]
    cell_y = np.arange(rows * cell_size) // cell_size
    cell_x = np.arange(cols * cell_size) // cell_size
    cells = cell_y[:, None] * cols + cell_x[None, :]
    index = cells * bins + values
    hist = np.bincount(index.ravel(), weights=weights.ravel(), minlength=rows * cols * bins)
    return hist.reshape(rows * cols, bins)


# ---------- image filters ----------

class GrayscaleFilter:
    def __call__(self, image):
        return to_grayscale(image)


class HistogramEqualizationFilter:
    def __call__(self, image):
        gray = to_grayscale(image)
        if gray.dtype != np.uint8:
            gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
        return cv2.equalizeHist(gray)


FILTERS = {
    'grayscale': GrayscaleFilter,
    'histeq': HistogramEqualizationFilter,
}


def build_filters(names):
    try:
        return [FILTERS[name]() for name in names]
    except KeyError as e:
        raise ConfigurationError(f"Unknown image filter: {e.args[0]}") from None


# ---------- extractors ----------

class FeatureExtractor:
    """
    Crops a region, scales it to a fixed patch, runs the pre-processing filters
    and turns the patch into a feature vector of ``dimensions`` values.
    """

    def __init__(self, patch_size=(30, 30), filters=()):
        self.patch_width, self.patch_height = patch_size
        self.filters = list(filters)
        self._dimensions = None

    @property
    def dimensions(self):
        if self._dimensions is None:
            blank = np.zeros((self.patch_height, self.patch_width), np.uint8)
            self._dimensions = int(self._compute(blank).size)
        return self._dimensions

    def patch(self, image, rect):
        patch = crop_region(image, rect)
        if patch.shape[:2] != (self.patch_height, self.patch_width):
            patch = cv2.resize(patch, (self.patch_width, self.patch_height),
                               interpolation=cv2.INTER_AREA)
        patch = to_grayscale(patch)
        for image_filter in self.filters:
            patch = image_filter(patch)
        return patch

    def extract(self, image, rect):
        return np.asarray(self._compute(self.patch(image, rect)), dtype=np.float32).ravel()

    def extract_all(self, image, rects):
        """Feature matrix with one row per region."""
        if not rects:
            return np.empty((0, self.dimensions), np.float32)
        return np.vstack([self.extract(image, rect) for rect in rects])

    def _compute(self, patch):
        raise NotImplementedError


class IntensityFeature(FeatureExtractor):
    """Grayscale pixel values scaled to [0, 1]."""

    def _compute(self, patch):
        return patch.astype(np.float32) / 255.0


class HogFeature(FeatureExtractor):
    """
    Histograms of oriented gradients over square cells

    Args:
        bins: number of orientation bins over [0, pi) or [0, 2*pi) if signed
        signed: distinguish opposite gradient directions
        signed_and_unsigned: append the folded unsigned histogram to the signed one
        normalization: per-cell normalization, none | l2norm | l2hys | l1norm | l1sqrt
    """

    def __init__(self, *, bins=9, signed=False, signed_and_unsigned=False,
                 cell_size=6, normalization='l2norm', **kwargs):
        super().__init__(**kwargs)
        if signed_and_unsigned and (not signed or bins % 2):
            raise ConfigurationError("signed_and_unsigned needs signed gradients and an even bin count")
        self.bins = bins
        self.signed = signed
        self.signed_and_unsigned = signed_and_unsigned
        self.cell_size = cell_size
        self.normalization = normalization

    def _angle_to_bin(self, theta):
        period = 2 * np.pi if self.signed else np.pi
        th = np.mod(theta, period)
        b = np.floor(self.bins * th / period).astype(int)
        return np.clip(b, 0, self.bins - 1)

    def _compute(self, patch):
        ori, mag, _ = compute_gradients(patch)
        hists = cell_histograms(self._angle_to_bin(ori), mag, self.cell_size, self.bins)
        if self.signed_and_unsigned:
            half = self.bins // 2
            hists = np.hstack([hists, hists[:, :half] + hists[:, half:]])
        return normalize_histograms(hists, self.normalization)


def _uniform_lbp_table():
    """Maps 8-bit codes to 58 uniform patterns plus one shared non-uniform bin."""
    table = np.full(256, 58, np.int64)
    index = 0
    for code in range(256):
        bits = [(code >> i) & 1 for i in range(8)]
        transitions = sum(bits[i] != bits[(i + 1) % 8] for i in range(8))
        if transitions <= 2:
            table[code] = index
            index += 1
    return table


_UNIFORM_LBP = _uniform_lbp_table()

# neighbor offsets (dy, dx), clockwise from the top-left
_LBP8 = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))
_LBP4 = ((-1, 0), (0, 1), (1, 0), (0, -1))
_LBP4_ROTATED = ((-1, -1), (-1, 1), (1, 1), (1, -1))
LBP_TYPES = ('lbp8', 'lbp8uniform', 'lbp4', 'lbp4rotated')


class LbpFeature(FeatureExtractor):
    """Spatial histograms of local binary pattern codes."""

    def __init__(self, *, lbp_type='lbp8uniform', cell_size=10, normalization='none', **kwargs):
        super().__init__(**kwargs)
        if lbp_type not in LBP_TYPES:
            raise ConfigurationError(f"Unknown LBP type: {lbp_type}")
        self.lbp_type = lbp_type
        self.cell_size = cell_size
        self.normalization = normalization
        if lbp_type == 'lbp8':
            self.offsets, self.bins = _LBP8, 256
        elif lbp_type == 'lbp8uniform':
            self.offsets, self.bins = _LBP8, 59
        elif lbp_type == 'lbp4':
            self.offsets, self.bins = _LBP4, 16
        else:
            self.offsets, self.bins = _LBP4_ROTATED, 16

    def codes(self, patch):
        h, w = patch.shape[:2]
        padded = cv2.copyMakeBorder(patch, 1, 1, 1, 1, cv2.BORDER_REPLICATE).astype(np.int16)
        center = padded[1:h + 1, 1:w + 1]
        codes = np.zeros((h, w), np.int64)
        for bit, (dy, dx) in enumerate(self.offsets):
            neighbor = padded[1 + dy:h + 1 + dy, 1 + dx:w + 1 + dx]
            codes |= (neighbor >= center).astype(np.int64) << bit
        if self.lbp_type == 'lbp8uniform':
            codes = _UNIFORM_LBP[codes]
        return codes

    def _compute(self, patch):
        codes = self.codes(patch)
        hists = cell_histograms(codes, np.ones(codes.shape, np.float64), self.cell_size, self.bins)
        return normalize_histograms(hists, self.normalization)


HAAR_TYPES = ('2rect', '3rect', '4rect', 'center-surround')


class HaarFeature(FeatureExtractor):
    """
    Haar-like responses (differences of mean intensities) evaluated on a regular
    grid of positions over the patch, using an integral image.

    Args:
        sizes: feature sizes relative to the patch size
        grid_rows, grid_cols: number of feature positions per dimension
        types: subset of 2rect, 3rect, 4rect, center-surround, or 'all'
    """

    def __init__(self, *, sizes=(0.2, 0.4), grid_rows=7, grid_cols=7,
                 types=('2rect', '3rect'), **kwargs):
        super().__init__(**kwargs)
        types = HAAR_TYPES if 'all' in types else tuple(types)
        unknown = set(types) - set(HAAR_TYPES)
        if unknown:
            raise ConfigurationError(f"Unknown Haar feature type(s): {', '.join(sorted(unknown))}")
        self.sizes = tuple(sizes)
        self.grid_rows = grid_rows
        self.grid_cols = grid_cols
        self.types = types
        self._build_layout()

    def _templates(self, x, y, w, h):
        """(coefficient, x0, y0, x1, y1) components of each feature at this box."""
        mw, mh = w // 2, h // 2
        tw, th = w // 3, h // 3
        for t in self.types:
            if t == '2rect':
                yield [(1, x, y, x + mw, y + h), (-1, x + mw, y, x + w, y + h)]
                yield [(1, x, y, x + w, y + mh), (-1, x, y + mh, x + w, y + h)]
            elif t == '3rect':
                yield [(0.5, x, y, x + tw, y + h), (-1, x + tw, y, x + w - tw, y + h),
                       (0.5, x + w - tw, y, x + w, y + h)]
                yield [(0.5, x, y, x + w, y + th), (-1, x, y + th, x + w, y + h - th),
                       (0.5, x, y + h - th, x + w, y + h)]
            elif t == '4rect':
                yield [(0.5, x, y, x + mw, y + mh), (-0.5, x + mw, y, x + w, y + mh),
                       (-0.5, x, y + mh, x + mw, y + h), (0.5, x + mw, y + mh, x + w, y + h)]
            elif t == 'center-surround':
                yield [(1, x, y, x + w, y + h), (-1, x + tw, y + th, x + w - tw, y + h - th)]

    def _build_layout(self):
        pw, ph = self.patch_width, self.patch_height
        feature_index, coefficients, boxes = [], [], []
        index = 0
        for size in self.sizes:
            w = max(3, int(round(size * pw)))
            h = max(3, int(round(size * ph)))
            for row in range(self.grid_rows):
                for col in range(self.grid_cols):
                    cx = (col + 0.5) * pw / self.grid_cols
                    cy = (row + 0.5) * ph / self.grid_rows
                    x = int(min(max(0, round(cx - w / 2.0)), pw - w))
                    y = int(min(max(0, round(cy - h / 2.0)), ph - h))
                    for components in self._templates(x, y, w, h):
                        for coef, x0, y0, x1, y1 in components:
                            feature_index.append(index)
                            coefficients.append(coef / float((x1 - x0) * (y1 - y0)))
                            boxes.append((x0, y0, x1, y1))
                        index += 1
        self._feature_count = index
        self._feature_index = np.asarray(feature_index, np.int64)
        self._coefficients = np.asarray(coefficients, np.float64)
        self._boxes = np.asarray(boxes, np.int64).reshape(-1, 4)

    def _compute(self, patch):
        integral = cv2.integral(patch.astype(np.float64) / 255.0)
        x0, y0, x1, y1 = self._boxes.T
        sums = integral[y1, x1] - integral[y0, x1] - integral[y1, x0] + integral[y0, x0]
        return np.bincount(self._feature_index, weights=self._coefficients * sums,
                           minlength=self._feature_count)


def build_feature_extractor(config):
    """Create the extractor selected by a ``FeatureConfig``."""
    names = list(config.filters)
    if config.type == 'histeq' and 'histeq' not in names:
        names.append('histeq')
    common = dict(patch_size=(config.patch_width, config.patch_height),
                  filters=build_filters(names))

    if config.type in ('intensity', 'histeq'):
        extractor = IntensityFeature(**common)
    elif config.type == 'hog':
        extractor = HogFeature(bins=config.bins, signed=config.signed,
                               signed_and_unsigned=config.signed_and_unsigned,
                               cell_size=config.cell_size,
                               normalization=config.normalization, **common)
    elif config.type == 'lbp':
        extractor = LbpFeature(lbp_type=config.lbp_type, cell_size=config.cell_size,
                               normalization=config.normalization, **common)
    elif config.type == 'haar':
        extractor = HaarFeature(sizes=config.haar_sizes, grid_rows=config.grid_rows,
                                grid_cols=config.grid_cols, types=config.haar_types, **common)
    else:
        raise ConfigurationError(f"Unknown feature type: {config.type}")

    if config.dimensions is not None:
        validate_dimensions(extractor, config.dimensions)
    return extractor


def validate_dimensions(extractor, expected, what='feature extractor'):
    if extractor.dimensions != expected:
        raise DimensionMismatch(expected, extractor.dimensions, what)
    return extractor.dimensions
