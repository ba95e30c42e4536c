import cv2
import numpy as np
import pytest

from adaptive_tracker.exceptions import EndOfStream, TrackerError
from adaptive_tracker.sources import ImageDirectorySource, SequenceSource, open_source


def test_sequence_source_ends():
    source = SequenceSource([np.zeros((4, 4), np.uint8)] * 2)
    source.next_frame()
    source.next_frame()
    with pytest.raises(EndOfStream):
        source.next_frame()


def test_image_directory_in_name_order(tmp_path):
    for i in (2, 0, 1):
        cv2.imwrite(str(tmp_path / f'img_{i}.png'), np.full((8, 8, 3), i * 50, np.uint8))
    (tmp_path / 'notes.txt').write_text('ignored')
    with open_source(str(tmp_path)) as source:
        assert isinstance(source, ImageDirectorySource)
        frames = list(source)
    assert [int(f[0, 0, 0]) for f in frames] == [0, 50, 100]


def test_unreadable_video(tmp_path):
    with pytest.raises(TrackerError):
        open_source(str(tmp_path / 'missing.avi'))


def test_missing_directory(tmp_path):
    with pytest.raises(TrackerError):
        ImageDirectorySource(tmp_path / 'nothing')
