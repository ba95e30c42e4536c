"""
Frame sources: video files, image sequences and in-memory frames
"""
import os
from pathlib import Path

import cv2

from .exceptions import EndOfStream, TrackerError

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.pgm', '.ppm', '.tif', '.tiff')


class ImageSource:
    """Yields one image per ``next_frame`` call and raises EndOfStream when exhausted."""

    def next_frame(self):
        raise NotImplementedError

    def close(self):
        pass

    def __iter__(self):
        while True:
            try:
                yield self.next_frame()
            except EndOfStream:
                return

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class VideoFileSource(ImageSource):
    def __init__(self, path):
        self.path = str(path)
        self.cap = cv2.VideoCapture(self.path)
        if not self.cap.isOpened():
            raise TrackerError(f"Cannot open video: {self.path}")

    def next_frame(self):
        ret, frame = self.cap.read()
        if not ret:
            raise EndOfStream(self.path)
        return frame

    def close(self):
        self.cap.release()


class ImageDirectorySource(ImageSource):
    """Images of a directory in file name order."""

    def __init__(self, directory):
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise TrackerError(f"Not a directory: {self.directory}")
        self.files = sorted(p for p in self.directory.iterdir()
                            if p.suffix.lower() in IMAGE_EXTENSIONS)
        self._index = 0

    def next_frame(self):
        if self._index >= len(self.files):
            raise EndOfStream(str(self.directory))
        path = self.files[self._index]
        self._index += 1
        frame = cv2.imread(str(path))
        if frame is None:
            raise TrackerError(f"Cannot read image: {path}")
        return frame


class SequenceSource(ImageSource):
    """Frames held in memory, e.g. synthetic test sequences."""

    def __init__(self, frames):
        self.frames = list(frames)
        self._index = 0

    def next_frame(self):
        if self._index >= len(self.frames):
            raise EndOfStream('sequence')
        frame = self.frames[self._index]
        self._index += 1
        return frame


def open_source(path):
    """Video file or image directory, depending on what the path points to."""
    if os.path.isdir(path):
        return ImageDirectorySource(path)
    return VideoFileSource(path)
