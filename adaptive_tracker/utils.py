"""
Utility functions for tracking output: annotated frames, predictions and timing
"""
import csv
import json
import os

import cv2
import numpy as np

STATUS_COLORS = {
    'tracking': (0, 255, 0),
    'lost': (0, 0, 255),
    'initializing': (0, 255, 255),
}


def draw_result(frame, result, draw_particles=False, thickness=2):
    """
    Draw a FrameResult onto a copy of the frame: the estimate box colored by
    status and, optionally, the weighted particle population.
    """
    canvas = frame.copy()
    if canvas.ndim == 2:
        canvas = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

    if draw_particles and result.particles:
        top = max(p.weight for p in result.particles) or 1.0
        for p in result.particles:
            x, y, w, h = p.bounds
            shade = int(255 * np.clip(p.weight / top, 0.0, 1.0))
            cv2.rectangle(canvas, (x, y), (x + w, y + h), (shade, shade // 2, 0), 1)

    color = STATUS_COLORS.get(result.status.value, (255, 255, 255))
    if result.bounds is not None:
        x, y, w, h = result.bounds
        cv2.rectangle(canvas, (x, y), (x + w, y + h), color, thickness)
    cv2.putText(canvas, f'{result.status.value} {result.confidence:.2f}',
                (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)
    return canvas


def save_frame(frame, frame_number, output_dir='results/frames'):
    """Write one frame as a numbered PNG into output_dir."""
    os.makedirs(output_dir, exist_ok=True)
    filename = f"{output_dir}/Frame_{frame_number:04d}.png"
    cv2.imwrite(filename, frame)
    return filename


def save_prediction(output_dir, frame_number, box):
    """Append one row to predictions.csv; a lost frame (box None) gets empty fields."""
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, 'predictions.csv')
    new_file = not os.path.exists(path)
    with open(path, 'a', newline='') as f:
        writer = csv.writer(f)
        if new_file:
            writer.writerow(['frame', 'x', 'y', 'w', 'h'])
        if box is None:
            writer.writerow([frame_number, '', '', '', ''])
        else:
            writer.writerow([frame_number] + [int(v) for v in box])
    return path


def save_meta(output_dir, frames, total_time, **extra):
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, 'meta.json')
    meta = {'frames': int(frames), 'total_time': float(total_time)}
    meta.update(extra)
    with open(path, 'w') as f:
        json.dump(meta, f, indent=2)
    return path
