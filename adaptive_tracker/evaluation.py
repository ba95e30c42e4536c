"""Evaluation utilities: IoU, CLE, FPS and a small evaluator that reads CSVs.

Predictions: CSV with columns `frame,x,y,w,h` saved by the tracker into the output directory
(default file name `predictions.csv`). Frames in which the object was lost have empty box
fields. Ground-truth: same CSV format.

Usage: import functions here or run the CLI `evaluate.py` at project root.
"""
import csv
import json
import os
import math
from typing import Tuple, Dict, Optional

Box = Tuple[int, int, int, int]


def _read_boxes_from_csv(path: str) -> Dict[int, Optional[Box]]:
    boxes = {}
    if not os.path.exists(path):
        raise FileNotFoundError(f"CSV not found: {path}")
    with open(path, newline='') as f:
        reader = csv.DictReader(f)
        for row in reader:
            try:
                frame = int(row['frame'])
            except (KeyError, TypeError, ValueError):
                continue
            try:
                boxes[frame] = (int(row['x']), int(row['y']), int(row['w']), int(row['h']))
            except (KeyError, TypeError, ValueError):
                boxes[frame] = None
    return boxes


def iou(boxA: Box, boxB: Box) -> float:
    """Compute IoU between two boxes in (x,y,w,h) format."""
    xA, yA, wA, hA = boxA
    xB, yB, wB, hB = boxB

    inter_w = max(0, min(xA + wA, xB + wB) - max(xA, xB))
    inter_h = max(0, min(yA + hA, yB + hB) - max(yA, yB))
    inter_area = inter_w * inter_h

    areaA = max(0, wA) * max(0, hA)
    areaB = max(0, wB) * max(0, hB)
    union = areaA + areaB - inter_area
    if union <= 0:
        return 0.0
    return float(inter_area) / float(union)


def center_error(boxA: Box, boxB: Box) -> float:
    xA, yA, wA, hA = boxA
    xB, yB, wB, hB = boxB
    cxA = xA + wA / 2.0
    cyA = yA + hA / 2.0
    cxB = xB + wB / 2.0
    cyB = yB + hB / 2.0
    return math.hypot(cxA - cxB, cyA - cyB)


def read_meta_fps(pred_dir: str) -> Optional[float]:
    meta_path = os.path.join(pred_dir, 'meta.json')
    if not os.path.exists(meta_path):
        return None
    try:
        with open(meta_path) as f:
            meta = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None
    if meta.get('total_time', 0) > 0 and 'frames' in meta:
        return float(meta['frames']) / float(meta['total_time'])
    return None


def evaluate(pred_csv: str, gt_csv: str, cle_threshold: float = 20.0) -> Dict:
    """Evaluate predictions vs ground-truth CSVs.

    Frames where the tracker reported the object lost count as failures (IoU 0) and are
    left out of the mean center location error.

    Returns a dict with fields: success_rate, precision, mean_iou, mean_cle, lost_frames,
    fps (if meta found), n_frames, n_evaluated_frames
    """
    preds = _read_boxes_from_csv(pred_csv)
    gts = {f: b for f, b in _read_boxes_from_csv(gt_csv).items() if b is not None}

    frames = sorted(set(preds.keys()) & set(gts.keys()))
    if not frames:
        raise RuntimeError('No overlapping frames between predictions and ground-truth')

    ious = []
    cles = []
    lost = 0
    for f in frames:
        p = preds[f]
        g = gts[f]
        if p is None:
            lost += 1
            ious.append(0.0)
            continue
        ious.append(iou(p, g))
        cles.append(center_error(p, g))

    successes = sum(1 for v in ious if v > 0.5)
    precision = sum(1 for v in cles if v < cle_threshold)
    n = len(frames)

    results = {
        'n_frames': len(preds),
        'n_evaluated_frames': n,
        'lost_frames': lost,
        'success_rate': successes / n,
        'precision': precision / n,
        'mean_iou': sum(ious) / n,
        'mean_cle': sum(cles) / len(cles) if cles else float('nan'),
        'fps': read_meta_fps(os.path.dirname(pred_csv)),
    }
    return results
