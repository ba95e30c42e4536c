#!/usr/bin/env python3
"""Score a tracking run against ground-truth.

Example:
  python evaluate.py --pred_dir results/run1 --gt_csv path/to/gt.csv
  python evaluate.py --pred_dir results/run1 --gt_csv gt.csv --json results/run1/scores.json

The prediction directory is the --output directory of track.py: it holds
`predictions.csv` (empty box fields on lost frames) and optionally `meta.json`.
"""
import argparse
import json
import os
from adaptive_tracker import evaluation


def main():
    p = argparse.ArgumentParser()
    p.add_argument('--pred_dir', required=True, help='Directory with predictions.csv (and optional meta.json)')
    p.add_argument('--gt_csv', required=True, help='Ground-truth CSV file with columns frame,x,y,w,h')
    p.add_argument('--cle', type=float, default=20.0, help='CLE threshold in pixels')
    p.add_argument('--json', help='Also write the scores to this JSON file')
    args = p.parse_args()

    pred_csv = os.path.join(args.pred_dir, 'predictions.csv')
    if not os.path.exists(pred_csv):
        raise FileNotFoundError(f'Predictions CSV not found: {pred_csv}')

    res = evaluation.evaluate(pred_csv, args.gt_csv, cle_threshold=args.cle)

    print('\n=== Evaluation Summary ===')
    print(f"Frames evaluated: {res['n_evaluated_frames']} of {res['n_frames']} predicted")
    print(f"Lost frames: {res['lost_frames']} "
          f"({res['lost_frames'] / res['n_evaluated_frames'] * 100:.1f}%, scored as IoU 0)")
    print(f"Success rate (IoU>0.5): {res['success_rate']*100:.2f}%")
    print(f"Precision (CLE<{args.cle}px): {res['precision']*100:.2f}%")
    print(f"Mean IoU: {res['mean_iou']:.4f}")
    print(f"Mean CLE (tracked frames): {res['mean_cle']:.2f} px")
    if res.get('fps') is not None:
        print(f"FPS (from meta.json): {res['fps']:.2f}")
    else:
        print("FPS: meta.json not found; run track.py with --output to generate timing info.")

    if args.json:
        with open(args.json, 'w') as f:
            json.dump(res, f, indent=2)
        print(f"Scores written to {args.json}")


if __name__ == '__main__':
    main()
