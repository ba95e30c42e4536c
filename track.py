#!/usr/bin/env python3
"""Track one object through a video or an image directory.

Example:
  python track.py --video Test-Videos/mug.mp4 --roi 120 80 40 40 --output results/run1
  python track.py --images frames/ --roi 120 80 40 40 --config hog.json --save-model mug.npz

With --output, annotated frames, `predictions.csv` and `meta.json` are written there
(see evaluate.py).
"""
import argparse
import logging

from adaptive_tracker import (AdaptiveTracker, TrackerConfig, load_config, open_source,
                              TrackerError, TrackingStatus)


def main():
    p = argparse.ArgumentParser()
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument('--video', help='Video file')
    src.add_argument('--images', help='Directory of frames, read in file name order')
    p.add_argument('--roi', type=int, nargs=4, metavar=('X', 'Y', 'W', 'H'),
                   help='Target box in the first frame (required unless --model is given)')
    p.add_argument('--config', help='JSON tracker configuration')
    p.add_argument('--model', help='Persisted classifier model to start from')
    p.add_argument('--save-model', help='Write the final classifier model here')
    p.add_argument('--output', help='Directory for annotated frames, predictions.csv and meta.json')
    p.add_argument('--particles', action='store_true', help='Draw the particle population')
    p.add_argument('--seed', type=int, help='Random seed')
    p.add_argument('--max-frames', type=int, help='Stop after this many frames')
    p.add_argument('--verbose', '-v', action='store_true')
    args = p.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if args.roi is None and args.model is None:
        p.error('--roi is required when no --model is given')

    try:
        config = load_config(args.config) if args.config else TrackerConfig()
        if args.seed is not None:
            config.filter.seed = args.seed
        tracker = AdaptiveTracker(config, model_path=args.model)
        with open_source(args.video or args.images) as source:
            results = tracker.track(source, roi=args.roi,
                                    save_result=args.output is not None,
                                    draw_particles=args.particles,
                                    output_dir=args.output or 'results/frames',
                                    max_frames=args.max_frames)
        if args.save_model:
            tracker.save_model(args.save_model)
    except TrackerError as e:
        print(f"Error: {e}")
        raise SystemExit(1)

    lost = sum(r.status == TrackingStatus.LOST for r in results)
    print(f"\n✅ Tracking completed. Total frames: {len(results)}, lost: {lost}, "
          f"retrainings: {tracker.trainer.trainings}")


if __name__ == '__main__':
    main()
