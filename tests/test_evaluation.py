import json

import pytest

from adaptive_tracker.evaluation import center_error, evaluate, iou, read_meta_fps
from adaptive_tracker.utils import save_meta, save_prediction


def test_iou():
    assert iou((0, 0, 10, 10), (0, 0, 10, 10)) == 1.0
    assert iou((0, 0, 10, 10), (20, 20, 5, 5)) == 0.0
    assert iou((0, 0, 10, 10), (5, 0, 10, 10)) == pytest.approx(50 / 150)
    assert iou((0, 0, 0, 0), (0, 0, 0, 0)) == 0.0


def test_center_error():
    assert center_error((0, 0, 10, 10), (3, 4, 10, 10)) == pytest.approx(5.0)


def test_evaluate_counts_lost_frames(tmp_path):
    pred_dir = tmp_path / 'pred'
    save_prediction(pred_dir, 0, (10, 10, 20, 20))
    save_prediction(pred_dir, 1, (12, 10, 20, 20))
    save_prediction(pred_dir, 2, None)
    save_meta(pred_dir, 3, 0.5)

    gt = tmp_path / 'gt.csv'
    gt.write_text('frame,x,y,w,h\n0,10,10,20,20\n1,10,10,20,20\n2,14,10,20,20\n')

    results = evaluate(str(pred_dir / 'predictions.csv'), str(gt))
    assert results['n_evaluated_frames'] == 3
    assert results['lost_frames'] == 1
    assert results['success_rate'] == pytest.approx(2 / 3)
    assert results['mean_cle'] == pytest.approx(1.0)
    assert results['mean_iou'] == pytest.approx((1.0 + 18 / 22) / 3)
    assert results['fps'] == pytest.approx(6.0)


def test_evaluate_without_overlap(tmp_path):
    pred = tmp_path / 'pred.csv'
    gt = tmp_path / 'gt.csv'
    pred.write_text('frame,x,y,w,h\n5,0,0,1,1\n')
    gt.write_text('frame,x,y,w,h\n0,0,0,1,1\n')
    with pytest.raises(RuntimeError):
        evaluate(str(pred), str(gt))


def test_missing_meta(tmp_path):
    assert read_meta_fps(str(tmp_path)) is None
    (tmp_path / 'meta.json').write_text(json.dumps({'frames': 10, 'total_time': 0}))
    assert read_meta_fps(str(tmp_path)) is None
