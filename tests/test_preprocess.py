"""
Tests for letterbox preprocessing.
"""

import numpy as np
import pytest

from inference.errors import ShapeMismatchError
from inference.decoder import invert_boxes
from inference.preprocess import letterbox, preprocess, target_hw
from inference.reclaimer import ResourceReclaimer
from models.frame import FrameData


class TestTargetHW:
    def test_nchw(self):
        assert target_hw((1, 3, 480, 640)) == (480, 640, 3)

    def test_nhwc(self):
        assert target_hw((1, 480, 640, 3), layout="NHWC") == (480, 640, 3)

    def test_rejects_non_4d(self):
        with pytest.raises(ShapeMismatchError):
            target_hw((3, 640, 640))


class TestLetterbox:
    def test_wide_frame_pads_top_and_bottom(self):
        image = np.zeros((360, 640, 3), dtype=np.uint8)
        canvas, scale, pad_x, pad_y = letterbox(image, (640, 640))

        assert canvas.shape == (640, 640, 3)
        assert scale == pytest.approx(1.0)
        assert pad_x == 0
        assert pad_y == 140

    def test_padding_uses_fill_value(self):
        image = np.zeros((100, 200, 3), dtype=np.uint8)
        canvas, _, _, pad_y = letterbox(image, (200, 200), fill_value=114)

        assert pad_y == 50
        assert np.all(canvas[:50] == 114)
        assert np.all(canvas[150:] == 114)
        assert np.all(canvas[50:150] == 0)

    def test_tall_frame_pads_left_and_right(self):
        image = np.zeros((640, 320, 3), dtype=np.uint8)
        canvas, scale, pad_x, pad_y = letterbox(image, (320, 320))

        assert canvas.shape == (320, 320, 3)
        assert scale == pytest.approx(0.5)
        assert pad_x == 80
        assert pad_y == 0


class TestPreprocess:
    @pytest.mark.parametrize("h, w", [(480, 640), (1080, 1920), (17, 913), (640, 640), (1, 1)])
    def test_output_matches_network_shape(self, h, w):
        frame = np.random.randint(0, 255, (h, w, 3), dtype=np.uint8)
        tensor = preprocess(frame, (1, 3, 320, 320))

        assert tensor.shape == (1, 3, 320, 320)
        assert tensor.data.dtype == np.float32
        assert tensor.frame_width == w
        assert tensor.frame_height == h

    def test_nhwc_layout(self):
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        tensor = preprocess(frame, (1, 160, 160, 3), layout="NHWC")
        assert tensor.shape == (1, 160, 160, 3)

    def test_values_normalized(self):
        frame = np.full((64, 64, 3), 255, dtype=np.uint8)
        tensor = preprocess(frame, (1, 3, 64, 64))
        assert tensor.data.max() == pytest.approx(1.0)
        assert tensor.data.min() >= 0.0

    def test_swaps_to_rgb(self):
        frame = np.zeros((32, 32, 3), dtype=np.uint8)
        frame[..., 0] = 255  # blue in BGR
        tensor = preprocess(frame, (1, 3, 32, 32))

        assert np.all(tensor.data[0, 2] == pytest.approx(1.0))
        assert np.all(tensor.data[0, 0] == 0.0)

    def test_gray_and_bgra_frames(self):
        gray = np.zeros((50, 80), dtype=np.uint8)
        bgra = np.zeros((50, 80, 4), dtype=np.uint8)

        assert preprocess(gray, (1, 3, 64, 64)).shape == (1, 3, 64, 64)
        assert preprocess(bgra, (1, 3, 64, 64)).shape == (1, 3, 64, 64)

    def test_frame_is_not_modified(self):
        frame = np.random.randint(0, 255, (120, 200, 3), dtype=np.uint8)
        original = frame.copy()
        fd = FrameData.from_numpy(frame)

        preprocess(fd, (1, 3, 96, 96))

        assert np.array_equal(fd.frame, original)

    def test_records_inversion(self):
        frame = np.zeros((360, 640, 3), dtype=np.uint8)
        tensor = preprocess(frame, (1, 3, 320, 320))
        inv = tensor.inversion

        assert inv.scale == pytest.approx(0.5)
        assert inv.pad_x == 0
        assert inv.pad_y == 70
        box = np.array([[100.0, 200.0, 300.0, 340.0]])
        forward = box * inv.scale + [inv.pad_x, inv.pad_y, inv.pad_x, inv.pad_y]
        assert invert_boxes(forward, inv).tolist() == pytest.approx(box.tolist())

    def test_empty_frame_rejected(self):
        with pytest.raises(ShapeMismatchError):
            preprocess(np.zeros((0, 0, 3), dtype=np.uint8), (1, 3, 64, 64))

    def test_batch_above_one_rejected(self):
        with pytest.raises(ShapeMismatchError):
            preprocess(np.zeros((10, 10, 3), dtype=np.uint8), (2, 3, 64, 64))

    def test_single_channel_network_rejected(self):
        with pytest.raises(ShapeMismatchError):
            preprocess(np.zeros((10, 10, 3), dtype=np.uint8), (1, 1, 64, 64))

    def test_output_tracked_by_arena(self):
        reclaimer = ResourceReclaimer()
        with reclaimer.cycle() as arena:
            preprocess(np.zeros((10, 10, 3), dtype=np.uint8), (1, 3, 32, 32), arena=arena)
            assert len(arena) == 1
            assert reclaimer.live_buffers == 1
        assert reclaimer.live_buffers == 0
