"""
Real-time object detection runner.

Negotiates a compute backend, loads an ONNX detection network, and runs the
detection loop against a camera, video file or still image.

Usage:
    python src/main.py --config config/config.yaml --camera 0 --display
    python src/main.py --image street.jpg --model models/yolo11s.onnx

Arguments:
    --config: Path to configuration file
    --image / --video / --camera: Input source (defaults to source.device_id)
    --model: Override model.uri
    --display: Show detections in a window
"""

import os
import sys
import argparse
import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple

import cv2
import yaml

from inference.backend import describe_providers
from inference.errors import DetectionError
from models.config import Config
from observation.base import ObservationSource
from observation.image_source import ImageSource, ImageSourceConfig
from observation.opencv_source import OpenCVSource, OpenCVSourceConfig
from ops.logging import VALID_LOG_LEVELS, setup_logging
from ops.memory import MemoryMonitor
from pipeline.cycle import CycleResult, DetectionPipeline
from pipeline.loop import DetectionLoopController
from pipeline.render import LogRenderer, OverlayRenderer, composite
from runtime.context import create_runtime


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    try:
        base_path = os.path.join(os.path.dirname(config_path), "default.yaml")
        base_cfg: Dict[str, Any] = {}
        if os.path.exists(base_path):
            with open(base_path, "r") as f:
                base_cfg = yaml.safe_load(f) or {}

        local_overrides_path = os.path.join(os.path.dirname(config_path), "config.yaml")
        local_cfg: Dict[str, Any] = {}
        if os.path.exists(local_overrides_path):
            with open(local_overrides_path, "r") as f:
                local_cfg = yaml.safe_load(f) or {}

        merged = _deep_merge(base_cfg, local_cfg)

        if os.path.exists(config_path) and os.path.abspath(config_path) != os.path.abspath(local_overrides_path):
            with open(config_path, "r") as f:
                explicit_cfg = yaml.safe_load(f) or {}
            merged = _deep_merge(merged, explicit_cfg)

        return merged
    except (OSError, yaml.YAMLError) as e:
        logging.error(f"Failed to load configuration: {e}")
        sys.exit(1)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration structure and values.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_sections = ['model', 'detection', 'log_level']
    for section in required_sections:
        if section not in config:
            return False, f"Missing required configuration section: {section}"

    # Model
    model = config.get('model') or {}
    if 'uri' in model and not isinstance(model['uri'], str):
        return False, "model.uri must be a string"
    input_size = model.get('input_size', [640, 640])
    if not isinstance(input_size, list) or len(input_size) != 2:
        return False, "model.input_size must be a list of [width, height]"
    if not all(isinstance(x, int) and x > 0 for x in input_size):
        return False, "model.input_size values must be positive integers"

    # Detection thresholds
    detection = config.get('detection') or {}
    for key in ('conf_threshold', 'iou_threshold'):
        if key in detection:
            value = detection[key]
            if not _is_number(value) or not (0 <= value <= 1):
                return False, f"detection.{key} must be between 0 and 1"
    if 'max_detections' in detection:
        md = detection['max_detections']
        if not isinstance(md, int) or md <= 0:
            return False, "detection.max_detections must be a positive integer"
    if 'fill_value' in detection:
        fv = detection['fill_value']
        if not isinstance(fv, int) or not (0 <= fv <= 255):
            return False, "detection.fill_value must be an integer in [0, 255]"

    # Backend
    backend = config.get('backend') or {}
    for key in ('primary_providers', 'secondary_providers'):
        if key in backend and not isinstance(backend[key], list):
            return False, f"backend.{key} must be a list of provider names"
    if 'tuning' in backend and not isinstance(backend['tuning'], dict):
        return False, "backend.tuning must be a mapping"

    # Loop
    loop = config.get('loop') or {}
    if 'refresh_hz' in loop:
        if not _is_number(loop['refresh_hz']) or loop['refresh_hz'] <= 0:
            return False, "loop.refresh_hz must be a positive number"
    if 'max_consecutive_failures' in loop:
        mcf = loop['max_consecutive_failures']
        if not isinstance(mcf, int) or mcf <= 0:
            return False, "loop.max_consecutive_failures must be a positive integer"

    # Source
    source = config.get('source') or {}
    if 'device_id' in source:
        if not isinstance(source['device_id'], (int, str)):
            return False, "source.device_id must be an integer (index) or string (URL/path)"
        if isinstance(source['device_id'], int) and source['device_id'] < 0:
            return False, "source.device_id integer must be non-negative"
    if source.get('rotate', 0) not in (0, 90, 180, 270, None):
        return False, "source.rotate must be one of: 0, 90, 180, 270"

    if config['log_level'] not in VALID_LOG_LEVELS:
        return False, f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}"

    return True, None


def create_source(args: argparse.Namespace, cfg: Config) -> ObservationSource:
    """Pick the input source from CLI flags, falling back to source.device_id."""
    if args.image:
        return ImageSource(ImageSourceConfig(source_id=os.path.basename(args.image), path=args.image))

    source_cfg = OpenCVSourceConfig.from_source_config(cfg.source)
    if args.video:
        source_cfg.device_id = args.video
        source_cfg.source_id = os.path.basename(args.video)
    elif args.camera is not None:
        source_cfg.device_id = int(args.camera) if str(args.camera).isdigit() else args.camera
    return OpenCVSource(source_cfg)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Real-time object detection')
    parser.add_argument('--config', type=str, default='config/config.yaml',
                        help='Path to configuration file')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--image', type=str, help='Detect objects in a single image')
    group.add_argument('--video', type=str, help='Detect objects in a video file or stream URL')
    group.add_argument('--camera', type=str, help='Camera index or stream URL')
    parser.add_argument('--model', type=str, help='Model path or URL (overrides model.uri)')
    parser.add_argument('--display', action='store_true',
                        help='Enable visual display')
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, cfg: Config) -> None:
    def on_progress(progress) -> None:
        logging.info(f"Loading model: {progress.fraction * 100:.0f}%")

    ctx = await create_runtime(cfg, on_progress=on_progress)
    logging.info(
        f"Backend {ctx.backend.kind.value}: {describe_providers(ctx.backend.providers)}"
    )

    pipeline = DetectionPipeline(ctx.model, cfg.detection, reclaimer=ctx.reclaimer)
    renderer = OverlayRenderer() if args.display else LogRenderer()
    controller = DetectionLoopController(pipeline, renderer, cfg.loop)

    monitor = MemoryMonitor(ctx.reclaimer, interval=cfg.memory_log_interval)
    controller.add_callback(lambda _result: monitor.check())

    if args.display:
        def show(result: CycleResult) -> None:
            cv2.imshow('Detections', composite(result.frame.frame, renderer.layer))
            if cv2.waitKey(1) & 0xFF == ord('q'):
                controller.stop()

        controller.add_callback(show)

    source = create_source(args, cfg)
    await controller.start(source)
    try:
        await controller.join()
        if args.display and not source.streaming:
            # Keep the still result on screen until a key is pressed
            await asyncio.to_thread(cv2.waitKey, 0)
    finally:
        controller.stop()
        monitor.check(force=True)
        logging.info(
            f"Detection stopped: cycles={controller.stats.cycles} "
            f"skipped_ticks={controller.stats.skipped_ticks} failures={controller.stats.failures} "
            f"live_buffers={ctx.reclaimer.live_buffers}"
        )


def main(argv=None):
    """Main application function."""
    args = _parse_args(argv)

    config = load_config(args.config)
    if args.model:
        config.setdefault('model', {})['uri'] = args.model

    is_valid, error_msg = validate_config(config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        sys.exit(1)

    cfg = Config.from_dict(config)
    setup_logging(cfg.log_path, cfg.log_level)
    logging.info("Starting object detection")

    started = time.time()
    try:
        asyncio.run(run(args, cfg))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    except DetectionError as e:
        logging.error(f"Detection failed: {e}")
        sys.exit(1)
    except RuntimeError as e:
        logging.error(f"Source error: {e}")
        sys.exit(1)
    finally:
        if args.display:
            cv2.destroyAllWindows()
        logging.info(f"Object detection stopped after {time.time() - started:.1f}s")


if __name__ == "__main__":
    main()
