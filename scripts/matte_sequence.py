"""
Render mattes for a sequence of frames with Robust Video Matting

Frames are rendered in name order as consecutive times, so the recurrent
state carries over from one frame to the next exactly as in a host.

Usage:
    python scripts/matte_sequence.py --input_dir frames/ --output_dir mattes/
    python scripts/matte_sequence.py --input_dir frames/ --output_dir mattes/ \
        --config configs/default.yaml --device cuda --output-type Alpha
"""

import argparse
import logging
import sys
from pathlib import Path

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import tifffile
from tqdm import tqdm

from rvm_ofx.config import OutputType, load_settings
from rvm_ofx.host import ArrayHost, EffectInstance, RobustVideoMattingPlugin, Status
from rvm_ofx.services import INPUT_CLIP
from rvm_ofx.utils import Components, setup_logging

FRAME_EXTENSIONS = ('.npy', '.tif', '.tiff')

logger = logging.getLogger('rvm_ofx.matte_sequence')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Run Robust Video Matting on a frame sequence')

    # Input / output
    parser.add_argument('--input_dir', type=str, required=True,
                        help='Directory of frames (.npy, .tif, .tiff), rendered in name order')
    parser.add_argument('--output_dir', type=str, required=True,
                        help='Directory for the rendered frames')

    # Settings
    parser.add_argument('--config', type=str, default=None,
                        help='YAML settings file (see configs/default.yaml)')
    parser.add_argument('--bundle', type=str, default=None,
                        help='Plugin bundle root holding Contents/Resources')

    # Effect parameters (override the config file)
    parser.add_argument('--device', type=str, default=None, choices=['cpu', 'cuda'])
    parser.add_argument('--model', type=str, default=None,
                        choices=['mobilenetv3', 'resnet50', 'custom'],
                        help='Backbone, or custom with --model-file')
    parser.add_argument('--model-file', type=str, default=None,
                        help='TorchScript file for the custom backbone')
    parser.add_argument('--precision', type=str, default=None, choices=['float16', 'float32'])
    parser.add_argument('--downsample-ratio', type=float, default=None,
                        help='Downsample ratio in [0, 1], 0 lets the model pick')
    parser.add_argument('--output-type', type=str, default=None, choices=['RGBA', 'Alpha'])
    parser.add_argument('--color-source', type=str, default=None, choices=['input', 'model'])
    parser.add_argument('--premultiply', action='store_true', default=None,
                        help='Multiply output color by alpha')

    parser.add_argument('--log-level', type=str, default=None)

    return parser.parse_args(argv)


def list_frames(input_dir: str) -> list:
    """Frame files of a directory, sorted by name."""
    frames = [p for p in Path(input_dir).iterdir()
              if p.is_file() and p.suffix.lower() in FRAME_EXTENSIONS]
    return sorted(frames)


def load_frame(path: str) -> np.ndarray:
    """
    Load a frame as an (H, W, C) array.

    8/16-bit integer and float16/float32 data is kept as is, other float
    types are converted to float32.
    """
    path = Path(path)
    ext = path.suffix.lower()

    if ext == '.npy':
        frame = np.load(str(path))
    elif ext in ['.tif', '.tiff']:
        frame = tifffile.imread(str(path))
    else:
        raise ValueError(f"Unsupported file format: {ext}")

    if frame.ndim == 2:
        frame = frame[:, :, None]
    if frame.dtype.kind == 'f' and frame.dtype not in (np.float16, np.float32):
        frame = frame.astype(np.float32)
    return frame


def save_frame(frame: np.ndarray, path: str):
    """Save a frame, format chosen by extension (.npy by default)."""
    path = Path(path)
    ext = path.suffix.lower()

    if ext in ['.tif', '.tiff']:
        tifffile.imwrite(str(path), frame)
    else:
        np.save(str(path.with_suffix('.npy')), frame)


def main(argv=None) -> int:
    args = parse_args(argv)

    overrides = {
        'device': args.device,
        'backbone': args.model,
        'model_file': args.model_file,
        'precision': args.precision,
        'downsample_ratio': args.downsample_ratio,
        'output_type': args.output_type,
        'color_source': args.color_source,
        'premultiply_alpha': args.premultiply,
    }
    settings = load_settings(args.config, overrides)
    if args.bundle is not None:
        settings.bundle_path = args.bundle

    setup_logging(args.log_level or settings.log_level, settings.log_file)

    frames = list_frames(args.input_dir)
    if not frames:
        logger.error(f"No frames found in {args.input_dir}")
        return 1

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    effect = settings.effect
    alpha_only = effect.output_type is OutputType.ALPHA
    host = ArrayHost(output_components=Components.ALPHA if alpha_only else Components.RGBA)

    plugin = RobustVideoMattingPlugin(settings.bundle_path)
    instance = EffectInstance.from_configuration(host, settings.bundle_path, effect)
    logger.info(f"Rendering {len(frames)} frames with {instance.configuration.to_dict()}")

    plugin.dispatch('begin_sequence_render', instance)
    try:
        for time, frame_path in enumerate(tqdm(frames, desc="Rendering")):
            host.add_input(INPUT_CLIP, time, load_frame(frame_path))

            status = plugin.dispatch('render', instance, time=float(time))
            if status is not Status.OK:
                logger.error(f"Render of {frame_path.name} failed with status {status.value}")
                return 1

            save_frame(host.output(time), output_dir / frame_path.name)
            host.discard(time)
    finally:
        plugin.dispatch('end_sequence_render', instance)

    logger.info(f"Results saved to {output_dir}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
