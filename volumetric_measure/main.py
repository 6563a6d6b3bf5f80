"""
Main entry point for the Volumetric Measurement Engine

Measures an object point cloud stored as text (x y z [confidence] per row)
or as a NumPy .npy array.
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from volumetric_measure.data_models import OrientationPolicy, VolumeMethod
from volumetric_measure.measurement import MeasurementCalculator
from volumetric_measure.reconstruction.point_cloud_processor import PointCloudProcessor
from volumetric_measure.utils.config_manager import ConfigManager
from volumetric_measure.utils.logging_config import DEFAULT_FORMAT, setup_logging


def load_points(path: Path):
    """
    Load points and optional confidences.

    Returns:
        Tuple of ((N, 3) points, (N,) confidences or None)
    """
    if path.suffix == ".npy":
        data = np.load(path)
    else:
        text = path.read_text().replace(",", " ")
        rows = [line.split() for line in text.splitlines()
                if line.strip() and not line.lstrip().startswith("#")]
        data = np.array(rows, dtype=np.float64)

    data = np.atleast_2d(np.asarray(data, dtype=np.float64))
    if data.size == 0:
        return np.empty((0, 3)), None
    if data.shape[1] not in (3, 4):
        raise ValueError(f"Expected 3 or 4 columns, got {data.shape[1]}")

    confidences = data[:, 3] if data.shape[1] == 4 else None
    return data[:, :3], confidences


def main():
    """Main entry point for the measurement engine."""
    parser = argparse.ArgumentParser(
        description="Volumetric measurement of object point clouds"
    )

    parser.add_argument(
        "--input",
        type=str,
        required=True,
        help="Point cloud file (.npy, or text with x y z [confidence] rows)"
    )

    parser.add_argument(
        "--policy",
        choices=[policy.value for policy in OrientationPolicy],
        default=OrientationPolicy.AXIS_LOCKED.value,
        help="Bounding box orientation policy"
    )

    parser.add_argument(
        "--method",
        choices=[method.value for method in VolumeMethod],
        default=VolumeMethod.BOUNDING_BOX.value,
        help="Volume estimation method"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (defaults to the configured level)"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = ConfigManager(args.config)
        print(f"Loaded configuration from: {config.config_path}")
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading configuration: {e}")
        return 1

    logging_params = config.get_logging_params()
    try:
        setup_logging(args.log_level or logging_params.get('level', 'INFO'),
                      log_format=logging_params.get('format', DEFAULT_FORMAT))
    except ValueError as e:
        print(f"Error configuring logging: {e}")
        return 1
    logger = logging.getLogger(__name__)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file does not exist: {args.input}")
        return 1

    try:
        points, confidences = load_points(input_path)
        if confidences is not None:
            points, _ = PointCloudProcessor(config).filter_by_confidence(points, confidences)

        calculator = MeasurementCalculator(config)
        result = calculator.measure(points,
                                    policy=OrientationPolicy(args.policy),
                                    method=VolumeMethod(args.method))
    except (ValueError, OSError) as e:
        logger.error(f"Measurement failed: {e}")
        return 1

    if result is None:
        print(f"Could not measure {len(points)} points")
        return 1

    print("Volumetric Measurement")
    print("=" * 50)
    print(f"Points used: {result.point_count}")
    print(f"Dimensions: {result.length * 100:.1f} x {result.width * 100:.1f} x "
          f"{result.height * 100:.1f} cm")
    print(f"Box volume: {result.box_volume * 1000:.3f} L")
    if result.volume_result is not None:
        print(f"{args.method} volume: {result.volume_result.volume_liters:.3f} L")
    print(f"Size class: {result.size_class}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
