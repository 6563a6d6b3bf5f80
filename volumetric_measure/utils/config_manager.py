"""
Configuration Management System

Handles loading, validation, and management of engine parameters.
"""

import yaml
from typing import Dict, Any, Optional
from pathlib import Path


class ConfigManager:
    """Manages configuration parameters for the measurement engine."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, uses default config.
        """
        self.config_path = config_path or self._get_default_config_path()
        self.config = self._load_config()
        self._validate_config()

    def _get_default_config_path(self) -> str:
        """Get path to default configuration file."""
        package_dir = Path(__file__).parent.parent
        return str(package_dir / "config" / "default_config.yaml")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, 'r') as file:
                config = yaml.safe_load(file)
            return config or {}
        except FileNotFoundError:
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing configuration file: {e}")

    def _validate_config(self) -> None:
        """Validate configuration parameters for consistency and feasibility."""
        # Validate spatial index parameters
        spatial = self.config.get('spatial_index', {})
        if float(spatial.get('min_point_spacing', 0.003)) < 0:
            raise ValueError("min_point_spacing must be non-negative")
        if int(spatial.get('max_points_per_node', 16)) < 1:
            raise ValueError("max_points_per_node must be at least 1")

        # Validate trimming
        bbox = self.config.get('bounding_box', {})
        trim = float(bbox.get('trim_fraction', 0.01))
        if not 0.0 <= trim < 0.5:
            raise ValueError("trim_fraction must be in [0, 0.5)")

        # Validate clamp ranges
        ranges = [
            ('alpha_shape', 'min_alpha', 'max_alpha', 0.005, 0.5),
            ('ball_pivoting', 'min_radius', 'max_radius', 0.005, 0.2),
            ('voxel', 'min_voxel_size', 'max_voxel_size', 0.005, 0.05),
        ]
        for section, low_key, high_key, low_default, high_default in ranges:
            params = self.config.get(section, {})
            low = float(params.get(low_key, low_default))
            high = float(params.get(high_key, high_default))
            if low <= 0 or high <= 0:
                raise ValueError(f"{section}.{low_key} and {section}.{high_key} must be positive")
            if low > high:
                raise ValueError(f"{section}.{low_key} must not exceed {section}.{high_key}")

        # Validate editing constraints
        editing = self.config.get('box_editing', {})
        if float(editing.get('minimum_extent', 0.01)) <= 0:
            raise ValueError("minimum_extent must be positive")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'voxel.default_voxel_size')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'alpha_shape.max_alpha')
            value: Value to set
        """
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref:
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value
        self._validate_config()

    def save(self, output_path: Optional[str] = None) -> None:
        """
        Save current configuration to file.

        Args:
            output_path: Path to save configuration. If None, overwrites current file.
        """
        save_path = output_path or self.config_path

        with open(save_path, 'w') as file:
            yaml.dump(self.config, file, default_flow_style=False, indent=2)

    def get_spatial_index_params(self) -> Dict[str, Any]:
        """Get octree parameters as a dictionary."""
        return self.config.get('spatial_index', {})

    def get_bounding_box_params(self) -> Dict[str, Any]:
        """Get bounding box estimation parameters as a dictionary."""
        return self.config.get('bounding_box', {})

    def get_box_editing_params(self) -> Dict[str, Any]:
        """Get box editing parameters as a dictionary."""
        return self.config.get('box_editing', {})

    def get_delaunay_params(self) -> Dict[str, Any]:
        """Get Delaunay triangulation parameters as a dictionary."""
        return self.config.get('delaunay', {})

    def get_alpha_shape_params(self) -> Dict[str, Any]:
        """Get alpha shape parameters as a dictionary."""
        return self.config.get('alpha_shape', {})

    def get_ball_pivoting_params(self) -> Dict[str, Any]:
        """Get ball pivoting parameters as a dictionary."""
        return self.config.get('ball_pivoting', {})

    def get_voxel_params(self) -> Dict[str, Any]:
        """Get voxel volume parameters as a dictionary."""
        return self.config.get('voxel', {})

    def get_point_cloud_params(self) -> Dict[str, Any]:
        """Get point cloud filtering parameters as a dictionary."""
        return self.config.get('point_cloud', {})

    def get_scan_session_params(self) -> Dict[str, Any]:
        """Get multi-scan session parameters as a dictionary."""
        return self.config.get('scan_session', {})

    def get_logging_params(self) -> Dict[str, Any]:
        """Get logging parameters as a dictionary."""
        return self.config.get('logging', {})
