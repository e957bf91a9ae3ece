"""
Configuration module for the camera system.

Handles loading and validation of configuration from YAML files.
"""

import yaml
from pathlib import Path
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass
class DistortionSettings:
    """Settings for the iterative inverse of the lens distortion models."""
    inverse_max_iterations: int = 20  # Newton iterations for image -> sensor
    inverse_tolerance: float = 1e-12  # Convergence tolerance (normalized units)


@dataclass
class SystemConfig:
    """
    Main configuration class for a camera system.

    Attributes:
        max_num_cameras: Hard cap on cameras in a native calibration file.
            Sublists at index max_num_cameras - 1 or above are rejected.
        distortion: Settings for the inverse distortion solver
        log_level: Logging level used by the command-line tools
    """
    max_num_cameras: int = 10
    distortion: DistortionSettings = field(default_factory=DistortionSettings)
    log_level: str = 'INFO'

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check the configuration values, raising ValueError on the first bad one."""
        if self.max_num_cameras < 2:
            raise ValueError(f"max_num_cameras must be at least 2, got {self.max_num_cameras}")
        if self.distortion.inverse_max_iterations <= 0:
            raise ValueError(
                f"inverse_max_iterations must be positive, got {self.distortion.inverse_max_iterations}"
            )
        if self.distortion.inverse_tolerance <= 0:
            raise ValueError(
                f"inverse_tolerance must be positive, got {self.distortion.inverse_tolerance}"
            )
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_yaml(cls, config_path: str) -> "SystemConfig":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            SystemConfig object with loaded parameters

        Example YAML structure:
            max_num_cameras: 10
            distortion:
              inverse_max_iterations: 20
              inverse_tolerance: 1.0e-12
            log_level: INFO
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loading configuration from {config_path}")

        dist_data = data.get('distortion', {}) or {}
        distortion = DistortionSettings(
            inverse_max_iterations=int(dist_data.get('inverse_max_iterations', 20)),
            inverse_tolerance=float(dist_data.get('inverse_tolerance', 1e-12)),
        )

        return cls(
            max_num_cameras=int(data.get('max_num_cameras', 10)),
            distortion=distortion,
            log_level=str(data.get('log_level', 'INFO')),
        )

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        data = {
            'max_num_cameras': self.max_num_cameras,
            'distortion': {
                'inverse_max_iterations': self.distortion.inverse_max_iterations,
                'inverse_tolerance': self.distortion.inverse_tolerance,
            },
            'log_level': self.log_level,
        }

        with open(config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")
