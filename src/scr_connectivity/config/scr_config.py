#!/usr/bin/env python3
"""
Configuration for SCR connectivity analysis.
Centralized configuration management with YAML and environment variable support.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
import logging
import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

@dataclass
class LandscapeConfig:
    """Resistance surface and distance engine configuration."""

    # Neighbourhood used for the least-cost graph (4, 8 or 16)
    directions: int = 16
    distance_metric: str = "ecological"   # 'ecological' or 'euclidean'

    # Covariate preprocessing
    standardize_covariate: bool = False
    nodata_value: Optional[float] = None

@dataclass
class DetectionConfig:
    """Observation model configuration."""

    observation_model: str = "binomial"   # 'binomial' or 'poisson'

@dataclass
class OptimizerConfig:
    """Maximum likelihood optimizer configuration."""

    method: str = "BFGS"
    max_iterations: int = 500
    gtol: float = 1e-6
    finite_difference: str = "3-point"

    # Central-difference step for the Hessian at the optimum
    hessian_step: float = 1e-4

    # Precision-loss terminations are accepted below this gradient norm
    gradient_tolerance: float = 1e-3

@dataclass
class ReportingConfig:
    """Reporting configuration."""

    confidence_level: float = 0.95
    output_dir: str = "outputs"
    write_rasters: bool = False

@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_handler: bool = True
    console_handler: bool = True
    log_dir: str = "logs"

class SCRConfig:
    """Main configuration class for SCR connectivity fits."""

    SECTIONS = ('landscape', 'detection', 'optimizer', 'reporting', 'logging')

    def __init__(self, config_file: Optional[str] = None, use_env: bool = True):
        """
        Initialize configuration.

        Parameters:
        -----------
        config_file : str, optional
            Path to YAML configuration file with section overrides
        use_env : bool
            Whether to apply SCR_* environment variable overrides
        """
        self.landscape = LandscapeConfig()
        self.detection = DetectionConfig()
        self.optimizer = OptimizerConfig()
        self.reporting = ReportingConfig()
        self.logging = LoggingConfig()

        if config_file and os.path.exists(config_file):
            self.load_config_file(config_file)

        if use_env:
            load_dotenv()
            self.load_env_variables()

    def load_config_file(self, config_file: str) -> None:
        """Load configuration from YAML file."""
        with open(config_file, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        for section_name, section_data in config_data.items():
            if section_name in self.SECTIONS and isinstance(section_data, dict):
                section_obj = getattr(self, section_name)
                for key, value in section_data.items():
                    if hasattr(section_obj, key):
                        setattr(section_obj, key, value)
                    else:
                        logger.warning(f"Ignoring unknown config key {section_name}.{key}")

        logger.info(f"Loaded configuration overrides from {config_file}")

    def load_env_variables(self) -> None:
        """Load configuration from environment variables."""

        def get_clean_env_var(key: str) -> Optional[str]:
            val = os.getenv(key)
            if val is not None:
                return val.split('#')[0].strip()
            return None

        directions_str = get_clean_env_var('SCR_DIRECTIONS')
        if directions_str:
            self.landscape.directions = int(directions_str)

        metric_str = get_clean_env_var('SCR_DISTANCE_METRIC')
        if metric_str:
            self.landscape.distance_metric = metric_str.lower()

        model_str = get_clean_env_var('SCR_OBSERVATION_MODEL')
        if model_str:
            self.detection.observation_model = model_str.lower()

        max_iter_str = get_clean_env_var('SCR_MAX_ITERATIONS')
        if max_iter_str:
            self.optimizer.max_iterations = int(max_iter_str)

        level_str = get_clean_env_var('SCR_CONFIDENCE_LEVEL')
        if level_str:
            self.reporting.confidence_level = float(level_str)

        log_level_str = get_clean_env_var('SCR_LOG_LEVEL')
        if log_level_str:
            self.logging.level = log_level_str

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Return all sections as plain dictionaries."""
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def save_config(self, output_file: str) -> None:
        """Save current configuration to YAML file."""
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        with open(output_file, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)

    def validate_config(self) -> bool:
        """Validate configuration parameters."""
        try:
            assert self.landscape.directions in (4, 8, 16), "Directions must be 4, 8 or 16"
            assert self.landscape.distance_metric in ('ecological', 'euclidean'), \
                "Distance metric must be 'ecological' or 'euclidean'"
            assert self.detection.observation_model in ('binomial', 'poisson'), \
                "Observation model must be 'binomial' or 'poisson'"
            assert self.optimizer.max_iterations > 0, "Max iterations must be positive"
            assert self.optimizer.gtol > 0, "gtol must be positive"
            assert self.optimizer.hessian_step > 0, "Hessian step must be positive"
            assert 0 < self.reporting.confidence_level < 1, "Confidence level must be in (0, 1)"

            return True

        except AssertionError as e:
            logger.error(f"Configuration validation failed: {e}")
            return False

    def print_summary(self) -> None:
        """Print configuration summary."""
        print("🐾 SCR Connectivity - Configuration Summary")
        print("=" * 60)
        print(f"Directions: {self.landscape.directions}")
        print(f"Distance metric: {self.landscape.distance_metric}")
        print(f"Observation model: {self.detection.observation_model}")
        print(f"Optimizer: {self.optimizer.method} (max {self.optimizer.max_iterations} iterations)")
        print(f"Confidence level: {self.reporting.confidence_level}")
        print(f"Log level: {self.logging.level}")
        print("=" * 60)

# Global configuration instance
_config = None

def get_config(config_file: Optional[str] = None) -> SCRConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = SCRConfig(config_file)
    return _config

def update_config(config_file: str) -> SCRConfig:
    """Replace the global configuration from file."""
    global _config
    _config = SCRConfig(config_file)
    return _config
