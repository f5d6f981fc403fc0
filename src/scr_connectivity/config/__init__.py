"""Configuration for SCR connectivity analysis"""

from .scr_config import (
    SCRConfig, LandscapeConfig, DetectionConfig, OptimizerConfig,
    ReportingConfig, LoggingConfig, get_config, update_config
)

__all__ = [
    'SCRConfig',
    'LandscapeConfig',
    'DetectionConfig',
    'OptimizerConfig',
    'ReportingConfig',
    'LoggingConfig',
    'get_config',
    'update_config'
]
