"""Configuration management for amiforge."""

from .models import (
    EbsBlockDevice,
    EphemeralBlockDevice,
    CopySourceConfig,
    InstanceSourceConfig,
    ImageConfig,
    TimeoutsConfig,
    ProviderConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "EbsBlockDevice",
    "EphemeralBlockDevice",
    "CopySourceConfig",
    "InstanceSourceConfig",
    "ImageConfig",
    "TimeoutsConfig",
    "ProviderConfig",
    "Config",
    "ConfigValidationError",
]
