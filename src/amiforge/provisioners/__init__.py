"""Provisioners module for image lifecycle management."""

from .base import BaseProvisioner, ProvisionPlan, ChangeType
from .client import EC2ImageClient
from .image import ImageProvisioner
from .strategies import (
    CreateResult,
    CreateStrategy,
    CopyImageStrategy,
    InstanceImageStrategy,
    RegisterImageStrategy,
    strategy_for,
)
from .waiter import await_state, wait_for_available, wait_for_destroyed

__all__ = [
    'BaseProvisioner',
    'ProvisionPlan',
    'ChangeType',
    'EC2ImageClient',
    'ImageProvisioner',
    'CreateResult',
    'CreateStrategy',
    'CopyImageStrategy',
    'InstanceImageStrategy',
    'RegisterImageStrategy',
    'strategy_for',
    'await_state',
    'wait_for_available',
    'wait_for_destroyed',
]
