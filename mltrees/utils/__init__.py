"""
Utilities Package

Exceptions and logging used across mltrees. Plotting helpers live in
mltrees.utils.visualization and model comparison helpers in
mltrees.utils.model_interface.
"""

from .exceptions import (
    InvalidArgumentError,
    MLTreesError,
    NotTrainedError,
    TrainingAbortedError,
    UnsupportedError,
)
from .logger import get_logger, setup_logging

__all__ = [
    'InvalidArgumentError',
    'MLTreesError',
    'NotTrainedError',
    'TrainingAbortedError',
    'UnsupportedError',
    'get_logger',
    'setup_logging',
]
