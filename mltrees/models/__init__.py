"""
Tree Models Package

DTrees (single decision tree), Boost (binary AdaBoost variants) and RTrees
(random forest) behind the common StatModel interface.
"""

from .base import StatModel, default_var_type
from .dtrees import DTrees
from .boost import Boost
from .rtrees import RTrees

__all__ = [
    'StatModel',
    'default_var_type',
    'DTrees',
    'Boost',
    'RTrees',
]
