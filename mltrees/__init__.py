"""
mltrees

Decision trees, boosting and random forests on numpy with categorical splits,
missing-value handling and cost-complexity pruning.
"""

from .models import Boost, DTrees, RTrees, StatModel, default_var_type
from .models.tree_components import (
    BoostType,
    COL_SAMPLE,
    COMPRESSED_INPUT,
    MISSING_VALUE,
    PREDICT_AUTO,
    PREDICT_MASK,
    PREDICT_MAX_VOTE,
    PREDICT_SUM,
    PREPROCESSED_INPUT,
    RAW_OUTPUT,
    ROW_SAMPLE,
    UPDATE_MODEL,
    VAR_CATEGORICAL,
    VAR_NUMERICAL,
    VAR_ORDERED,
    TrainData,
)
from .utils import (
    InvalidArgumentError,
    MLTreesError,
    NotTrainedError,
    TrainingAbortedError,
    UnsupportedError,
    get_logger,
    setup_logging,
)

__version__ = "0.1.0"

__all__ = [
    'Boost',
    'DTrees',
    'RTrees',
    'StatModel',
    'default_var_type',
    'BoostType',
    'COL_SAMPLE',
    'COMPRESSED_INPUT',
    'MISSING_VALUE',
    'PREDICT_AUTO',
    'PREDICT_MASK',
    'PREDICT_MAX_VOTE',
    'PREDICT_SUM',
    'PREPROCESSED_INPUT',
    'RAW_OUTPUT',
    'ROW_SAMPLE',
    'UPDATE_MODEL',
    'VAR_CATEGORICAL',
    'VAR_NUMERICAL',
    'VAR_ORDERED',
    'TrainData',
    'InvalidArgumentError',
    'MLTreesError',
    'NotTrainedError',
    'TrainingAbortedError',
    'UnsupportedError',
    'get_logger',
    'setup_logging',
]
