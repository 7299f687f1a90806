"""
Tree Components Package

This package contains the building blocks shared by the tree models:
training data view, node/split arena, tree builder, pruning, boosting
strategies and the trained model state.
"""

from .constants import (
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
)
from .train_data import TrainData, encode_categorical
from .tree_node import DTreeNode, DTreeSplit, TreeArena
from .tree_builder import TreeBuilder, TreeWorkData, apply_priors, validate_tree_params
from .pruning import CostComplexityPruner, compute_alpha_sequence
from .boost_strategies import BoostStrategyManager, trim_weights
from .model_state import TreeInspectionMixin, TreeModelState

__all__ = [
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
    'encode_categorical',
    'DTreeNode',
    'DTreeSplit',
    'TreeArena',
    'TreeBuilder',
    'TreeWorkData',
    'apply_priors',
    'validate_tree_params',
    'CostComplexityPruner',
    'compute_alpha_sequence',
    'BoostStrategyManager',
    'trim_weights',
    'TreeInspectionMixin',
    'TreeModelState',
]
