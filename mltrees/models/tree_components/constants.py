"""
Shared Constants

Layout flags, variable types, predict flags and boosting types used by the
training data view and the tree models.
"""

from enum import IntEnum

import numpy as np

# サンプルの並び
ROW_SAMPLE = 0
COL_SAMPLE = 1

# 変数の種類
VAR_ORDERED = 0
VAR_NUMERICAL = VAR_ORDERED
VAR_CATEGORICAL = 1

# 欠損値の既定センチネル（FLT_MAX）
MISSING_VALUE = float(np.finfo(np.float32).max)

# StatModel flags
UPDATE_MODEL = 1
RAW_OUTPUT = 1
COMPRESSED_INPUT = 2
PREPROCESSED_INPUT = 4

# 予測フラグ（アンサンブルの結合方法）
PREDICT_AUTO = 0
PREDICT_SUM = 256
PREDICT_MAX_VOTE = 512
PREDICT_MASK = 768


class BoostType(IntEnum):
    """Boosting algorithm variants."""
    DISCRETE = 0
    REAL = 1
    LOGIT = 2
    GENTLE = 3
