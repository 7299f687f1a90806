"""
Training Data View

This module contains the TrainData class that normalises a raw sample matrix
and response vector into the uniform view consumed by the tree models:
row/column layout, categorical remapping, missing-value handling and the
train/test split.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional, Sequence, Tuple, Union
from sklearn.preprocessing import LabelEncoder

from .constants import (
    COL_SAMPLE,
    MISSING_VALUE,
    ROW_SAMPLE,
    VAR_CATEGORICAL,
    VAR_ORDERED,
)
from ...utils.exceptions import InvalidArgumentError
from ...utils.logger import get_logger

logger = get_logger(__name__)


def _as_index_array(idx, n: int, name: str) -> np.ndarray:
    """
    インデックス配列またはブールマスクを昇順の整数インデックスに変換

    Parameters:
    -----------
    idx : array-like or None
        整数インデックスまたは長さ n のブールマスク
    n : int
        要素数
    name : str
        エラーメッセージ用の引数名

    Returns:
    --------
    index : np.ndarray of int64
        重複のない昇順インデックス
    """
    if idx is None:
        return np.arange(n, dtype=np.int64)

    idx = np.asarray(idx)
    if idx.dtype == bool:
        if idx.shape != (n,):
            raise InvalidArgumentError(f"{name} mask must have {n} elements, got {idx.shape}")
        return np.flatnonzero(idx).astype(np.int64)

    idx = idx.ravel()
    if idx.size and not np.issubdtype(idx.dtype, np.integer):
        raise InvalidArgumentError(f"{name} must contain integer indices or a boolean mask")
    idx = np.unique(idx.astype(np.int64))
    if idx.size and (idx[0] < 0 or idx[-1] >= n):
        raise InvalidArgumentError(f"{name} contains indices outside [0, {n})")
    return idx


def encode_categorical(values: np.ndarray, cat_map: np.ndarray, missing: np.ndarray) -> np.ndarray:
    """
    生の値をカテゴリマップ上のコードに変換（未知の値・欠損値は -1）

    Parameters:
    -----------
    values : array-like, shape=(n_samples,)
        生の値
    cat_map : array-like, shape=(n_categories,)
        昇順に並んだカテゴリ値
    missing : array-like of bool, shape=(n_samples,)
        欠損マスク

    Returns:
    --------
    codes : array-like of int32, shape=(n_samples,)
        カテゴリコード
    """
    codes = np.full(values.shape[0], -1, dtype=np.int32)
    if cat_map.size == 0:
        return codes
    pos = np.searchsorted(cat_map, values)
    pos = np.minimum(pos, cat_map.size - 1)
    found = (cat_map[pos] == values) & ~missing
    codes[found] = pos[found]
    return codes


class TrainData:
    """
    学習データのビュー

    サンプル行列をコピーせずに、変数種別・カテゴリマップ・欠損値・
    訓練/テスト分割を管理する。行列は構築後は読み取り専用で、
    変更されるのは訓練/テスト分割のみ。

    Attributes:
    -----------
    random_state : int
        シャッフル用の乱数シード（numpy.random.RandomState, MT19937）
    """

    def __init__(
        self,
        samples,
        layout: int = ROW_SAMPLE,
        responses=None,
        var_idx=None,
        sample_idx=None,
        sample_weights=None,
        var_type=None,
        missing_value: float = MISSING_VALUE,
        missing_mask=None,
        random_state: Optional[int] = None
    ):
        """
        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars) or (n_vars, n_samples)
            サンプル行列（float32 に変換される）
        layout : int, default=ROW_SAMPLE
            ROW_SAMPLE（行がサンプル）または COL_SAMPLE（列がサンプル）
        responses : array-like, shape=(n_samples,)
            目的変数
        var_idx : array-like, optional
            使用する変数のインデックスまたはマスク
        sample_idx : array-like, optional
            使用するサンプルのインデックスまたはマスク
        sample_weights : array-like, shape=(n_samples,), optional
            サンプル重み
        var_type : array-like, optional
            各変数の種別（n_vars 個、または目的変数を含めて n_vars + 1 個）
        missing_value : float, default=MISSING_VALUE
            欠損を表すセンチネル値
        missing_mask : array-like of bool, optional
            samples と同じ形の欠損マスク
        random_state : int, optional
            シャッフル用の乱数シード
        """
        if layout not in (ROW_SAMPLE, COL_SAMPLE):
            raise InvalidArgumentError(f"Invalid layout: {layout}")
        if responses is None:
            raise InvalidArgumentError("responses must be provided")

        samples = np.asarray(samples)
        if samples.ndim != 2:
            raise InvalidArgumentError(f"samples must be a 2-D matrix, got {samples.ndim} dimensions")
        samples = samples.astype(np.float32, copy=False)

        self._layout = layout
        # COL_SAMPLE の場合は転置ビューを使う（コピーしない）
        self._samples = samples if layout == ROW_SAMPLE else samples.T
        n_samples, n_all_vars = self._samples.shape
        if n_samples == 0 or n_all_vars == 0:
            raise InvalidArgumentError("samples must contain at least one sample and one variable")

        self._missing_value = float(np.float32(missing_value))
        missing = (self._samples == np.float32(missing_value)) | np.isnan(self._samples)
        if missing_mask is not None:
            missing_mask = np.asarray(missing_mask, dtype=bool)
            if missing_mask.shape != samples.shape:
                raise InvalidArgumentError(
                    f"missing_mask shape {missing_mask.shape} does not match samples shape {samples.shape}"
                )
            missing |= missing_mask if layout == ROW_SAMPLE else missing_mask.T
        self._missing = missing

        # 変数種別
        responses = np.asarray(responses)
        if responses.size != n_samples:
            raise InvalidArgumentError(
                f"responses has {responses.size} values, but there are {n_samples} samples"
            )
        responses = responses.ravel()
        self._var_type, self._response_type = self._resolve_var_types(var_type, n_all_vars, responses)

        self._var_idx = _as_index_array(var_idx, n_all_vars, "var_idx")
        if self._var_idx.size == 0:
            raise InvalidArgumentError("var_idx selects no variables")
        self._sample_idx = _as_index_array(sample_idx, n_samples, "sample_idx")

        if sample_weights is None:
            self._sample_weights = np.ones(n_samples, dtype=np.float64)
        else:
            sample_weights = np.asarray(sample_weights, dtype=np.float64).ravel()
            if sample_weights.size != n_samples:
                raise InvalidArgumentError(
                    f"sample_weights has {sample_weights.size} values, but there are {n_samples} samples"
                )
            if np.any(sample_weights < 0) or not np.all(np.isfinite(sample_weights)):
                raise InvalidArgumentError("sample_weights must be finite and non-negative")
            self._sample_weights = sample_weights

        self._build_category_maps()
        self._build_responses(responses)

        # 文字列カテゴリのラベル（from_dataframe で設定）
        self._label_encoders: Dict[int, LabelEncoder] = {}
        self._names: Optional[List[str]] = None

        if random_state is None:
            random_state = int(np.random.randint(0, np.iinfo(np.int32).max))
        self.random_state = int(random_state)
        self._rng = np.random.RandomState(self.random_state)

        # 分割が設定されるまでは全サンプルが訓練データ
        self._train_idx = self._sample_idx.copy()
        self._test_idx = np.empty(0, dtype=np.int64)

        logger.debug(
            "TrainData: %d samples, %d variables (%d active), %s response",
            n_samples, n_all_vars, self._var_idx.size,
            "categorical" if self._response_type == VAR_CATEGORICAL else "ordered"
        )

    @staticmethod
    def _resolve_var_types(var_type, n_all_vars: int, responses: np.ndarray) -> Tuple[np.ndarray, int]:
        """変数種別と目的変数の種別を決定"""
        response_type = None
        if var_type is None:
            types = np.full(n_all_vars, VAR_ORDERED, dtype=np.int32)
        else:
            types = np.asarray(var_type, dtype=np.int32).ravel()
            if types.size == n_all_vars + 1:
                response_type = int(types[-1])
                types = types[:-1]
            elif types.size != n_all_vars:
                raise InvalidArgumentError(
                    f"var_type must have {n_all_vars} or {n_all_vars + 1} entries, got {types.size}"
                )
            if np.any((types != VAR_ORDERED) & (types != VAR_CATEGORICAL)):
                raise InvalidArgumentError("var_type entries must be VAR_ORDERED or VAR_CATEGORICAL")

        if response_type is None:
            # 整数・真偽値・文字列の目的変数は分類として扱う
            response_type = VAR_CATEGORICAL if responses.dtype.kind in "iubOUS" else VAR_ORDERED
        if response_type not in (VAR_ORDERED, VAR_CATEGORICAL):
            raise InvalidArgumentError(f"Invalid response type: {response_type}")
        return types, response_type

    def _build_category_maps(self) -> None:
        """カテゴリ変数ごとに昇順のカテゴリマップとコード行列を作成"""
        n_samples, n_all_vars = self._samples.shape
        self._cat_maps: Dict[int, np.ndarray] = {}
        self._cat_codes = np.full((n_samples, n_all_vars), -1, dtype=np.int32)

        for vi in np.flatnonzero(self._var_type == VAR_CATEGORICAL):
            column = self._samples[:, vi]
            present = ~self._missing[:, vi]
            encoder = LabelEncoder()
            if np.any(present):
                encoder.fit(column[present])
                self._cat_maps[int(vi)] = np.asarray(encoder.classes_, dtype=np.float32)
                self._cat_codes[present, vi] = encoder.transform(column[present])
            else:
                self._cat_maps[int(vi)] = np.empty(0, dtype=np.float32)

    def _build_responses(self, responses: np.ndarray) -> None:
        """目的変数の正規化（分類ならクラスインデックス 0..C-1）"""
        if self._response_type == VAR_CATEGORICAL:
            if responses.dtype.kind == "f":
                bad = np.isnan(responses) | (responses == self._missing_value)
                if np.any(bad):
                    raise InvalidArgumentError("responses contain missing values")
            encoder = LabelEncoder()
            self._norm_responses = encoder.fit_transform(responses).astype(np.int32)
            classes = encoder.classes_
            if classes.dtype == object:
                classes = classes.astype(str)
            self._class_labels = classes
            self._responses = responses
        else:
            try:
                values = responses.astype(np.float64)
            except (TypeError, ValueError) as e:
                raise InvalidArgumentError(f"ordered responses must be numeric: {e}")
            if not np.all(np.isfinite(values)) or np.any(values == self._missing_value):
                raise InvalidArgumentError("responses contain missing or non-finite values")
            self._norm_responses = None
            self._class_labels = None
            self._responses = values

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        response: str,
        categorical: Optional[Sequence[str]] = None,
        sample_weights=None,
        missing_value: float = MISSING_VALUE,
        **kwargs
    ) -> 'TrainData':
        """
        pandas DataFrame から TrainData を作成

        object / category / bool 型の列と categorical で指定した列はカテゴリ変数になる。
        文字列カテゴリは昇順のコード（0..K-1）に変換され、元のラベルは
        get_cat_labels で参照できる。NaN は欠損値として扱う。

        Parameters:
        -----------
        df : pandas.DataFrame
            入力データ
        response : str
            目的変数の列名
        categorical : sequence of str, optional
            カテゴリ変数として扱う列名
        sample_weights : array-like, optional
            サンプル重み
        missing_value : float, default=MISSING_VALUE
            欠損を表すセンチネル値
        **kwargs : dict
            TrainData のその他の引数

        Returns:
        --------
        data : TrainData
            作成された学習データ
        """
        if response not in df.columns:
            raise InvalidArgumentError(f"Response column '{response}' not found in DataFrame")
        categorical = set(categorical or [])
        unknown = categorical - set(df.columns)
        if unknown:
            raise InvalidArgumentError(f"Unknown categorical columns: {sorted(unknown)}")

        feature_cols = [c for c in df.columns if c != response]
        columns = []
        var_type = []
        encoders: Dict[int, LabelEncoder] = {}

        for j, col in enumerate(feature_cols):
            series = df[col]
            is_numeric = pd.api.types.is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)
            is_cat = col in categorical or not is_numeric

            if is_cat and not is_numeric:
                present = series.notna().to_numpy()
                labels = series[present].astype(str).to_numpy()
                encoder = LabelEncoder().fit(labels)
                values = np.full(len(series), np.nan)
                values[present] = encoder.transform(labels)
                encoders[j] = encoder
            else:
                values = pd.to_numeric(series, errors="raise").to_numpy(dtype=np.float64)

            values = np.where(np.isnan(values), missing_value, values)
            columns.append(values)
            var_type.append(VAR_CATEGORICAL if is_cat else VAR_ORDERED)

        samples = np.column_stack(columns).astype(np.float32) if columns else np.empty((len(df), 0), np.float32)
        data = cls(
            samples,
            ROW_SAMPLE,
            df[response].to_numpy(),
            sample_weights=sample_weights,
            var_type=var_type,
            missing_value=missing_value,
            **kwargs
        )
        data._label_encoders = encoders
        data._names = [str(c) for c in feature_cols]
        return data

    def encode_frame(self, df: pd.DataFrame) -> np.ndarray:
        """
        from_dataframe と同じ変換を新しい DataFrame に適用

        未知のカテゴリは -1（どのカテゴリマップにも含まれない値）になる。

        Parameters:
        -----------
        df : pandas.DataFrame
            特徴量の列（学習時と同じ列名）を含むデータ

        Returns:
        --------
        samples : np.ndarray of float32, shape=(n_rows, n_all_vars)
            予測に渡せるサンプル行列
        """
        if self._names is None:
            raise InvalidArgumentError("encode_frame requires TrainData created by from_dataframe")
        missing_cols = [c for c in self._names if c not in df.columns]
        if missing_cols:
            raise InvalidArgumentError(f"Columns missing from frame: {missing_cols}")

        out = np.empty((len(df), len(self._names)), dtype=np.float32)
        for j, col in enumerate(self._names):
            series = df[col]
            if j in self._label_encoders:
                encoder = self._label_encoders[j]
                lookup = {label: code for code, label in enumerate(encoder.classes_)}
                values = np.array(
                    [self._missing_value if pd.isna(v) else lookup.get(str(v), -1) for v in series],
                    dtype=np.float64
                )
            else:
                values = pd.to_numeric(series, errors="raise").to_numpy(dtype=np.float64)
                values = np.where(np.isnan(values), self._missing_value, values)
            out[:, j] = values
        return out

    # ------------------------------------------------------------------
    # 変数・サンプルの情報
    # ------------------------------------------------------------------

    def get_layout(self) -> int:
        return self._layout

    def get_n_samples(self) -> int:
        return self._samples.shape[0]

    def get_n_all_vars(self) -> int:
        return self._samples.shape[1]

    def get_n_vars(self) -> int:
        return int(self._var_idx.size)

    def get_var_idx(self) -> np.ndarray:
        return self._var_idx.copy()

    def get_var_type(self) -> np.ndarray:
        return self._var_type.copy()

    def get_response_type(self) -> int:
        return self._response_type

    def get_names(self) -> List[str]:
        if self._names is not None:
            return list(self._names)
        return [f"var_{i}" for i in range(self.get_n_all_vars())]

    def get_missing_value(self) -> float:
        return self._missing_value

    def get_missing(self) -> np.ndarray:
        """Boolean missing mask, shape (n_samples, n_all_vars)."""
        return self._missing

    def _check_var(self, vi: int) -> int:
        vi = int(vi)
        if vi < 0 or vi >= self.get_n_all_vars():
            raise InvalidArgumentError(f"Variable index {vi} is out of range [0, {self.get_n_all_vars()})")
        return vi

    def get_cat_count(self, vi: int) -> int:
        """カテゴリ変数のカテゴリ数（順序変数は 0）"""
        vi = self._check_var(vi)
        if self._var_type[vi] != VAR_CATEGORICAL:
            return 0
        return int(self._cat_maps[vi].size)

    def get_cat_counts(self) -> np.ndarray:
        return np.array([self.get_cat_count(vi) for vi in range(self.get_n_all_vars())], dtype=np.int32)

    def get_cat_map(self, vi: int) -> np.ndarray:
        """
        カテゴリマップ（昇順の生の値。インデックスがカテゴリコード）

        Parameters:
        -----------
        vi : int
            変数インデックス

        Returns:
        --------
        cat_map : np.ndarray of float32
            コード k に対応する生の値が cat_map[k]
        """
        vi = self._check_var(vi)
        if self._var_type[vi] != VAR_CATEGORICAL:
            return np.empty(0, dtype=np.float32)
        return self._cat_maps[vi].copy()

    def get_cat_maps(self) -> Dict[int, np.ndarray]:
        return {vi: m.copy() for vi, m in self._cat_maps.items()}

    def get_cat_labels(self, vi: int) -> np.ndarray:
        """元のカテゴリラベル（文字列列なら文字列、それ以外はカテゴリマップ）"""
        vi = self._check_var(vi)
        if vi in self._label_encoders:
            return np.asarray(self._label_encoders[vi].classes_)
        return self.get_cat_map(vi)

    # ------------------------------------------------------------------
    # 値の取得
    # ------------------------------------------------------------------

    def get_values(self, vi: int, sample_idx=None) -> np.ndarray:
        """
        1変数の生の値（欠損はセンチネル値のまま）

        Parameters:
        -----------
        vi : int
            変数インデックス
        sample_idx : array-like, optional
            サンプルインデックス（指定順で返す）。None なら全サンプル

        Returns:
        --------
        values : np.ndarray of float32
            生の値
        """
        vi = self._check_var(vi)
        if sample_idx is None:
            return self._samples[:, vi].copy()
        return self._samples[np.asarray(sample_idx, dtype=np.int64), vi]

    def get_norm_cat_values(self, vi: int, sample_idx=None) -> np.ndarray:
        """
        カテゴリ変数のコード（欠損は -1）

        Parameters:
        -----------
        vi : int
            カテゴリ変数のインデックス
        sample_idx : array-like, optional
            サンプルインデックス（指定順で返す）。None なら全サンプル

        Returns:
        --------
        codes : np.ndarray of int32
            カテゴリコード 0..K-1
        """
        vi = self._check_var(vi)
        if self._var_type[vi] != VAR_CATEGORICAL:
            raise InvalidArgumentError(f"Variable {vi} is not categorical")
        if sample_idx is None:
            return self._cat_codes[:, vi].copy()
        return self._cat_codes[np.asarray(sample_idx, dtype=np.int64), vi]

    def get_cat_codes(self) -> np.ndarray:
        """Code matrix for all categorical variables (-1 elsewhere)."""
        return self._cat_codes

    def get_samples(self) -> np.ndarray:
        """Row-major view of the sample matrix, shape (n_samples, n_all_vars)."""
        return self._samples

    def get_sample(self, si: int) -> np.ndarray:
        si = int(si)
        if si < 0 or si >= self.get_n_samples():
            raise InvalidArgumentError(f"Sample index {si} is out of range")
        return self._samples[si].copy()

    def get_responses(self) -> np.ndarray:
        return self._responses.copy()

    def get_norm_cat_responses(self) -> np.ndarray:
        if self._norm_responses is None:
            raise InvalidArgumentError("Responses are not categorical")
        return self._norm_responses.copy()

    def get_class_labels(self) -> Optional[np.ndarray]:
        return None if self._class_labels is None else self._class_labels.copy()

    def get_sample_weights(self) -> np.ndarray:
        return self._sample_weights.copy()

    def get_sample_idx(self) -> np.ndarray:
        return self._sample_idx.copy()

    def get_default_subst_values(self) -> np.ndarray:
        """
        欠損値の代替値（順序変数は平均、カテゴリ変数は最頻値）

        Returns:
        --------
        values : np.ndarray of float32, shape=(n_all_vars,)
            変数ごとの代替値（値が1つも無い変数は 0）
        """
        out = np.zeros(self.get_n_all_vars(), dtype=np.float32)
        rows = self._sample_idx
        for vi in range(self.get_n_all_vars()):
            present = ~self._missing[rows, vi]
            if not np.any(present):
                continue
            if self._var_type[vi] == VAR_CATEGORICAL:
                codes = self._cat_codes[rows[present], vi]
                out[vi] = self._cat_maps[vi][np.bincount(codes).argmax()]
            else:
                out[vi] = self._samples[rows[present], vi].mean()
        return out

    @staticmethod
    def get_sub_vector(vec, idx) -> np.ndarray:
        """Return vec restricted to idx (the whole vector when idx is None)."""
        vec = np.asarray(vec)
        if idx is None:
            return vec.copy()
        idx = np.asarray(idx)
        if idx.dtype == bool:
            return vec[idx]
        return vec[idx.astype(np.int64)]

    # ------------------------------------------------------------------
    # 訓練/テスト分割
    # ------------------------------------------------------------------

    def set_train_test_split(self, count: int, shuffle: bool = True) -> None:
        """
        サンプル集合を訓練/テストに分割

        Parameters:
        -----------
        count : int
            訓練サンプル数（残りがテストサンプル）
        shuffle : bool, default=True
            True なら random_state で決まる順列の後に分割する
        """
        n = self._sample_idx.size
        if count != int(count) or count < 0 or count > n:
            raise InvalidArgumentError(f"Train sample count must be in [0, {n}], got {count}")
        count = int(count)

        idx = self._sample_idx
        if shuffle:
            idx = self._rng.permutation(idx)
        self._train_idx = np.sort(idx[:count])
        self._test_idx = np.sort(idx[count:])

    def set_train_test_split_ratio(self, ratio: float, shuffle: bool = True) -> None:
        """
        テストサンプルの割合で訓練/テストに分割

        Parameters:
        -----------
        ratio : float
            テストサンプルの割合（0 < ratio < 1）。n_test = round(n * ratio)
        shuffle : bool, default=True
            True なら random_state で決まる順列の後に分割する
        """
        if not (0.0 < ratio < 1.0):
            raise InvalidArgumentError(f"Split ratio must be in (0, 1), got {ratio}")
        n = self._sample_idx.size
        n_test = int(np.floor(n * ratio + 0.5))
        self.set_train_test_split(n - n_test, shuffle)

    def shuffle_train_test(self) -> None:
        """Redraw the split with a new permutation, keeping its sizes."""
        self.set_train_test_split(self._train_idx.size, shuffle=True)

    def get_train_sample_idx(self) -> np.ndarray:
        return self._train_idx.copy()

    def get_test_sample_idx(self) -> np.ndarray:
        return self._test_idx.copy()

    def get_n_train_samples(self) -> int:
        return int(self._train_idx.size)

    def get_n_test_samples(self) -> int:
        return int(self._test_idx.size)

    def get_train_samples(self) -> np.ndarray:
        return self._samples[self._train_idx]

    def get_train_responses(self) -> np.ndarray:
        return self._responses[self._train_idx]

    def get_train_norm_cat_responses(self) -> np.ndarray:
        return self.get_norm_cat_responses()[self._train_idx]

    def get_train_sample_weights(self) -> np.ndarray:
        return self._sample_weights[self._train_idx]

    def get_test_samples(self) -> np.ndarray:
        return self._samples[self._test_idx]

    def get_test_responses(self) -> np.ndarray:
        return self._responses[self._test_idx]

    def get_test_norm_cat_responses(self) -> np.ndarray:
        return self.get_norm_cat_responses()[self._test_idx]

    def get_test_sample_weights(self) -> np.ndarray:
        return self._sample_weights[self._test_idx]

    def __str__(self) -> str:
        return (
            f"TrainData(samples={self.get_n_samples()}, vars={self.get_n_vars()}/{self.get_n_all_vars()}, "
            f"train={self.get_n_train_samples()}, test={self.get_n_test_samples()})"
        )

    def __repr__(self) -> str:
        return self.__str__()
