"""
StatModel基底クラスモジュール

このモジュールは、木ベースの統計モデル（DTrees, Boost, RTrees）に共通する
train / predict / calc_error の契約と、パラメータ管理・保存・読み込みを提供します。
"""

from abc import ABC, abstractmethod
import json
import numpy as np
from typing import Any, Dict, Optional, Tuple

from .tree_components.constants import PREDICT_MASK, VAR_CATEGORICAL, VAR_ORDERED
from .tree_components.model_state import TreeModelState
from .tree_components.train_data import TrainData
from ..utils.exceptions import InvalidArgumentError, NotTrainedError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class StatModel(ABC):
    """
    統計モデルの抽象基底クラス

    各モデルは train と predict を実装し、学習結果を self._state に保持する。
    学習は新しい状態オブジェクトに対して行い、成功した場合にだけ
    self._state を置き換える。

    Attributes:
    -----------
    _param_names : tuple of str
        get_params / set_params で扱うハイパーパラメータ名
    """

    _param_names: Tuple[str, ...] = ()

    def __init__(self, **params):
        """
        初期化メソッド

        Parameters:
        -----------
        **params : dict
            ハイパーパラメータ（_param_names に含まれるもの）
        """
        self._state: Optional[TreeModelState] = None
        self.set_params(**params)

    @abstractmethod
    def train(self, data: TrainData, flags: int = 0) -> bool:
        """
        TrainData の訓練サブセットでモデルを学習

        Parameters:
        -----------
        data : TrainData
            学習データ
        flags : int, default=0
            学習フラグ

        Returns:
        --------
        success : bool
            学習に成功した場合 True（失敗時は例外を送出）
        """
        pass

    @abstractmethod
    def predict(self, samples, flags: int = 0) -> np.ndarray:
        """
        学習済みモデルで予測

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル
        flags : int, default=0
            予測フラグ

        Returns:
        --------
        responses : np.ndarray, shape=(n_samples,)
            予測値
        """
        pass

    def fit(self, X, y, var_type=None, sample_weights=None, flags: int = 0) -> 'StatModel':
        """
        配列から TrainData を作って学習する簡易インターフェース

        Parameters:
        -----------
        X : array-like, shape=(n_samples, n_vars)
            入力特徴量
        y : array-like, shape=(n_samples,)
            目的変数
        var_type : array-like, optional
            変数種別（TrainData と同じ形式）
        sample_weights : array-like, optional
            サンプル重み
        flags : int, default=0
            学習フラグ

        Returns:
        --------
        self : StatModel
            学習済みモデル
        """
        X, y = self._validate_input(X, y)
        data = TrainData(X, responses=y, var_type=var_type, sample_weights=sample_weights,
                         random_state=getattr(self, "random_state", None))
        self.train(data, flags)
        return self

    def _validate_input(self, X, y=None) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        """
        入力データの検証と前処理

        Parameters:
        -----------
        X : array-like
            入力特徴量
        y : array-like, optional
            目的変数

        Returns:
        --------
        X : np.ndarray
            2次元の入力特徴量
        y : np.ndarray or None
            1次元の目的変数
        """
        X = np.asarray(X)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        if X.ndim != 2:
            raise InvalidArgumentError(f"X must be 2-D, got {X.ndim} dimensions")

        if y is not None:
            y = np.asarray(y).ravel()
            if X.shape[0] != y.shape[0]:
                raise InvalidArgumentError(
                    f"X ({X.shape[0]} samples) and y ({y.shape[0]} samples) have different numbers of samples"
                )
        return X, y

    def _check_train_data(self, data) -> None:
        if not isinstance(data, TrainData):
            raise InvalidArgumentError(f"train expects a TrainData instance, got {type(data).__name__}")
        if data.get_n_train_samples() == 0:
            raise InvalidArgumentError("The training subset is empty")

    def _check_is_trained(self) -> None:
        if self._state is None:
            raise NotTrainedError(f"{type(self).__name__} has not been trained yet")

    @staticmethod
    def _predict_mode(flags: int) -> int:
        """PREDICT_AUTO / PREDICT_SUM / PREDICT_MAX_VOTE のどれが指定されたか"""
        mode = flags & PREDICT_MASK
        if mode == PREDICT_MASK:
            raise InvalidArgumentError("PREDICT_SUM and PREDICT_MAX_VOTE cannot be combined")
        return mode

    def calc_error(self, data: TrainData, test: bool = False, return_responses: bool = False):
        """
        TrainData の訓練またはテストサブセットでの誤差

        選択したサブセットが空の場合は全サンプルを使う。

        Parameters:
        -----------
        data : TrainData
            評価データ
        test : bool, default=False
            True ならテストサブセット、False なら訓練サブセット
        return_responses : bool, default=False
            True なら評価に使ったサンプルの予測値も返す

        Returns:
        --------
        error : float
            分類なら誤分類率（%）、回帰なら平均二乗誤差
        responses : np.ndarray, shape=(n_evaluated,)
            return_responses=True の場合のみ。サブセット順の予測値
        """
        self._check_is_trained()
        idx = data.get_test_sample_idx() if test else data.get_train_sample_idx()
        if idx.size == 0:
            idx = data.get_sample_idx()

        pred = self.predict(data.get_samples()[idx])
        truth = data.get_responses()[idx]
        if self._state.is_classifier:
            labels = self._state.class_labels
            if labels.dtype.kind in "US":
                truth = truth.astype(str)
            else:
                truth = truth.astype(labels.dtype)
            error = float(np.mean(pred != truth) * 100.0)
        else:
            error = float(np.mean((pred - truth) ** 2))
        if return_responses:
            return error, pred
        return error

    def is_trained(self) -> bool:
        return self._state is not None

    def empty(self) -> bool:
        return self._state is None

    def is_classifier(self) -> bool:
        self._check_is_trained()
        return self._state.is_classifier

    def get_var_count(self) -> int:
        """Number of variables the trained model expects per sample."""
        self._check_is_trained()
        return self._state.n_all_vars

    def clear(self) -> None:
        self._state = None

    def get_params(self) -> Dict[str, Any]:
        """
        モデルパラメータの取得

        Returns:
        --------
        params : dict
            モデルパラメータ
        """
        return {name: getattr(self, name) for name in self._param_names}

    def set_params(self, **params) -> 'StatModel':
        """
        モデルパラメータの設定（値の検証は train 時に行う）

        Parameters:
        -----------
        **params : dict
            設定するパラメータ

        Returns:
        --------
        self : StatModel
            パラメータを更新したモデル
        """
        for key, value in params.items():
            if key in self._param_names:
                setattr(self, key, value)
            else:
                raise InvalidArgumentError(f"Invalid parameter: {key}")
        return self

    # ------------------------------------------------------------------
    # 保存・読み込み
    # ------------------------------------------------------------------

    def _extra_arrays(self) -> Dict[str, np.ndarray]:
        """Model-specific arrays stored next to the tree state."""
        return {}

    def _load_extra(self, arrays) -> None:
        pass

    def _params_to_json(self) -> str:
        params = {}
        for key, value in self.get_params().items():
            if isinstance(value, np.ndarray):
                value = value.tolist()
            elif isinstance(value, np.generic):
                value = value.item()
            params[key] = value
        return json.dumps(params)

    def save(self, path: str) -> None:
        """
        学習済みモデルを npz 形式で保存

        Parameters:
        -----------
        path : str
            保存先のパス
        """
        self._check_is_trained()
        arrays = self._state.to_arrays()
        arrays.update(self._extra_arrays())
        arrays["model_type"] = np.array(type(self).__name__)
        arrays["params"] = np.array(self._params_to_json())
        with open(path, "wb") as f:
            np.savez_compressed(f, **arrays)
        logger.info("Saved %s to %s", type(self).__name__, path)

    @classmethod
    def load(cls, path: str) -> 'StatModel':
        """
        save で保存したモデルを読み込む

        Parameters:
        -----------
        path : str
            読み込むファイルのパス

        Returns:
        --------
        model : StatModel
            学習済みモデル
        """
        with np.load(path, allow_pickle=False) as npz:
            arrays = {key: npz[key] for key in npz.files}
        model_type = str(arrays["model_type"])
        if model_type != cls.__name__:
            raise InvalidArgumentError(f"File contains a {model_type} model, not {cls.__name__}")

        params = json.loads(str(arrays["params"]))
        model = cls(**params)
        model._state = TreeModelState.from_arrays(arrays)
        model._load_extra(arrays)
        logger.info("Loaded %s from %s", cls.__name__, path)
        return model


def default_var_type(n_vars: int, categorical=None, response_categorical: bool = True) -> np.ndarray:
    """
    変数種別ベクトルを作成

    Parameters:
    -----------
    n_vars : int
        入力変数の数
    categorical : sequence of int, optional
        カテゴリ変数のインデックス
    response_categorical : bool, default=True
        目的変数をカテゴリ（分類）とするかどうか

    Returns:
    --------
    var_type : np.ndarray of int32, shape=(n_vars + 1,)
        最後の要素が目的変数の種別
    """
    var_type = np.full(n_vars + 1, VAR_ORDERED, dtype=np.int32)
    if categorical is not None:
        var_type[np.asarray(categorical, dtype=np.int64)] = VAR_CATEGORICAL
    var_type[-1] = VAR_CATEGORICAL if response_categorical else VAR_ORDERED
    return var_type
