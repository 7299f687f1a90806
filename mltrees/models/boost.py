"""
Boosted Trees Model

This module contains the Boost model: binary classification with DISCRETE,
REAL, LOGIT or GENTLE AdaBoost over shallow decision trees, with weight
trimming and a per-learner training history.
"""

import time
import numpy as np
from typing import Dict, List, Optional
from sklearn.utils import check_random_state

from .base import StatModel
from .dtrees import TREE_PARAM_NAMES, check_tree_params, make_tree_builder, split_importance, training_weights
from .tree_components.boost_strategies import BoostStrategyManager, trim_weights
from .tree_components.constants import BoostType, PREDICT_MAX_VOTE, PREDICT_SUM, RAW_OUTPUT, UPDATE_MODEL
from .tree_components.model_state import TreeInspectionMixin, TreeModelState
from .tree_components.pruning import CostComplexityPruner
from .tree_components.train_data import TrainData
from .tree_components.tree_builder import TreeWorkData
from ..utils.exceptions import InvalidArgumentError, TrainingAbortedError, UnsupportedError
from ..utils.logger import get_logger

logger = get_logger(__name__)

_SEED_MAX = np.iinfo(np.int32).max


class Boost(TreeInspectionMixin, StatModel):
    """
    ブースティングによる2クラス分類モデル

    Attributes:
    -----------
    boost_type : BoostType
        DISCRETE / REAL / LOGIT / GENTLE
    weak_count : int
        弱学習器の数
    weight_trim_rate : float
        重みトリミングで残す重みの割合（0 ならトリミングしない）
    verbose : bool
        学習の進捗を表示するかどうか
    stop_event : threading.Event-like, optional
        is_set() が True になると次の弱学習器の前に学習を中断する
    (その他は DTrees と同じ木のパラメータ)
    """

    _param_names = TREE_PARAM_NAMES + ("boost_type", "weak_count", "weight_trim_rate", "verbose")

    def __init__(self,
                 boost_type=BoostType.REAL,
                 weak_count: int = 100,
                 weight_trim_rate: float = 0.95,
                 max_depth: int = 1,
                 min_sample_count: int = 10,
                 cv_folds: int = 0,
                 use_surrogates: bool = False,
                 use_1se_rule: bool = True,
                 truncate_pruned_tree: bool = True,
                 regression_accuracy: float = 0.01,
                 max_categories: int = 10,
                 priors=None,
                 random_state: Optional[int] = None,
                 verbose: bool = False,
                 stop_event=None):
        super().__init__(
            boost_type=boost_type,
            weak_count=weak_count,
            weight_trim_rate=weight_trim_rate,
            max_depth=max_depth,
            min_sample_count=min_sample_count,
            cv_folds=cv_folds,
            use_surrogates=use_surrogates,
            use_1se_rule=use_1se_rule,
            truncate_pruned_tree=truncate_pruned_tree,
            regression_accuracy=regression_accuracy,
            max_categories=max_categories,
            priors=priors,
            random_state=random_state,
            verbose=verbose,
        )
        self.stop_event = stop_event
        self._tree_weights: List[float] = []
        self.training_history: Dict[str, list] = {}

    def _check_params(self) -> None:
        check_tree_params(self)
        try:
            BoostType(self.boost_type)
        except ValueError:
            raise InvalidArgumentError(f"Unknown boost type: {self.boost_type}")
        if int(self.weak_count) != self.weak_count or self.weak_count < 1:
            raise InvalidArgumentError(f"weak_count must be a positive integer, got {self.weak_count}")
        if not (0.0 <= self.weight_trim_rate <= 1.0):
            raise InvalidArgumentError(f"weight_trim_rate must be in [0, 1], got {self.weight_trim_rate}")

    def train(self, data: TrainData, flags: int = 0) -> bool:
        """
        弱学習器を weak_count 個学習する

        Parameters:
        -----------
        data : TrainData
            学習データ（目的変数は2クラスのカテゴリであること）
        flags : int, default=0
            UPDATE_MODEL なら既存のアンサンブルに弱学習器を追加する

        Returns:
        --------
        success : bool
            常に True（失敗・中断時は例外を送出し、以前の状態は保持される）
        """
        self._check_train_data(data)
        self._check_params()
        labels = data.get_class_labels()
        if labels is None or labels.size != 2:
            n = 0 if labels is None else labels.size
            raise UnsupportedError("Boost supports binary classification only", {"n_classes": n})

        start_time = time.time()
        update = bool(flags & UPDATE_MODEL) and self._state is not None
        rng = check_random_state(self.random_state)
        work = TreeWorkData.from_train_data(data)
        train_idx = data.get_train_sample_idx()
        sample_weights = training_weights(data, work, self.priors)

        if update:
            self._state.check_compatible(data)
            state = TreeModelState.from_arrays(self._state.to_arrays())
            tree_weights = list(self._tree_weights)
            F = np.zeros(data.get_n_samples())
            F[train_idx] = self._raw_sum(state, tree_weights, data.get_samples()[train_idx])
        else:
            state = TreeModelState.from_train_data(data)
            tree_weights = []
            F = None

        pruner = None
        if self.cv_folds > 1:
            pruner = CostComplexityPruner(self.cv_folds, self.use_1se_rule, self.truncate_pruned_tree,
                                          random_state=int(rng.randint(_SEED_MAX)))
        builder = make_tree_builder(self, rng)
        manager = BoostStrategyManager(self.boost_type, builder, work, train_idx,
                                       work.responses.astype(np.int64), pruner)

        weights = manager.initial_weights(sample_weights, F)
        if F is None:
            F = np.zeros(data.get_n_samples())

        history = {
            "weights": [weights[train_idx].copy()],
            "misclassified": [],
            "weighted_error": [],
            "tree_weight": [],
            "train_error": [],
            "loss": [],
        }
        y = manager.y[train_idx]

        for i in range(int(self.weak_count)):
            if self.stop_event is not None and self.stop_event.is_set():
                raise TrainingAbortedError("Boost training aborted", {"weak_learners": i})

            active_idx = trim_weights(weights, train_idx, self.weight_trim_rate)
            arena, root, tree_weight, f, new_weights = manager.step(weights, F, active_idx)

            miss = y * f <= 0
            w = weights[train_idx]
            weighted_error = float(np.dot(w, miss) / max(w.sum(), 1e-300))

            state.arena.append_tree(arena, root)
            tree_weights.append(tree_weight)
            F[train_idx] += tree_weight * f
            weights = new_weights

            train_error = float(np.mean(y * F[train_idx] <= 0))
            history["weights"].append(weights[train_idx].copy())
            history["misclassified"].append(miss)
            history["weighted_error"].append(weighted_error)
            history["tree_weight"].append(tree_weight)
            history["train_error"].append(train_error)
            history["loss"].append(manager.loss(F, sample_weights))

            logger.debug(
                "Weak learner %d/%d: active=%d, error=%.4f, weight=%.4f, train error=%.4f",
                i + 1, self.weak_count, active_idx.size, weighted_error, tree_weight, train_error
            )
            if self.verbose and ((i + 1) % 10 == 0 or i == 0 or i == self.weak_count - 1):
                elapsed_time = time.time() - start_time
                print(f"Iteration {i+1}/{self.weak_count}, Train error: {train_error:.4f}, "
                      f"Loss: {history['loss'][-1]:.6f}, Time: {elapsed_time:.2f}s")

        # 成功した場合のみ状態を置き換える
        self._state = state
        self._tree_weights = tree_weights
        self.training_history = history
        logger.info(
            "Boost (%s) trained: %d weak learners, train error %.4f, %.2fs",
            BoostType(self.boost_type).name, len(tree_weights), history["train_error"][-1],
            time.time() - start_time
        )
        return True

    @staticmethod
    def _raw_sum(state: TreeModelState, tree_weights: List[float], samples, flags: int = 0) -> np.ndarray:
        encoded = state.encode_samples(samples, flags)
        F = np.zeros(encoded[0].shape[0])
        for root, weight in zip(state.arena.roots, tree_weights):
            F += weight * state.leaf_values(state.find_leaves(root, encoded))
        return F

    def _weighted_votes(self, samples, flags: int = 0) -> np.ndarray:
        """各クラスに投票した弱学習器の重みの合計（出力の符号で投票）"""
        state = self._state
        encoded = state.encode_samples(samples, flags)
        votes = np.zeros((encoded[0].shape[0], 2))
        for root, weight in zip(state.arena.roots, self._tree_weights):
            positive = state.leaf_values(state.find_leaves(root, encoded)) > 0
            votes[:, 1] += weight * positive
            votes[:, 0] += weight * ~positive
        return votes

    def predict(self, samples, flags: int = 0) -> np.ndarray:
        """
        アンサンブルで予測

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル
        flags : int, default=0
            PREDICT_AUTO: 重み付き和の符号でクラスを決める。RAW_OUTPUT なら和を返す
            PREDICT_SUM: 常に弱学習器の重み付き和を返す
            PREDICT_MAX_VOTE: 弱学習器の重み付き投票で多いクラス
            （RAW_OUTPUT ならクラスインデックス）

        Returns:
        --------
        responses : np.ndarray, shape=(n_samples,)
            クラスラベル、クラスインデックス、または重み付き和
        """
        self._check_is_trained()
        mode = self._predict_mode(flags)
        if mode == PREDICT_MAX_VOTE:
            class_idx = self._weighted_votes(samples, flags).argmax(axis=1)
        else:
            F = self._raw_sum(self._state, self._tree_weights, samples, flags)
            if mode == PREDICT_SUM or flags & RAW_OUTPUT:
                return F
            class_idx = (F > 0).astype(np.int64)
        if flags & RAW_OUTPUT:
            return class_idx
        return self._state.class_labels[class_idx]

    def get_weak_predictors(self) -> List[int]:
        """Root node of every weak learner."""
        return self.get_roots()

    def get_tree_weights(self) -> np.ndarray:
        self._check_is_trained()
        return np.asarray(self._tree_weights)

    def get_training_history(self) -> Dict[str, list]:
        self._check_is_trained()
        return self.training_history

    def get_var_importance(self) -> np.ndarray:
        self._check_is_trained()
        return split_importance(self._state)

    def print_training_summary(self) -> None:
        """Print the per-learner training history."""
        self._check_is_trained()
        history = self.training_history
        print(f"\n=== Boost ({BoostType(self.boost_type).name}) Training Summary ===")
        print(f"Weak learners: {len(self._tree_weights)}")
        for i, (err, weight, train_err) in enumerate(zip(
                history["weighted_error"], history["tree_weight"], history["train_error"])):
            print(f"  Learner {i+1}: weighted error={err:.4f}, weight={weight:.4f}, train error={train_err:.4f}")

    def _extra_arrays(self) -> Dict[str, np.ndarray]:
        return {"tree_weights": np.asarray(self._tree_weights, dtype=np.float64)}

    def _load_extra(self, arrays) -> None:
        self._tree_weights = [float(w) for w in arrays["tree_weights"]]
