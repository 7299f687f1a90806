"""
Random Trees Model

This module contains the RTrees model: a random forest of bootstrap trees
with a fresh random variable subset at every node, out-of-bag error
estimation and permutation variable importance. Trees are grown in joblib
thread batches; every tree owns its own arena and random seed.
"""

import time
import numpy as np
from typing import Dict, List, Optional, Tuple
from joblib import Parallel, delayed
from sklearn.utils import check_random_state

from .base import StatModel
from .dtrees import TREE_PARAM_NAMES, check_tree_params, make_tree_builder, training_weights
from .tree_components.constants import PREDICT_MAX_VOTE, PREDICT_SUM, RAW_OUTPUT, UPDATE_MODEL
from .tree_components.model_state import TreeInspectionMixin, TreeModelState
from .tree_components.train_data import TrainData
from .tree_components.tree_builder import TreeWorkData
from .tree_components.tree_node import TreeArena
from ..utils.exceptions import InvalidArgumentError, TrainingAbortedError, UnsupportedError
from ..utils.logger import get_logger

logger = get_logger(__name__)

_SEED_MAX = np.iinfo(np.int32).max


def _tree_predict(arena: TreeArena, root: int, work: TreeWorkData, idx: np.ndarray) -> np.ndarray:
    """Class index (classification) or value (regression) of the leaves reached by idx."""
    leaves = arena.find_leaves(root, work.samples[idx], work.missing[idx], work.codes[idx])
    if work.is_classifier:
        return np.fromiter((arena.nodes[ni].class_idx for ni in leaves), np.int64, leaves.size)
    return np.fromiter((arena.nodes[ni].value for ni in leaves), np.float64, leaves.size)


def _oob_loss(pred: np.ndarray, truth: np.ndarray, is_classifier: bool) -> float:
    if is_classifier:
        return float(np.sum(pred != truth))
    return float(np.sum((pred - truth) ** 2))


def _grow_tree(model, work: TreeWorkData, train_idx: np.ndarray, weights: np.ndarray,
               active_var_count: int, seed: int, calc_importance: bool) -> Tuple:
    """
    ブートストラップ標本で1本の木を構築し、OOB サンプルで評価

    Returns:
    --------
    arena : TreeArena
        木を含むアリーナ
    root : int
        ルートノード
    oob_idx : np.ndarray
        OOB サンプル
    oob_pred : np.ndarray
        OOB サンプルの予測
    importance : np.ndarray or None
        変数を並べ替えたときの OOB 損失の増加（サンプルあたり）
    """
    rng = np.random.RandomState(seed)
    n = train_idx.size
    boot = train_idx[rng.randint(0, n, size=n)]
    in_bag = np.zeros(work.samples.shape[0], dtype=bool)
    in_bag[boot] = True
    oob_idx = train_idx[~in_bag[train_idx]]

    arena = TreeArena(work.var_types, work.cat_counts)
    builder = make_tree_builder(model, rng, active_var_count)
    root = builder.build_tree(work, boot, weights, arena)
    arena.roots.append(root)

    if oob_idx.size == 0:
        return arena, root, oob_idx, np.empty(0), None

    oob_pred = _tree_predict(arena, root, work, oob_idx)
    importance = None
    if calc_importance:
        truth = work.responses[oob_idx]
        base_loss = _oob_loss(oob_pred, truth, work.is_classifier)
        importance = np.zeros(work.samples.shape[1])
        for vi in work.var_idx:
            perm = rng.permutation(oob_idx.size)
            # 値・欠損・カテゴリコードを一緒に並べ替える
            X = work.samples[oob_idx].copy()
            X[:, vi] = X[perm, vi]
            permuted = TreeWorkData(
                X, work.missing[oob_idx].copy(), work.codes[oob_idx].copy(), work.var_types,
                work.cat_counts, work.var_idx, work.responses[oob_idx], work.is_classifier,
                work.n_classes, work.class_values
            )
            permuted.missing[:, vi] = permuted.missing[perm, vi]
            permuted.codes[:, vi] = permuted.codes[perm, vi]
            pred = _tree_predict(arena, root, permuted, np.arange(oob_idx.size))
            importance[vi] = (_oob_loss(pred, truth, work.is_classifier) - base_loss) / oob_idx.size
    return arena, root, oob_idx, oob_pred, importance


class RTrees(TreeInspectionMixin, StatModel):
    """
    ランダムフォレスト

    Attributes:
    -----------
    active_var_count : int
        各ノードで分割候補とする変数の数（0 なら ceil(sqrt(n_vars))）
    calculate_var_importance : bool
        並べ替えによる変数重要度を計算するかどうか
    max_iter : int
        木の数
    oob_epsilon : float
        OOB 誤差がこの値以下になったら木の追加を止める（0 なら常に max_iter 本）
    n_jobs : int
        並列に構築する木の数
    verbose : bool
        学習の進捗を表示するかどうか
    stop_event : threading.Event-like, optional
        is_set() が True になると次のバッチの前に学習を中断する
    cv_folds : int
        木は枝刈りしないので 0 または 1 のみ（それ以外は学習時に UnsupportedError）
    (その他は DTrees と同じ木のパラメータ)
    """

    _param_names = TREE_PARAM_NAMES + (
        "active_var_count", "calculate_var_importance", "max_iter", "oob_epsilon", "n_jobs", "verbose"
    )

    def __init__(self,
                 active_var_count: int = 0,
                 calculate_var_importance: bool = False,
                 max_iter: int = 50,
                 oob_epsilon: float = 0.0,
                 n_jobs: int = 1,
                 max_depth: int = 5,
                 min_sample_count: int = 10,
                 cv_folds: int = 0,
                 use_surrogates: bool = False,
                 use_1se_rule: bool = True,
                 truncate_pruned_tree: bool = True,
                 regression_accuracy: float = 0.0,
                 max_categories: int = 10,
                 priors=None,
                 random_state: Optional[int] = None,
                 verbose: bool = False,
                 stop_event=None):
        super().__init__(
            active_var_count=active_var_count,
            calculate_var_importance=calculate_var_importance,
            max_iter=max_iter,
            oob_epsilon=oob_epsilon,
            n_jobs=n_jobs,
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
        self._oob_error: Optional[float] = None
        self._var_importance: Optional[np.ndarray] = None
        self.oob_error_history: List[float] = []

    def _check_params(self, n_vars: int) -> int:
        check_tree_params(self)
        if self.cv_folds > 1:
            raise UnsupportedError("RTrees does not prune its trees; cv_folds must be 0 or 1",
                                   {"cv_folds": self.cv_folds})
        if int(self.max_iter) != self.max_iter or self.max_iter < 1:
            raise InvalidArgumentError(f"max_iter must be a positive integer, got {self.max_iter}")
        if self.oob_epsilon < 0:
            raise InvalidArgumentError(f"oob_epsilon must be non-negative, got {self.oob_epsilon}")
        if int(self.n_jobs) != self.n_jobs or self.n_jobs < 1:
            raise InvalidArgumentError(f"n_jobs must be a positive integer, got {self.n_jobs}")
        if int(self.active_var_count) != self.active_var_count or self.active_var_count < 0:
            raise InvalidArgumentError(f"active_var_count must be a non-negative integer, got {self.active_var_count}")
        if self.active_var_count == 0:
            return int(np.ceil(np.sqrt(n_vars)))
        return min(int(self.active_var_count), n_vars)

    def train(self, data: TrainData, flags: int = 0) -> bool:
        """
        ランダムフォレストを学習

        Parameters:
        -----------
        data : TrainData
            学習データ
        flags : int, default=0
            UPDATE_MODEL は使えない

        Returns:
        --------
        success : bool
            常に True（失敗・中断時は例外を送出し、以前の状態は保持される）
        """
        self._check_train_data(data)
        if flags & UPDATE_MODEL:
            raise UnsupportedError("RTrees cannot update an existing model")
        active_var_count = self._check_params(data.get_n_vars())

        start_time = time.time()
        master_rng = check_random_state(self.random_state)
        # 木ごとのシードを先に引いておく（n_jobs に依存しない結果）
        seeds = master_rng.randint(_SEED_MAX, size=int(self.max_iter))

        state = TreeModelState.from_train_data(data)
        work = TreeWorkData.from_train_data(data)
        train_idx = data.get_train_sample_idx()
        weights = training_weights(data, work, self.priors)
        n_samples = data.get_n_samples()

        if work.is_classifier:
            oob_votes = np.zeros((n_samples, work.n_classes))
        else:
            oob_sum = np.zeros(n_samples)
            oob_count = np.zeros(n_samples)
        importance = np.zeros(data.get_n_all_vars())
        oob_history = []
        oob_error = None
        n_jobs = int(self.n_jobs)

        for batch_start in range(0, int(self.max_iter), n_jobs):
            if self.stop_event is not None and self.stop_event.is_set():
                raise TrainingAbortedError("RTrees training aborted", {"trees": batch_start})

            batch = seeds[batch_start:batch_start + n_jobs]
            results = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(_grow_tree)(self, work, train_idx, weights, active_var_count, int(seed),
                                    self.calculate_var_importance)
                for seed in batch
            )

            for arena, root, oob_idx, oob_pred, tree_importance in results:
                state.arena.append_tree(arena, root)
                if oob_idx.size:
                    if work.is_classifier:
                        np.add.at(oob_votes, (oob_idx, oob_pred), 1.0)
                    else:
                        oob_sum[oob_idx] += oob_pred
                        oob_count[oob_idx] += 1
                if tree_importance is not None:
                    importance += tree_importance

            oob_error = self._current_oob_error(work, train_idx,
                                                oob_votes if work.is_classifier else (oob_sum, oob_count))
            oob_history.append(oob_error)
            n_trees = len(state.arena.roots)
            logger.debug("RTrees: %d trees, OOB error %.4f", n_trees, oob_error)
            if self.verbose:
                print(f"Tree {n_trees}/{self.max_iter} trained, OOB error: {oob_error:.4f}, "
                      f"Time: {time.time() - start_time:.2f}s")
            if self.oob_epsilon > 0 and oob_error <= self.oob_epsilon:
                break

        if self.calculate_var_importance:
            importance = np.maximum(importance, 0.0)
            total = importance.sum()
            var_importance = importance / total if total > 0 else importance
        else:
            var_importance = None

        # 成功した場合のみ状態を置き換える
        self._state = state
        self._oob_error = float(oob_error)
        self._var_importance = var_importance
        self.oob_error_history = oob_history
        logger.info(
            "RTrees trained: %d trees, active vars %d, OOB error %.4f, %.2fs",
            len(state.arena.roots), active_var_count, self._oob_error, time.time() - start_time
        )
        return True

    @staticmethod
    def _current_oob_error(work: TreeWorkData, train_idx: np.ndarray, acc) -> float:
        """
        これまでの木による OOB 誤差

        分類: OOB 投票がある訓練サンプルの誤分類率。回帰: 平均二乗誤差。
        OOB 予測が1つも無ければ 0。
        """
        if work.is_classifier:
            votes = acc[train_idx]
            has = votes.sum(axis=1) > 0
            if not np.any(has):
                return 0.0
            pred = votes[has].argmax(axis=1)
            return float(np.mean(pred != work.responses[train_idx][has]))
        oob_sum, oob_count = acc
        count = oob_count[train_idx]
        has = count > 0
        if not np.any(has):
            return 0.0
        pred = oob_sum[train_idx][has] / count[has]
        return float(np.mean((pred - work.responses[train_idx][has]) ** 2))

    def _tree_outputs(self, samples, flags: int) -> np.ndarray:
        state = self._state
        encoded = state.encode_samples(samples, flags)
        outputs = []
        for root in state.arena.roots:
            leaves = state.find_leaves(root, encoded)
            outputs.append(state.leaf_classes(leaves) if state.is_classifier else state.leaf_values(leaves))
        return np.vstack(outputs)

    def get_votes(self, samples, flags: int = 0) -> np.ndarray:
        """
        クラスごとの投票数

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル
        flags : int, default=0
            入力形式のフラグ

        Returns:
        --------
        votes : np.ndarray of int, shape=(n_samples, n_classes)
            各クラスに投票した木の数
        """
        self._check_is_trained()
        if not self._state.is_classifier:
            raise UnsupportedError("get_votes is only available for classification forests")
        outputs = self._tree_outputs(samples, flags)
        n = outputs.shape[1]
        votes = np.zeros((n, self._state.n_classes), dtype=np.int64)
        for tree_out in outputs:
            votes[np.arange(n), tree_out] += 1
        return votes

    def predict(self, samples, flags: int = 0) -> np.ndarray:
        """
        多数決（分類）または平均（回帰）で予測

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル
        flags : int, default=0
            RAW_OUTPUT ならクラスインデックスを返す。
            PREDICT_MAX_VOTE は分類のみ（多数決）、PREDICT_SUM は回帰のみ
            （木の出力の合計を返す）。PREDICT_AUTO は分類で多数決、回帰で平均

        Returns:
        --------
        responses : np.ndarray, shape=(n_samples,)
            予測値
        """
        self._check_is_trained()
        mode = self._predict_mode(flags)
        if not self._state.is_classifier:
            if mode == PREDICT_MAX_VOTE:
                raise UnsupportedError("PREDICT_MAX_VOTE is only available for classification forests")
            outputs = self._tree_outputs(samples, flags)
            return outputs.sum(axis=0) if mode == PREDICT_SUM else outputs.mean(axis=0)
        if mode == PREDICT_SUM:
            raise UnsupportedError("PREDICT_SUM is only available for regression forests")
        class_idx = self.get_votes(samples, flags).argmax(axis=1)
        if flags & RAW_OUTPUT:
            return class_idx
        return self._state.class_labels[class_idx]

    def get_oob_error(self) -> float:
        self._check_is_trained()
        return self._oob_error

    def get_var_importance(self) -> np.ndarray:
        """
        並べ替えによる変数重要度（合計 1 に正規化）

        Returns:
        --------
        importance : np.ndarray, shape=(n_all_vars,)
            変数重要度（calculate_var_importance=False で学習した場合は空）
        """
        self._check_is_trained()
        if self._var_importance is None:
            return np.empty(0)
        return self._var_importance.copy()

    def print_training_summary(self) -> None:
        self._check_is_trained()
        print("\n=== RTrees Training Summary ===")
        print(f"Trees: {len(self._state.arena.roots)}")
        print(f"OOB error: {self._oob_error:.4f}")
        if self._var_importance is not None:
            print("Variable importance:")
            for vi in np.argsort(-self._var_importance):
                print(f"  {self._state.names[vi]}: {self._var_importance[vi]:.4f}")

    def _extra_arrays(self) -> Dict[str, np.ndarray]:
        return {
            "oob_error": np.array(self._oob_error),
            "var_importance": self._var_importance if self._var_importance is not None else np.empty(0),
        }

    def _load_extra(self, arrays) -> None:
        self._oob_error = float(arrays["oob_error"])
        importance = np.asarray(arrays["var_importance"])
        self._var_importance = importance if importance.size else None
