"""
Boosting Strategies Manager

This module contains the per-variant boosting steps (DISCRETE, REAL, LOGIT,
GENTLE): how the weak learner is grown, how its output is read and how the
sample weights are updated. The Boost model selects one step function from
a dispatch table.
"""

from typing import Optional, Tuple

import numpy as np

from .constants import BoostType
from .pruning import CostComplexityPruner
from .tree_builder import TreeBuilder, TreeWorkData
from .tree_node import TreeArena
from ...utils.exceptions import InvalidArgumentError

# 確率・誤差のクリップ
_EPS = 1e-10
_LOGIT_Z_MAX = 4.0


def trim_weights(weights: np.ndarray, train_idx: np.ndarray, trim_rate: float) -> np.ndarray:
    """
    重みの大きいサンプルから累積重みが trim_rate に達するまでを残す

    Parameters:
    -----------
    weights : array-like
        全サンプル分の重み
    train_idx : array-like of int
        訓練サンプル
    trim_rate : float
        残す重みの割合（0 以下または 1 以上ならトリミングしない）

    Returns:
    --------
    active_idx : np.ndarray of int64
        次の木の構築に使うサンプル（昇順）
    """
    if trim_rate <= 0 or trim_rate >= 1:
        return train_idx
    w = weights[train_idx]
    total = w.sum()
    if total <= 0:
        return train_idx
    order = np.argsort(-w, kind="mergesort")
    cum = np.cumsum(w[order])
    n_keep = min(int(np.searchsorted(cum, trim_rate * total)) + 1, order.size)
    # 境界と同じ重みのサンプルも残す
    threshold = w[order[n_keep - 1]]
    return np.sort(train_idx[w >= threshold])


class BoostStrategyManager:
    """
    ブースティング手法を管理するクラス

    Attributes:
    -----------
    boost_type : BoostType
        使用するブースティング手法
    builder : TreeBuilder
        弱学習器の構築に使うビルダー
    work : TreeWorkData
        学習データのビュー
    train_idx : np.ndarray
        訓練サンプル
    y : np.ndarray
        全サンプル分のラベル（-1 / +1。訓練サンプル以外は 0）
    pruner : CostComplexityPruner or None
        弱学習器の枝刈り
    """

    def __init__(self, boost_type, builder: TreeBuilder, work: TreeWorkData, train_idx: np.ndarray,
                 y01: np.ndarray, pruner: Optional[CostComplexityPruner] = None):
        self.boost_type = BoostType(boost_type)
        self.builder = builder
        self.work = work
        self.train_idx = train_idx
        self.y01 = y01
        self.y = np.where(y01 == 1, 1.0, -1.0)
        self.pruner = pruner

        # 利用可能な手法
        self.available_strategies = {
            BoostType.DISCRETE: self._discrete_step,
            BoostType.REAL: self._real_step,
            BoostType.LOGIT: self._logit_step,
            BoostType.GENTLE: self._gentle_step,
        }

        self._class_work = work.with_responses(
            y01, is_classifier=True, n_classes=2, class_values=np.array([-1.0, 1.0])
        )

    def step(self, weights: np.ndarray, F: np.ndarray,
             active_idx: np.ndarray) -> Tuple[TreeArena, int, float, np.ndarray, np.ndarray]:
        """
        弱学習器を1つ追加する

        Parameters:
        -----------
        weights : array-like
            全サンプル分の現在の重み（訓練サンプルの合計 1）
        F : array-like
            全サンプル分の現在のアンサンブル出力
        active_idx : array-like of int
            トリミング後の構築用サンプル

        Returns:
        --------
        arena : TreeArena
            弱学習器を含む一時アリーナ（roots[0] がルート）
        root : int
            弱学習器のルート
        tree_weight : float
            弱学習器の重み
        f : np.ndarray
            訓練サンプルでの弱学習器の出力
        new_weights : np.ndarray
            更新後の重み（正規化済み）
        """
        if self.boost_type not in self.available_strategies:
            raise InvalidArgumentError(f"Unknown boost type: {self.boost_type}")
        return self.available_strategies[self.boost_type](weights, F, active_idx)

    def initial_weights(self, sample_weights: np.ndarray, F: Optional[np.ndarray] = None) -> np.ndarray:
        """
        初期重み（既存のアンサンブルから続ける場合は F に応じた重み）
        """
        w = np.zeros_like(sample_weights, dtype=np.float64)
        idx = self.train_idx
        w[idx] = sample_weights[idx]
        if F is not None:
            if self.boost_type == BoostType.LOGIT:
                p = self._probability(F[idx])
                w[idx] = np.maximum(p * (1 - p), _EPS)
            else:
                scale = 0.5 if self.boost_type == BoostType.DISCRETE else 1.0
                w[idx] *= np.exp(-scale * self.y[idx] * F[idx])
        return self._normalize(w)

    def loss(self, F: np.ndarray, sample_weights: np.ndarray) -> float:
        """
        現在のアンサンブルの重み付き損失（指数損失、LOGIT はロジスティック損失）
        """
        idx = self.train_idx
        w0 = sample_weights[idx] / max(sample_weights[idx].sum(), _EPS)
        margin = self.y[idx] * F[idx]
        if self.boost_type == BoostType.LOGIT:
            return float(np.dot(w0, np.logaddexp(0.0, -2.0 * margin)))
        scale = 0.5 if self.boost_type == BoostType.DISCRETE else 1.0
        return float(np.dot(w0, np.exp(-scale * margin)))

    # ------------------------------------------------------------------
    # 共通処理
    # ------------------------------------------------------------------

    def _normalize(self, w: np.ndarray) -> np.ndarray:
        total = w[self.train_idx].sum()
        if total > 0:
            w = w / total
        return w

    @staticmethod
    def _probability(F: np.ndarray) -> np.ndarray:
        return 1.0 / (1.0 + np.exp(-2.0 * F))

    def _grow(self, work: TreeWorkData, active_idx: np.ndarray, weights: np.ndarray) -> Tuple[TreeArena, int]:
        arena = TreeArena(work.var_types, work.cat_counts)
        root = self.builder.build_tree(work, active_idx, weights, arena)
        arena.roots.append(root)
        if self.pruner is not None:
            self.pruner.prune(arena, root, self.builder, work, active_idx, weights)
        return arena, arena.roots[0]

    def _route(self, arena: TreeArena, root: int) -> np.ndarray:
        idx = self.train_idx
        work = self.work
        return arena.find_leaves(root, work.samples[idx], work.missing[idx], work.codes[idx])

    def _leaf_output(self, arena: TreeArena, leaves: np.ndarray) -> np.ndarray:
        return np.fromiter((arena.nodes[ni].value for ni in leaves), np.float64, leaves.size)

    # ------------------------------------------------------------------
    # 各手法
    # ------------------------------------------------------------------

    def _discrete_step(self, weights, F, active_idx):
        """Discrete AdaBoost: +-1 leaves, tree weight C = log((1-err)/err)."""
        arena, root = self._grow(self._class_work, active_idx, weights)
        f = self._leaf_output(arena, self._route(arena, root))

        idx = self.train_idx
        w = weights[idx]
        miss = (f != self.y[idx]).astype(np.float64)
        err = np.clip(np.dot(w, miss) / max(w.sum(), _EPS), _EPS, 1 - _EPS)
        C = float(np.log((1 - err) / err))

        new_w = weights.copy()
        new_w[idx] = w * np.exp(C * miss)
        return arena, root, C, f, self._normalize(new_w)

    def _real_step(self, weights, F, active_idx):
        """Real AdaBoost: leaf value is half the log-odds of the leaf's weighted class share."""
        arena, root = self._grow(self._class_work, active_idx, weights)
        leaves = self._route(arena, root)

        idx = self.train_idx
        w = weights[idx]
        y = self.y[idx]
        uniq, inverse = np.unique(leaves, return_inverse=True)
        w_pos = np.bincount(inverse, weights=w * (y > 0), minlength=uniq.size)
        w_all = np.bincount(inverse, weights=w, minlength=uniq.size)
        p = np.clip(np.divide(w_pos, w_all, out=np.full(uniq.size, 0.5), where=w_all > 0), _EPS, 1 - _EPS)
        values = 0.5 * np.log(p / (1 - p))
        for ni, v in zip(uniq, values):
            arena.nodes[ni].value = float(v)
        arena.invalidate()

        f = values[inverse]
        new_w = weights.copy()
        new_w[idx] = w * np.exp(-y * f)
        return arena, root, 1.0, f, self._normalize(new_w)

    def _logit_step(self, weights, F, active_idx):
        """LogitBoost: regression tree on the working response z with weights p(1-p)."""
        idx = self.train_idx
        p = self._probability(F[idx])
        pq = np.maximum(p * (1 - p), _EPS)
        z_train = np.clip((self.y01[idx] - p) / pq, -_LOGIT_Z_MAX, _LOGIT_Z_MAX)

        z = np.zeros(self.y.size)
        z[idx] = z_train
        reg_work = self.work.with_responses(z, is_classifier=False)
        arena, root = self._grow(reg_work, active_idx, weights)
        f = self._leaf_output(arena, self._route(arena, root))

        new_F = F[idx] + 0.5 * f
        p_new = self._probability(new_F)
        new_w = weights.copy()
        new_w[idx] = np.maximum(p_new * (1 - p_new), _EPS)
        return arena, root, 0.5, f, self._normalize(new_w)

    def _gentle_step(self, weights, F, active_idx):
        """Gentle AdaBoost: weighted least-squares regression tree on y."""
        reg_work = self.work.with_responses(self.y, is_classifier=False)
        arena, root = self._grow(reg_work, active_idx, weights)
        f = self._leaf_output(arena, self._route(arena, root))

        idx = self.train_idx
        new_w = weights.copy()
        new_w[idx] = weights[idx] * np.exp(-self.y[idx] * f)
        return arena, root, 1.0, f, self._normalize(new_w)
