"""
Decision Tree Model

This module contains the DTrees model: a single CART-style decision tree for
classification or regression with categorical splits, missing-value default
directions and cross-validated cost-complexity pruning. The shared
hyper-parameter handling used by Boost and RTrees lives here as well.
"""

import time
import numpy as np
from typing import Dict, Optional
from sklearn.utils import check_random_state

from .base import StatModel
from .tree_components.constants import RAW_OUTPUT, UPDATE_MODEL
from .tree_components.model_state import TreeInspectionMixin, TreeModelState
from .tree_components.pruning import CostComplexityPruner
from .tree_components.train_data import TrainData
from .tree_components.tree_builder import TreeBuilder, TreeWorkData, apply_priors, validate_tree_params
from ..utils.exceptions import UnsupportedError
from ..utils.logger import get_logger

logger = get_logger(__name__)

TREE_PARAM_NAMES = (
    "max_depth",
    "min_sample_count",
    "cv_folds",
    "use_surrogates",
    "use_1se_rule",
    "truncate_pruned_tree",
    "regression_accuracy",
    "max_categories",
    "priors",
    "random_state",
)

_SEED_MAX = np.iinfo(np.int32).max


def check_tree_params(model) -> None:
    """
    木のハイパーパラメータを学習開始時に検証

    Parameters:
    -----------
    model : StatModel
        TREE_PARAM_NAMES の属性を持つモデル
    """
    validate_tree_params(model.max_depth, model.min_sample_count, model.regression_accuracy,
                         model.max_categories, model.cv_folds)
    if model.use_surrogates:
        raise UnsupportedError("Surrogate splits are not implemented", {"use_surrogates": True})


def training_weights(data: TrainData, work: TreeWorkData, priors) -> np.ndarray:
    """
    学習に使うサンプル重み（全サンプル分）

    priors が指定されていれば訓練サブセットのクラス重みを事前確率に合わせる。
    """
    weights = data.get_sample_weights()
    if priors is not None and work.is_classifier:
        train_idx = data.get_train_sample_idx()
        weights[train_idx] = apply_priors(weights[train_idx], work.responses[train_idx],
                                          priors, work.n_classes)
    return weights


def make_tree_builder(model, rng, active_var_count: int = 0) -> TreeBuilder:
    return TreeBuilder(
        max_depth=model.max_depth,
        min_sample_count=model.min_sample_count,
        regression_accuracy=model.regression_accuracy,
        max_categories=model.max_categories,
        active_var_count=active_var_count,
        random_state=rng
    )


def split_importance(state: TreeModelState) -> np.ndarray:
    """
    分割品質の合計による変数重要度（合計 1 に正規化）

    各ノードの先頭の分割（実際に使われる分割）の品質を変数ごとに合計する。
    """
    arena = state.arena
    importance = np.zeros(state.n_all_vars)
    for root in arena.roots:
        for ni in arena.iter_subtree(root):
            node = arena.nodes[ni]
            if node.split >= 0 and not node.pruned:
                split = arena.splits[node.split]
                importance[split.var_idx] += split.quality
    total = importance.sum()
    return importance / total if total > 0 else importance


class DTrees(TreeInspectionMixin, StatModel):
    """
    決定木モデル

    Attributes:
    -----------
    max_depth : int
        最大深度
    min_sample_count : int
        このサンプル数未満のノードは分割しない
    cv_folds : int
        枝刈りの交差検証の分割数（2 未満なら枝刈りしない）
    use_surrogates : bool
        代理分割（未実装。True なら train で UnsupportedError）
    use_1se_rule : bool
        枝刈りで1標準誤差ルールを使うかどうか
    truncate_pruned_tree : bool
        枝刈りしたノードを削除するかどうか
    regression_accuracy : float
        回帰の停止条件（ノードの標準偏差）
    max_categories : int
        多クラス分類のカテゴリクラスタリングの上限
    priors : array-like or None
        クラス事前確率
    random_state : int or None
        乱数シード
    """

    _param_names = TREE_PARAM_NAMES

    def __init__(self,
                 max_depth: int = 2 ** 31 - 1,
                 min_sample_count: int = 10,
                 cv_folds: int = 10,
                 use_surrogates: bool = False,
                 use_1se_rule: bool = True,
                 truncate_pruned_tree: bool = True,
                 regression_accuracy: float = 0.01,
                 max_categories: int = 10,
                 priors=None,
                 random_state: Optional[int] = None):
        super().__init__(
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
        )
        self.pruning_alpha_: Optional[float] = None
        self.cv_errors_: Optional[np.ndarray] = None

    def train(self, data: TrainData, flags: int = 0) -> bool:
        """
        訓練サブセットで決定木を構築し、必要なら枝刈りする

        Parameters:
        -----------
        data : TrainData
            学習データ
        flags : int, default=0
            UPDATE_MODEL は単一の決定木では使えない

        Returns:
        --------
        success : bool
            常に True（失敗時は例外を送出し、以前の状態は保持される）
        """
        self._check_train_data(data)
        if flags & UPDATE_MODEL:
            raise UnsupportedError("DTrees cannot update an existing model")
        check_tree_params(self)

        start_time = time.time()
        rng = check_random_state(self.random_state)
        state = TreeModelState.from_train_data(data)
        work = TreeWorkData.from_train_data(data)
        train_idx = data.get_train_sample_idx()
        weights = training_weights(data, work, self.priors)

        builder = make_tree_builder(self, rng)
        root = builder.build_tree(work, train_idx, weights, state.arena)
        state.arena.roots.append(root)
        n_grown = state.arena.count_nodes(root)

        pruner = CostComplexityPruner(
            cv_folds=self.cv_folds,
            use_1se_rule=self.use_1se_rule,
            truncate_pruned_tree=self.truncate_pruned_tree,
            random_state=int(rng.randint(_SEED_MAX))
        )
        alpha = pruner.prune(state.arena, root, builder, work, train_idx, weights)

        # 成功した場合のみ状態を置き換える
        self._state = state
        self.pruning_alpha_ = alpha
        self.cv_errors_ = pruner.cv_errors_
        root = state.arena.roots[0]
        logger.info(
            "DTrees trained on %d samples: %d nodes grown, %d kept, depth %d, %.2fs",
            train_idx.size, n_grown, state.arena.count_nodes(root), state.arena.depth(root),
            time.time() - start_time
        )
        return True

    def predict(self, samples, flags: int = 0) -> np.ndarray:
        """
        学習済みの決定木で予測

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル
        flags : int, default=0
            RAW_OUTPUT ならクラスラベルではなくクラスインデックスを返す。
            COMPRESSED_INPUT / PREPROCESSED_INPUT は入力の形式を指定する
            （木が1本なので PREDICT_SUM / PREDICT_MAX_VOTE は結果を変えない）

        Returns:
        --------
        responses : np.ndarray, shape=(n_samples,)
            クラスラベル（分類）または推定値（回帰）
        """
        self._check_is_trained()
        self._predict_mode(flags)
        state = self._state
        leaves = state.find_leaves(state.arena.roots[0], state.encode_samples(samples, flags))
        if not state.is_classifier:
            return state.leaf_values(leaves)
        class_idx = state.leaf_classes(leaves)
        if flags & RAW_OUTPUT:
            return class_idx
        return state.class_labels[class_idx]

    def get_var_importance(self) -> np.ndarray:
        """
        変数重要度

        Returns:
        --------
        importance : np.ndarray, shape=(n_all_vars,)
            分割品質の合計（合計 1 に正規化）
        """
        self._check_is_trained()
        return split_importance(self._state)

    def get_tree_info(self) -> Dict[str, float]:
        self._check_is_trained()
        arena = self._state.arena
        root = arena.roots[0]
        return {
            "n_nodes": arena.count_nodes(root),
            "n_leaves": len(arena.leaves(root)),
            "depth": arena.depth(root),
            "pruning_alpha": self.pruning_alpha_ if self.pruning_alpha_ is not None else 0.0,
        }
