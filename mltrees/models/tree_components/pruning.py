"""
Cost-Complexity Pruning

This module implements CART weakest-link pruning with K-fold cross-validation
for a tree grown by TreeBuilder.
"""

from typing import List, Optional

import numpy as np
from sklearn.model_selection import KFold

from .tree_builder import TreeBuilder, TreeWorkData
from .tree_node import TreeArena
from ...utils.logger import get_logger

logger = get_logger(__name__)


def compute_alpha_sequence(arena: TreeArena, root: int) -> List[float]:
    """
    最弱リンク枝刈りの複雑度パラメータ列を計算

    各内部ノード t について g(t) = (R(t) - R(T_t)) / (|T_t| - 1) を求め、
    最小の g を持つノードを順に畳んでいく。畳まれた時点の α を
    node.alpha に記録する（葉から根に向かって非減少）。

    Parameters:
    -----------
    arena : TreeArena
        木を含むアリーナ
    root : int
        ルートノード

    Returns:
    --------
    alphas : list of float
        入れ子になった部分木列 T_0 ⊃ T_1 ⊃ ... ⊃ {root} の α（先頭は 0）
    """
    order = arena.iter_subtree(root, active_only=False)
    internal = [ni for ni in order if arena.nodes[ni].split >= 0]
    for ni in order:
        arena.nodes[ni].alpha = np.inf

    collapsed = set()
    alphas = [0.0]
    current = 0.0
    # 後順で部分木のリスクと葉の数を毎回計算し直す
    postorder = order[::-1]

    while internal and root not in collapsed:
        risk = {}
        n_leaves = {}
        for ni in postorder:
            node = arena.nodes[ni]
            if node.split < 0 or ni in collapsed:
                risk[ni] = node.node_risk
                n_leaves[ni] = 1
            elif node.left in risk:
                risk[ni] = risk[node.left] + risk[node.right]
                n_leaves[ni] = n_leaves[node.left] + n_leaves[node.right]

        best_g = np.inf
        g_values = {}
        for ni in internal:
            if ni in collapsed or _has_collapsed_ancestor(arena, ni, collapsed):
                continue
            g = (arena.nodes[ni].node_risk - risk[ni]) / max(n_leaves[ni] - 1, 1)
            g_values[ni] = g
            best_g = min(best_g, g)

        if not g_values:
            break

        current = max(current, best_g)
        tol = 1e-12 * max(1.0, abs(best_g))
        for ni, g in g_values.items():
            if g <= best_g + tol:
                collapsed.add(ni)
                # 一緒に畳まれる内部ノードにも同じ α を記録する
                for d in arena.iter_subtree(ni, active_only=False):
                    if arena.nodes[d].split >= 0 and arena.nodes[d].alpha == np.inf:
                        arena.nodes[d].alpha = current
        alphas.append(current)

    arena.invalidate()
    return alphas


def _has_collapsed_ancestor(arena: TreeArena, ni: int, collapsed: set) -> bool:
    parent = arena.nodes[ni].parent
    while parent >= 0:
        if parent in collapsed:
            return True
        parent = arena.nodes[parent].parent
    return False


class CostComplexityPruner:
    """
    K 分割交差検証による最弱リンク枝刈り

    Attributes:
    -----------
    cv_folds : int
        分割数（2 未満なら枝刈りしない）
    use_1se_rule : bool
        最小誤差から1標準誤差以内で最も小さい木を選ぶかどうか
    truncate_pruned_tree : bool
        枝刈りしたノードをアリーナから物理的に削除するかどうか
    random_state : int or RandomState
        分割のシャッフル用シード
    """

    def __init__(self, cv_folds: int = 10, use_1se_rule: bool = True,
                 truncate_pruned_tree: bool = True, random_state=None):
        self.cv_folds = cv_folds
        self.use_1se_rule = use_1se_rule
        self.truncate_pruned_tree = truncate_pruned_tree
        self.random_state = random_state
        self.cv_errors_: Optional[np.ndarray] = None
        self.cv_se_: Optional[np.ndarray] = None
        self.alphas_: Optional[np.ndarray] = None

    def prune(self, arena: TreeArena, root: int, builder: TreeBuilder, work: TreeWorkData,
              sample_idx: np.ndarray, weights: np.ndarray) -> float:
        """
        木を枝刈りする

        Parameters:
        -----------
        arena : TreeArena
            木を含むアリーナ（roots に root が登録済みであること）
        root : int
            ルートノード
        builder : TreeBuilder
            各分割の木の構築に使うビルダー
        work : TreeWorkData
            学習データのビュー
        sample_idx : array-like of int
            学習に使ったサンプル
        weights : array-like
            サンプル重み

        Returns:
        --------
        alpha : float
            選ばれた複雑度パラメータ（0 なら枝刈りなし）
        """
        sample_idx = np.asarray(sample_idx, dtype=np.int64)
        alphas = np.asarray(compute_alpha_sequence(arena, root))
        self.alphas_ = alphas
        n_folds = min(int(self.cv_folds), sample_idx.size)
        if n_folds < 2 or alphas.size < 2:
            return 0.0

        # 各 α 区間の代表値 β_k = sqrt(α_k α_{k+1})（最後は無限大）
        betas = np.empty_like(alphas)
        betas[:-1] = np.sqrt(alphas[:-1] * alphas[1:])
        betas[-1] = np.inf

        losses = np.zeros((alphas.size, sample_idx.size))
        kfold = KFold(n_splits=n_folds, shuffle=True, random_state=self.random_state)
        for fold, (train_pos, test_pos) in enumerate(kfold.split(sample_idx)):
            fold_arena = TreeArena(arena.var_types, arena.cat_counts)
            fold_root = builder.build_tree(work, sample_idx[train_pos], weights, fold_arena)
            fold_arena.roots.append(fold_root)
            compute_alpha_sequence(fold_arena, fold_root)

            test_idx = sample_idx[test_pos]
            for k, beta in enumerate(betas):
                leaves = fold_arena.find_leaves(
                    fold_root, work.samples[test_idx], work.missing[test_idx],
                    work.codes[test_idx], alpha=beta
                )
                losses[k, test_pos] = self._sample_loss(fold_arena, leaves, work, test_idx, weights)
            logger.debug("Pruning fold %d/%d: %d nodes", fold + 1, n_folds, fold_arena.count_nodes(fold_root))

        errors = losses.sum(axis=1)
        se = np.sqrt(sample_idx.size) * losses.std(axis=1)
        self.cv_errors_ = errors
        self.cv_se_ = se

        k_min = int(np.flatnonzero(errors <= errors.min() * (1 + 1e-12))[-1])
        if self.use_1se_rule:
            k_best = int(np.flatnonzero(errors <= errors[k_min] + se[k_min])[-1])
        else:
            k_best = k_min
        chosen = float(alphas[k_best])

        self._apply(arena, root, chosen)
        logger.debug("Pruning chose alpha=%.6g (subtree %d of %d)", chosen, k_best, alphas.size - 1)
        return chosen

    @staticmethod
    def _sample_loss(arena: TreeArena, leaves: np.ndarray, work: TreeWorkData,
                     test_idx: np.ndarray, weights: np.ndarray) -> np.ndarray:
        w = weights[test_idx]
        if work.is_classifier:
            pred = np.array([arena.nodes[ni].class_idx for ni in leaves])
            return w * (pred != work.responses[test_idx])
        pred = np.array([arena.nodes[ni].value for ni in leaves])
        return w * (work.responses[test_idx] - pred) ** 2

    def _apply(self, arena: TreeArena, root: int, alpha: float) -> None:
        """Mark nodes collapsed at alpha as pruned and their descendants inactive."""
        for ni in arena.iter_subtree(root, active_only=False):
            node = arena.nodes[ni]
            if node.split >= 0 and node.alpha <= alpha:
                node.pruned = True
        for ni in arena.iter_subtree(root, active_only=False):
            node = arena.nodes[ni]
            if node.parent >= 0:
                parent = arena.nodes[node.parent]
                node.active = parent.active and not parent.pruned
        arena.invalidate()

        if self.truncate_pruned_tree:
            arena.compact()
