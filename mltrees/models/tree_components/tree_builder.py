"""
Tree Builder

This module handles the construction of a single decision tree from a
training data view: node value computation, stopping rules, best-split
search over ordered and categorical variables, missing-value directions and
the recursive partitioning of the sample index set.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
from sklearn.utils import check_random_state

from .constants import VAR_CATEGORICAL
from .train_data import TrainData
from .tree_node import DTreeSplit, TreeArena
from ...utils.exceptions import InvalidArgumentError
from ...utils.logger import get_logger

logger = get_logger(__name__)

# 多クラスのカテゴリクラスタリングで使う k-means の反復回数
_KMEANS_ITERS = 10

# 二分割の全列挙で一度に評価する部分集合の数
_PARTITION_CHUNK = 1 << 16


class TreeWorkData:
    """
    決定木構築用の読み取り専用ビュー

    サンプル行列・欠損マスク・カテゴリコードは TrainData と共有し、
    目的変数だけを差し替えられる（ブースティング用）。

    Attributes:
    -----------
    samples : np.ndarray of float32, shape=(n_samples, n_all_vars)
        生の値
    missing : np.ndarray of bool, shape=(n_samples, n_all_vars)
        欠損マスク
    codes : np.ndarray of int32, shape=(n_samples, n_all_vars)
        カテゴリコード（欠損・順序変数は -1）
    var_types : np.ndarray
        変数種別
    cat_counts : np.ndarray
        変数ごとのカテゴリ数
    var_idx : np.ndarray
        分割候補となる変数
    responses : np.ndarray
        クラスインデックス（分類）または実数値（回帰）
    is_classifier : bool
        分類問題かどうか
    n_classes : int
        クラス数（回帰では 0）
    class_values : np.ndarray or None
        クラスインデックスからノード値への対応
    """

    def __init__(self, samples, missing, codes, var_types, cat_counts, var_idx,
                 responses, is_classifier: bool, n_classes: int = 0,
                 class_values: Optional[np.ndarray] = None):
        self.samples = samples
        self.missing = missing
        self.codes = codes
        self.var_types = var_types
        self.cat_counts = cat_counts
        self.var_idx = var_idx
        self.responses = responses
        self.is_classifier = is_classifier
        self.n_classes = n_classes
        if is_classifier and class_values is None:
            class_values = np.arange(n_classes, dtype=np.float64)
        self.class_values = class_values

    @classmethod
    def from_train_data(cls, data: TrainData) -> 'TreeWorkData':
        is_classifier = data.get_response_type() == VAR_CATEGORICAL
        if is_classifier:
            labels = data.get_class_labels()
            responses = data.get_norm_cat_responses()
            n_classes = labels.size
            # 数値ラベルならノード値はラベルそのもの、それ以外はクラスインデックス
            class_values = labels.astype(np.float64) if labels.dtype.kind in "iufb" else None
        else:
            responses = data.get_responses()
            n_classes = 0
            class_values = None
        return cls(
            data.get_samples(), data.get_missing(), data.get_cat_codes(),
            data.get_var_type(), data.get_cat_counts(), data.get_var_idx(),
            responses, is_classifier, n_classes, class_values
        )

    def with_responses(self, responses: np.ndarray, is_classifier: bool,
                       n_classes: int = 0, class_values: Optional[np.ndarray] = None) -> 'TreeWorkData':
        """同じ行列で目的変数だけを差し替えたビューを返す"""
        return TreeWorkData(
            self.samples, self.missing, self.codes, self.var_types, self.cat_counts,
            self.var_idx, responses, is_classifier, n_classes, class_values
        )


def apply_priors(weights: np.ndarray, responses: np.ndarray, priors, n_classes: int) -> np.ndarray:
    """
    クラス事前確率に合わせてサンプル重みを調整

    クラス c の重みの合計が priors[c] に比例するように再スケールする
    （重みの総和は保たれる）。

    Parameters:
    -----------
    weights : array-like, shape=(n_samples,)
        サンプル重み
    responses : array-like of int, shape=(n_samples,)
        クラスインデックス
    priors : array-like, shape=(n_classes,)
        クラス事前確率（正規化されていなくてよい）
    n_classes : int
        クラス数

    Returns:
    --------
    weights : np.ndarray
        調整後の重み
    """
    priors = np.asarray(priors, dtype=np.float64).ravel()
    if priors.size != n_classes:
        raise InvalidArgumentError(f"priors must have {n_classes} entries, got {priors.size}")
    if np.any(priors <= 0) or not np.all(np.isfinite(priors)):
        raise InvalidArgumentError("priors must be positive and finite")

    class_w = np.bincount(responses, weights=weights, minlength=n_classes)
    total = class_w.sum()
    p = priors / priors.sum()
    scale = np.divide(p, class_w, out=np.zeros_like(p), where=class_w > 0) * total
    return weights * scale[responses]


def validate_tree_params(max_depth, min_sample_count, regression_accuracy, max_categories,
                         cv_folds) -> None:
    """Eager check of the shared decision-tree hyper-parameters."""
    if int(max_depth) != max_depth or max_depth < 1:
        raise InvalidArgumentError(f"max_depth must be a positive integer, got {max_depth}")
    if int(min_sample_count) != min_sample_count or min_sample_count < 1:
        raise InvalidArgumentError(f"min_sample_count must be a positive integer, got {min_sample_count}")
    if regression_accuracy < 0:
        raise InvalidArgumentError(f"regression_accuracy must be non-negative, got {regression_accuracy}")
    if int(max_categories) != max_categories or max_categories < 2:
        raise InvalidArgumentError(f"max_categories must be an integer >= 2, got {max_categories}")
    if int(cv_folds) != cv_folds or cv_folds < 0:
        raise InvalidArgumentError(f"cv_folds must be a non-negative integer, got {cv_folds}")


class _Candidate:
    """Best split found for one variable at one node."""

    def __init__(self, var_idx: int, quality: float, weight_left: float, weight_right: float,
                 c: float = 0.0, left_mask: Optional[np.ndarray] = None,
                 seen: Optional[np.ndarray] = None):
        self.var_idx = var_idx
        self.quality = quality
        self.weight_left = weight_left
        self.weight_right = weight_right
        self.c = c
        self.left_mask = left_mask
        self.seen = seen

    @property
    def default_dir(self) -> int:
        return -1 if self.weight_left >= self.weight_right else 1


class TreeBuilder:
    """
    決定木構築を担当するクラス

    Attributes:
    -----------
    max_depth : int
        最大深度
    min_sample_count : int
        このサンプル数未満のノードは分割しない
    regression_accuracy : float
        回帰で標準偏差がこの値未満のノードは分割しない
    max_categories : int
        多クラス分類でこのカテゴリ数を超える変数はクラスタリングしてから探索
    active_var_count : int
        各ノードで分割候補とする変数の数（0 なら全変数）
    """

    def __init__(
        self,
        max_depth: int = 2 ** 31 - 1,
        min_sample_count: int = 10,
        regression_accuracy: float = 0.01,
        max_categories: int = 10,
        active_var_count: int = 0,
        random_state=None
    ):
        self.max_depth = max_depth
        self.min_sample_count = min_sample_count
        self.regression_accuracy = regression_accuracy
        self.max_categories = max_categories
        self.active_var_count = active_var_count
        self.rng = check_random_state(random_state)

    def build_tree(self, work: TreeWorkData, sample_idx: np.ndarray, weights: np.ndarray,
                   arena: TreeArena) -> int:
        """
        決定木を構築

        Parameters:
        -----------
        work : TreeWorkData
            学習データのビュー
        sample_idx : array-like of int
            このツリーに使うサンプル（重複可。ブートストラップ用）
        weights : array-like, shape=(n_samples,)
            全サンプル分の重み（sample_idx で参照される）
        arena : TreeArena
            ノードを追加するアリーナ

        Returns:
        --------
        root : int
            構築された木のルートノード
        """
        sample_idx = np.asarray(sample_idx, dtype=np.int64)
        if sample_idx.size == 0:
            raise InvalidArgumentError("Cannot build a tree from an empty training subset")

        root = arena.add_node(parent=-1, depth=0)
        stack = [(root, sample_idx)]

        while stack:
            ni, idx = stack.pop()
            node = arena.nodes[ni]
            stats = self._compute_node_value(node, work, idx, weights)

            if self._should_stop_splitting(node, work, idx, stats):
                continue

            candidates = self._search_best_split(work, idx, weights, stats)
            if not candidates:
                continue

            best = candidates[0]
            node.default_dir = best.default_dir
            prev = -1
            for cand in candidates:
                si = self._add_split(arena, work, cand, node.default_dir)
                if prev < 0:
                    node.split = si
                else:
                    arena.splits[prev].next = si
                prev = si

            go_left = self._split_direction(work, idx, best, node.default_dir)
            left = arena.add_node(parent=ni, depth=node.depth + 1)
            right = arena.add_node(parent=ni, depth=node.depth + 1)
            node.left = left
            node.right = right

            stack.append((right, idx[~go_left]))
            stack.append((left, idx[go_left]))

        arena.invalidate()
        return root

    def _compute_node_value(self, node, work: TreeWorkData, idx: np.ndarray,
                            weights: np.ndarray) -> Dict[str, float]:
        """
        ノードの予測値とリスク（リーフとしたときの訓練誤差）を計算

        Returns:
        --------
        stats : dict
            "weight", "impurity", "n_classes_present" など
        """
        w = weights[idx]
        node.sample_count = int(idx.size)

        if work.is_classifier:
            y = work.responses[idx]
            counts = np.bincount(y, weights=w, minlength=work.n_classes)
            total = counts.sum()
            if total <= 0:
                counts = np.bincount(y, minlength=work.n_classes).astype(np.float64)
                total = counts.sum()
            node.class_idx = int(np.argmax(counts))
            node.value = float(work.class_values[node.class_idx])
            node.node_risk = float(total - counts[node.class_idx])
            return {
                "weight": float(total),
                "impurity": float(total - np.dot(counts, counts) / total),
                "n_classes_present": int(np.count_nonzero(counts)),
            }

        y = work.responses[idx]
        total = w.sum()
        if total <= 0:
            w = np.ones_like(w)
            total = w.sum()
        mean = float(np.dot(w, y) / total)
        sse = float(np.dot(w, (y - mean) ** 2))
        node.class_idx = -1
        node.value = mean
        node.node_risk = sse
        return {"weight": float(total), "impurity": sse, "std": float(np.sqrt(sse / total))}

    def _should_stop_splitting(self, node, work: TreeWorkData, idx: np.ndarray,
                               stats: Dict[str, float]) -> bool:
        """
        分割を停止するかどうかを判定

        深さ・サンプル数・純度のいずれかの条件でリーフにする。
        """
        if node.depth >= self.max_depth or idx.size < self.min_sample_count:
            return True
        if work.is_classifier:
            return stats["n_classes_present"] <= 1
        return stats["impurity"] <= 0 or stats["std"] < self.regression_accuracy

    def _active_vars(self, work: TreeWorkData) -> np.ndarray:
        var_idx = work.var_idx
        k = self.active_var_count
        if 0 < k < var_idx.size:
            # ノードごとに新しい変数部分集合を引く
            return np.sort(self.rng.choice(var_idx, size=k, replace=False))
        return var_idx

    def _search_best_split(self, work: TreeWorkData, idx: np.ndarray, weights: np.ndarray,
                           stats: Dict[str, float]) -> List[_Candidate]:
        """
        最適な分割を探索

        Returns:
        --------
        candidates : list of _Candidate
            変数ごとの最良分割を品質の降順に並べたもの（先頭が採用される分割）
        """
        min_quality = max(stats["impurity"], 1e-300) * 1e-9
        candidates = []
        for vi in self._active_vars(work):
            if work.var_types[vi] == VAR_CATEGORICAL:
                cand = self._find_categorical_split(work, int(vi), idx, weights)
            else:
                cand = self._find_ordered_split(work, int(vi), idx, weights)
            if cand is not None and cand.quality > min_quality:
                candidates.append(cand)

        candidates.sort(key=lambda cand: (-cand.quality, cand.var_idx))
        return candidates

    @staticmethod
    def _split_quality(left: np.ndarray, right: np.ndarray, total: np.ndarray,
                       is_classifier: bool, wl: np.ndarray, wr: np.ndarray,
                       wt: float) -> np.ndarray:
        """
        分割候補ごとの不純度の減少量

        分類: Gini 不純度 × 重み の減少量。回帰: 重み付き二乗誤差の減少量。
        left / right は分類ならクラスごとの重み和、回帰なら重み付き目的変数の和。
        """
        valid = (wl > 0) & (wr > 0)
        wl_safe = np.where(valid, wl, 1.0)
        wr_safe = np.where(valid, wr, 1.0)
        if is_classifier:
            lterm = np.einsum("ij,ij->i", left, left) / wl_safe
            rterm = np.einsum("ij,ij->i", right, right) / wr_safe
            tterm = np.dot(total, total) / wt
        else:
            lterm = left ** 2 / wl_safe
            rterm = right ** 2 / wr_safe
            tterm = total ** 2 / wt
        quality = lterm + rterm - tterm
        return np.where(valid, quality, -np.inf)

    def _find_ordered_split(self, work: TreeWorkData, vi: int, idx: np.ndarray,
                            weights: np.ndarray) -> Optional[_Candidate]:
        """
        順序変数の最良閾値を探索（ソート + 累積和, O(n log n)）
        """
        present = ~work.missing[idx, vi]
        rows = idx[present]
        if rows.size < 2:
            return None

        values = work.samples[rows, vi]
        order = np.argsort(values, kind="mergesort")
        values = values[order]
        rows = rows[order]
        w = weights[rows]

        if work.is_classifier:
            cw = np.zeros((rows.size, work.n_classes))
            cw[np.arange(rows.size), work.responses[rows]] = w
            cum = np.cumsum(cw, axis=0)
            total = cum[-1]
            left = cum[:-1]
            right = total - left
        else:
            wy = w * work.responses[rows]
            cum = np.cumsum(wy)
            total = cum[-1]
            left = cum[:-1]
            right = total - left

        cum_w = np.cumsum(w)
        wt = cum_w[-1]
        wl = cum_w[:-1]
        wr = wt - wl
        if wt <= 0:
            return None

        quality = self._split_quality(left, right, total, work.is_classifier, wl, wr, wt)
        # 同じ値の間では切れない
        quality[values[:-1] >= values[1:]] = -np.inf
        best = int(np.argmax(quality))
        if not np.isfinite(quality[best]):
            return None

        c = (float(values[best]) + float(values[best + 1])) / 2.0
        return _Candidate(vi, float(quality[best]), float(wl[best]), float(wr[best]), c=c)

    def _find_categorical_split(self, work: TreeWorkData, vi: int, idx: np.ndarray,
                                weights: np.ndarray) -> Optional[_Candidate]:
        """
        カテゴリ変数の最良の二分割を探索

        2クラス分類・回帰はカテゴリをクラス1の割合（平均値）で並べて累積走査、
        多クラス分類は全ての二分割を列挙する。カテゴリ数が max_categories を
        超える場合はクラス分布で k-means クラスタリングしてから列挙する。
        """
        k_all = int(work.cat_counts[vi])
        codes = work.codes[idx, vi]
        present = codes >= 0
        if np.count_nonzero(present) < 2 or k_all < 2:
            return None
        codes = codes[present]
        rows = idx[present]
        w = weights[rows]

        cat_w = np.bincount(codes, weights=w, minlength=k_all)
        cats = np.flatnonzero(cat_w > 0)
        if cats.size < 2:
            # カテゴリが1つしかない変数は分割候補にならない
            return None

        if work.is_classifier:
            cw = np.zeros((k_all, work.n_classes))
            np.add.at(cw, (codes, work.responses[rows]), w)
            stats = cw[cats]
        else:
            stats = np.bincount(codes, weights=w * work.responses[rows], minlength=k_all)[cats]
        weight = cat_w[cats]

        if not work.is_classifier or work.n_classes == 2:
            left_local, quality, wl, wr = self._scan_sorted_categories(stats, weight, work.is_classifier)
        elif cats.size <= self.max_categories:
            left_local, quality, wl, wr = self._enumerate_partitions(stats, weight)
        else:
            labels = self._cluster_categories(stats / weight[:, None], weight, self.max_categories)
            used = np.unique(labels)
            cluster_stats = np.stack([stats[labels == j].sum(axis=0) for j in used])
            cluster_weight = np.array([weight[labels == j].sum() for j in used])
            left_clusters, quality, wl, wr = self._enumerate_partitions(cluster_stats, cluster_weight)
            if left_clusters is None:
                return None
            left_local = np.isin(labels, used[left_clusters])

        if left_local is None:
            return None

        left_mask = np.zeros(k_all, dtype=bool)
        left_mask[cats[left_local]] = True
        seen = np.zeros(k_all, dtype=bool)
        seen[cats] = True
        return _Candidate(vi, quality, wl, wr, left_mask=left_mask, seen=seen)

    def _scan_sorted_categories(self, stats: np.ndarray, weight: np.ndarray, is_classifier: bool):
        """Sort categories by class-1 share / mean response and scan prefixes."""
        if is_classifier:
            key = stats[:, 1] / weight
        else:
            key = stats / weight
        order = np.argsort(key, kind="mergesort")
        stats = stats[order]
        weight = weight[order]

        cum = np.cumsum(stats, axis=0)
        cum_w = np.cumsum(weight)
        total = cum[-1]
        wt = cum_w[-1]
        quality = self._split_quality(cum[:-1], total - cum[:-1], total, is_classifier,
                                      cum_w[:-1], wt - cum_w[:-1], wt)
        best = int(np.argmax(quality))
        if not np.isfinite(quality[best]):
            return None, 0.0, 0.0, 0.0

        left_local = np.zeros(weight.size, dtype=bool)
        left_local[order[:best + 1]] = True
        return left_local, float(quality[best]), float(cum_w[best]), float(wt - cum_w[best])

    def _enumerate_partitions(self, stats: np.ndarray, weight: np.ndarray):
        """
        全ての二分割を列挙（最後のカテゴリは常に右側に固定, 2^(m-1)-1 通り）

        部分集合の番号を _PARTITION_CHUNK 個ずつ評価し、最良の分割だけを保持する。
        """
        m = weight.size
        if m < 2:
            return None, 0.0, 0.0, 0.0
        total = stats.sum(axis=0)
        wt = weight.sum()
        bits = np.arange(m)
        n_subsets = 2 ** (m - 1)

        best_quality = -np.inf
        best_mask = None
        best_wl = 0.0
        for start in range(1, n_subsets, _PARTITION_CHUNK):
            subsets = np.arange(start, min(start + _PARTITION_CHUNK, n_subsets), dtype=np.int64)
            masks = ((subsets[:, None] >> bits) & 1).astype(bool)
            left = masks.astype(np.float64) @ stats
            wl = masks.astype(np.float64) @ weight
            quality = self._split_quality(left, total - left, total, True, wl, wt - wl, wt)
            j = int(np.argmax(quality))
            if quality[j] > best_quality:
                best_quality = float(quality[j])
                best_mask = masks[j]
                best_wl = float(wl[j])

        if best_mask is None or not np.isfinite(best_quality):
            return None, 0.0, 0.0, 0.0
        return best_mask, best_quality, best_wl, float(wt - best_wl)

    @staticmethod
    def _cluster_categories(dists: np.ndarray, weight: np.ndarray, k: int) -> np.ndarray:
        """
        カテゴリのクラス分布を重み付き k-means で k 個のクラスタにまとめる

        中心の初期値は重みの大きい順の k カテゴリ。反復回数は固定。

        Returns:
        --------
        labels : np.ndarray of int
            カテゴリごとのクラスタ番号
        """
        order = np.argsort(-weight, kind="mergesort")
        centers = dists[order[:k]].copy()
        labels = None
        for _ in range(_KMEANS_ITERS):
            d2 = ((dists[:, None, :] - centers[None, :, :]) ** 2).sum(axis=2)
            new_labels = d2.argmin(axis=1)
            if labels is not None and np.array_equal(new_labels, labels):
                break
            labels = new_labels
            for j in range(k):
                members = labels == j
                if np.any(members):
                    centers[j] = np.average(dists[members], axis=0, weights=weight[members])
        return labels

    def _add_split(self, arena: TreeArena, work: TreeWorkData, cand: _Candidate,
                   default_dir: int) -> int:
        """候補をアリーナに DTreeSplit として追加"""
        if cand.left_mask is None:
            return arena.add_split(DTreeSplit(cand.var_idx, cand.quality, c=cand.c))

        mask = cand.left_mask.copy()
        k = mask.size
        # ノードに現れないカテゴリは既定方向へ
        if default_dir < 0:
            mask |= ~cand.seen
        inversed = bool(mask.sum() * 2 > k)
        if inversed:
            mask = ~mask
        ofs = arena.add_subset(mask)
        return arena.add_split(DTreeSplit(cand.var_idx, cand.quality, subset_ofs=ofs, inversed=inversed))

    def _split_direction(self, work: TreeWorkData, idx: np.ndarray, cand: _Candidate,
                         default_dir: int) -> np.ndarray:
        """Route the node's samples; missing values follow default_dir."""
        vi = cand.var_idx
        missing = work.missing[idx, vi]
        if cand.left_mask is None:
            go_left = work.samples[idx, vi] < cand.c
        else:
            codes = work.codes[idx, vi]
            safe = np.maximum(codes, 0)
            go_left = cand.left_mask[safe]
            # 重みを持たないカテゴリは保存される部分集合と同じく既定方向へ
            missing = missing | (codes < 0) | ~cand.seen[safe]
        return np.where(missing, default_dir < 0, go_left)
