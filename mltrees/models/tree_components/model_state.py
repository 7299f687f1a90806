"""
Trained Tree Model State

This module holds the state a trained tree model owns (node/split arena,
variable descriptors, category maps, class labels) together with input
encoding for prediction, conversion to named array blocks, and the node
inspection helpers shared by DTrees, Boost and RTrees.
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .constants import COMPRESSED_INPUT, MISSING_VALUE, PREPROCESSED_INPUT, VAR_CATEGORICAL
from .train_data import TrainData, encode_categorical
from .tree_node import DTreeNode, DTreeSplit, TreeArena
from ...utils.exceptions import InvalidArgumentError


class TreeModelState:
    """
    学習済みモデルの状態

    Attributes:
    -----------
    arena : TreeArena
        全ての木のノード・分割
    var_types : np.ndarray
        変数種別（n_all_vars 個）
    cat_counts : np.ndarray
        変数ごとのカテゴリ数
    cat_maps : dict
        カテゴリ変数ごとの昇順カテゴリマップ
    var_idx : np.ndarray
        学習に使った変数
    class_labels : np.ndarray or None
        クラスラベル（回帰では None）
    missing_value : float
        欠損値のセンチネル
    """

    def __init__(self, var_types, cat_counts, cat_maps: Dict[int, np.ndarray], var_idx,
                 class_labels: Optional[np.ndarray], missing_value: float = MISSING_VALUE,
                 names: Optional[List[str]] = None):
        self.var_types = np.asarray(var_types, dtype=np.int32)
        self.cat_counts = np.asarray(cat_counts, dtype=np.int32)
        self.cat_maps = cat_maps
        self.var_idx = np.asarray(var_idx, dtype=np.int64)
        self.class_labels = class_labels
        self.missing_value = float(missing_value)
        self.names = names or [f"var_{i}" for i in range(self.var_types.size)]
        self.arena = TreeArena(self.var_types, self.cat_counts)

    @classmethod
    def from_train_data(cls, data: TrainData) -> 'TreeModelState':
        is_classifier = data.get_response_type() == VAR_CATEGORICAL
        return cls(
            data.get_var_type(), data.get_cat_counts(), data.get_cat_maps(), data.get_var_idx(),
            data.get_class_labels() if is_classifier else None,
            data.get_missing_value(), data.get_names()
        )

    @property
    def n_all_vars(self) -> int:
        return int(self.var_types.size)

    @property
    def is_classifier(self) -> bool:
        return self.class_labels is not None

    @property
    def n_classes(self) -> int:
        return 0 if self.class_labels is None else int(self.class_labels.size)

    def check_compatible(self, data: TrainData) -> None:
        """Reject a TrainData whose variables or classes differ from this state."""
        if data.get_n_all_vars() != self.n_all_vars:
            raise InvalidArgumentError(
                f"Data has {data.get_n_all_vars()} variables, model was trained on {self.n_all_vars}"
            )
        if not np.array_equal(data.get_var_type(), self.var_types):
            raise InvalidArgumentError("Variable types differ from the trained model")
        labels = data.get_class_labels()
        if self.is_classifier != (labels is not None) or (
                labels is not None and not np.array_equal(labels, self.class_labels)):
            raise InvalidArgumentError("Response classes differ from the trained model")

    def encode_samples(self, samples, flags: int = 0) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        予測用の入力を行列・欠損マスク・カテゴリコードに変換

        Parameters:
        -----------
        samples : array-like, shape=(n_samples, n_vars)
            入力サンプル（1次元なら1サンプル）
        flags : int
            COMPRESSED_INPUT: 列が var_idx の変数だけを含む。
            PREPROCESSED_INPUT: カテゴリ変数の列がカテゴリコードを含む。

        Returns:
        --------
        X : np.ndarray of float32, shape=(n_samples, n_all_vars)
        missing : np.ndarray of bool, shape=(n_samples, n_all_vars)
        codes : np.ndarray of int32, shape=(n_samples, n_all_vars)
        """
        X = np.asarray(samples, dtype=np.float32)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.ndim != 2:
            raise InvalidArgumentError(f"samples must be a 2-D matrix, got {X.ndim} dimensions")

        n = X.shape[0]
        if flags & COMPRESSED_INPUT:
            if X.shape[1] != self.var_idx.size:
                raise InvalidArgumentError(
                    f"Compressed input must have {self.var_idx.size} columns, got {X.shape[1]}"
                )
            full = np.full((n, self.n_all_vars), np.float32(self.missing_value), dtype=np.float32)
            full[:, self.var_idx] = X
            X = full
        else:
            if X.shape[1] < self.n_all_vars:
                raise InvalidArgumentError(
                    f"samples have {X.shape[1]} columns, the model needs {self.n_all_vars}"
                )
            X = X[:, :self.n_all_vars]

        missing = (X == np.float32(self.missing_value)) | np.isnan(X)
        codes = np.full(X.shape, -1, dtype=np.int32)
        for vi in np.flatnonzero(self.var_types == VAR_CATEGORICAL):
            if flags & PREPROCESSED_INPUT:
                col = X[:, vi]
                valid = ~missing[:, vi] & (col >= 0) & (col < self.cat_counts[vi]) & (col == np.floor(col))
                codes[valid, vi] = col[valid].astype(np.int32)
            else:
                codes[:, vi] = encode_categorical(X[:, vi], self.cat_maps[int(vi)], missing[:, vi])
        return X, missing, codes

    def find_leaves(self, root: int, encoded: Tuple[np.ndarray, np.ndarray, np.ndarray]) -> np.ndarray:
        X, missing, codes = encoded
        return self.arena.find_leaves(root, X, missing, codes)

    def leaf_values(self, leaves: np.ndarray) -> np.ndarray:
        return np.fromiter((self.arena.nodes[ni].value for ni in leaves), np.float64, leaves.size)

    def leaf_classes(self, leaves: np.ndarray) -> np.ndarray:
        return np.fromiter((self.arena.nodes[ni].class_idx for ni in leaves), np.int64, leaves.size)

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """
        保存用の名前付き配列ブロック

        カテゴリマップは cat_map（連結した値）と cat_ofs（変数ごとの開始位置）に展開する。
        """
        arrays = self.arena.to_arrays()
        ofs = np.zeros(self.n_all_vars + 1, dtype=np.int64)
        maps = []
        for vi in range(self.n_all_vars):
            m = self.cat_maps.get(vi, np.empty(0, dtype=np.float32))
            maps.append(m)
            ofs[vi + 1] = ofs[vi] + m.size
        arrays.update({
            "var_types": self.var_types,
            "cat_counts": self.cat_counts,
            "var_idx": self.var_idx,
            "cat_map": np.concatenate(maps).astype(np.float32) if maps else np.empty(0, np.float32),
            "cat_ofs": ofs,
            "class_labels": self.class_labels if self.class_labels is not None else np.empty(0),
            "is_classifier": np.array(self.is_classifier),
            "missing_value": np.array(self.missing_value),
            "names": np.asarray(self.names, dtype=str),
        })
        return arrays

    @classmethod
    def from_arrays(cls, arrays) -> 'TreeModelState':
        var_types = np.asarray(arrays["var_types"])
        ofs = np.asarray(arrays["cat_ofs"])
        cat_map = np.asarray(arrays["cat_map"])
        cat_maps = {
            int(vi): cat_map[ofs[vi]:ofs[vi + 1]].copy()
            for vi in np.flatnonzero(var_types == VAR_CATEGORICAL)
        }
        class_labels = np.asarray(arrays["class_labels"]) if bool(arrays["is_classifier"]) else None
        state = cls(
            var_types, arrays["cat_counts"], cat_maps, arrays["var_idx"], class_labels,
            float(arrays["missing_value"]), [str(s) for s in arrays["names"]]
        )
        state.arena = TreeArena.from_arrays(arrays, state.var_types, state.cat_counts)
        return state


class TreeInspectionMixin:
    """
    学習済みの木を調べるためのメソッド群

    self._state（TreeModelState）と self._check_is_trained() を前提とする。
    """

    def get_roots(self) -> List[int]:
        self._check_is_trained()
        return list(self._state.arena.roots)

    def get_nodes(self) -> List[DTreeNode]:
        self._check_is_trained()
        return self._state.arena.nodes

    def get_splits(self) -> List[DTreeSplit]:
        self._check_is_trained()
        return self._state.arena.splits

    def get_subsets(self) -> List[int]:
        self._check_is_trained()
        return self._state.arena.subsets

    def _describe_split(self, si: int) -> str:
        state = self._state
        split = state.arena.splits[si]
        name = state.names[split.var_idx]
        if split.subset_ofs >= 0:
            mask = state.arena.subset_mask(si)
            if split.inversed:
                mask = ~mask
            cats = state.cat_maps[split.var_idx][mask]
            return f"{name} in {{{', '.join(f'{c:g}' for c in cats)}}}"
        op = ">=" if split.inversed else "<"
        return f"{name} {op} {split.c:g}"

    def get_node_logs(self) -> List[str]:
        """
        各ノードの分割ルールを1行ずつ記述したログ

        Returns:
        --------
        lines : list of str
            木ごとに前順で並んだノードの説明
        """
        self._check_is_trained()
        arena = self._state.arena
        lines = []
        for t, root in enumerate(arena.roots):
            lines.append(f"tree {t}: {arena.count_nodes(root)} nodes, depth {arena.depth(root)}")
            for ni in arena.iter_subtree(root):
                node = arena.nodes[ni]
                indent = "  " * (node.depth - arena.nodes[root].depth + 1)
                if arena.is_leaf(ni) or node.pruned:
                    lines.append(f"{indent}[{ni}] leaf value={node.value:g} (n={node.sample_count})")
                else:
                    rule = self._describe_split(node.split)
                    default = "left" if node.default_dir < 0 else "right"
                    lines.append(
                        f"{indent}[{ni}] {rule} -> [{node.left}] else [{node.right}] "
                        f"(n={node.sample_count}, missing -> {default})"
                    )
        return lines

    def get_node_table(self) -> pd.DataFrame:
        """
        全ノードの属性を DataFrame で返す

        Returns:
        --------
        table : pandas.DataFrame
            1行が1ノード。分割変数・閾値・品質は先頭の分割のもの
        """
        self._check_is_trained()
        arena = self._state.arena
        tree_of = {}
        for t, root in enumerate(arena.roots):
            for ni in arena.iter_subtree(root, active_only=False):
                tree_of[ni] = t

        rows = []
        for ni, node in enumerate(arena.nodes):
            split = arena.splits[node.split] if node.split >= 0 else None
            rows.append({
                "node": ni,
                "tree": tree_of.get(ni, -1),
                "depth": node.depth,
                "parent": node.parent,
                "left": node.left,
                "right": node.right,
                "value": node.value,
                "class_idx": node.class_idx,
                "sample_count": node.sample_count,
                "node_risk": node.node_risk,
                "split_var": split.var_idx if split is not None else -1,
                "threshold": split.c if split is not None and split.subset_ofs < 0 else np.nan,
                "quality": split.quality if split is not None else np.nan,
                "default_dir": node.default_dir,
                "alpha": node.alpha,
                "pruned": node.pruned,
                "active": node.active,
            })
        return pd.DataFrame(rows)

    def print_node_summary(self) -> None:
        """Print the node logs of every tree."""
        for line in self.get_node_logs():
            print(line)
