"""
Decision Tree Node / Split Arena

This module contains the DTreeNode and DTreeSplit records and the TreeArena
that stores them in flat, index-addressed lists shared by every tree of a
model. Parent/child and split links are integer indices into the arena, -1
meaning "absent".
"""

from typing import Dict, List, Optional

import numpy as np

from .constants import VAR_CATEGORICAL


NODE_DTYPE = np.dtype([
    ("value", np.float64),
    ("class_idx", np.int32),
    ("parent", np.int32),
    ("left", np.int32),
    ("right", np.int32),
    ("default_dir", np.int8),
    ("split", np.int32),
    ("depth", np.int32),
    ("sample_count", np.int64),
    ("node_risk", np.float64),
    ("alpha", np.float64),
    ("pruned", np.bool_),
    ("active", np.bool_),
])

SPLIT_DTYPE = np.dtype([
    ("var_idx", np.int32),
    ("inversed", np.bool_),
    ("quality", np.float64),
    ("next", np.int32),
    ("c", np.float64),
    ("subset_ofs", np.int32),
])


class DTreeNode:
    """
    決定木のノード

    Attributes:
    -----------
    value : float
        予測値（クラスラベルまたは回帰の推定値）
    class_idx : int
        正規化されたクラスインデックス（回帰では -1）
    parent, left, right : int
        アリーナ内のノードインデックス（存在しない場合は -1）
    default_dir : int
        分割変数が欠損しているときの進行方向（-1: 左, +1: 右）
    split : int
        最初の分割のインデックス（リーフなら -1）
    depth : int
        ノードの深さ
    sample_count : int
        このノードの訓練サンプル数
    node_risk : float
        このノードをリーフとしたときの訓練誤差
    alpha : float
        コスト複雑度枝刈りでこのノードが畳まれる複雑度パラメータ
    pruned : bool
        枝刈りでリーフとして扱われるノード（部分木は保持）
    active : bool
        枝刈りされた部分木に含まれない場合 True
    """

    def __init__(self, parent: int = -1, depth: int = 0):
        self.value = 0.0
        self.class_idx = -1
        self.parent = parent
        self.left = -1
        self.right = -1
        self.default_dir = -1
        self.split = -1
        self.depth = depth
        self.sample_count = 0
        self.node_risk = 0.0
        self.alpha = np.inf
        self.pruned = False
        self.active = True

    def is_leaf(self) -> bool:
        return self.split < 0

    def __str__(self) -> str:
        if self.is_leaf():
            return f"Leaf(depth={self.depth}, samples={self.sample_count}, value={self.value:.4f})"
        return f"Node(depth={self.depth}, samples={self.sample_count}, split={self.split})"

    def __repr__(self) -> str:
        return self.__str__()


class DTreeSplit:
    """
    分割ルール

    順序変数: value < c なら左。カテゴリ変数: subsets[subset_ofs + code] が
    立っていれば左。inversed が True なら左右を入れ替える。

    Attributes:
    -----------
    var_idx : int
        分割に使う変数
    inversed : bool
        左右の反転
    quality : float
        分割の良さ（不純度の減少量、大きいほど良い）
    next : int
        同じノードの次の候補分割（品質の降順、無ければ -1）
    c : float
        順序変数の閾値
    subset_ofs : int
        カテゴリ変数のビット集合のオフセット
    """

    def __init__(self, var_idx: int, quality: float, c: float = 0.0, subset_ofs: int = -1,
                 inversed: bool = False):
        self.var_idx = var_idx
        self.inversed = inversed
        self.quality = quality
        self.next = -1
        self.c = c
        self.subset_ofs = subset_ofs

    def __repr__(self) -> str:
        if self.subset_ofs >= 0:
            return f"Split(var={self.var_idx}, subset_ofs={self.subset_ofs}, quality={self.quality:.4f})"
        return f"Split(var={self.var_idx}, c={self.c:.4f}, quality={self.quality:.4f})"


class _CompiledArena:
    """Array snapshot of an arena used for vectorised routing."""

    def __init__(self, arena: 'TreeArena'):
        n_nodes = len(arena.nodes)
        self.node_split = np.fromiter((n.split for n in arena.nodes), np.int64, n_nodes)
        self.node_left = np.fromiter((n.left for n in arena.nodes), np.int64, n_nodes)
        self.node_right = np.fromiter((n.right for n in arena.nodes), np.int64, n_nodes)
        self.node_default_left = np.fromiter((n.default_dir < 0 for n in arena.nodes), bool, n_nodes)
        self.node_alpha = np.fromiter((n.alpha for n in arena.nodes), np.float64, n_nodes)
        self.node_stop = (self.node_split < 0) | np.fromiter((n.pruned for n in arena.nodes), bool, n_nodes)

        n_splits = len(arena.splits)
        self.split_var = np.fromiter((s.var_idx for s in arena.splits), np.int64, n_splits)
        self.split_c = np.fromiter((s.c for s in arena.splits), np.float64, n_splits)
        self.split_ofs = np.fromiter((s.subset_ofs for s in arena.splits), np.int64, n_splits)
        self.split_inv = np.fromiter((s.inversed for s in arena.splits), bool, n_splits)
        self.split_is_cat = arena.var_types[self.split_var] == VAR_CATEGORICAL if n_splits else np.zeros(0, bool)
        self.subsets = np.asarray(arena.subsets, dtype=bool)


class TreeArena:
    """
    ノード・分割・ビット集合のフラットな格納領域

    Attributes:
    -----------
    nodes : list of DTreeNode
        全ノード
    splits : list of DTreeSplit
        全分割
    subsets : list of int
        カテゴリ分割のビット集合（0/1）
    roots : list of int
        各木のルートノードのインデックス
    var_types : np.ndarray
        変数種別（分割の解釈に使う）
    cat_counts : np.ndarray
        変数ごとのカテゴリ数（ビット集合の長さ）
    """

    def __init__(self, var_types: np.ndarray, cat_counts: np.ndarray):
        self.var_types = np.asarray(var_types, dtype=np.int32)
        self.cat_counts = np.asarray(cat_counts, dtype=np.int32)
        self.nodes: List[DTreeNode] = []
        self.splits: List[DTreeSplit] = []
        self.subsets: List[int] = []
        self.roots: List[int] = []
        self._compiled: Optional[_CompiledArena] = None

    def _touch(self) -> None:
        self._compiled = None

    def add_node(self, parent: int = -1, depth: int = 0) -> int:
        self.nodes.append(DTreeNode(parent=parent, depth=depth))
        self._touch()
        return len(self.nodes) - 1

    def add_split(self, split: DTreeSplit) -> int:
        self.splits.append(split)
        self._touch()
        return len(self.splits) - 1

    def add_subset(self, mask) -> int:
        """Append a category bitset and return its offset."""
        ofs = len(self.subsets)
        self.subsets.extend(int(b) for b in np.asarray(mask, dtype=bool))
        self._touch()
        return ofs

    def is_leaf(self, ni: int) -> bool:
        return self.nodes[ni].split < 0

    def split_chain(self, ni: int) -> List[int]:
        """Split indices of a node, best first."""
        chain = []
        si = self.nodes[ni].split
        while si >= 0:
            chain.append(si)
            si = self.splits[si].next
        return chain

    def subset_mask(self, si: int) -> np.ndarray:
        split = self.splits[si]
        k = int(self.cat_counts[split.var_idx])
        return np.asarray(self.subsets[split.subset_ofs:split.subset_ofs + k], dtype=bool)

    def invalidate(self) -> None:
        """Drop the routing cache after nodes were edited in place."""
        self._touch()

    def compile(self) -> _CompiledArena:
        if self._compiled is None:
            self._compiled = _CompiledArena(self)
        return self._compiled

    # ------------------------------------------------------------------
    # 走査
    # ------------------------------------------------------------------

    def iter_subtree(self, root: int, active_only: bool = True) -> List[int]:
        """
        部分木のノードを前順で列挙

        Parameters:
        -----------
        root : int
            ルートノード
        active_only : bool, default=True
            True なら枝刈りで畳まれたノードの下には降りない

        Returns:
        --------
        nodes : list of int
            ノードインデックス
        """
        order = []
        stack = [root]
        while stack:
            ni = stack.pop()
            order.append(ni)
            node = self.nodes[ni]
            if node.split < 0 or (active_only and node.pruned):
                continue
            stack.append(node.right)
            stack.append(node.left)
        return order

    def leaves(self, root: int) -> List[int]:
        return [ni for ni in self.iter_subtree(root)
                if self.nodes[ni].split < 0 or self.nodes[ni].pruned]

    def count_nodes(self, root: int) -> int:
        return len(self.iter_subtree(root))

    def depth(self, root: int) -> int:
        base = self.nodes[root].depth
        return max(self.nodes[ni].depth for ni in self.iter_subtree(root)) - base

    def find_leaves(
        self,
        root: int,
        samples: np.ndarray,
        missing: np.ndarray,
        codes: np.ndarray,
        alpha: Optional[float] = None
    ) -> np.ndarray:
        """
        各サンプルが到達するリーフを求める

        Parameters:
        -----------
        root : int
            ルートノード
        samples : array-like, shape=(n_samples, n_all_vars)
            生の値
        missing : array-like of bool, shape=(n_samples, n_all_vars)
            欠損マスク
        codes : array-like of int, shape=(n_samples, n_all_vars)
            カテゴリコード（未知・欠損・順序変数は -1）
        alpha : float, optional
            指定した場合、alpha 以下の複雑度で畳まれるノードをリーフとして扱う

        Returns:
        --------
        leaves : np.ndarray of int64, shape=(n_samples,)
            到達したノードのインデックス
        """
        c = self.compile()
        n = samples.shape[0]
        node_idx = np.full(n, root, dtype=np.int64)
        stop = c.node_stop if alpha is None else (c.node_stop | (c.node_alpha <= alpha))
        rows = np.arange(n)[~stop[node_idx]]

        while rows.size:
            nodes = node_idx[rows]
            s = c.node_split[nodes]
            v = c.split_var[s]
            miss = missing[rows, v].copy()
            go_left = np.empty(rows.size, dtype=bool)

            is_cat = c.split_is_cat[s]
            ordered = ~is_cat
            if np.any(ordered):
                go_left[ordered] = samples[rows[ordered], v[ordered]] < c.split_c[s[ordered]]
            if np.any(is_cat):
                code = codes[rows[is_cat], v[is_cat]]
                unknown = code < 0
                bits = c.subsets[c.split_ofs[s[is_cat]] + np.maximum(code, 0)]
                go_left[is_cat] = bits
                miss[is_cat] |= unknown

            go_left ^= c.split_inv[s]
            go_left = np.where(miss, c.node_default_left[nodes], go_left)
            node_idx[rows] = np.where(go_left, c.node_left[nodes], c.node_right[nodes])
            rows = rows[~stop[node_idx[rows]]]

        return node_idx

    # ------------------------------------------------------------------
    # 木のコピー・圧縮
    # ------------------------------------------------------------------

    def _copy_subtree(self, src: 'TreeArena', root: int, collapse_pruned: bool) -> int:
        """Copy the tree under root from src into self, remapping all indices."""
        order = src.iter_subtree(root, active_only=collapse_pruned)
        base = len(self.nodes)
        remap = {old: base + i for i, old in enumerate(order)}

        for old in order:
            node = src.nodes[old]
            new = DTreeNode(parent=remap.get(node.parent, -1), depth=node.depth)
            new.value = node.value
            new.class_idx = node.class_idx
            new.default_dir = node.default_dir
            new.sample_count = node.sample_count
            new.node_risk = node.node_risk
            new.alpha = node.alpha
            new.active = True if collapse_pruned else node.active
            new.pruned = False if collapse_pruned else node.pruned

            if node.split >= 0 and not (collapse_pruned and node.pruned):
                new.left = remap[node.left]
                new.right = remap[node.right]
                prev = None
                for si in src.split_chain(old):
                    split = src.splits[si]
                    copy = DTreeSplit(split.var_idx, split.quality, split.c, -1, split.inversed)
                    if split.subset_ofs >= 0:
                        copy.subset_ofs = self.add_subset(src.subset_mask(si))
                    new_si = self.add_split(copy)
                    if prev is None:
                        new.split = new_si
                    else:
                        self.splits[prev].next = new_si
                    prev = new_si
            self.nodes.append(new)

        self._touch()
        return remap[root]

    def append_tree(self, src: 'TreeArena', root: int) -> int:
        """
        別のアリーナの木をこのアリーナに追加（アンサンブルの統合用）

        Returns:
        --------
        new_root : int
            追加された木のルート（roots にも登録される）
        """
        new_root = self._copy_subtree(src, root, collapse_pruned=False)
        self.roots.append(new_root)
        return new_root

    def compact(self) -> None:
        """Physically drop pruned subtrees and unused splits/subsets."""
        fresh = TreeArena(self.var_types, self.cat_counts)
        for root in self.roots:
            fresh.roots.append(fresh._copy_subtree(self, root, collapse_pruned=True))
        self.nodes = fresh.nodes
        self.splits = fresh.splits
        self.subsets = fresh.subsets
        self.roots = fresh.roots
        self._touch()

    # ------------------------------------------------------------------
    # 配列形式への変換
    # ------------------------------------------------------------------

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """
        名前付き配列ブロックに変換

        Returns:
        --------
        arrays : dict
            "nodes", "splits", "subsets", "roots" の各配列
        """
        nodes = np.zeros(len(self.nodes), dtype=NODE_DTYPE)
        for i, n in enumerate(self.nodes):
            nodes[i] = (n.value, n.class_idx, n.parent, n.left, n.right, n.default_dir, n.split,
                        n.depth, n.sample_count, n.node_risk, n.alpha, n.pruned, n.active)
        splits = np.zeros(len(self.splits), dtype=SPLIT_DTYPE)
        for i, s in enumerate(self.splits):
            splits[i] = (s.var_idx, s.inversed, s.quality, s.next, s.c, s.subset_ofs)
        return {
            "nodes": nodes,
            "splits": splits,
            "subsets": np.asarray(self.subsets, dtype=np.uint8),
            "roots": np.asarray(self.roots, dtype=np.int32),
        }

    @classmethod
    def from_arrays(cls, arrays: Dict[str, np.ndarray], var_types: np.ndarray,
                    cat_counts: np.ndarray) -> 'TreeArena':
        arena = cls(var_types, cat_counts)
        for rec in arrays["nodes"]:
            node = DTreeNode(parent=int(rec["parent"]), depth=int(rec["depth"]))
            node.value = float(rec["value"])
            node.class_idx = int(rec["class_idx"])
            node.left = int(rec["left"])
            node.right = int(rec["right"])
            node.default_dir = int(rec["default_dir"])
            node.split = int(rec["split"])
            node.sample_count = int(rec["sample_count"])
            node.node_risk = float(rec["node_risk"])
            node.alpha = float(rec["alpha"])
            node.pruned = bool(rec["pruned"])
            node.active = bool(rec["active"])
            arena.nodes.append(node)
        for rec in arrays["splits"]:
            split = DTreeSplit(int(rec["var_idx"]), float(rec["quality"]), float(rec["c"]),
                               int(rec["subset_ofs"]), bool(rec["inversed"]))
            split.next = int(rec["next"])
            arena.splits.append(split)
        arena.subsets = [int(b) for b in arrays["subsets"]]
        arena.roots = [int(r) for r in arrays["roots"]]
        return arena
