"""
TreeArena（ノード・分割の格納領域）のテスト
"""

import numpy as np
import pytest

from mltrees import MISSING_VALUE, VAR_CATEGORICAL, VAR_ORDERED
from mltrees.models.tree_components import DTreeSplit, TreeArena


def _build_arena():
    """
    var0 < 1.5 で左右に分け、右側を var1（3カテゴリ）で {0, 2} / {1} に分ける木

    root(0): var0 < 1.5, 欠損は右
      left(1): leaf value=10
      right(2): var1 in {0, 2}, 欠損は左
        rl(3): leaf value=20
        rr(4): leaf value=30
    """
    arena = TreeArena(var_types=[VAR_ORDERED, VAR_CATEGORICAL], cat_counts=[0, 3])
    root = arena.add_node()
    left = arena.add_node(parent=root, depth=1)
    right = arena.add_node(parent=root, depth=1)
    arena.nodes[root].left, arena.nodes[root].right = left, right
    arena.nodes[root].split = arena.add_split(DTreeSplit(0, 1.0, c=1.5))
    arena.nodes[root].default_dir = 1

    rl = arena.add_node(parent=right, depth=2)
    rr = arena.add_node(parent=right, depth=2)
    arena.nodes[right].left, arena.nodes[right].right = rl, rr
    ofs = arena.add_subset([True, False, True])
    arena.nodes[right].split = arena.add_split(DTreeSplit(1, 0.5, subset_ofs=ofs))
    arena.nodes[right].default_dir = -1

    for ni, value in [(left, 10.0), (rl, 20.0), (rr, 30.0)]:
        arena.nodes[ni].value = value
    arena.roots.append(root)
    return arena


def _inputs():
    samples = np.array([
        [0.0, 1.0],
        [2.0, 0.0],
        [2.0, 1.0],
        [MISSING_VALUE, 2.0],
        [2.0, 7.0],
    ], dtype=np.float32)
    missing = samples == np.float32(MISSING_VALUE)
    codes = np.full(samples.shape, -1, dtype=np.int32)
    codes[:4, 1] = [1, 0, 1, 2]
    return samples, missing, codes


def test_find_leaves_routes_ordered_categorical_and_missing():
    arena = _build_arena()
    leaves = arena.find_leaves(0, *_inputs())
    # 欠損 -> 既定方向、未知のカテゴリ -> 既定方向
    np.testing.assert_array_equal(leaves, [1, 3, 4, 3, 3])


def test_inversed_split_swaps_directions():
    arena = _build_arena()
    arena.splits[1].inversed = True
    arena.invalidate()
    leaves = arena.find_leaves(0, *_inputs())
    # 既定方向は反転の影響を受けない
    np.testing.assert_array_equal(leaves, [1, 4, 3, 4, 3])


def test_traversal_helpers():
    arena = _build_arena()
    assert arena.iter_subtree(0) == [0, 1, 2, 3, 4]
    assert arena.leaves(0) == [1, 3, 4]
    assert arena.count_nodes(0) == 5
    assert arena.depth(0) == 2
    assert arena.split_chain(0) == [0]
    np.testing.assert_array_equal(arena.subset_mask(1), [True, False, True])


def test_split_chain_follows_next_links():
    arena = _build_arena()
    second = arena.add_split(DTreeSplit(1, 0.2, subset_ofs=0))
    arena.splits[0].next = second
    assert arena.split_chain(0) == [0, second]


def test_pruned_node_acts_as_leaf_and_compact_drops_subtree():
    arena = _build_arena()
    arena.nodes[2].pruned = True
    arena.nodes[2].value = 25.0
    arena.invalidate()

    samples, missing, codes = _inputs()
    leaves = arena.find_leaves(0, samples, missing, codes)
    np.testing.assert_array_equal(leaves, [1, 2, 2, 2, 2])

    arena.compact()
    assert len(arena.nodes) == 3
    assert len(arena.splits) == 1
    assert arena.subsets == []
    root = arena.roots[0]
    assert arena.nodes[root].parent == -1
    values = [arena.nodes[ni].value for ni in arena.find_leaves(root, samples, missing, codes)]
    assert values == [10.0, 25.0, 25.0, 25.0, 25.0]


def test_find_leaves_with_alpha_collapses_nodes():
    arena = _build_arena()
    arena.nodes[0].alpha = 2.0
    arena.nodes[2].alpha = 1.0
    arena.invalidate()
    samples, missing, codes = _inputs()

    np.testing.assert_array_equal(arena.find_leaves(0, samples, missing, codes, alpha=1.0), [1, 2, 2, 2, 2])
    np.testing.assert_array_equal(arena.find_leaves(0, samples, missing, codes, alpha=2.0), [0] * 5)


def test_append_tree_remaps_indices():
    target = _build_arena()
    source = _build_arena()
    new_root = target.append_tree(source, 0)

    assert target.roots == [0, new_root]
    assert new_root == 5
    samples, missing, codes = _inputs()
    leaves = target.find_leaves(new_root, samples, missing, codes)
    np.testing.assert_array_equal(leaves, [6, 8, 9, 8, 8])
    # 分割・ビット集合は新しい領域を指す
    assert target.nodes[7].split >= 2
    np.testing.assert_array_equal(target.subset_mask(target.nodes[7].split), [True, False, True])


def test_array_blocks_preserve_routing():
    arena = _build_arena()
    arrays = arena.to_arrays()
    assert arrays["nodes"].shape == (5,)
    assert arrays["splits"].shape == (2,)

    restored = TreeArena.from_arrays(arrays, arena.var_types, arena.cat_counts)
    inputs = _inputs()
    np.testing.assert_array_equal(restored.find_leaves(0, *inputs), arena.find_leaves(0, *inputs))
    assert restored.nodes[0].default_dir == 1
    assert restored.roots == [0]


@pytest.mark.parametrize("ni,expected", [(0, False), (1, True)])
def test_is_leaf(ni, expected):
    arena = _build_arena()
    assert arena.is_leaf(ni) is expected
    assert arena.nodes[ni].is_leaf() is expected
