"""
TrainData のテスト
"""

import numpy as np
import pandas as pd
import pytest

from mltrees import (
    COL_SAMPLE,
    MISSING_VALUE,
    ROW_SAMPLE,
    VAR_CATEGORICAL,
    VAR_ORDERED,
    InvalidArgumentError,
    TrainData,
)


def _ten_samples(**kwargs):
    X = np.arange(20, dtype=np.float32).reshape(10, 2)
    y = np.array([0, 1] * 5)
    return TrainData(X, ROW_SAMPLE, y, **kwargs)


def test_split_ratio_without_shuffle():
    """10サンプルで ratio=0.3 ならテストは最後の3サンプル"""
    data = _ten_samples(random_state=0)
    data.set_train_test_split_ratio(0.3, shuffle=False)
    np.testing.assert_array_equal(data.get_train_sample_idx(), np.arange(7))
    np.testing.assert_array_equal(data.get_test_sample_idx(), np.array([7, 8, 9]))
    assert data.get_n_train_samples() == 7
    assert data.get_n_test_samples() == 3


def test_split_count_is_train_count():
    data = _ten_samples(random_state=0)
    data.set_train_test_split(4, shuffle=False)
    np.testing.assert_array_equal(data.get_train_sample_idx(), np.arange(4))
    np.testing.assert_array_equal(data.get_test_sample_idx(), np.arange(4, 10))


def test_shuffled_split_is_reproducible_and_disjoint():
    a = _ten_samples(random_state=123)
    b = _ten_samples(random_state=123)
    a.set_train_test_split_ratio(0.3)
    b.set_train_test_split_ratio(0.3)

    np.testing.assert_array_equal(a.get_train_sample_idx(), b.get_train_sample_idx())
    train, test = a.get_train_sample_idx(), a.get_test_sample_idx()
    assert np.all(np.diff(train) > 0) and np.all(np.diff(test) > 0)
    assert np.intersect1d(train, test).size == 0
    np.testing.assert_array_equal(np.union1d(train, test), np.arange(10))


def test_random_state_is_recorded():
    data = _ten_samples()
    assert isinstance(data.random_state, int)


@pytest.mark.parametrize("ratio", [0.0, 1.0, -0.2, 1.5])
def test_split_ratio_out_of_range(ratio):
    data = _ten_samples(random_state=0)
    with pytest.raises(InvalidArgumentError):
        data.set_train_test_split_ratio(ratio)


def test_split_count_too_large():
    data = _ten_samples(random_state=0)
    with pytest.raises(InvalidArgumentError):
        data.set_train_test_split(11)


def test_default_split_uses_all_samples():
    data = _ten_samples(random_state=0)
    assert data.get_n_train_samples() == 10
    assert data.get_n_test_samples() == 0


def test_shuffle_train_test_keeps_sizes():
    data = _ten_samples(random_state=5)
    data.set_train_test_split(6)
    data.shuffle_train_test()
    assert data.get_n_train_samples() == 6
    assert data.get_n_test_samples() == 4


def test_categorical_strings_from_dataframe():
    """文字列カテゴリは昇順にコード化される（blue=0, red=1）"""
    df = pd.DataFrame({"color": ["red", "red", "blue", "blue"], "y": [1, 1, 0, 0]})
    data = TrainData.from_dataframe(df, response="y", random_state=0)

    assert data.get_var_type()[0] == VAR_CATEGORICAL
    assert data.get_cat_count(0) == 2
    assert list(data.get_cat_labels(0)) == ["blue", "red"]
    np.testing.assert_array_equal(data.get_norm_cat_values(0), [1, 1, 0, 0])
    assert data.get_names() == ["color"]


def test_category_codes_are_a_bijection():
    X = np.array([[5.0], [2.0], [9.0], [2.0], [5.0], [MISSING_VALUE]], dtype=np.float32)
    y = np.array([0, 1, 0, 1, 0, 1])
    data = TrainData(X, ROW_SAMPLE, y, var_type=[VAR_CATEGORICAL], random_state=0)

    cat_map = data.get_cat_map(0)
    np.testing.assert_array_equal(cat_map, [2.0, 5.0, 9.0])
    codes = data.get_norm_cat_values(0)
    present = codes >= 0
    np.testing.assert_array_equal(cat_map[codes[present]], X[present, 0])
    assert codes[-1] == -1
    assert sorted(set(codes[present])) == [0, 1, 2]


def test_missing_values_and_nan():
    X = np.array([[1.0, MISSING_VALUE], [np.nan, 2.0], [3.0, 4.0]], dtype=np.float32)
    data = TrainData(X, ROW_SAMPLE, np.array([0, 1, 0]), random_state=0)
    expected = np.array([[False, True], [True, False], [False, False]])
    np.testing.assert_array_equal(data.get_missing(), expected)


def test_missing_mask_argument():
    X = np.ones((3, 2), dtype=np.float32)
    mask = np.array([[True, False], [False, False], [False, True]])
    data = TrainData(X, ROW_SAMPLE, np.array([0, 1, 0]), missing_mask=mask, random_state=0)
    np.testing.assert_array_equal(data.get_missing(), mask)


def test_col_sample_layout_matches_row_layout():
    X = np.arange(12, dtype=np.float32).reshape(4, 3)
    y = np.array([0, 1, 0, 1])
    row = TrainData(X, ROW_SAMPLE, y, random_state=0)
    col = TrainData(X.T, COL_SAMPLE, y, random_state=0)

    np.testing.assert_array_equal(row.get_samples(), col.get_samples())
    assert col.get_layout() == COL_SAMPLE
    assert col.get_n_samples() == 4
    assert col.get_n_all_vars() == 3


def test_get_values_follows_subset_order():
    data = _ten_samples(random_state=0)
    np.testing.assert_array_equal(data.get_values(1, [3, 0, 2]), [7.0, 1.0, 5.0])


def test_norm_cat_values_rejects_ordered_variable():
    data = _ten_samples(random_state=0)
    with pytest.raises(InvalidArgumentError):
        data.get_norm_cat_values(0)
    assert data.get_cat_count(0) == 0


def test_response_type_inference():
    X = np.zeros((4, 1), dtype=np.float32)
    assert TrainData(X, ROW_SAMPLE, np.array([0, 1, 0, 1])).get_response_type() == VAR_CATEGORICAL
    assert TrainData(X, ROW_SAMPLE, np.array([0.5, 1.5, 0.1, 2.0])).get_response_type() == VAR_ORDERED


def test_class_labels_and_normalised_responses():
    X = np.zeros((4, 1), dtype=np.float32)
    data = TrainData(X, ROW_SAMPLE, np.array(["b", "a", "c", "a"], dtype=object))
    assert list(data.get_class_labels()) == ["a", "b", "c"]
    np.testing.assert_array_equal(data.get_norm_cat_responses(), [1, 0, 2, 0])


def test_var_idx_and_sample_idx_masks():
    X = np.zeros((5, 3), dtype=np.float32)
    data = TrainData(X, ROW_SAMPLE, np.array([0, 1, 0, 1, 0]),
                     var_idx=np.array([True, False, True]), sample_idx=[4, 1, 1])
    np.testing.assert_array_equal(data.get_var_idx(), [0, 2])
    np.testing.assert_array_equal(data.get_sample_idx(), [1, 4])
    np.testing.assert_array_equal(data.get_train_sample_idx(), [1, 4])
    assert data.get_n_vars() == 2


@pytest.mark.parametrize("kwargs", [
    {"var_type": [VAR_ORDERED] * 5},
    {"sample_weights": [1.0, -1.0, 1.0, 1.0]},
    {"var_idx": [7]},
    {"layout": 3},
])
def test_invalid_construction(kwargs):
    X = np.zeros((4, 2), dtype=np.float32)
    with pytest.raises(InvalidArgumentError):
        TrainData(X, responses=np.array([0, 1, 0, 1]), **kwargs)


def test_mismatched_responses():
    with pytest.raises(InvalidArgumentError):
        TrainData(np.zeros((4, 2), dtype=np.float32), ROW_SAMPLE, np.array([0, 1, 0]))


def test_default_subst_values():
    X = np.array([[1.0, 3.0], [3.0, 3.0], [MISSING_VALUE, 7.0]], dtype=np.float32)
    data = TrainData(X, ROW_SAMPLE, np.array([0, 1, 0]), var_type=[VAR_ORDERED, VAR_CATEGORICAL])
    np.testing.assert_allclose(data.get_default_subst_values(), [2.0, 3.0])


def test_encode_frame_handles_unknown_categories():
    df = pd.DataFrame({"color": ["red", "blue", None], "size": [1.0, 2.0, 3.0], "y": [1, 0, 1]})
    data = TrainData.from_dataframe(df, response="y", random_state=0)

    new = pd.DataFrame({"color": ["blue", "green"], "size": [5.0, np.nan]})
    encoded = data.encode_frame(new)
    assert encoded[0, 0] == 0.0
    assert encoded[1, 0] == -1.0
    assert encoded[1, 1] == np.float32(MISSING_VALUE)
    assert data.get_missing()[2, 0]


def test_sub_vector():
    vec = np.array([10, 20, 30])
    np.testing.assert_array_equal(TrainData.get_sub_vector(vec, [2, 0]), [30, 10])
    np.testing.assert_array_equal(TrainData.get_sub_vector(vec, None), vec)
