"""
テスト共通のフィクスチャ
"""

import numpy as np
import pytest

from mltrees import ROW_SAMPLE, VAR_CATEGORICAL, VAR_ORDERED, TrainData


@pytest.fixture
def four_point_data():
    """1変数・2クラス: 0,1 -> クラス0、2,3 -> クラス1"""
    samples = np.array([[0], [1], [2], [3]], dtype=np.float32)
    responses = np.array([0, 0, 1, 1])
    return TrainData(samples, ROW_SAMPLE, responses, random_state=0)


@pytest.fixture
def binary_data():
    """2変数の2クラス分類（x0 + x1 > 0 がクラス1）"""
    rng = np.random.RandomState(0)
    X = rng.randn(200, 2).astype(np.float32)
    y = (X[:, 0] + X[:, 1] > 0).astype(np.int32)
    return TrainData(X, ROW_SAMPLE, y, random_state=0)


@pytest.fixture
def five_var_data():
    """5変数すべてが目的変数に効く2クラス分類"""
    rng = np.random.RandomState(1)
    X = rng.randn(300, 5).astype(np.float32)
    y = (X.sum(axis=1) > 0).astype(np.int32)
    return TrainData(X, ROW_SAMPLE, y, random_state=1)


@pytest.fixture
def regression_data():
    """1変数の回帰: y = x^2"""
    rng = np.random.RandomState(2)
    X = rng.uniform(-3, 3, size=(200, 1)).astype(np.float32)
    y = (X[:, 0] ** 2).astype(np.float64)
    return TrainData(X, ROW_SAMPLE, y, var_type=[VAR_ORDERED, VAR_ORDERED], random_state=2)


@pytest.fixture
def noisy_data():
    """ラベルノイズを含む3変数の2クラス分類（枝刈りのテスト用）"""
    rng = np.random.RandomState(3)
    X = rng.randn(300, 3).astype(np.float32)
    y = (X[:, 0] > 0).astype(np.int32)
    flip = rng.rand(300) < 0.2
    y[flip] = 1 - y[flip]
    return TrainData(X, ROW_SAMPLE, y, random_state=3)


@pytest.fixture
def multiclass_categorical_data():
    """カテゴリ変数（6カテゴリ）がクラス（3クラス）を決める分類"""
    rng = np.random.RandomState(4)
    cats = rng.randint(0, 6, size=240)
    noise = rng.randn(240)
    X = np.column_stack([cats, noise]).astype(np.float32)
    y = cats % 3
    var_type = [VAR_CATEGORICAL, VAR_ORDERED, VAR_CATEGORICAL]
    return TrainData(X, ROW_SAMPLE, y, var_type=var_type, random_state=4)
