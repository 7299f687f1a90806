"""
モデルインターフェース統一テスト用モジュール

このモジュールは、木モデル（DTrees, Boost, RTrees）の共通インターフェース
（train / predict / calc_error）を同じデータで実行・比較するための
ユーティリティを提供します。
"""

import numpy as np
from typing import Dict, Optional
import time
from ..models.boost import Boost
from ..models.dtrees import DTrees
from ..models.rtrees import RTrees
from ..models.tree_components.constants import MISSING_VALUE, ROW_SAMPLE, VAR_CATEGORICAL, VAR_ORDERED
from ..models.tree_components.train_data import TrainData
from .logger import get_logger

logger = get_logger(__name__)


def generate_classification_data(n_samples: int = 1000, n_features: int = 10, n_classes: int = 2,
                                 n_categorical: int = 0, n_categories: int = 4,
                                 missing_rate: float = 0.0, test_size: float = 0.2,
                                 random_state: Optional[int] = None) -> TrainData:
    """
    簡単な分類データを生成

    最初の n_categorical 列は 0..n_categories-1 の整数値のカテゴリ変数。
    クラスは特徴量の線形結合を分位点で区切って決める。

    Parameters:
    -----------
    n_samples : int, default=1000
        サンプル数
    n_features : int, default=10
        特徴量の数
    n_classes : int, default=2
        クラス数
    n_categorical : int, default=0
        カテゴリ変数の数
    n_categories : int, default=4
        カテゴリ変数のカテゴリ数
    missing_rate : float, default=0.0
        欠損値にする割合
    test_size : float, default=0.2
        テストデータの割合（0 なら分割しない）
    random_state : int, optional
        乱数シード

    Returns:
    --------
    data : TrainData
        訓練/テスト分割済みの学習データ
    """
    rng = np.random.RandomState(random_state)

    X = rng.randn(n_samples, n_features)
    X[:, :n_categorical] = rng.randint(0, n_categories, size=(n_samples, n_categorical))

    # 特徴の重みを生成（カテゴリ変数はカテゴリごとの効果）
    weights = rng.randn(n_features)
    score = X[:, n_categorical:] @ weights[n_categorical:]
    for j in range(n_categorical):
        effects = rng.randn(n_categories)
        score += effects[X[:, j].astype(int)]
    score += rng.randn(n_samples) * 0.1

    bins = np.quantile(score, np.linspace(0, 1, n_classes + 1)[1:-1])
    y = np.digitize(score, bins).astype(np.int32)

    if missing_rate > 0:
        X[rng.rand(n_samples, n_features) < missing_rate] = MISSING_VALUE

    var_type = [VAR_CATEGORICAL] * n_categorical + [VAR_ORDERED] * (n_features - n_categorical)
    var_type.append(VAR_CATEGORICAL)

    data = TrainData(X.astype(np.float32), ROW_SAMPLE, y, var_type=var_type, random_state=random_state)
    if test_size > 0:
        data.set_train_test_split_ratio(test_size, shuffle=True)
    return data


def check_model_interface(model_class, model_params: Dict = None, data: Optional[TrainData] = None,
                          n_samples: int = 1000, n_features: int = 10,
                          random_state: int = 42) -> Dict:
    """
    モデルのインターフェースを実行して結果を集計

    Parameters:
    -----------
    model_class : class
        テストするモデルクラス
    model_params : dict, optional
        モデルのパラメータ
    data : TrainData, optional
        学習データ（None なら generate_classification_data で生成）
    n_samples : int, default=1000
        サンプル数
    n_features : int, default=10
        特徴量の数
    random_state : int, default=42
        乱数シード

    Returns:
    --------
    results : dict
        学習・予測時間と訓練/テスト誤差
    """
    if model_params is None:
        model_params = {'random_state': random_state}

    if data is None:
        data = generate_classification_data(
            n_samples=n_samples,
            n_features=n_features,
            random_state=random_state
        )

    model = model_class(**model_params)

    # 学習時間を計測
    start_time = time.time()
    model.train(data)
    train_time = time.time() - start_time

    # 予測時間を計測
    start_time = time.time()
    model.predict(data.get_test_samples() if data.get_n_test_samples() else data.get_train_samples())
    predict_time = time.time() - start_time

    results = {
        'model_class': model_class.__name__,
        'train_time': train_time,
        'predict_time': predict_time,
        'train_error': model.calc_error(data, test=False),
        'test_error': model.calc_error(data, test=True),
    }
    logger.info("%s: train error %.4f, test error %.4f", model_class.__name__,
                results['train_error'], results['test_error'])
    return results


def compare_models(n_samples: int = 1000, n_features: int = 10, n_categorical: int = 0,
                   random_state: int = 42) -> Dict:
    """
    DTrees / Boost / RTrees を同じデータで比較

    Parameters:
    -----------
    n_samples : int, default=1000
        サンプル数
    n_features : int, default=10
        特徴量の数
    n_categorical : int, default=0
        カテゴリ変数の数
    random_state : int, default=42
        乱数シード

    Returns:
    --------
    results : dict
        モデル名ごとの check_model_interface の結果
    """
    data = generate_classification_data(
        n_samples=n_samples,
        n_features=n_features,
        n_categorical=n_categorical,
        random_state=random_state
    )

    model_configs = {
        'DTrees': (DTrees, {'max_depth': 8, 'cv_folds': 5, 'random_state': random_state}),
        'Boost': (Boost, {'weak_count': 50, 'random_state': random_state}),
        'RTrees': (RTrees, {'max_iter': 50, 'max_depth': 8, 'random_state': random_state}),
    }

    results = {}
    for name, (model_class, params) in model_configs.items():
        print(f"Testing {name}...")
        results[name] = check_model_interface(model_class, model_params=params, data=data)

    return results


if __name__ == "__main__":
    from .visualization import plot_model_comparison

    # モデルを比較
    results = compare_models(n_samples=1000, n_features=10, random_state=42)
    plot_model_comparison({'synthetic': {'models': results}}, metric='test_error',
                          save_path="model_comparison.png")
