"""
実験結果の保存・可視化ユーティリティモジュール

このモジュールは、木モデル（DTrees, Boost, RTrees）の学習結果を
保存・可視化するためのユーティリティ関数を提供します。
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
import os
import json
from typing import Dict, List, Optional, Sequence
import datetime


def create_results_directory(base_dir: str = "results") -> str:
    """
    実験結果を保存するディレクトリを作成

    Parameters:
    -----------
    base_dir : str, default="results"
        基本ディレクトリ名

    Returns:
    --------
    results_dir : str
        作成された結果ディレクトリのパス
    """
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    results_dir = os.path.join(base_dir, f"experiment_{timestamp}")

    os.makedirs(os.path.join(results_dir, "figures"), exist_ok=True)
    os.makedirs(os.path.join(results_dir, "models"), exist_ok=True)

    return results_dir


def save_experiment_config(config: Dict, results_dir: str) -> None:
    """
    実験設定を JSON で保存

    Parameters:
    -----------
    config : dict
        実験設定（モデルのパラメータなど）
    results_dir : str
        結果ディレクトリのパス
    """
    with open(os.path.join(results_dir, "experiment_config.json"), 'w') as f:
        json.dump(config, f, indent=2, default=str)


def plot_var_importance(importance: np.ndarray, names: Optional[Sequence[str]] = None,
                        title: str = "Variable Importance", top_n: Optional[int] = None,
                        save_path: Optional[str] = None) -> None:
    """
    変数重要度の横棒グラフ

    Parameters:
    -----------
    importance : array-like, shape=(n_vars,)
        変数重要度
    names : sequence of str, optional
        変数名
    title : str, default="Variable Importance"
        プロットのタイトル
    top_n : int, optional
        上位 top_n 個だけを表示
    save_path : str, optional
        保存先のパス
    """
    importance = np.asarray(importance, dtype=np.float64)
    if names is None:
        names = [f"var_{i}" for i in range(importance.size)]
    df = pd.DataFrame({"variable": list(names), "importance": importance})
    df = df.sort_values("importance", ascending=False)
    if top_n is not None:
        df = df.head(top_n)

    plt.figure(figsize=(8, max(3, 0.4 * len(df))))
    sns.barplot(data=df, x="importance", y="variable", color="steelblue")
    plt.title(title)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    plt.close()


def plot_boost_history(history: Dict[str, list], title: str = "Boosting History",
                       save_path: Optional[str] = None) -> None:
    """
    ブースティングの学習履歴（重み付き誤差・訓練誤差・損失）をプロット

    Parameters:
    -----------
    history : dict
        Boost.get_training_history() の戻り値
    title : str, default="Boosting History"
        プロットのタイトル
    save_path : str, optional
        保存先のパス
    """
    iterations = np.arange(1, len(history["train_error"]) + 1)

    fig, axes = plt.subplots(1, 2, figsize=(12, 4))
    axes[0].plot(iterations, history["weighted_error"], marker='o', label="weak learner error")
    axes[0].plot(iterations, history["train_error"], marker='s', label="ensemble train error")
    axes[0].set_xlabel('Weak learner')
    axes[0].set_ylabel('Error')
    axes[0].legend()
    axes[0].grid(True, linestyle='--', alpha=0.7)

    axes[1].plot(iterations, history["loss"], marker='o', color="darkorange")
    axes[1].set_xlabel('Weak learner')
    axes[1].set_ylabel('Loss')
    axes[1].grid(True, linestyle='--', alpha=0.7)

    fig.suptitle(title)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    plt.close()


def plot_oob_error(oob_errors: List[float], batch_size: int = 1, title: str = "Out-of-Bag Error",
                   save_path: Optional[str] = None) -> None:
    """
    木の数に対する OOB 誤差の推移をプロット

    Parameters:
    -----------
    oob_errors : list of float
        RTrees.oob_error_history（バッチごとの OOB 誤差）
    batch_size : int, default=1
        1バッチあたりの木の数（RTrees の n_jobs）
    title : str, default="Out-of-Bag Error"
        プロットのタイトル
    save_path : str, optional
        保存先のパス
    """
    n_trees = np.arange(1, len(oob_errors) + 1) * batch_size

    plt.figure(figsize=(10, 6))
    plt.plot(n_trees, oob_errors, marker='o')
    plt.xlabel('Number of trees')
    plt.ylabel('OOB error')
    plt.title(title)
    plt.grid(True, linestyle='--', alpha=0.7)

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    plt.close()


def plot_model_comparison(results: Dict, metric: str = 'test_error',
                          title: str = "Model Performance Comparison",
                          save_path: Optional[str] = None) -> None:
    """
    データセット × モデルの指標をヒートマップで比較

    Parameters:
    -----------
    results : dict
        {dataset: {"models": {model: {metric: value, ...}}}} 形式の比較結果
    metric : str, default='test_error'
        比較する指標
    title : str, default="Model Performance Comparison"
        プロットのタイトル
    save_path : str, optional
        保存先のパス
    """
    dataset_names = list(results.keys())
    model_names = list(results[dataset_names[0]]['models'].keys())

    data = {}
    for model_name in model_names:
        data[model_name] = [results[dataset]['models'][model_name][metric]
                            for dataset in dataset_names]

    df = pd.DataFrame(data, index=dataset_names)

    plt.figure(figsize=(12, 8))
    sns.heatmap(df, annot=True, fmt=".4f", cmap="YlGnBu")
    plt.title(title)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=300, bbox_inches='tight')

    plt.close()


def create_summary_report(results: Dict, results_dir: str) -> str:
    """
    モデル比較結果の要約レポート（Markdown）を作成

    Parameters:
    -----------
    results : dict
        plot_model_comparison と同じ形式の比較結果
    results_dir : str
        結果ディレクトリのパス

    Returns:
    --------
    report_path : str
        保存したレポートのパス
    """
    report = []
    report.append("# 木モデル比較レポート")
    report.append(f"実行日時: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

    for dataset_name, dataset_result in results.items():
        report.append(f"\n## {dataset_name} データセット")
        report.append("\n| モデル | 訓練誤差 | テスト誤差 | 訓練時間(秒) | 予測時間(秒) |")
        report.append("| --- | --- | --- | --- | --- |")
        for model_name, r in dataset_result['models'].items():
            report.append(
                f"| {model_name} | {r['train_error']:.4f} | {r['test_error']:.4f} | "
                f"{r['train_time']:.4f} | {r['predict_time']:.4f} |"
            )

    report_path = os.path.join(results_dir, "summary_report.md")
    with open(report_path, 'w') as f:
        f.write('\n'.join(report))
    return report_path
