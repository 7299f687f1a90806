"""
ユーティリティ（ロガー・例外・可視化・モデル比較）のテスト
"""

import io
import json
import logging
import os

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from mltrees import (
    Boost,
    DTrees,
    InvalidArgumentError,
    MLTreesError,
    NotTrainedError,
    RTrees,
    UnsupportedError,
    get_logger,
    setup_logging,
)
from mltrees.utils.model_interface import check_model_interface, compare_models, generate_classification_data
from mltrees.utils.visualization import (
    create_results_directory,
    create_summary_report,
    plot_boost_history,
    plot_model_comparison,
    plot_oob_error,
    plot_var_importance,
    save_experiment_config,
)


def test_logger_names_are_namespaced():
    assert get_logger("models.dtrees").name == "mltrees.models.dtrees"
    assert get_logger("mltrees.models.boost").name == "mltrees.models.boost"
    assert get_logger().name == "mltrees"


def test_setup_logging_writes_formatted_records():
    stream = io.StringIO()
    logger = setup_logging(logging.DEBUG, stream=stream)
    try:
        get_logger("tests").info("hello %d", 42)
        output = stream.getvalue()
        assert "INFO" in output
        assert "mltrees.tests" in output
        assert "hello 42" in output

        # 再設定してもハンドラは重複しない
        setup_logging("WARNING", stream=stream)
        assert sum(getattr(h, "_mltrees", False) for h in logger.handlers) == 1
    finally:
        for handler in list(logger.handlers):
            if getattr(handler, "_mltrees", False):
                logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)


def test_exception_hierarchy_and_context():
    err = InvalidArgumentError("bad value", {"max_depth": 0})
    assert isinstance(err, MLTreesError)
    assert isinstance(err, ValueError)
    assert "max_depth=0" in str(err)
    assert str(NotTrainedError("not yet")) == "not yet"
    assert issubclass(UnsupportedError, NotImplementedError)


def test_generate_classification_data():
    data = generate_classification_data(n_samples=200, n_features=4, n_classes=3, n_categorical=1,
                                        missing_rate=0.05, test_size=0.25, random_state=0)
    assert data.get_n_samples() == 200
    assert data.get_n_test_samples() == 50
    assert data.get_cat_count(0) == 4
    assert data.get_class_labels().size == 3
    assert data.get_missing().any()


@pytest.mark.parametrize("model_class,params", [
    (DTrees, {"max_depth": 4, "cv_folds": 3, "random_state": 0}),
    (Boost, {"weak_count": 10, "random_state": 0}),
    (RTrees, {"max_iter": 5, "random_state": 0}),
])
def test_check_model_interface(model_class, params):
    data = generate_classification_data(n_samples=300, n_features=5, n_categorical=1, random_state=1)
    results = check_model_interface(model_class, model_params=params, data=data)
    assert results["model_class"] == model_class.__name__
    assert 0.0 <= results["train_error"] <= 100.0
    assert 0.0 <= results["test_error"] <= 100.0
    assert results["train_time"] >= 0.0


def test_compare_models(capsys):
    results = compare_models(n_samples=200, n_features=4, n_categorical=1, random_state=0)
    assert set(results) == {"DTrees", "Boost", "RTrees"}
    assert "Testing RTrees..." in capsys.readouterr().out


def test_plots_and_report(tmp_path):
    results_dir = create_results_directory(str(tmp_path / "results"))
    assert os.path.isdir(os.path.join(results_dir, "figures"))
    assert os.path.isdir(os.path.join(results_dir, "models"))

    save_experiment_config({"weak_count": 10, "seed": np.int64(1)}, results_dir)
    with open(os.path.join(results_dir, "experiment_config.json")) as f:
        assert json.load(f)["weak_count"] == 10

    data = generate_classification_data(n_samples=150, n_features=3, random_state=2)
    boost = Boost(weak_count=4)
    boost.train(data)
    forest = RTrees(max_iter=3, calculate_var_importance=True, random_state=0)
    forest.train(data)

    figures = os.path.join(results_dir, "figures")
    plot_var_importance(forest.get_var_importance(), names=data.get_names(), top_n=2,
                        save_path=os.path.join(figures, "importance.png"))
    plot_boost_history(boost.get_training_history(), save_path=os.path.join(figures, "boost.png"))
    plot_oob_error(forest.oob_error_history, save_path=os.path.join(figures, "oob.png"))

    comparison = {"synthetic": {"models": {
        "Boost": {"train_error": 1.0, "test_error": 2.0, "train_time": 0.1, "predict_time": 0.01},
        "RTrees": {"train_error": 3.0, "test_error": 4.0, "train_time": 0.2, "predict_time": 0.02},
    }}}
    plot_model_comparison(comparison, save_path=os.path.join(figures, "comparison.png"))
    report_path = create_summary_report(comparison, results_dir)

    for name in ["importance.png", "boost.png", "oob.png", "comparison.png"]:
        assert os.path.exists(os.path.join(figures, name))
    with open(report_path) as f:
        report = f.read()
    assert "| RTrees | 3.0000 | 4.0000 |" in report
