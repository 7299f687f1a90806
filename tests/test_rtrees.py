"""
RTrees（ランダムフォレスト）のテスト
"""

import threading

import numpy as np
import pytest

from mltrees import (
    PREDICT_MASK,
    PREDICT_MAX_VOTE,
    PREDICT_SUM,
    RAW_OUTPUT,
    ROW_SAMPLE,
    UPDATE_MODEL,
    InvalidArgumentError,
    RTrees,
    TrainData,
    TrainingAbortedError,
    UnsupportedError,
)


def test_one_active_variable_per_node(five_var_data):
    """active_var_count=1 なら各ノードの分割は1つ、全変数がどこかで使われる"""
    model = RTrees(active_var_count=1, max_iter=30, max_depth=3, min_sample_count=2, random_state=0)
    model.train(five_var_data)

    arena = model._state.arena
    used = set()
    for root in model.get_roots():
        for ni in arena.iter_subtree(root):
            if arena.nodes[ni].split >= 0:
                chain = arena.split_chain(ni)
                assert len(chain) == 1
                used.add(arena.splits[chain[0]].var_idx)
    assert used == {0, 1, 2, 3, 4}


def test_forest_size_and_oob_error(five_var_data):
    model = RTrees(max_iter=25, random_state=0)
    model.train(five_var_data)

    assert len(model.get_roots()) == 25
    assert len(model.oob_error_history) == 25
    oob = model.get_oob_error()
    assert 0.0 <= oob < 0.35
    assert oob == model.oob_error_history[-1]
    assert model.calc_error(five_var_data) < 25.0


def test_var_importance_is_normalised(five_var_data):
    rng = np.random.RandomState(11)
    X = rng.randn(300, 3).astype(np.float32)
    y = (X[:, 1] > 0).astype(np.int32)
    data = TrainData(X, ROW_SAMPLE, y, random_state=0)

    model = RTrees(max_iter=20, calculate_var_importance=True, random_state=0)
    model.train(data)
    importance = model.get_var_importance()

    assert importance.shape == (3,)
    assert importance.sum() == pytest.approx(1.0)
    assert np.all(importance >= 0)
    assert int(np.argmax(importance)) == 1


def test_importance_is_empty_when_not_requested(binary_data):
    model = RTrees(max_iter=3, random_state=0)
    model.train(binary_data)
    assert model.get_var_importance().size == 0


def test_results_do_not_depend_on_n_jobs(five_var_data):
    serial = RTrees(max_iter=8, calculate_var_importance=True, random_state=3, n_jobs=1)
    parallel = RTrees(max_iter=8, calculate_var_importance=True, random_state=3, n_jobs=3)
    serial.train(five_var_data)
    parallel.train(five_var_data)

    X = five_var_data.get_samples()
    np.testing.assert_array_equal(serial.predict(X), parallel.predict(X))
    np.testing.assert_array_equal(serial.get_votes(X), parallel.get_votes(X))
    assert serial.get_oob_error() == pytest.approx(parallel.get_oob_error())
    np.testing.assert_allclose(serial.get_var_importance(), parallel.get_var_importance())
    # バッチごとに OOB 誤差を記録する
    assert len(parallel.oob_error_history) == 3


def test_same_seed_reproduces_forest(binary_data):
    a = RTrees(max_iter=5, random_state=9)
    b = RTrees(max_iter=5, random_state=9)
    a.train(binary_data)
    b.train(binary_data)
    X = binary_data.get_samples()
    np.testing.assert_array_equal(a.get_votes(X), b.get_votes(X))


def test_votes_sum_to_number_of_trees(binary_data):
    model = RTrees(max_iter=7, random_state=0)
    model.train(binary_data)
    X = binary_data.get_samples()
    votes = model.get_votes(X)

    assert votes.shape == (X.shape[0], 2)
    np.testing.assert_array_equal(votes.sum(axis=1), np.full(X.shape[0], 7))
    np.testing.assert_array_equal(model.predict(X, RAW_OUTPUT), votes.argmax(axis=1))


def test_regression_forest(regression_data):
    model = RTrees(max_iter=20, max_depth=6, min_sample_count=5, random_state=0)
    model.train(regression_data)

    assert not model.is_classifier()
    pred = model.predict(regression_data.get_samples())
    assert pred.shape == (regression_data.get_n_samples(),)
    assert model.calc_error(regression_data) < 1.0
    assert model.get_oob_error() >= 0.0
    with pytest.raises(UnsupportedError):
        model.get_votes(regression_data.get_samples())


def test_oob_epsilon_stops_early():
    X = np.arange(100, dtype=np.float32).reshape(-1, 1)
    y = (X[:, 0] >= 50).astype(np.int32)
    data = TrainData(X, ROW_SAMPLE, y, random_state=0)
    model = RTrees(max_iter=50, oob_epsilon=0.05, min_sample_count=2, random_state=0)
    model.train(data)
    assert len(model.get_roots()) < 50
    assert model.get_oob_error() <= 0.05


def test_stop_event_aborts_training(binary_data):
    event = threading.Event()
    event.set()
    model = RTrees(max_iter=10, stop_event=event)
    with pytest.raises(TrainingAbortedError):
        model.train(binary_data)
    assert not model.is_trained()


def test_update_model_is_unsupported(binary_data):
    with pytest.raises(UnsupportedError):
        RTrees(max_iter=2).train(binary_data, UPDATE_MODEL)


@pytest.mark.parametrize("params", [
    {"max_iter": 0},
    {"n_jobs": 0},
    {"active_var_count": -1},
    {"oob_epsilon": -0.1},
])
def test_invalid_parameters(binary_data, params):
    with pytest.raises(InvalidArgumentError):
        RTrees(**params).train(binary_data)


def test_save_and_load_round_trip(tmp_path, multiclass_categorical_data):
    model = RTrees(max_iter=6, calculate_var_importance=True, random_state=0)
    model.train(multiclass_categorical_data)
    path = str(tmp_path / "rtrees.npz")
    model.save(path)

    loaded = RTrees.load(path)
    X = multiclass_categorical_data.get_samples()
    np.testing.assert_array_equal(loaded.predict(X), model.predict(X))
    assert loaded.get_oob_error() == pytest.approx(model.get_oob_error())
    np.testing.assert_allclose(loaded.get_var_importance(), model.get_var_importance())


def test_training_summary(binary_data, capsys):
    model = RTrees(max_iter=2, calculate_var_importance=True, verbose=True, random_state=0)
    model.train(binary_data)
    model.print_training_summary()
    out = capsys.readouterr().out
    assert "Tree 2/2 trained" in out
    assert "OOB error" in out
    assert "var_0" in out


def test_predict_flags_for_classification_forest(binary_data):
    model = RTrees(max_iter=5, random_state=0)
    model.train(binary_data)
    X = binary_data.get_samples()

    np.testing.assert_array_equal(model.predict(X, PREDICT_MAX_VOTE), model.predict(X))
    with pytest.raises(UnsupportedError):
        model.predict(X, PREDICT_SUM)
    with pytest.raises(InvalidArgumentError):
        model.predict(X, PREDICT_MASK)


def test_predict_sum_for_regression_forest(regression_data):
    model = RTrees(max_iter=4, max_depth=3, random_state=0)
    model.train(regression_data)
    X = regression_data.get_samples()

    np.testing.assert_allclose(model.predict(X, PREDICT_SUM), 4 * model.predict(X))
    with pytest.raises(UnsupportedError):
        model.predict(X, PREDICT_MAX_VOTE)


def test_cv_folds_is_rejected(binary_data):
    with pytest.raises(UnsupportedError):
        RTrees(max_iter=2, cv_folds=5).train(binary_data)
    assert RTrees(max_iter=2, cv_folds=1, random_state=0).train(binary_data) is True
