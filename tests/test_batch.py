"""
Test Suite for Batch Module
===========================

End-to-end tests for the per-response fitting loop: result alignment,
failure isolation and worker pool lifecycle.
"""

import pytest
import numpy as np
import pandas as pd
from sklearn.ensemble import HistGradientBoostingClassifier, RandomForestClassifier
from sklearn.neighbors import KNeighborsRegressor
from sklearn.svm import SVC

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tests.helpers import RESPONSES, FEATURES
from multiresponse.batch import BatchResult, fit_many, print_batch_summary, run_batch
from multiresponse.config import ModelConfig, ParallelConfig
from multiresponse.errors import ConfigurationError
from multiresponse.parallel import WorkerPool
from multiresponse.preprocessing import prepare_response_data
from multiresponse.tuning import CONFIG_COL, GridEvaluator, grid_params


@pytest.fixture
def frames(dataset):
    """Per-response train/test frames from an 80/20 split."""
    prepared = prepare_response_data(dataset, RESPONSES, FEATURES, prop=0.8, seed=500)
    return prepared['train_frames'], prepared['test_frames']


class FailFirstEvaluator(GridEvaluator):
    """Evaluator whose first call raises."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def evaluate(self, workflow, folds, grid, metrics):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("worker crashed")
        return super().evaluate(workflow, folds, grid, metrics)


class AlwaysFailEvaluator(GridEvaluator):
    def evaluate(self, workflow, folds, grid, metrics):
        raise RuntimeError("worker crashed")


class FoldRecordingEvaluator(GridEvaluator):
    """Evaluator that keeps the folds it was given."""

    def __init__(self):
        super().__init__()
        self.folds = []

    def evaluate(self, workflow, folds, grid, metrics):
        self.folds.append(folds)
        return super().evaluate(workflow, folds, grid, metrics)


class TestFitMany:
    """End-to-end tests with an SVM tuned over cost and rbf_sigma."""

    @pytest.fixture
    def result(self, frames, svm_config):
        train_frames, test_frames = frames
        return fit_many(train_frames, test_frames, svm_config)

    def test_all_slots_filled(self, result):
        assert isinstance(result, BatchResult)
        assert len(result) == 2
        assert result.succeeded == [0, 1]
        assert result.failures == []
        for collection in (result.models, result.final_workflows,
                           result.final_fits, result.tune_results):
            assert len(collection) == 2
            assert all(item is not None for item in collection)

    def test_selected_parameters_come_from_grid(self, result):
        for i in range(2):
            params = result.final_fits[i].params
            assert params in grid_params(result.tune_results[i].grid)

    def test_model_uses_selected_parameters(self, result):
        for i in range(2):
            model = result.models[i]
            params = result.final_fits[i].params

            assert isinstance(model, SVC)
            assert model.C == params['cost']
            assert model.gamma == params['rbf_sigma']
            assert model.probability is True

    def test_workflow_and_fit_agree(self, result):
        for i in range(2):
            assert result.final_workflows[i].params == result.final_fits[i].params
            assert not result.final_workflows[i].spec.tunable_parameters()

    def test_final_fit_uses_response_frames(self, result, frames):
        _, test_frames = frames
        for i, response in enumerate(RESPONSES):
            fit = result.final_fits[i]
            assert fit.response == response
            assert fit.n_train == 80
            assert fit.n_test == 20
            assert fit.predictions['.row'].tolist() == test_frames[i].index.tolist()

    def test_test_metrics(self, result):
        fit = result.final_fits[0]
        metrics = fit.collect_metrics()

        assert metrics['.metric'].tolist() == ['roc_auc', 'accuracy', 'kap']
        assert set(metrics['.estimator']) == {'binary'}
        assert 0.0 <= fit.metric('accuracy') <= 1.0

    def test_probability_columns(self, result):
        predictions = result.final_fits[0].collect_predictions()
        assert {'.pred_class', '.pred_no', '.pred_yes'} <= set(predictions.columns)
        np.testing.assert_allclose(predictions[['.pred_no', '.pred_yes']].sum(axis=1), 1.0)

    def test_tuning_grid_size(self, result):
        summary = result.tune_results[0].collect_metrics()
        assert summary[CONFIG_COL].nunique() == 4
        assert (summary['n'] <= 5).all()

    def test_batch_info(self, result):
        assert result.info['family'] == 'svm_rbf'
        assert result.info['metric'] == 'accuracy'
        assert result.info['duration_seconds'] >= 0

    def test_summary_prints(self, result, capsys):
        print_batch_summary(result)
        out = capsys.readouterr().out
        assert 'BATCH SUMMARY' in out
        assert 'resp_2' in out
        assert 'resp_1 ~ . | numeric: 4, categorical: 0' in out


class TestFailureIsolation:
    """A failing response leaves holes; the others still fit."""

    def test_evaluator_failure(self, frames, knn_config):
        train_frames, test_frames = frames
        evaluator = FailFirstEvaluator()

        result = fit_many(train_frames, test_frames, knn_config, evaluator=evaluator)

        assert evaluator.calls == 2
        assert result.succeeded == [1]
        assert result.failed == [0]
        assert result.models[0] is None
        assert result.final_workflows[0] is None
        assert result.final_fits[0] is None
        assert result.tune_results[0] is None

        failure = result.failures[0]
        assert failure.response == 'resp_1'
        assert failure.stage == 'tune'
        assert failure.error_type == 'RuntimeError'
        assert 'worker crashed' in failure.message

    def test_float_outcome_under_classification(self, frames, knn_config):
        train_frames, test_frames = frames
        train_frames[0]['resp_1'] = np.linspace(0.0, 1.0, len(train_frames[0]))
        test_frames[0]['resp_1'] = np.linspace(0.0, 1.0, len(test_frames[0]))

        result = fit_many(train_frames, test_frames, knn_config)

        assert result.failed == [0]
        assert result.succeeded == [1]
        assert result.failures[0].stage == 'tune'

    def test_malformed_formula(self, frames, knn_config, monkeypatch):
        def broken_formula(response):
            return f"{response} ~" if response == 'resp_2' else f"{response} ~ ."

        monkeypatch.setattr('multiresponse.batch.make_formula', broken_formula)
        train_frames, test_frames = frames

        result = fit_many(train_frames, test_frames, knn_config)

        assert result.succeeded == [0]
        assert result.failed == [1]
        assert result.failures[0].stage == 'recipe'
        assert result.models[1] is None

    def test_every_response_failing(self, frames, knn_config):
        train_frames, test_frames = frames
        result = fit_many(train_frames, test_frames, knn_config,
                          evaluator=AlwaysFailEvaluator())

        assert result.succeeded == []
        assert result.failed == [0, 1]
        assert result.models == [None, None]

    def test_configuration_errors_abort(self, frames, knn_config):
        train_frames, test_frames = frames
        knn_config.metric = 'rmse'

        with pytest.raises(ConfigurationError):
            fit_many(train_frames, test_frames, knn_config)

    def test_length_mismatch(self, frames, knn_config):
        train_frames, test_frames = frames
        with pytest.raises(ConfigurationError):
            fit_many(train_frames, test_frames[:1], knn_config)

    def test_non_string_column_names_abort(self, dataset, knn_config):
        data = dataset.copy()
        data.columns = range(6)
        train, test = data.iloc[:80], data.iloc[80:]

        with pytest.raises(ConfigurationError, match="must be strings"):
            fit_many([train[[0, 2, 3, 4, 5]]], [test[[0, 2, 3, 4, 5]]], knn_config)


class TestColumnHandling:
    """Response columns that are not plain string factors."""

    def test_integer_column_names(self, dataset, knn_config):
        data = dataset.copy()
        data.columns = range(6)
        prepared = prepare_response_data(data, [0, 1], [2, 3, 4, 5], prop=0.8, seed=500)

        result = fit_many(prepared['train_frames'], prepared['test_frames'], knn_config)

        assert result.responses == ['0', '1']
        assert result.succeeded == [0, 1]
        assert result.final_workflows[0].recipe.formula == "`0` ~ ."

    def test_integer_classes_are_stratified_in_folds(self, dataset, knn_config):
        data = dataset.copy()
        data['resp_2'] = (np.arange(len(data)) % 10 < 2).astype(int)
        prepared = prepare_response_data(data, ['resp_2'], FEATURES, prop=0.8, seed=500,
                                         mode='classification')
        evaluator = FoldRecordingEvaluator()

        result = fit_many(prepared['train_frames'], prepared['test_frames'], knn_config,
                          evaluator=evaluator)

        assert result.succeeded == [0]
        train = prepared['train_frames'][0]
        assert train['resp_2'].mean() == pytest.approx(0.2)
        for _, (_, assessment) in evaluator.folds[0]:
            assert set(train['resp_2'].iloc[assessment]) == {0, 1}


class TestRunBatch:
    """Worker pool setup and teardown around the loop."""

    def test_pool_shut_down_once(self, frames, knn_config):
        train_frames, test_frames = frames
        pool = WorkerPool(n_workers=2, backend='threading')

        result = run_batch(train_frames, test_frames, knn_config, pool=pool)

        assert result.succeeded == [0, 1]
        assert pool.shutdowns == 1
        assert not pool.is_running

    def test_pool_shut_down_after_failures(self, frames, knn_config):
        train_frames, test_frames = frames
        pool = WorkerPool(n_workers=2, backend='threading')

        result = run_batch(train_frames, test_frames, knn_config, pool=pool,
                           evaluator=AlwaysFailEvaluator())

        assert result.failed == [0, 1]
        assert pool.shutdowns == 1

    def test_pool_shut_down_on_configuration_error(self, frames, knn_config):
        train_frames, test_frames = frames
        pool = WorkerPool(n_workers=2, backend='threading')

        with pytest.raises(ConfigurationError):
            run_batch(train_frames, test_frames[:1], knn_config, pool=pool)
        assert pool.shutdowns == 1
        assert not pool.is_running

    def test_pool_from_parallel_config(self, frames, knn_config):
        train_frames, test_frames = frames
        parallel_config = ParallelConfig(enabled=True, n_workers=2, backend='threading')

        result = run_batch(train_frames, test_frames, knn_config,
                           parallel_config=parallel_config)
        assert result.succeeded == [0, 1]

    def test_pooled_matches_sequential(self, frames, knn_config):
        train_frames, test_frames = frames

        sequential = run_batch(train_frames, test_frames, knn_config)
        pooled = run_batch(train_frames, test_frames, knn_config,
                           pool=WorkerPool(n_workers=2, backend='threading'))

        for i in range(2):
            assert sequential.final_fits[i].params == pooled.final_fits[i].params


class TestModelFamilies:
    """Other families and modes through the same loop."""

    def test_reseed_per_iteration_off(self, frames, svm_config):
        train_frames, test_frames = frames
        svm_config.levels = 1
        svm_config.reseed_per_iteration = False

        result = fit_many(train_frames, test_frames, svm_config)

        assert [model.random_state for model in result.models] == [500, 501]

    def test_reseed_per_iteration_on(self, frames, svm_config):
        train_frames, test_frames = frames
        svm_config.levels = 1

        result = fit_many(train_frames, test_frames, svm_config)

        assert [model.random_state for model in result.models] == [500, 500]

    def test_random_forest_with_fixed_trees(self, frames):
        train_frames, test_frames = frames
        config = ModelConfig(
            family='rand_forest',
            tune=['mtry', 'min_n'],
            engine_args={'trees': 10},
            levels=2,
            metric='roc_auc',
            metrics=['roc_auc', 'accuracy'],
        )

        result = fit_many(train_frames, test_frames, config)

        assert result.succeeded == [0, 1]
        for i in range(2):
            model = result.models[i]
            assert isinstance(model, RandomForestClassifier)
            assert model.n_estimators == 10
            assert model.max_features in (1, 4)
            assert model.min_samples_split in (2, 40)

    def test_boost_tree(self, frames):
        train_frames, test_frames = frames
        config = ModelConfig(
            family='boost_tree',
            tune=['learn_rate', 'tree_depth'],
            engine_args={'trees': 20},
            levels=2,
            metric='roc_auc',
            metrics=['roc_auc', 'accuracy'],
        )

        result = fit_many(train_frames, test_frames, config)

        assert result.succeeded == [0, 1]
        for i in range(2):
            model = result.models[i]
            params = result.final_fits[i].params
            assert isinstance(model, HistGradientBoostingClassifier)
            assert model.max_iter == 20
            assert params in grid_params(result.tune_results[i].grid)
            assert model.learning_rate == params['learn_rate']
            assert model.max_depth == params['tree_depth']

    def test_impute_step_with_missing_values(self, dataset, knn_config):
        data = dataset.copy()
        data.loc[data.index[::7], 'x1'] = np.nan
        data['site'] = pd.Series(
            [None if i % 11 == 0 else ('north' if i % 2 else 'south') for i in range(len(data))],
            dtype=object
        )
        features = FEATURES + ['site']
        prepared = prepare_response_data(data, RESPONSES, features, prop=0.8, seed=500)
        knn_config.recipe_steps = ['impute']

        result = fit_many(prepared['train_frames'], prepared['test_frames'], knn_config)

        assert result.succeeded == [0, 1]
        recipe = result.final_workflows[0].recipe
        assert recipe.categorical == ['site']
        assert recipe.steps == ['impute']
        assert not result.final_fits[0].collect_predictions()['.pred_class'].isna().any()

    def test_nearest_neighbor_regression(self):
        rng = np.random.default_rng(7)
        x = rng.normal(size=(100, 3))
        df = pd.DataFrame({
            'y1': 2 * x[:, 0] + 0.1 * rng.normal(size=100),
            'y2': x[:, 1] - x[:, 2],
            'x1': x[:, 0],
            'x2': x[:, 1],
            'x3': x[:, 2],
        })
        prepared = prepare_response_data(df, ['y1', 'y2'], ['x1', 'x2', 'x3'], seed=500)
        config = ModelConfig(
            family='nearest_neighbor',
            mode='regression',
            tune=['neighbors'],
            engine_args={'scaled': True},
            levels=3,
            metric='rmse',
            metrics=['rmse', 'rsq', 'mae'],
        )

        result = fit_many(prepared['train_frames'], prepared['test_frames'], config)

        assert result.succeeded == [0, 1]
        for i in range(2):
            fit = result.final_fits[i]
            assert isinstance(result.models[i], KNeighborsRegressor)
            assert result.models[i].n_neighbors == fit.params['neighbors']
            assert fit.params['neighbors'] in (1, 6, 10)
            assert '.pred' in fit.predictions.columns
            assert set(fit.metrics['.estimator']) == {'standard'}
            assert fit.metric('rmse') > 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
