"""
Test Suite for Evaluation and Split Diagnostics
===============================================
"""

import json

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tests.helpers import RESPONSES, FEATURES
from multiresponse.batch import fit_many
from multiresponse.eda import (
    balance_tests,
    class_balance_table,
    generate_eda_report,
    print_balance_insights,
)
from multiresponse.evaluation import (
    calculate_metrics,
    evaluate_batch,
    metrics_table,
    print_evaluation_report,
)
from multiresponse.preprocessing import prepare_response_data, stratified_split


@pytest.fixture
def prepared(dataset):
    return prepare_response_data(dataset, RESPONSES, FEATURES, prop=0.8, seed=500)


@pytest.fixture
def result(prepared, knn_config):
    """Batch where resp_1 fails with a float outcome and resp_2 fits."""
    train_frames, test_frames = prepared['train_frames'], prepared['test_frames']
    train_frames[0]['resp_1'] = np.linspace(0.0, 1.0, len(train_frames[0]))
    test_frames[0]['resp_1'] = np.linspace(0.0, 1.0, len(test_frames[0]))
    return fit_many(train_frames, test_frames, knn_config)


class TestCalculateMetrics:
    """Tests for the metric summaries."""

    def test_metrics_table(self, result):
        table = metrics_table(result)

        assert set(table['response']) == {'resp_2'}
        assert table['.metric'].tolist() == ['roc_auc', 'accuracy']

    def test_per_response_and_overall(self, result):
        metrics = calculate_metrics(result)

        assert list(metrics['per_response']) == ['resp_2']
        entry = metrics['per_response']['resp_2']
        assert entry['n_train'] == 80
        assert entry['n_test'] == 20
        assert 'neighbors' in entry['params']

        overall = metrics['overall']
        assert overall['n_responses'] == 2
        assert overall['n_succeeded'] == 1
        assert overall['n_failed'] == 1
        assert overall['mean_accuracy'] == pytest.approx(entry['accuracy'])

        assert metrics['failures'][0]['response'] == 'resp_1'
        assert metrics['failures'][0]['stage'] == 'tune'

    def test_report_prints(self, result, capsys):
        print_evaluation_report(calculate_metrics(result))
        out = capsys.readouterr().out

        assert 'MODEL EVALUATION REPORT' in out
        assert 'resp_1' in out


class TestEvaluateBatch:
    """Tests for the written evaluation reports."""

    def test_outputs(self, result, tmp_path):
        evaluation = evaluate_batch(result, output_dir=str(tmp_path))

        with open(evaluation['metrics_file']) as f:
            saved = json.load(f)
        assert saved['overall']['n_succeeded'] == 1

        assert 'eval_confusion.png' in evaluation['figures']
        assert 'eval_tuning_profiles.png' in evaluation['figures']
        for name in evaluation['figures']:
            assert (tmp_path / "figures" / name).exists()

    def test_nothing_fitted(self, prepared, knn_config, tmp_path):
        train_frames, test_frames = prepared['train_frames'], prepared['test_frames']
        for frame in train_frames + test_frames:
            frame[frame.columns[0]] = np.linspace(0.0, 1.0, len(frame))
        empty = fit_many(train_frames, test_frames, knn_config)

        evaluation = evaluate_batch(empty, output_dir=str(tmp_path))

        assert evaluation['figures'] == []
        assert evaluation['metrics']['overall']['n_failed'] == 2


class TestSplitDiagnostics:
    """Tests for the train/test balance checks."""

    @pytest.fixture
    def split(self, dataset):
        return stratified_split(dataset, strata='resp_1', prop=0.8, seed=500)

    def test_class_balance_table(self, split):
        balance = class_balance_table(split, RESPONSES)

        train = balance[(balance['response'] == 'resp_1') & (balance['subset'] == 'train')]
        assert train['n'].sum() == 80
        assert train['prop'].sum() == pytest.approx(1.0)

    def test_stratified_response_is_balanced(self, split):
        tests = balance_tests(split, RESPONSES)

        assert tests['test'].tolist() == ['chi2', 'chi2']
        assert tests.set_index('response').loc['resp_1', 'p_value'] > 0.5

    def test_numeric_response_uses_ks(self, dataset):
        split = stratified_split(dataset, strata='x1', seed=500)
        tests = balance_tests(split, ['x1'])

        assert tests['test'].iloc[0] == 'ks'

    def test_report(self, split, tmp_path, capsys):
        report = generate_eda_report(split, RESPONSES, FEATURES, output_dir=str(tmp_path))

        assert report['train_rows'] == 80
        assert report['figures'] == ['eda_class_balance.png', 'eda_feature_correlation.png']
        for name in report['figures']:
            assert (tmp_path / name).exists()

        print_balance_insights(pd.DataFrame(report['balance_tests']))
        assert 'TRAIN/TEST BALANCE' in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
