"""
Test Suite for Metrics Module
=============================
"""

import pytest
import numpy as np

from multiresponse.errors import ConfigurationError
from multiresponse.metrics import METRICS, MetricSet, metric_set


class TestMetricSet:
    """Tests for MetricSet construction."""

    def test_names_and_mode(self):
        metrics = metric_set('roc_auc', 'accuracy', 'kap')

        assert metrics.names == ['roc_auc', 'accuracy', 'kap']
        assert metrics.mode == 'classification'
        assert metrics.needs_prob

    def test_directions(self):
        metrics = MetricSet('rmse', 'rsq', 'mae')

        assert metrics.direction('rmse') == 'minimize'
        assert metrics.direction('rsq') == 'maximize'
        assert metrics.direction('mae') == 'minimize'
        assert not metrics.needs_prob

    def test_empty(self):
        with pytest.raises(ConfigurationError):
            MetricSet()

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown"):
            metric_set('f1')

    def test_mixed_modes(self):
        with pytest.raises(ConfigurationError, match="mixes"):
            metric_set('accuracy', 'rmse')

    def test_registry(self):
        assert set(METRICS) == {'roc_auc', 'accuracy', 'kap', 'rmse', 'rsq', 'mae'}


class TestClassificationMetrics:
    """Tests for classification estimates."""

    @pytest.fixture
    def binary(self):
        truth = np.array(['no', 'no', 'yes', 'yes', 'yes', 'no'])
        estimate = np.array(['no', 'yes', 'yes', 'yes', 'no', 'no'])
        prob_yes = np.array([0.1, 0.6, 0.9, 0.8, 0.4, 0.2])
        prob = np.column_stack([1 - prob_yes, prob_yes])
        return truth, estimate, prob

    def test_accuracy_and_kap(self, binary):
        truth, estimate, _ = binary
        scores = metric_set('accuracy', 'kap').compute(truth, estimate)

        assert scores['accuracy'] == pytest.approx(4 / 6)
        assert scores['kap'] == pytest.approx(1 / 3)

    def test_binary_roc_auc_uses_second_class(self, binary):
        truth, estimate, prob = binary
        scores = metric_set('roc_auc').compute(truth, estimate, prob=prob,
                                               classes=['no', 'yes'])

        # 8 of 9 (yes, no) pairs are ordered correctly
        assert scores['roc_auc'] == pytest.approx(8 / 9)

    def test_perfect_roc_auc(self):
        truth = np.array(['a', 'b', 'a', 'b'])
        prob = np.array([[0.9, 0.1], [0.2, 0.8], [0.7, 0.3], [0.4, 0.6]])
        scores = metric_set('roc_auc').compute(truth, truth, prob=prob, classes=['a', 'b'])

        assert scores['roc_auc'] == 1.0

    def test_multiclass_roc_auc(self):
        truth = np.array(['a', 'b', 'c', 'a', 'b', 'c'])
        prob = np.array([
            [0.8, 0.1, 0.1],
            [0.1, 0.8, 0.1],
            [0.1, 0.1, 0.8],
            [0.6, 0.2, 0.2],
            [0.2, 0.6, 0.2],
            [0.2, 0.2, 0.6],
        ])
        scores = metric_set('roc_auc').compute(truth, truth, prob=prob,
                                               classes=['a', 'b', 'c'])

        assert scores['roc_auc'] == pytest.approx(1.0)

    def test_single_class_auc_is_nan(self):
        truth = np.array(['yes', 'yes', 'yes'])
        prob = np.array([[0.2, 0.8], [0.4, 0.6], [0.1, 0.9]])
        scores = metric_set('roc_auc', 'accuracy').compute(
            truth, truth, prob=prob, classes=['no', 'yes']
        )

        assert np.isnan(scores['roc_auc'])
        assert scores['accuracy'] == 1.0


class TestRegressionMetrics:
    """Tests for regression estimates."""

    def test_values(self):
        truth = np.array([1.0, 2.0, 3.0, 4.0])
        estimate = np.array([1.5, 2.0, 2.5, 4.0])
        scores = metric_set('rmse', 'rsq', 'mae').compute(truth, estimate)

        assert scores['rmse'] == pytest.approx(np.sqrt(0.5 / 4))
        assert scores['mae'] == pytest.approx(0.25)
        assert scores['rsq'] == pytest.approx(np.corrcoef(truth, estimate)[0, 1] ** 2)

    def test_constant_estimate_rsq(self):
        truth = np.array([1.0, 2.0, 3.0])
        scores = metric_set('rsq').compute(truth, np.full(3, 2.0))
        assert np.isnan(scores['rsq'])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
