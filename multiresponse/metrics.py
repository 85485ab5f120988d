"""
Performance Metrics
===================

Named metrics shared by tuning and final evaluation.

Classification: roc_auc, accuracy, kap
Regression: rmse, rsq, mae
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    mean_absolute_error,
    mean_squared_error,
    roc_auc_score,
)

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def _roc_auc(truth: np.ndarray, prob: np.ndarray, classes: Sequence) -> float:
    classes = list(classes)
    if len(classes) == 2:
        return roc_auc_score((truth == classes[1]).astype(int), prob[:, 1])
    # Hand & Till multiclass AUC
    return roc_auc_score(truth, prob, multi_class='ovo', labels=classes)


def _accuracy(truth: np.ndarray, estimate: np.ndarray) -> float:
    return accuracy_score(truth, estimate)


def _kap(truth: np.ndarray, estimate: np.ndarray) -> float:
    return cohen_kappa_score(truth, estimate)


def _rmse(truth: np.ndarray, estimate: np.ndarray) -> float:
    return float(np.sqrt(mean_squared_error(truth, estimate)))


def _rsq(truth: np.ndarray, estimate: np.ndarray) -> float:
    # Squared correlation, undefined for constant vectors
    if np.std(truth) == 0 or np.std(estimate) == 0:
        return float('nan')
    return float(np.corrcoef(truth, estimate)[0, 1] ** 2)


def _mae(truth: np.ndarray, estimate: np.ndarray) -> float:
    return mean_absolute_error(truth, estimate)


@dataclass(frozen=True)
class Metric:
    name: str
    mode: str
    direction: str
    fn: Callable
    needs_prob: bool = False


METRICS: Dict[str, Metric] = {
    'roc_auc': Metric('roc_auc', 'classification', 'maximize', _roc_auc, needs_prob=True),
    'accuracy': Metric('accuracy', 'classification', 'maximize', _accuracy),
    'kap': Metric('kap', 'classification', 'maximize', _kap),
    'rmse': Metric('rmse', 'regression', 'minimize', _rmse),
    'rsq': Metric('rsq', 'regression', 'maximize', _rsq),
    'mae': Metric('mae', 'regression', 'minimize', _mae),
}


class MetricSet:
    """
    An ordered collection of metrics evaluated together.

    All metrics in a set must share one mode.
    """

    def __init__(self, *names: str):
        if not names:
            raise ConfigurationError("A metric set needs at least one metric")
        unknown = [name for name in names if name not in METRICS]
        if unknown:
            raise ConfigurationError(f"Unknown metrics: {unknown}")

        self.metrics: List[Metric] = [METRICS[name] for name in names]
        modes = {metric.mode for metric in self.metrics}
        if len(modes) > 1:
            raise ConfigurationError(f"Metric set mixes modes: {sorted(modes)}")
        self.mode = modes.pop()

    @property
    def names(self) -> List[str]:
        return [metric.name for metric in self.metrics]

    @property
    def needs_prob(self) -> bool:
        return any(metric.needs_prob for metric in self.metrics)

    def direction(self, name: str) -> str:
        return METRICS[name].direction

    def compute(
        self,
        truth: pd.Series,
        estimate: np.ndarray,
        prob: Optional[np.ndarray] = None,
        classes: Optional[Sequence] = None
    ) -> Dict[str, float]:
        """
        Evaluate every metric.

        A metric that cannot be computed on this data (e.g. AUC on an
        assessment set holding a single class) is reported as NaN.

        Args:
            truth: Observed outcome
            estimate: Predicted class or value
            prob: Class probabilities, columns ordered as ``classes``
            classes: Class labels for probability metrics

        Returns:
            Dictionary metric name -> estimate
        """
        truth = np.asarray(truth)
        estimate = np.asarray(estimate)
        results = {}
        for metric in self.metrics:
            try:
                if metric.needs_prob:
                    value = metric.fn(truth, prob, classes)
                else:
                    value = metric.fn(truth, estimate)
            except ValueError as e:
                logger.warning(f"Metric '{metric.name}' could not be computed: {e}")
                value = float('nan')
            results[metric.name] = float(value)
        return results

    def __repr__(self) -> str:
        return f"MetricSet({', '.join(self.names)})"


def metric_set(*names: str) -> MetricSet:
    """Build a MetricSet, e.g. ``metric_set('roc_auc', 'accuracy', 'kap')``."""
    return MetricSet(*names)
