"""
Hyperparameter Tuning Module
============================

Regular grids, cross-validated grid evaluation and best-configuration
selection.

Features:
    - grid_regular: cartesian grid of evenly spaced parameter levels
    - GridEvaluator: fits every grid point on every fold, optionally on a pool
    - TuneResults: tidy per-fold metrics and fold-averaged summaries
    - select_best: best configuration for one metric, ties to grid order
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError, ModelingError
from .metrics import MetricSet
from .model import Parameter
from .parallel import WorkerPool
from .preprocessing import Folds
from .workflow import Workflow

logger = logging.getLogger(__name__)

CONFIG_COL = '.config'


def _python_value(value: Any) -> Any:
    return value.item() if isinstance(value, np.generic) else value


def grid_regular(
    parameters: List[Parameter],
    levels: Union[int, Dict[str, int]] = 10
) -> pd.DataFrame:
    """
    Regular grid over the given parameters.

    Args:
        parameters: Finalized Parameter objects
        levels: Levels per parameter, or a dict name -> levels

    Returns:
        DataFrame with one column per parameter plus '.config'; the first
        parameter varies fastest
    """
    names = [param.name for param in parameters]
    values = []
    for param in parameters:
        n_levels = levels.get(param.name, 10) if isinstance(levels, dict) else levels
        if n_levels < 1:
            raise ConfigurationError(f"levels must be >= 1, got {n_levels}")
        values.append(param.values(n_levels))

    combos = [tuple(reversed(combo)) for combo in itertools.product(*reversed(values))]
    grid = pd.DataFrame(combos, columns=names) if names else pd.DataFrame(index=[0])

    width = len(str(len(grid)))
    grid[CONFIG_COL] = [f"Model{i + 1:0{width}d}" for i in range(len(grid))]
    return grid.reset_index(drop=True)


def grid_params(grid: pd.DataFrame) -> List[Dict[str, Any]]:
    """Grid rows as plain parameter dictionaries (no '.config')."""
    names = [col for col in grid.columns if col != CONFIG_COL]
    return [
        {name: _python_value(row[name]) for name in names}
        for _, row in grid.iterrows()
    ]


def _evaluate_point(
    workflow: Workflow,
    data: pd.DataFrame,
    analysis: np.ndarray,
    assessment: np.ndarray,
    params: Dict[str, Any],
    metrics: MetricSet
) -> Tuple[Dict[str, float], Optional[str]]:
    """Fit one grid point on one fold; failures become a note."""
    try:
        fitted = workflow.with_params(params).fit(data.iloc[analysis])
        holdout = data.iloc[assessment]
        truth = holdout[workflow.recipe.outcome]
        estimate = fitted.predict(holdout)
        prob = fitted.predict_proba(holdout) if metrics.needs_prob else None
        scores = metrics.compute(truth, estimate, prob=prob, classes=fitted.classes_)
        return scores, None
    except Exception as e:
        return {name: float('nan') for name in metrics.names}, f"{type(e).__name__}: {e}"


@dataclass
class TuneResults:
    """
    Output of a grid evaluation.

    Attributes:
        metrics: One row per (configuration, fold, metric)
        grid: Evaluated grid with '.config'
        metric_set: Metrics that were computed
        notes: Fit failures as (config, fold, message)
    """
    metrics: pd.DataFrame
    grid: pd.DataFrame
    metric_set: MetricSet
    notes: List[Tuple[str, str, str]] = field(default_factory=list)

    @property
    def param_names(self) -> List[str]:
        return [col for col in self.grid.columns if col != CONFIG_COL]

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        """
        Per-fold metrics, or their mean and standard error per configuration.
        """
        if not summarize:
            return self.metrics.copy()

        keys = self.param_names + ['.metric', '.estimator', CONFIG_COL]
        summary = (
            self.metrics
            .groupby(keys, sort=False, dropna=False)['.estimate']
            .agg(mean='mean', n='count', std='std')
            .reset_index()
        )
        summary['std_err'] = summary['std'] / np.sqrt(summary['n'].clip(lower=1))
        summary = summary.drop(columns='std')
        order = {config: i for i, config in enumerate(self.grid[CONFIG_COL])}
        summary['_order'] = summary[CONFIG_COL].map(order)
        return (summary.sort_values(['_order'], kind='mergesort')
                .drop(columns='_order')
                .reset_index(drop=True))

    def show_best(self, metric: str, n: int = 5) -> pd.DataFrame:
        """
        Top ``n`` configurations for ``metric``, best first.

        Ties keep grid order.
        """
        if metric not in self.metric_set.names:
            raise ConfigurationError(
                f"Metric '{metric}' was not computed; available: {self.metric_set.names}"
            )
        summary = self.collect_metrics()
        summary = summary[summary['.metric'] == metric]
        ascending = self.metric_set.direction(metric) == 'minimize'
        ranked = summary.sort_values('mean', ascending=ascending, kind='mergesort',
                                     na_position='last')
        return ranked.head(n).reset_index(drop=True)


def select_best(results: TuneResults, metric: str = "accuracy") -> Dict[str, Any]:
    """
    Best hyperparameter configuration for ``metric``.

    Args:
        results: Output of tune_grid
        metric: Metric to optimize, in its natural direction

    Returns:
        Dictionary of parameter values plus '.config'

    Raises:
        ModelingError: If no configuration has a finite estimate
    """
    best = results.show_best(metric, n=1)
    if best.empty or pd.isna(best['mean'].iloc[0]):
        raise ModelingError(f"No configuration produced a value for '{metric}'",
                            stage="select")
    row = best.iloc[0]
    chosen = {name: _python_value(row[name]) for name in results.param_names}
    chosen[CONFIG_COL] = row[CONFIG_COL]
    return chosen


class GridEvaluator:
    """
    Evaluates every grid point on every fold.

    Args:
        pool: Optional started WorkerPool; tasks run inline without one
    """

    def __init__(self, pool: Optional[WorkerPool] = None):
        self.pool = pool

    def evaluate(
        self,
        workflow: Workflow,
        folds: Folds,
        grid: pd.DataFrame,
        metrics: MetricSet
    ) -> TuneResults:
        if metrics.mode != workflow.mode:
            raise ConfigurationError(
                f"{metrics.mode} metrics cannot score a {workflow.mode} model"
            )
        if metrics.needs_prob and not workflow.spec.emits_probabilities:
            raise ModelingError(
                "Probability metrics need a model that emits probabilities "
                "(set prob_model: true)",
                stage="tune"
            )

        meta = []
        tasks = []
        for config, point in zip(grid[CONFIG_COL], grid_params(grid)):
            for fold_id, (analysis, assessment) in folds:
                meta.append((config, fold_id, point))
                tasks.append((workflow, folds.data, analysis, assessment, point, metrics))

        if self.pool is None:
            outputs = [_evaluate_point(*task) for task in tasks]
        else:
            outputs = self.pool.map(_evaluate_point, tasks)

        estimator = 'standard'
        if workflow.mode == 'classification':
            n_classes = folds.data[workflow.recipe.outcome].nunique()
            estimator = 'binary' if n_classes == 2 else 'multiclass'

        rows = []
        notes = []
        for (config, fold_id, point), (scores, note) in zip(meta, outputs):
            if note is not None:
                notes.append((config, fold_id, note))
            for name, value in scores.items():
                rows.append({**point, CONFIG_COL: config, 'id': fold_id,
                             '.metric': name, '.estimator': estimator,
                             '.estimate': value})

        table = pd.DataFrame(rows)
        for config, fold_id, note in notes:
            logger.warning(f"{config}/{fold_id}: {note}")
        if len(notes) == len(tasks):
            raise ModelingError(f"All models failed. First error: {notes[0][2]}",
                                stage="tune")

        return TuneResults(metrics=table, grid=grid.copy(), metric_set=metrics, notes=notes)


def tune_grid(
    workflow: Workflow,
    resamples: Folds,
    grid: pd.DataFrame,
    metrics: MetricSet,
    pool: Optional[WorkerPool] = None
) -> TuneResults:
    """
    Cross-validated evaluation of every grid point.

    Args:
        workflow: Workflow with tune() placeholders
        resamples: Folds of the per-response training frame
        grid: Output of grid_regular
        metrics: Metric set
        pool: Started WorkerPool (optional)

    Returns:
        TuneResults
    """
    logger.info(f"Tuning {len(grid)} configurations x {len(resamples)} folds "
                f"({len(grid) * len(resamples)} fits)")
    return GridEvaluator(pool).evaluate(workflow, resamples, grid, metrics)
