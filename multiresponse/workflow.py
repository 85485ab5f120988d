"""
Workflow Module
===============

Bundles a preprocessing recipe and a model specification into one unit
that can be tuned, finalized and fit.

Functions:
    - finalize_workflow: Replace tune() placeholders with chosen values
    - last_fit: Fit on the training frame, evaluate once on the test frame
    - extract_fit_engine: Underlying fitted estimator
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional, Union

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from .errors import ModelingError
from .metrics import MetricSet
from .model import ModelSpec
from .preprocessing import Recipe, is_categorical

logger = logging.getLogger(__name__)


class Workflow:
    """
    A recipe and a model spec fit as one scikit-learn Pipeline.

    Workflows are immutable: ``add_*`` and ``fit`` return new objects.
    """

    def __init__(self, recipe: Optional[Recipe] = None, spec: Optional[ModelSpec] = None):
        self.recipe = recipe
        self.spec = spec
        self.params: Dict[str, Any] = {}
        self.pipeline: Optional[Pipeline] = None
        self.classes_: Optional[np.ndarray] = None

    def _copy(self) -> 'Workflow':
        new = Workflow(self.recipe, self.spec)
        new.params = dict(self.params)
        return new

    def add_recipe(self, recipe: Recipe) -> 'Workflow':
        new = self._copy()
        new.recipe = recipe
        return new

    def add_model(self, spec: ModelSpec) -> 'Workflow':
        new = self._copy()
        new.spec = spec
        return new

    @property
    def is_fitted(self) -> bool:
        return self.pipeline is not None

    @property
    def mode(self) -> str:
        return self.spec.mode

    def with_params(self, params: Dict[str, Any]) -> 'Workflow':
        """Copy of this workflow with the given tuned arguments resolved."""
        new = self._copy()
        new.spec = self.spec.set_args(**params)
        new.params = dict(params)
        return new

    def build_pipeline(self) -> Pipeline:
        if self.recipe is None or self.spec is None:
            raise ModelingError("Workflow needs both a recipe and a model", stage="workflow")

        steps = [('recipe', self.recipe.build_transformer())]
        if self.spec.scaled:
            steps.append(('scale', StandardScaler()))
        steps.append(('model', self.spec.build_estimator()))
        return Pipeline(steps)

    def _outcome(self, data: pd.DataFrame) -> np.ndarray:
        y = data[self.recipe.outcome]
        if self.mode == 'classification':
            if not is_categorical(y) and not pd.api.types.is_integer_dtype(y):
                raise ModelingError(
                    f"For a classification model, the outcome '{y.name}' should be a factor",
                    stage="fit"
                )
        elif is_categorical(y):
            raise ModelingError(
                f"For a regression model, the outcome '{y.name}' should be numeric",
                stage="fit"
            )
        return np.asarray(y)

    def fit(self, data: pd.DataFrame) -> 'Workflow':
        """
        Fit recipe and model on ``data``.

        Args:
            data: Frame holding the outcome and all predictors

        Returns:
            New fitted Workflow
        """
        X = data[self.recipe.predictors]
        y = self._outcome(data)

        fitted = self._copy()
        fitted.pipeline = self.build_pipeline()
        fitted.pipeline.fit(X, y)
        if self.mode == 'classification':
            fitted.classes_ = fitted.pipeline.classes_
        return fitted

    def _check_fitted(self) -> None:
        if not self.is_fitted:
            raise ModelingError("Workflow must be fitted before prediction. Call fit() first.",
                                stage="predict")

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        self._check_fitted()
        return self.pipeline.predict(data[self.recipe.predictors])

    def predict_proba(self, data: pd.DataFrame) -> np.ndarray:
        self._check_fitted()
        if not self.spec.emits_probabilities:
            raise ModelingError(
                f"{self.spec.family} was not configured to emit probabilities "
                f"(set prob_model: true)",
                stage="predict"
            )
        return self.pipeline.predict_proba(data[self.recipe.predictors])

    def __repr__(self) -> str:
        state = "fitted" if self.is_fitted else "unfitted"
        return f"Workflow({self.recipe!r}, {self.spec!r}, {state})"


def finalize_workflow(workflow: Workflow, params: Dict[str, Any]) -> Workflow:
    """
    Fix the tuned arguments of ``workflow`` to ``params``.

    Keys starting with '.' (such as '.config') are ignored.

    Raises:
        ModelingError: If a placeholder is left unresolved
    """
    params = {name: value for name, value in params.items() if not name.startswith('.')}
    pending = [name for name in workflow.spec.tunable_parameters() if name not in params]
    if pending:
        raise ModelingError(f"No value given for tuned arguments {pending}", stage="finalize")
    return workflow.with_params(params)


@dataclass
class LastFit:
    """
    Final fit on the training frame plus one evaluation on the test frame.

    Attributes:
        workflow: Fitted workflow
        params: Hyperparameters the workflow was finalized with
        metrics: Test-set metrics (.metric, .estimator, .estimate)
        predictions: Test-set predictions with the observed outcome
        response: Outcome column name
    """
    workflow: Workflow
    params: Dict[str, Any]
    metrics: pd.DataFrame
    predictions: pd.DataFrame
    response: str
    n_train: int = 0
    n_test: int = 0

    def collect_metrics(self) -> pd.DataFrame:
        return self.metrics.copy()

    def collect_predictions(self) -> pd.DataFrame:
        return self.predictions.copy()

    def metric(self, name: str) -> float:
        row = self.metrics[self.metrics['.metric'] == name]
        if row.empty:
            raise KeyError(name)
        return float(row['.estimate'].iloc[0])


def _estimator_type(workflow: Workflow) -> str:
    if workflow.mode == 'regression':
        return 'standard'
    return 'binary' if len(workflow.classes_) == 2 else 'multiclass'


def last_fit(
    workflow: Workflow,
    train: pd.DataFrame,
    test: pd.DataFrame,
    metrics: MetricSet
) -> LastFit:
    """
    Fit a finalized workflow on ``train`` and evaluate it on ``test``.

    Args:
        workflow: Finalized workflow (no tune() placeholders)
        train: Per-response training frame
        test: Per-response test frame
        metrics: Metrics computed on the test frame

    Returns:
        LastFit result
    """
    fitted = workflow.fit(train)
    outcome = workflow.recipe.outcome
    truth = test[outcome]

    estimate = fitted.predict(test)
    predictions = pd.DataFrame({'.row': test.index, outcome: truth.to_numpy()})

    prob = None
    if workflow.mode == 'classification':
        predictions['.pred_class'] = estimate
        if fitted.spec.emits_probabilities:
            prob = fitted.predict_proba(test)
            for i, cls in enumerate(fitted.classes_):
                predictions[f'.pred_{cls}'] = prob[:, i]
    else:
        predictions['.pred'] = estimate

    if metrics.needs_prob and prob is None:
        raise ModelingError("Probability metrics need prob_model: true", stage="last_fit")

    scores = metrics.compute(truth, estimate, prob=prob, classes=fitted.classes_)
    estimator_type = _estimator_type(fitted)
    metric_table = pd.DataFrame({
        '.metric': list(scores),
        '.estimator': estimator_type,
        '.estimate': list(scores.values())
    })

    return LastFit(
        workflow=fitted,
        params=dict(workflow.params),
        metrics=metric_table,
        predictions=predictions,
        response=outcome,
        n_train=len(train),
        n_test=len(test)
    )


def extract_fit_engine(fit: Union[LastFit, Workflow]) -> BaseEstimator:
    """Return the fitted estimator without the workflow wrapper."""
    workflow = fit.workflow if isinstance(fit, LastFit) else fit
    if not workflow.is_fitted:
        raise ModelingError("Cannot extract an engine from an unfitted workflow",
                            stage="extract")
    return workflow.pipeline.named_steps['model']
