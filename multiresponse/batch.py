"""
Batch Model Fitting Module
==========================

Fits one tuned model per response variable.

For each response the loop builds folds, a recipe, a model spec with tune()
placeholders, a workflow and a regular grid; tunes over the folds; selects
the best configuration; finalizes and fits it on the full training frame
against the test frame; and extracts the fitted estimator.

Each response runs inside its own failure boundary: a modeling error is
logged with the response index and the failing stage, its result slots stay
empty, and the loop moves on. Configuration errors abort the batch.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from .config import ModelConfig, ParallelConfig
from .errors import ConfigurationError, ModelingError, MultiResponseError
from .metrics import MetricSet, metric_set
from .model import ModelSpec, spec_from_config
from .parallel import WorkerPool
from .preprocessing import Folds, Recipe, make_folds, make_formula
from .tuning import GridEvaluator, TuneResults, grid_regular, select_best
from .workflow import LastFit, Workflow, extract_fit_engine, finalize_workflow, last_fit

logger = logging.getLogger(__name__)


@contextmanager
def _stage(name: str):
    """Tag any library error raised in the block with the loop stage."""
    try:
        yield
    except MultiResponseError:
        raise
    except Exception as e:
        raise ModelingError(f"{type(e).__name__}: {e}", stage=name) from e


@dataclass
class ModelArtifacts:
    """Everything built while fitting one response."""
    index: int
    response: str
    recipe: Recipe
    spec: ModelSpec
    workflow: Workflow
    grid: pd.DataFrame
    tune_results: TuneResults
    best: Dict[str, Any]
    final_workflow: Workflow
    final_fit: LastFit
    model: Any


@dataclass
class IterationFailure:
    """Diagnostic for a response whose iteration failed."""
    index: int
    response: str
    stage: str
    error_type: str
    message: str

    def __str__(self) -> str:
        return f"[{self.index}] {self.response} failed at '{self.stage}': {self.message}"


@dataclass
class BatchResult:
    """
    Positional result collections, one slot per response.

    A failed response leaves None in every collection at its index.
    """
    responses: List[str]
    models: List[Optional[Any]]
    final_workflows: List[Optional[Workflow]]
    final_fits: List[Optional[LastFit]]
    tune_results: List[Optional[TuneResults]]
    failures: List[IterationFailure] = field(default_factory=list)
    info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, responses: List[str]) -> 'BatchResult':
        n = len(responses)
        return cls(
            responses=list(responses),
            models=[None] * n,
            final_workflows=[None] * n,
            final_fits=[None] * n,
            tune_results=[None] * n,
        )

    def __len__(self) -> int:
        return len(self.responses)

    def record(self, artifacts: ModelArtifacts) -> None:
        i = artifacts.index
        self.models[i] = artifacts.model
        self.final_workflows[i] = artifacts.final_workflow
        self.final_fits[i] = artifacts.final_fit
        self.tune_results[i] = artifacts.tune_results

    @property
    def succeeded(self) -> List[int]:
        return [i for i, fit in enumerate(self.final_fits) if fit is not None]

    @property
    def failed(self) -> List[int]:
        return [failure.index for failure in self.failures]


def fit_one(
    index: int,
    train: pd.DataFrame,
    test: pd.DataFrame,
    model_config: ModelConfig,
    metrics: MetricSet,
    evaluator: GridEvaluator,
    selector: Callable[[TuneResults, str], Dict[str, Any]] = select_best
) -> ModelArtifacts:
    """
    Tune, select, finalize and fit one response.

    The response is the first column of ``train``.

    Raises:
        ModelingError: Tagged with the stage that failed
    """
    response = train.columns[0]
    seed = model_config.seed_for(index)

    with _stage("folds"):
        folds: Folds = make_folds(train, v=model_config.folds, strata=response, seed=seed,
                                  as_classes=model_config.mode == "classification")

    with _stage("recipe"):
        recipe = Recipe.from_formula(make_formula(response), data=train,
                                     steps=model_config.recipe_steps)

    with _stage("spec"):
        spec = spec_from_config(model_config, seed=seed)

    with _stage("workflow"):
        workflow = Workflow().add_model(spec).add_recipe(recipe)

    with _stage("grid"):
        parameters = spec.parameters(n_predictors=len(recipe.predictors))
        grid = grid_regular(parameters, levels=model_config.levels)

    with _stage("tune"):
        tune_results = evaluator.evaluate(workflow, folds, grid, metrics)

    with _stage("select"):
        best = selector(tune_results, model_config.metric)

    with _stage("finalize"):
        final_workflow = finalize_workflow(workflow, best)

    with _stage("last_fit"):
        final_fit = last_fit(final_workflow, train, test, metrics)

    with _stage("extract"):
        model = extract_fit_engine(final_fit)

    return ModelArtifacts(
        index=index,
        response=response,
        recipe=recipe,
        spec=spec,
        workflow=workflow,
        grid=grid,
        tune_results=tune_results,
        best=best,
        final_workflow=final_workflow,
        final_fit=final_fit,
        model=model,
    )


def fit_many(
    train_frames: List[pd.DataFrame],
    test_frames: List[pd.DataFrame],
    model_config: ModelConfig,
    pool: Optional[WorkerPool] = None,
    evaluator: Optional[GridEvaluator] = None,
    selector: Callable[[TuneResults, str], Dict[str, Any]] = select_best
) -> BatchResult:
    """
    Fit one model per response, sequentially, isolating failures.

    Args:
        train_frames: Per-response training frames (response first)
        test_frames: Per-response test frames, aligned with train_frames
        model_config: Model family and tuning settings
        pool: Started WorkerPool used for grid evaluation (optional)
        evaluator: Grid evaluator (default: GridEvaluator(pool))
        selector: Picks the best configuration from tuning results

    Returns:
        BatchResult with one slot per response

    Raises:
        ConfigurationError: If inputs are inconsistent
    """
    if len(train_frames) != len(test_frames):
        raise ConfigurationError(
            f"{len(train_frames)} training frames but {len(test_frames)} test frames"
        )
    model_config.validate()
    for frame in train_frames + test_frames:
        unnamed = [col for col in frame.columns if not isinstance(col, str)]
        if unnamed:
            raise ConfigurationError(
                f"Column names must be strings, got {unnamed}; "
                f"build frames with build_response_frame"
            )

    metrics = metric_set(*model_config.metrics)
    evaluator = evaluator or GridEvaluator(pool)
    responses = [frame.columns[0] for frame in train_frames]
    result = BatchResult.empty(responses)
    n = len(responses)
    start_time = datetime.now()

    logger.info("=" * 60)
    logger.info(f"STARTING BATCH FIT: {model_config.family} ({model_config.mode}), "
                f"{n} responses")
    logger.info("=" * 60)

    for i, (train, test) in enumerate(zip(train_frames, test_frames)):
        response = responses[i]
        logger.info(f"[{i + 1}/{n}] {response}: tuning on {len(train)} rows")
        try:
            artifacts = fit_one(i, train, test, model_config, metrics, evaluator, selector)
        except ModelingError as e:
            failure = IterationFailure(
                index=i,
                response=response,
                stage=e.stage or "unknown",
                error_type=type(e.__cause__ or e).__name__,
                message=str(e),
            )
            result.failures.append(failure)
            logger.error(f"[{i + 1}/{n}] {response} failed at '{failure.stage}': {e}")
            continue

        result.record(artifacts)
        logger.info(f"[{i + 1}/{n}] {response}: best {artifacts.best}; "
                    f"test {model_config.metric}="
                    f"{artifacts.final_fit.metric(model_config.metric):.4f}")

    duration = (datetime.now() - start_time).total_seconds()
    result.info = {
        'family': model_config.family,
        'mode': model_config.mode,
        'metric': model_config.metric,
        'duration_seconds': duration,
        'finished_at': datetime.now().isoformat(),
    }

    logger.info("=" * 60)
    logger.info(f"BATCH FIT COMPLETE in {duration:.2f} seconds: "
                f"{len(result.succeeded)}/{n} succeeded")
    for failure in result.failures:
        logger.info(f"  ✗ {failure}")
    logger.info("=" * 60)

    return result


def run_batch(
    train_frames: List[pd.DataFrame],
    test_frames: List[pd.DataFrame],
    model_config: ModelConfig,
    parallel_config: Optional[ParallelConfig] = None,
    pool: Optional[WorkerPool] = None,
    evaluator: Optional[GridEvaluator] = None
) -> BatchResult:
    """
    Run fit_many, with a worker pool set up before and torn down after.

    A pool is created from ``parallel_config`` when enabled, unless one is
    passed in. Teardown happens exactly once whether or not iterations fail.
    """
    if pool is None and parallel_config is not None and parallel_config.enabled:
        pool = WorkerPool(n_workers=parallel_config.n_workers,
                          backend=parallel_config.backend)

    if pool is None:
        return fit_many(train_frames, test_frames, model_config, evaluator=evaluator)

    with pool:
        return fit_many(train_frames, test_frames, model_config, pool=pool,
                        evaluator=evaluator)


def print_batch_summary(result: BatchResult) -> None:
    """
    Print which responses were fit and the hyperparameters chosen.

    Args:
        result: Output of fit_many / run_batch
    """
    print("\n" + "=" * 60)
    print("BATCH SUMMARY")
    print("=" * 60)
    print(f"Model: {result.info.get('family', '?')} ({result.info.get('mode', '?')})")
    print(f"Responses: {len(result)} | Succeeded: {len(result.succeeded)} | "
          f"Failed: {len(result.failed)}")
    print("-" * 60)
    for i, response in enumerate(result.responses):
        fit = result.final_fits[i]
        if fit is None:
            print(f"  [{i}] {response}: ✗ no model")
        else:
            recipe = fit.workflow.recipe.summary()
            print(f"  [{i}] {response}: {fit.params}")
            print(f"      {recipe['formula']} | numeric: {recipe['n_numeric']}, "
                  f"categorical: {recipe['n_categorical']} | steps: {recipe['steps']}")
    for failure in result.failures:
        print(f"  ✗ {failure}")
    print("=" * 60 + "\n")
