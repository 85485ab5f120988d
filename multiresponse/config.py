"""
Configuration Records
=====================

Typed views over the YAML configuration sections.

Classes:
    - DataConfig: input file layout and split parameters
    - ModelConfig: one model family's fitting recipe for the whole batch
    - ParallelConfig: worker pool settings
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from .errors import ConfigurationError
from .metrics import METRICS
from .model import MODEL_FAMILIES
from .preprocessing import RECIPE_STEPS

MODES = ("classification", "regression")


@dataclass
class DataConfig:
    """
    Layout of the input table and the train/test split.

    Response columns are the first ``n_responses`` columns; features are
    the half-open column slice ``feature_columns``.
    """
    path: Optional[str] = None
    n_responses: int = 10
    feature_columns: Tuple[int, int] = (10, 30)
    factors: Optional[List[str]] = None
    strata: Optional[str] = None
    prop: float = 0.8
    seed: int = 500

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'DataConfig':
        data_config = config.get('data', {}) or {}
        split_config = config.get('split', {}) or {}

        features = data_config.get('feature_columns', [10, 30])
        if not isinstance(features, (list, tuple)) or len(features) != 2:
            raise ConfigurationError(
                f"data.feature_columns must be [start, stop], got {features!r}"
            )

        record = cls(
            path=data_config.get('path'),
            n_responses=int(data_config.get('n_responses', 10)),
            feature_columns=(int(features[0]), int(features[1])),
            factors=data_config.get('factors'),
            strata=split_config.get('strata'),
            prop=float(split_config.get('prop', 0.8)),
            seed=int(split_config.get('seed', 500)),
        )
        record.validate()
        return record

    def validate(self, n_columns: Optional[int] = None) -> None:
        """
        Check the layout, optionally against the loaded table width.

        Raises:
            ConfigurationError: If any range is invalid
        """
        start, stop = self.feature_columns
        if self.n_responses < 1:
            raise ConfigurationError(f"n_responses must be >= 1, got {self.n_responses}")
        if start >= stop:
            raise ConfigurationError(f"Empty feature column range [{start}, {stop})")
        if start < self.n_responses:
            raise ConfigurationError(
                f"Feature columns [{start}, {stop}) overlap the "
                f"{self.n_responses} response columns"
            )
        if not 0.0 < self.prop < 1.0:
            raise ConfigurationError(f"split.prop must be in (0, 1), got {self.prop}")
        if n_columns is not None and stop > n_columns:
            raise ConfigurationError(
                f"Feature columns [{start}, {stop}) exceed the table width ({n_columns})"
            )


@dataclass
class ModelConfig:
    """
    Everything needed to tune and fit one model family per response.

    Attributes:
        family: Registered model family (see ``model.MODEL_FAMILIES``)
        engine: Backend identifier
        mode: 'classification' or 'regression'
        tune: Names of the hyperparameters to tune
        engine_args: Fixed engine options (e.g. scaled, prob_model)
        levels: Grid levels per tuned hyperparameter
        folds: Number of cross-validation folds
        metric: Metric used to select the best configuration
        metrics: Metrics computed during tuning
        seed: Random seed for folds and stochastic engines
        reseed_per_iteration: Reuse ``seed`` for every response when True,
            otherwise response i uses ``seed + i``
        recipe_steps: Extra preprocessing steps for the recipe
        prefix: File stem for persisted results (defaults to family)
    """
    family: str = "svm_rbf"
    engine: str = "sklearn"
    mode: str = "classification"
    tune: List[str] = field(default_factory=lambda: ["cost", "rbf_sigma"])
    engine_args: Dict[str, Any] = field(
        default_factory=lambda: {"scaled": True, "prob_model": True}
    )
    levels: int = 10
    folds: int = 5
    metric: str = "accuracy"
    metrics: List[str] = field(default_factory=lambda: ["roc_auc", "accuracy", "kap"])
    seed: int = 500
    reseed_per_iteration: bool = True
    recipe_steps: List[str] = field(default_factory=list)
    prefix: Optional[str] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ModelConfig':
        model_config = dict(config.get('model', {}) or {})
        known = set(cls.__dataclass_fields__)
        unknown = set(model_config) - known
        if unknown:
            raise ConfigurationError(f"Unknown model options: {sorted(unknown)}")

        record = cls(**model_config)
        record.validate()
        return record

    @property
    def file_prefix(self) -> str:
        return self.prefix or self.family

    def seed_for(self, index: int) -> int:
        """Seed used for response ``index``."""
        return self.seed if self.reseed_per_iteration else self.seed + index

    def validate(self) -> None:
        """
        Check the record before any fitting starts.

        Raises:
            ConfigurationError: On unknown family, parameter or metric
        """
        if self.mode not in MODES:
            raise ConfigurationError(f"mode must be one of {MODES}, got {self.mode!r}")
        if self.family not in MODEL_FAMILIES:
            raise ConfigurationError(
                f"Unknown model family {self.family!r}. "
                f"Choose from: {', '.join(sorted(MODEL_FAMILIES))}"
            )
        family = MODEL_FAMILIES[self.family]
        if self.engine not in family.engines:
            raise ConfigurationError(
                f"Family {self.family!r} has no engine {self.engine!r}"
            )
        allowed = family.tunable(self.mode)
        bad = [name for name in self.tune if name not in allowed]
        if bad:
            raise ConfigurationError(
                f"{self.family} ({self.mode}) cannot tune {bad}; tunable: {sorted(allowed)}"
            )
        if self.levels < 1:
            raise ConfigurationError(f"levels must be >= 1, got {self.levels}")
        if self.folds < 2:
            raise ConfigurationError(f"folds must be >= 2, got {self.folds}")

        for name in self.metrics:
            if name not in METRICS:
                raise ConfigurationError(f"Unknown metric {name!r}")
            if METRICS[name].mode != self.mode:
                raise ConfigurationError(f"Metric {name!r} is not a {self.mode} metric")
        if self.metric not in self.metrics:
            raise ConfigurationError(
                f"Selection metric {self.metric!r} is not in the metric set {self.metrics}"
            )
        needs_prob = any(METRICS[name].needs_prob for name in self.metrics)
        if needs_prob and family.prob_arg and not self.engine_args.get('prob_model', False):
            raise ConfigurationError(
                f"Metrics {self.metrics} need class probabilities; "
                f"set engine_args.prob_model: true"
            )

        unknown_steps = [step for step in self.recipe_steps if step not in RECIPE_STEPS]
        if unknown_steps:
            raise ConfigurationError(
                f"Unknown recipe steps {unknown_steps}; choose from {RECIPE_STEPS}"
            )


@dataclass
class ParallelConfig:
    """Worker pool settings. ``n_workers=None`` means cpu_count() - 1."""
    enabled: bool = False
    n_workers: Optional[int] = None
    backend: str = "loky"

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ParallelConfig':
        parallel_config = config.get('parallel', {}) or {}
        return cls(
            enabled=bool(parallel_config.get('enabled', False)),
            n_workers=parallel_config.get('n_workers'),
            backend=parallel_config.get('backend', 'loky'),
        )
