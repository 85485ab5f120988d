"""
Model Specification Module
==========================

Declares model families, their tunable hyperparameters and the engine
options used to build scikit-learn estimators.

Features:
    - Parameter ranges on a transformed scale (log10, log2) for regular grids
    - tune() placeholders for hyperparameters resolved later by tuning
    - Engine options: scaled predictors, probability outputs
    - Classification and regression modes per family
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
from sklearn.base import BaseEstimator
from sklearn.ensemble import (
    HistGradientBoostingClassifier,
    HistGradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor
from sklearn.svm import SVC, SVR

from .errors import ConfigurationError, ModelingError

logger = logging.getLogger(__name__)


class Tune:
    """Placeholder for a hyperparameter whose value is chosen by tuning."""

    def __repr__(self) -> str:
        return "tune()"

    def __eq__(self, other) -> bool:
        return isinstance(other, Tune)

    def __hash__(self) -> int:
        return hash(Tune)


def tune() -> Tune:
    return Tune()


@dataclass(frozen=True)
class Parameter:
    """
    A tunable hyperparameter.

    ``lower`` and ``upper`` are on the transformed scale, so a log10
    parameter with range (-10, 0) spans 1e-10 to 1. An ``upper`` of None
    marks a range that depends on the data and must be finalized.
    """
    name: str
    lower: float
    upper: Optional[float]
    transform: Optional[str] = None
    integer: bool = False
    label: str = ""

    @property
    def is_finalized(self) -> bool:
        return self.upper is not None

    def finalize(self, n_predictors: int) -> 'Parameter':
        if self.is_finalized:
            return self
        return replace(self, upper=float(max(n_predictors, self.lower)))

    def values(self, levels: int) -> List:
        """
        Evenly spaced values over the range.

        Integer parameters are rounded and de-duplicated, so they can
        return fewer than ``levels`` values.
        """
        if not self.is_finalized:
            raise ModelingError(
                f"Parameter '{self.name}' has an unknown range; finalize it first",
                stage="grid"
            )
        seq = np.linspace(self.lower, self.upper, levels)
        if self.transform == "log10":
            seq = 10.0 ** seq
        elif self.transform == "log2":
            seq = 2.0 ** seq

        if self.integer:
            out = []
            for value in np.round(seq).astype(int):
                if int(value) not in out:
                    out.append(int(value))
            return out
        return [float(value) for value in seq]


@dataclass
class ModelFamily:
    """
    Registry entry for a model family.

    Attributes:
        name: Family identifier
        engines: Supported engine identifiers
        estimators: mode -> estimator class
        parameters: Main arguments that can be tuned
        arg_map: Main argument name -> estimator keyword
        mode_only: Arguments valid in a single mode
        prob_arg: Estimator keyword switching on probability outputs
    """
    name: str
    engines: Tuple[str, ...]
    estimators: Dict[str, type]
    parameters: Dict[str, Parameter]
    arg_map: Dict[str, str]
    mode_only: Dict[str, str] = field(default_factory=dict)
    prob_arg: Optional[str] = None

    def tunable(self, mode: str) -> List[str]:
        return [
            name for name in self.parameters
            if self.mode_only.get(name, mode) == mode
        ]


MODEL_FAMILIES: Dict[str, ModelFamily] = {
    'svm_rbf': ModelFamily(
        name='svm_rbf',
        engines=('sklearn',),
        estimators={'classification': SVC, 'regression': SVR},
        parameters={
            'cost': Parameter('cost', -10.0, 5.0, transform='log2', label='Cost'),
            'rbf_sigma': Parameter('rbf_sigma', -10.0, 0.0, transform='log10',
                                   label='Radial Basis Function sigma'),
            'margin': Parameter('margin', 0.0, 0.2, label='Insensitivity Margin'),
        },
        arg_map={'cost': 'C', 'rbf_sigma': 'gamma', 'margin': 'epsilon'},
        mode_only={'margin': 'regression'},
        prob_arg='probability',
    ),
    'rand_forest': ModelFamily(
        name='rand_forest',
        engines=('sklearn',),
        estimators={'classification': RandomForestClassifier,
                    'regression': RandomForestRegressor},
        parameters={
            'mtry': Parameter('mtry', 1.0, None, integer=True,
                              label='# Randomly Selected Predictors'),
            'trees': Parameter('trees', 1.0, 2000.0, integer=True, label='# Trees'),
            'min_n': Parameter('min_n', 2.0, 40.0, integer=True, label='Minimal Node Size'),
        },
        arg_map={'mtry': 'max_features', 'trees': 'n_estimators',
                 'min_n': 'min_samples_split'},
    ),
    'boost_tree': ModelFamily(
        name='boost_tree',
        engines=('sklearn',),
        estimators={'classification': HistGradientBoostingClassifier,
                    'regression': HistGradientBoostingRegressor},
        parameters={
            'learn_rate': Parameter('learn_rate', -10.0, -1.0, transform='log10',
                                    label='Learning Rate'),
            'tree_depth': Parameter('tree_depth', 1.0, 15.0, integer=True, label='Tree Depth'),
            'min_n': Parameter('min_n', 2.0, 40.0, integer=True, label='Minimal Node Size'),
            'trees': Parameter('trees', 1.0, 2000.0, integer=True, label='# Trees'),
        },
        arg_map={'learn_rate': 'learning_rate', 'tree_depth': 'max_depth',
                 'min_n': 'min_samples_leaf', 'trees': 'max_iter'},
    ),
    'nearest_neighbor': ModelFamily(
        name='nearest_neighbor',
        engines=('sklearn',),
        estimators={'classification': KNeighborsClassifier,
                    'regression': KNeighborsRegressor},
        parameters={
            'neighbors': Parameter('neighbors', 1.0, 10.0, integer=True,
                                   label='# Nearest Neighbors'),
            'dist_power': Parameter('dist_power', 1.0, 2.0,
                                    label='Minkowski Distance Order'),
        },
        arg_map={'neighbors': 'n_neighbors', 'dist_power': 'p'},
    ),
}


class ModelSpec:
    """
    Model specification: family, main arguments, engine options and mode.

    Main arguments may be tune() placeholders. Specs are immutable; every
    setter returns a new spec.

    Example:
        spec = (ModelSpec('svm_rbf', cost=tune(), rbf_sigma=tune())
                .set_engine('sklearn', scaled=True, prob_model=True)
                .set_mode('classification'))
    """

    def __init__(
        self,
        family: str,
        mode: str = "unknown",
        engine: str = "sklearn",
        engine_args: Optional[Dict[str, Any]] = None,
        seed: Optional[int] = None,
        **args: Any
    ):
        if family not in MODEL_FAMILIES:
            raise ConfigurationError(f"Unknown model family: {family!r}")
        self.family = family
        self.mode = mode
        self.engine = engine
        self.engine_args = dict(engine_args or {})
        self.seed = seed
        self.args = dict(args)

        unknown = [name for name in self.args if name not in self.definition.parameters]
        if unknown:
            raise ConfigurationError(f"{family} has no arguments {unknown}")

    @property
    def definition(self) -> ModelFamily:
        return MODEL_FAMILIES[self.family]

    def _copy(self, **changes) -> 'ModelSpec':
        new = copy.copy(self)
        new.args = dict(self.args)
        new.engine_args = dict(self.engine_args)
        for key, value in changes.items():
            setattr(new, key, value)
        return new

    def set_engine(self, engine: str, **engine_args: Any) -> 'ModelSpec':
        if engine not in self.definition.engines:
            raise ConfigurationError(f"{self.family} has no engine {engine!r}")
        return self._copy(engine=engine, engine_args={**self.engine_args, **engine_args})

    def set_mode(self, mode: str) -> 'ModelSpec':
        if mode not in self.definition.estimators:
            raise ConfigurationError(f"{self.family} does not support mode {mode!r}")
        return self._copy(mode=mode)

    def set_args(self, **args: Any) -> 'ModelSpec':
        """Resolve main arguments, e.g. with the values chosen by tuning."""
        new = self._copy()
        for name, value in args.items():
            if name not in self.definition.parameters:
                raise ConfigurationError(f"{self.family} has no argument {name!r}")
            new.args[name] = value
        return new

    def tunable_parameters(self) -> List[str]:
        """Names of arguments still marked tune()."""
        return [name for name, value in self.args.items() if isinstance(value, Tune)]

    def parameters(self, n_predictors: Optional[int] = None) -> List[Parameter]:
        """
        Parameter objects for the tunable arguments.

        Data-dependent ranges are finalized when ``n_predictors`` is given.
        """
        params = [self.definition.parameters[name] for name in self.tunable_parameters()]
        if n_predictors is not None:
            params = [param.finalize(n_predictors) for param in params]
        return params

    @property
    def scaled(self) -> bool:
        return bool(self.engine_args.get('scaled', False))

    @property
    def emits_probabilities(self) -> bool:
        if self.mode != 'classification':
            return False
        if self.definition.prob_arg is None:
            return True
        return bool(self.engine_args.get('prob_model', False))

    def build_estimator(self) -> BaseEstimator:
        """
        Create the unfitted scikit-learn estimator.

        Raises:
            ModelingError: If placeholders remain or the mode is unset
        """
        if self.mode not in self.definition.estimators:
            raise ModelingError(f"Model mode is not set for {self.family}", stage="spec")
        pending = self.tunable_parameters()
        if pending:
            raise ModelingError(f"Arguments {pending} are still marked tune()", stage="spec")

        family = self.definition
        kwargs = {}
        for name, value in self.engine_args.items():
            if name == 'scaled':
                continue
            if name == 'prob_model':
                if family.prob_arg and self.mode == 'classification':
                    kwargs[family.prob_arg] = bool(value)
                continue
            kwargs[family.arg_map.get(name, name)] = value

        for name, value in self.args.items():
            if family.mode_only.get(name, self.mode) != self.mode:
                logger.debug(f"Ignoring {name} for {self.mode} {self.family}")
                continue
            kwargs[family.arg_map[name]] = value

        estimator_cls = family.estimators[self.mode]
        if self.seed is not None and 'random_state' in estimator_cls().get_params():
            kwargs.setdefault('random_state', self.seed)

        try:
            return estimator_cls(**kwargs)
        except TypeError as e:
            raise ModelingError(f"Invalid engine arguments for {self.family}: {e}",
                                stage="spec") from e

    def __repr__(self) -> str:
        args = ", ".join(f"{name}={value!r}" for name, value in self.args.items())
        return (f"ModelSpec({self.family}, {args}; engine={self.engine}, "
                f"mode={self.mode})")


def spec_from_config(model_config, seed: Optional[int] = None) -> ModelSpec:
    """Build the model spec described by a ModelConfig, seeded with ``seed`` if given."""
    engine_args = dict(model_config.engine_args)
    family = MODEL_FAMILIES[model_config.family]
    fixed = {name: engine_args.pop(name) for name in list(engine_args)
             if name in family.parameters}
    placeholders = {name: tune() for name in model_config.tune}
    fixed = {name: value for name, value in fixed.items() if name not in placeholders}

    seed = model_config.seed if seed is None else seed
    spec = ModelSpec(model_config.family, seed=seed, **fixed, **placeholders)
    return (spec
            .set_engine(model_config.engine, **engine_args)
            .set_mode(model_config.mode))


def print_model_summary(spec: ModelSpec) -> None:
    """
    Print a summary of a model specification.

    Args:
        spec: Model specification
    """
    print("\n" + "=" * 50)
    print("MODEL SPECIFICATION")
    print("=" * 50)
    print(f"Family: {spec.family}")
    print(f"Engine: {spec.engine}")
    print(f"Mode: {spec.mode}")
    print("\nMain Arguments:")
    for name, value in spec.args.items():
        print(f"  - {name}: {value!r}")
    if spec.engine_args:
        print("\nEngine Options:")
        for name, value in spec.engine_args.items():
            print(f"  - {name}: {value!r}")
    print("=" * 50 + "\n")
