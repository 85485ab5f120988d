"""
Data Preprocessing Module
=========================

Handles the stratified train/test split, per-response dataset construction,
cross-validation folds and formula-driven preprocessing recipes.

Functions:
    - stratified_split: Seeded train/test split stratified on one response
    - build_response_frame: One response column plus the shared features
    - build_response_frames: The positional list of per-response frames
    - make_folds: Stratified k-fold partitions of a per-response frame
    - parse_formula / make_formula: "response ~ ." style formulas

Classes:
    - DataSplit: Training and test partitions of the full table
    - Folds: Cross-validation partitions
    - Recipe: Declarative preprocessing bound to a formula
"""

import re
import logging
from dataclasses import dataclass
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.compose import ColumnTransformer
from sklearn.feature_selection import VarianceThreshold
from sklearn.impute import SimpleImputer
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from .errors import ConfigurationError, ModelingError

logger = logging.getLogger(__name__)

RECIPE_STEPS = ("impute", "normalize", "zv")
NUMERIC_BREAKS = 4


def is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or pd.api.types.is_bool_dtype(series)


def strata_labels(
    series: pd.Series,
    breaks: int = NUMERIC_BREAKS,
    as_classes: bool = False
) -> np.ndarray:
    """
    Labels used for stratification.

    Categorical values are used as-is; numeric values are binned into
    quantile groups unless ``as_classes`` marks them as class labels
    (e.g. a 0/1 classification outcome).
    """
    if as_classes or is_categorical(series):
        return series.astype(str).to_numpy()
    bins = pd.qcut(series, q=breaks, labels=False, duplicates='drop')
    return bins.to_numpy()


def _can_stratify(labels: np.ndarray, min_count: int) -> bool:
    _, counts = np.unique(labels, return_counts=True)
    return len(counts) > 1 and counts.min() >= min_count


@dataclass
class DataSplit:
    """Training/test partition of the full table."""
    train: pd.DataFrame
    test: pd.DataFrame
    seed: int
    prop: float
    strata: Optional[str] = None

    @property
    def sizes(self) -> Tuple[int, int]:
        return len(self.train), len(self.test)


def stratified_split(
    df: pd.DataFrame,
    strata: Optional[str] = None,
    prop: float = 0.8,
    seed: int = 500,
    as_classes: bool = False
) -> DataSplit:
    """
    Split data into training and test sets, stratified on one column.

    The partition is fully determined by ``seed``. If some stratum is too
    small to appear in both sets, the split falls back to simple random
    sampling with a warning.

    Args:
        df: Full dataset
        strata: Column to stratify on (None for a simple random split)
        prop: Fraction of rows used for training
        seed: Random seed
        as_classes: Treat a numeric strata column as class labels

    Returns:
        DataSplit with training and test frames

    Raises:
        ConfigurationError: If the strata column doesn't exist or prop is invalid
    """
    if not 0.0 < prop < 1.0:
        raise ConfigurationError(f"prop must be in (0, 1), got {prop}")
    if strata is not None and strata not in df.columns:
        raise ConfigurationError(f"Strata column '{strata}' not found")

    labels = None
    if strata is not None:
        labels = strata_labels(df[strata], as_classes=as_classes)
        if not _can_stratify(labels, min_count=2):
            logger.warning(
                f"Too little data to stratify on '{strata}'; using a simple random split"
            )
            labels = None

    train_idx, test_idx = train_test_split(
        np.arange(len(df)),
        train_size=prop,
        random_state=seed,
        stratify=labels
    )
    train_idx.sort()
    test_idx.sort()

    split = DataSplit(
        train=df.iloc[train_idx].copy(),
        test=df.iloc[test_idx].copy(),
        seed=seed,
        prop=prop,
        strata=strata
    )
    logger.info(f"Split {len(df)} rows: train={len(split.train)}, test={len(split.test)} "
                f"(strata={strata}, seed={seed})")
    return split


def build_response_frame(
    table: pd.DataFrame,
    response_columns: List[str],
    feature_columns: List[str],
    index: int
) -> pd.DataFrame:
    """
    Build the modeling table for one response variable.

    The first column is the ``index``-th response, followed by every feature
    column. The result is a copy and never aliases ``table``; its column
    names are strings so they can appear in a formula.

    Args:
        table: Training or test table
        response_columns: Declared response column names
        feature_columns: Shared feature column names
        index: Position of the response, 0 <= index < len(response_columns)

    Returns:
        New DataFrame with 1 + len(feature_columns) columns

    Raises:
        ConfigurationError: If index is out of range
    """
    n = len(response_columns)
    if not 0 <= index < n:
        raise ConfigurationError(f"Response index {index} out of range [0, {n})")

    response = response_columns[index]
    frame = table.loc[:, [response] + list(feature_columns)].copy()
    frame.columns = [str(col) for col in frame.columns]
    if frame.columns.duplicated().any():
        raise ConfigurationError(
            f"Column names collide as strings: {list(frame.columns[frame.columns.duplicated()])}"
        )
    return frame


def build_response_frames(
    table: pd.DataFrame,
    response_columns: List[str],
    feature_columns: List[str]
) -> List[pd.DataFrame]:
    """Per-response frames, position i holding response i."""
    return [
        build_response_frame(table, response_columns, feature_columns, i)
        for i in range(len(response_columns))
    ]


@dataclass
class Folds:
    """
    V-fold cross-validation partitions.

    ``splits`` holds (analysis, assessment) positional index arrays
    into ``data``.
    """
    data: pd.DataFrame
    splits: List[Tuple[np.ndarray, np.ndarray]]
    ids: List[str]
    seed: int
    strata: Optional[str] = None

    def __len__(self) -> int:
        return len(self.splits)

    def __iter__(self):
        return iter(zip(self.ids, self.splits))


def make_folds(
    frame: pd.DataFrame,
    v: int = 5,
    strata: Optional[str] = None,
    seed: int = 500,
    as_classes: bool = False
) -> Folds:
    """
    Create v-fold cross-validation partitions, stratified on ``strata``.

    Args:
        frame: Per-response training frame
        v: Number of folds
        strata: Column to stratify on (usually the response)
        seed: Random seed; the same seed gives the same folds
        as_classes: Treat a numeric strata column as class labels

    Returns:
        Folds object
    """
    if v < 2:
        raise ConfigurationError(f"v must be >= 2, got {v}")
    if len(frame) < v:
        raise ModelingError(f"Cannot make {v} folds from {len(frame)} rows", stage="folds")

    labels = None
    if strata is not None:
        labels = strata_labels(frame[strata], as_classes=as_classes)
        if not _can_stratify(labels, min_count=v):
            logger.warning(f"Some strata of '{strata}' have fewer than {v} rows; "
                           f"folds are not stratified")
            labels = None

    positions = np.arange(len(frame))
    if labels is None:
        splitter = KFold(n_splits=v, shuffle=True, random_state=seed)
        splits = list(splitter.split(positions))
    else:
        splitter = StratifiedKFold(n_splits=v, shuffle=True, random_state=seed)
        splits = list(splitter.split(positions, labels))

    ids = [f"Fold{i + 1}" for i in range(v)]
    return Folds(data=frame, splits=splits, ids=ids, seed=seed, strata=strata)


_TERM = re.compile(r'`[^`]+`|[^+`]+')


def _unquote(name: str) -> str:
    name = name.strip()
    if len(name) > 1 and name.startswith('`') and name.endswith('`'):
        return name[1:-1]
    return name


def make_formula(response: str) -> str:
    """Formula modeling ``response`` on all other columns."""
    name = response if response.isidentifier() else f"`{response}`"
    return f"{name} ~ ."


def parse_formula(formula: str) -> Tuple[str, Optional[List[str]]]:
    """
    Parse "outcome ~ a + b" or "outcome ~ .".

    Returns:
        Tuple of (outcome, predictors); predictors is None for "."

    Raises:
        ModelingError: If the formula is malformed
    """
    if not isinstance(formula, str) or formula.count('~') != 1:
        raise ModelingError(f"Malformed formula: {formula!r}", stage="recipe")

    lhs, rhs = formula.split('~')
    outcome = _unquote(lhs)
    if not outcome:
        raise ModelingError(f"Formula has no outcome: {formula!r}", stage="recipe")

    terms = [_unquote(term) for term in _TERM.findall(rhs)]
    terms = [term for term in terms if term]
    if not terms:
        raise ModelingError(f"Formula has no predictors: {formula!r}", stage="recipe")
    if terms == ['.']:
        return outcome, None
    if '.' in terms:
        raise ModelingError(f"'.' cannot be combined with other terms: {formula!r}",
                            stage="recipe")
    return outcome, terms


class Recipe:
    """
    Preprocessing specification bound to a formula and a template frame.

    Categorical predictors are one-hot encoded; optional steps add
    imputation, numeric normalization and zero-variance filtering.
    """

    def __init__(
        self,
        outcome: str,
        numeric: List[str],
        categorical: List[str],
        steps: Optional[List[str]] = None,
        formula: Optional[str] = None
    ):
        self.outcome = outcome
        self.numeric = list(numeric)
        self.categorical = list(categorical)
        self.steps = list(steps or [])
        self.formula = formula

        unknown = [step for step in self.steps if step not in RECIPE_STEPS]
        if unknown:
            raise ConfigurationError(f"Unknown recipe steps: {unknown}")

    @classmethod
    def from_formula(
        cls,
        formula: str,
        data: pd.DataFrame,
        steps: Optional[List[str]] = None
    ) -> 'Recipe':
        """
        Bind a formula to ``data``, assigning outcome and predictor roles.

        Raises:
            ModelingError: If the formula is malformed or names unknown columns
        """
        outcome, predictors = parse_formula(formula)
        if outcome not in data.columns:
            raise ModelingError(f"Outcome '{outcome}' not found in data", stage="recipe")

        if predictors is None:
            predictors = [col for col in data.columns if col != outcome]
        else:
            missing = [col for col in predictors if col not in data.columns]
            if missing:
                raise ModelingError(f"Predictors not found in data: {missing}", stage="recipe")
        if not predictors:
            raise ModelingError("Recipe has no predictors", stage="recipe")

        numeric = [col for col in predictors if not is_categorical(data[col])]
        categorical = [col for col in predictors if is_categorical(data[col])]
        return cls(outcome, numeric, categorical, steps=steps, formula=formula)

    @property
    def predictors(self) -> List[str]:
        return self.numeric + self.categorical

    def split_xy(self, data: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
        """Predictor frame and outcome series of ``data``."""
        return data[self.predictors], data[self.outcome]

    def build_transformer(self) -> Pipeline:
        """Unfitted scikit-learn transformer implementing this recipe."""
        impute = "impute" in self.steps

        numeric_steps = []
        if impute:
            numeric_steps.append(('impute', SimpleImputer(strategy='median')))
        if "normalize" in self.steps:
            numeric_steps.append(('normalize', StandardScaler()))
        if not numeric_steps:
            numeric_steps.append(('identity', 'passthrough'))

        categorical_steps = []
        if impute:
            categorical_steps.append(('impute', SimpleImputer(strategy='most_frequent')))
        categorical_steps.append(('dummy', OneHotEncoder(handle_unknown='ignore',
                                                         sparse_output=False)))

        transformers = []
        if self.numeric:
            transformers.append(('numeric', Pipeline(numeric_steps), self.numeric))
        if self.categorical:
            transformers.append(('categorical', Pipeline(categorical_steps), self.categorical))

        steps = [('columns', ColumnTransformer(transformers, remainder='drop'))]
        if "zv" in self.steps:
            steps.append(('zv', VarianceThreshold(threshold=0.0)))
        return Pipeline(steps)

    def summary(self) -> Dict[str, Any]:
        return {
            'formula': self.formula,
            'outcome': self.outcome,
            'n_numeric': len(self.numeric),
            'n_categorical': len(self.categorical),
            'steps': self.steps
        }

    def __repr__(self) -> str:
        return (f"Recipe(outcome={self.outcome!r}, predictors={len(self.predictors)}, "
                f"steps={self.steps})")


def prepare_response_data(
    df: pd.DataFrame,
    response_columns: List[str],
    feature_columns: List[str],
    strata: Optional[str] = None,
    prop: float = 0.8,
    seed: int = 500,
    mode: Optional[str] = None
) -> Dict[str, Any]:
    """
    Split the table and build per-response training and test frames.

    Args:
        df: Full dataset with factors already encoded
        response_columns: Response column names
        feature_columns: Feature column names
        strata: Reference response for the split (default: first response)
        prop: Training fraction
        seed: Random seed
        mode: 'classification' stratifies on integer-coded classes as classes

    Returns:
        Dictionary containing:
            - split: DataSplit
            - train_frames, test_frames: per-response frames
            - responses, features: column names
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA PREPARATION")
    logger.info("=" * 60)

    strata = strata if strata is not None else response_columns[0]
    split = stratified_split(df, strata=strata, prop=prop, seed=seed,
                             as_classes=(mode == 'classification'))

    train_frames = build_response_frames(split.train, response_columns, feature_columns)
    test_frames = build_response_frames(split.test, response_columns, feature_columns)

    result = {
        'split': split,
        'train_frames': train_frames,
        'test_frames': test_frames,
        'responses': list(response_columns),
        'features': list(feature_columns)
    }

    logger.info("=" * 60)
    logger.info("DATA PREPARATION COMPLETE")
    logger.info(f"  Training rows: {len(split.train)}")
    logger.info(f"  Test rows: {len(split.test)}")
    logger.info(f"  Response frames: {len(train_frames)}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the data preparation results.

    Args:
        result: Dictionary from prepare_response_data
    """
    split = result['split']
    print("\n" + "=" * 50)
    print("DATA PREPARATION SUMMARY")
    print("=" * 50)
    print(f"Training rows: {len(split.train)}")
    print(f"Test rows: {len(split.test)}")
    print(f"Response variables: {len(result['responses'])}")
    print(f"Features per frame: {len(result['features'])}")
    print(f"\nStrata: {split.strata}")
    print(f"Seed: {split.seed}")
    print(f"Train proportion: {split.prop}")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    rng = np.random.default_rng(500)
    n_samples = 200
    sample_df = pd.DataFrame({
        'resp_1': pd.Categorical(rng.choice(['a', 'b'], n_samples)),
        'resp_2': pd.Categorical(rng.choice(['x', 'y', 'z'], n_samples)),
        'x1': rng.normal(size=n_samples),
        'x2': rng.normal(size=n_samples),
        'x3': rng.normal(size=n_samples)
    })

    result = prepare_response_data(sample_df, ['resp_1', 'resp_2'], ['x1', 'x2', 'x3'])
    print_preprocessing_summary(result)

    folds = make_folds(result['train_frames'][0], v=5, strata='resp_1')
    for fold_id, (analysis, assessment) in folds:
        print(f"{fold_id}: analysis={len(analysis)}, assessment={len(assessment)}")
