"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion, factor encoding and
layout validation.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load CSV data
    - encode_factors: Convert label columns to categorical dtype
    - split_columns: Resolve response and feature column names by position
    - validate_data: Check data quality constraints
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import yaml

from .config import DataConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    expected_columns: Optional[int] = None,
    index_col: Optional[int] = None
) -> pd.DataFrame:
    """
    Load CSV data.

    Args:
        file_path: Path to the CSV file
        expected_columns: Expected number of columns (optional validation)
        index_col: Column to use as index (optional)

    Returns:
        DataFrame containing the loaded data

    Raises:
        FileNotFoundError: If data file doesn't exist
        ConfigurationError: If the column count doesn't match
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    df = pd.read_csv(file_path, index_col=index_col)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if expected_columns is not None and df.shape[1] != expected_columns:
        raise ConfigurationError(
            f"Expected {expected_columns} columns, but found {df.shape[1]}. "
            f"Columns: {list(df.columns)}"
        )

    return df


def encode_factors(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """
    Return a copy of ``df`` with ``columns`` converted to categorical.

    Raises:
        ConfigurationError: If a column is missing
    """
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ConfigurationError(f"Cannot encode missing columns as factors: {missing}")

    df = df.copy()
    for col in columns:
        df[col] = df[col].astype('category')
    logger.info(f"Encoded {len(columns)} columns as categorical")
    return df


def split_columns(df: pd.DataFrame, data_config: DataConfig) -> Tuple[List[str], List[str]]:
    """
    Resolve response and feature column names from their configured positions.

    Args:
        df: Loaded dataset
        data_config: Layout record

    Returns:
        Tuple of (response column names, feature column names)

    Raises:
        ConfigurationError: If the positions fall outside the table
    """
    data_config.validate(n_columns=df.shape[1])
    start, stop = data_config.feature_columns

    responses = list(df.columns[:data_config.n_responses])
    features = list(df.columns[start:stop])

    logger.info(f"Responses ({len(responses)}): {responses}")
    logger.info(f"Features ({len(features)}): columns {start}..{stop - 1}")
    return responses, features


def prepare_dataset(
    df: pd.DataFrame,
    data_config: DataConfig,
    mode: str = "classification"
) -> Tuple[pd.DataFrame, List[str], List[str]]:
    """
    Apply factor encoding and resolve the column layout.

    Classification runs encode every response as a factor unless
    ``data_config.factors`` names the columns explicitly.
    """
    responses, features = split_columns(df, data_config)
    factors = data_config.factors
    if factors is None:
        factors = responses if mode == "classification" else []
    if factors:
        df = encode_factors(df, list(factors))
    return df, responses, features


def validate_data(
    df: pd.DataFrame,
    responses: List[str],
    features: List[str],
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for per-response modeling.

    Checks:
        - Response and feature columns are disjoint
        - No missing values in responses
        - Categorical responses have at least two classes
        - Missing values in features (warning only)

    Args:
        df: DataFrame to validate
        responses: Response column names
        features: Feature column names
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "issues": [],
        "warnings": []
    }

    # Check 1: disjoint blocks
    overlap = sorted(set(responses) & set(features))
    if overlap:
        report["issues"].append(f"Columns used as both response and feature: {overlap}")

    # Check 2: missing responses
    missing = df[responses].isnull().sum()
    if missing.sum() > 0:
        report["issues"].append(
            f"Missing response values: {missing[missing > 0].to_dict()}"
        )

    # Check 3: degenerate factor responses
    for col in responses:
        if isinstance(df[col].dtype, pd.CategoricalDtype):
            n_classes = df[col].nunique()
            if n_classes < 2:
                report["issues"].append(f"Response '{col}' has {n_classes} class(es)")

    # Check 4: feature gaps
    feature_missing = int(df[features].isnull().sum().sum())
    if feature_missing > 0:
        warning = f"Missing feature values: {feature_missing}"
        report["warnings"].append(warning)
        logger.warning(warning)

    for issue in report["issues"]:
        logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ConfigurationError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def print_data_summary(df: pd.DataFrame, responses: Optional[List[str]] = None) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        responses: Response columns to list class counts for
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"Memory Usage: {df.memory_usage(deep=True).sum() / 1024:.2f} KB")

    if responses:
        print("\nResponse Variables:")
        print("-" * 40)
        for col in responses:
            if isinstance(df[col].dtype, pd.CategoricalDtype):
                counts = df[col].value_counts().sort_index().to_dict()
                print(f"  {col}: {len(counts)} classes {counts}")
            else:
                print(f"  {col}: {df[col].dtype} | mean={df[col].mean():.4f}")

    numeric = df.select_dtypes(include=[np.number])
    if not numeric.empty:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(numeric.describe().round(4).to_string())
    print("=" * 60 + "\n")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_config()
        data_config = DataConfig.from_dict(config)
        print("Configuration loaded successfully!")
        print(f"Responses: {data_config.n_responses}")
        print(f"Feature columns: {data_config.feature_columns}")
    except FileNotFoundError as e:
        print(f"Config not found: {e}")
        data_config = DataConfig()

    data_path = data_config.path or "data/YOUR_DATA.csv"
    if os.path.exists(data_path):
        df = load_data(data_path)
        df, responses, features = prepare_dataset(df, data_config)
        print_data_summary(df, responses)
        is_valid, report = validate_data(df, responses, features, strict=False)
        print(f"Validation passed: {is_valid}")
    else:
        print(f"No data file found at {data_path}")
