"""
Result Persistence
==================

Writes the three positional result collections of a batch run with joblib,
and reads them back.

Files (``prefix`` defaults to the model family):
    - {prefix}_mod.joblib        extracted estimators
    - {prefix}_final_wf.joblib   finalized workflows
    - {prefix}_final_fit.joblib  last-fit results
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

import joblib

from .batch import BatchResult

logger = logging.getLogger(__name__)

COLLECTIONS = {
    'models': 'mod',
    'final_workflows': 'final_wf',
    'final_fits': 'final_fit',
}


def result_paths(output_dir: str, prefix: str) -> Dict[str, Path]:
    output_dir = Path(output_dir)
    return {
        name: output_dir / f"{prefix}_{suffix}.joblib"
        for name, suffix in COLLECTIONS.items()
    }


def save_results(
    result: BatchResult,
    output_dir: str = "output/",
    prefix: str = "model",
    compress: int = 3
) -> Dict[str, str]:
    """
    Save every result collection of a batch run.

    Each file holds a list aligned with the response index; failed
    responses are stored as None.

    Args:
        result: Batch output
        output_dir: Directory to write to
        prefix: File name prefix
        compress: joblib compression level

    Returns:
        Dictionary collection name -> file path
    """
    paths = result_paths(output_dir, prefix)
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    for name, path in paths.items():
        joblib.dump(list(getattr(result, name)), path, compress=compress)
        logger.info(f"Saved {name} ({len(result)} slots) to {path}")

    return {name: str(path) for name, path in paths.items()}


def load_results(output_dir: str = "output/", prefix: str = "model") -> Dict[str, List[Optional[Any]]]:
    """
    Load collections written by save_results.

    Returns:
        Dictionary collection name -> positional list

    Raises:
        FileNotFoundError: If any of the files is missing
    """
    collections = {}
    for name, path in result_paths(output_dir, prefix).items():
        if not path.exists():
            raise FileNotFoundError(f"Result file not found: {path}")
        collections[name] = joblib.load(path)
        logger.info(f"Loaded {name} from {path}")
    return collections
