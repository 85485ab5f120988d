"""
Shared fixtures built on the synthetic table in tests/helpers.py.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from multiresponse.config import ModelConfig
from tests.helpers import make_dataset


@pytest.fixture
def dataset():
    """100 rows: 2 factor responses followed by 4 features."""
    return make_dataset()


@pytest.fixture
def svm_config():
    """SVM classification with a 2 x 2 grid and 5 folds."""
    return ModelConfig(
        family='svm_rbf',
        engine='sklearn',
        mode='classification',
        tune=['cost', 'rbf_sigma'],
        engine_args={'scaled': True, 'prob_model': True},
        levels=2,
        folds=5,
        metric='accuracy',
        metrics=['roc_auc', 'accuracy', 'kap'],
        seed=500,
    )


@pytest.fixture
def knn_config():
    """Nearest neighbour classification, cheap to fit."""
    return ModelConfig(
        family='nearest_neighbor',
        mode='classification',
        tune=['neighbors', 'dist_power'],
        engine_args={'scaled': True},
        levels=2,
        folds=5,
        metric='accuracy',
        metrics=['roc_auc', 'accuracy'],
        seed=500,
    )
