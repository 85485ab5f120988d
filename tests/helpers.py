"""
Shared test data: a small synthetic table with two factor responses
and four numeric features.
"""

import numpy as np
import pandas as pd


RESPONSES = ['resp_1', 'resp_2']
FEATURES = ['x1', 'x2', 'x3', 'x4']


def make_dataset(n_samples: int = 100, seed: int = 42) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    x = rng.normal(size=(n_samples, 4))
    resp_1 = np.where(x[:, 0] + 0.3 * rng.normal(size=n_samples) > 0, 'yes', 'no')
    resp_2 = np.where(x[:, 1] - x[:, 2] + 0.3 * rng.normal(size=n_samples) > 0, 'high', 'low')
    return pd.DataFrame({
        'resp_1': pd.Categorical(resp_1),
        'resp_2': pd.Categorical(resp_2),
        'x1': x[:, 0],
        'x2': x[:, 1],
        'x3': x[:, 2],
        'x4': x[:, 3],
    })
