"""
Split Diagnostics Module
========================

Checks that the stratified split preserved the distribution of every
response variable, and summarizes the shared feature set.

Functions:
    - class_balance_table: Class counts and proportions in train vs test
    - balance_tests: Chi-square (factors) or KS (numeric) test per response
    - plot_class_balance: Train/test proportions per response
    - plot_correlation_matrix: Feature correlation heatmap
    - generate_eda_report: All of the above, saved to disk
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .preprocessing import DataSplit, is_categorical

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")


def class_balance_table(split: DataSplit, responses: List[str]) -> pd.DataFrame:
    """
    Class counts and proportions of each categorical response per subset.

    Args:
        split: Train/test split
        responses: Response column names

    Returns:
        Long DataFrame: response, class, subset, n, prop
    """
    rows = []
    for response in responses:
        if not is_categorical(split.train[response]):
            continue
        for subset, frame in (('train', split.train), ('test', split.test)):
            counts = frame[response].astype(str).value_counts().sort_index()
            total = counts.sum()
            for cls, n in counts.items():
                rows.append({
                    'response': response,
                    'class': cls,
                    'subset': subset,
                    'n': int(n),
                    'prop': float(n / total) if total else float('nan')
                })
    return pd.DataFrame(rows, columns=['response', 'class', 'subset', 'n', 'prop'])


def balance_tests(split: DataSplit, responses: List[str]) -> pd.DataFrame:
    """
    Test whether each response is distributed alike in train and test.

    Categorical responses use a chi-square test of homogeneity; numeric
    responses use the two-sample Kolmogorov-Smirnov test.

    Returns:
        DataFrame: response, test, statistic, p_value
    """
    rows = []
    for response in responses:
        train = split.train[response]
        test = split.test[response]

        if is_categorical(train):
            table = pd.crosstab(
                pd.concat([train, test]).astype(str).to_numpy(),
                np.repeat(['train', 'test'], [len(train), len(test)])
            )
            if table.shape[0] < 2:
                statistic, p_value = float('nan'), float('nan')
            else:
                statistic, p_value, _, _ = stats.chi2_contingency(table)
            test_name = 'chi2'
        else:
            statistic, p_value = stats.ks_2samp(train.dropna(), test.dropna())
            test_name = 'ks'

        rows.append({
            'response': response,
            'test': test_name,
            'statistic': float(statistic),
            'p_value': float(p_value)
        })
    return pd.DataFrame(rows, columns=['response', 'test', 'statistic', 'p_value'])


def plot_class_balance(
    balance: pd.DataFrame,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar charts of class proportions in train vs test, one panel per response.

    Args:
        balance: Output of class_balance_table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    responses = balance['response'].unique().tolist()
    n_panels = max(len(responses), 1)
    n_rows = (n_panels + 1) // 2

    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    axes = axes.flatten()

    for idx, response in enumerate(responses):
        ax = axes[idx]
        data = balance[balance['response'] == response]
        sns.barplot(data=data, x='class', y='prop', hue='subset', ax=ax, alpha=0.8)
        ax.set_title(f'{response}', fontsize=10, fontweight='bold')
        ax.set_xlabel('Class')
        ax.set_ylabel('Proportion')
        ax.legend(fontsize=8)

    # Hide unused subplots
    for idx in range(len(responses), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Class Balance - Train vs Test', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Class balance plot saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (10, 8),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    corr_matrix = df.select_dtypes(include=[np.number]).corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=len(corr_matrix) <= 12,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Feature Correlation ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def generate_eda_report(
    split: DataSplit,
    responses: List[str],
    features: List[str],
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the split diagnostics report.

    Args:
        split: Train/test split
        responses: Response column names
        features: Feature column names
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing balance tables, tests and figure names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING SPLIT DIAGNOSTICS")
    logger.info("=" * 60)

    balance = class_balance_table(split, responses)
    tests = balance_tests(split, responses)
    figures = []

    if not balance.empty:
        logger.info("Generating class balance plots...")
        plot_class_balance(balance, save_path=str(output_dir / "eda_class_balance.png"))
        figures.append("eda_class_balance.png")

    numeric_features = split.train[features].select_dtypes(include=[np.number])
    corr_matrix = pd.DataFrame()
    if numeric_features.shape[1] > 1:
        logger.info("Generating feature correlation matrix...")
        _, corr_matrix = plot_correlation_matrix(
            numeric_features, save_path=str(output_dir / "eda_feature_correlation.png")
        )
        figures.append("eda_feature_correlation.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    report = {
        'class_balance': balance.to_dict(orient='records'),
        'balance_tests': tests.to_dict(orient='records'),
        'correlation_matrix': corr_matrix.to_dict(),
        'figures': figures,
        'train_rows': len(split.train),
        'test_rows': len(split.test)
    }

    logger.info("=" * 60)
    logger.info(f"SPLIT DIAGNOSTICS COMPLETE: {len(figures)} figures")
    logger.info("=" * 60)

    return report


def print_balance_insights(tests: pd.DataFrame, alpha: float = 0.05) -> None:
    """
    Print responses whose train/test distributions differ.

    Args:
        tests: Output of balance_tests
        alpha: Significance level
    """
    print("\n" + "=" * 60)
    print("TRAIN/TEST BALANCE")
    print("=" * 60)

    for _, row in tests.iterrows():
        if np.isnan(row['p_value']):
            status = "n/a"
        elif row['p_value'] < alpha:
            status = "⚠ imbalanced"
        else:
            status = "✓ balanced"
        print(f"  {row['response']:<20} {row['test']:<5} p={row['p_value']:.4f}  {status}")

    n_flagged = int((tests['p_value'] < alpha).sum())
    print(f"\n{n_flagged} of {len(tests)} responses differ at alpha={alpha}")
    print("=" * 60 + "\n")
