"""
Model Evaluation Module
=======================

Summarizes held-out performance of every fitted response model.

Features:
    - Test-set metrics per response and averaged over the batch
    - Confusion matrices (classification) or actual vs predicted (regression)
    - Tuning profiles: cross-validated metric across the grid
    - Metric summary bars
    - JSON metrics export and console report
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import confusion_matrix

from .batch import BatchResult

logger = logging.getLogger(__name__)


def metrics_table(result: BatchResult) -> pd.DataFrame:
    """
    Test-set metrics of every successful response in long format.

    Returns:
        DataFrame: index, response, .metric, .estimator, .estimate
    """
    frames = []
    for i, fit in enumerate(result.final_fits):
        if fit is None:
            continue
        frame = fit.collect_metrics()
        frame.insert(0, 'response', result.responses[i])
        frame.insert(0, 'index', i)
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=['index', 'response', '.metric', '.estimator', '.estimate'])
    return pd.concat(frames, ignore_index=True)


def calculate_metrics(result: BatchResult) -> Dict[str, Any]:
    """
    Per-response and overall test-set metrics.

    Args:
        result: Batch output

    Returns:
        Dictionary with 'per_response', 'overall' and 'failures'
    """
    table = metrics_table(result)
    metrics = {
        'per_response': {},
        'overall': {},
        'failures': [
            {'index': f.index, 'response': f.response, 'stage': f.stage,
             'error_type': f.error_type, 'message': f.message}
            for f in result.failures
        ]
    }

    for i, fit in enumerate(result.final_fits):
        if fit is None:
            continue
        entry = {row['.metric']: float(row['.estimate']) for _, row in fit.metrics.iterrows()}
        entry['params'] = fit.params
        entry['n_train'] = fit.n_train
        entry['n_test'] = fit.n_test
        metrics['per_response'][result.responses[i]] = entry

    for name, values in table.groupby('.metric', sort=False)['.estimate']:
        metrics['overall'][f'mean_{name}'] = float(np.nanmean(values)) if len(values) else None

    metrics['overall']['n_responses'] = len(result)
    metrics['overall']['n_succeeded'] = len(result.succeeded)
    metrics['overall']['n_failed'] = len(result.failed)
    return metrics


def _panel_axes(n_panels: int, figsize: Tuple[int, int]):
    n_rows = (max(n_panels, 1) + 1) // 2
    fig, axes = plt.subplots(n_rows, 2, figsize=figsize, squeeze=False)
    return fig, axes.flatten()


def plot_confusion_matrices(
    result: BatchResult,
    figsize: Tuple[int, int] = (12, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Test-set confusion matrix heatmap per classification response.

    Args:
        result: Batch output
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fits = [(i, fit) for i, fit in enumerate(result.final_fits) if fit is not None]
    fig, axes = _panel_axes(len(fits), figsize)

    for ax, (i, fit) in zip(axes, fits):
        preds = fit.predictions
        labels = list(fit.workflow.classes_)
        cm = confusion_matrix(preds[fit.response], preds['.pred_class'], labels=labels)
        sns.heatmap(cm, annot=True, fmt='d', cmap='Blues', cbar=False, ax=ax,
                    xticklabels=labels, yticklabels=labels)
        ax.set_xlabel('Predicted')
        ax.set_ylabel('Truth')
        ax.set_title(f'{result.responses[i]}', fontsize=10, fontweight='bold')

    # Hide unused subplots
    for idx in range(len(fits), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Confusion Matrices - Test Set', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Confusion matrices saved to {save_path}")

    return fig


def plot_actual_vs_predicted(
    result: BatchResult,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Actual vs predicted scatter plots for each regression response.

    Args:
        result: Batch output
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fits = [(i, fit) for i, fit in enumerate(result.final_fits) if fit is not None]
    fig, axes = _panel_axes(len(fits), figsize)

    for ax, (i, fit) in zip(axes, fits):
        true_col = fit.predictions[fit.response].to_numpy(dtype=float)
        pred_col = fit.predictions['.pred'].to_numpy(dtype=float)

        ax.scatter(true_col, pred_col, alpha=0.5, s=20)

        # Perfect prediction line
        min_val = min(true_col.min(), pred_col.min())
        max_val = max(true_col.max(), pred_col.max())
        ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

        title = f'{result.responses[i]}'
        if 'rmse' in fit.metrics['.metric'].values:
            title += f"\nRMSE={fit.metric('rmse'):.4f}"
        ax.set_xlabel('Actual')
        ax.set_ylabel('Predicted')
        ax.set_title(title, fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    # Hide unused subplots
    for idx in range(len(fits), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle('Actual vs Predicted - Test Set', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_tuning_profiles(
    result: BatchResult,
    metric: str,
    figsize: Tuple[int, int] = (14, 10),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Cross-validated ``metric`` across the grid, one panel per response.

    The first tuned parameter is on the x axis; the second, if any,
    is the line colour.
    """
    tuned = [(i, res) for i, res in enumerate(result.tune_results) if res is not None]
    fig, axes = _panel_axes(len(tuned), figsize)

    for ax, (i, res) in zip(axes, tuned):
        summary = res.collect_metrics()
        summary = summary[summary['.metric'] == metric]
        params = res.param_names
        if not params:
            ax.bar([0], summary['mean'])
        else:
            hue = params[1] if len(params) > 1 else None
            if hue is not None:
                summary = summary.assign(**{hue: summary[hue].map(lambda v: f'{v:.3g}')})
            sns.lineplot(data=summary, x=params[0], y='mean', hue=hue, marker='o', ax=ax)
            if summary[params[0]].min() > 0 and summary[params[0]].max() / summary[params[0]].min() > 100:
                ax.set_xscale('log')
            ax.set_xlabel(params[0])
        ax.set_ylabel(f'mean {metric}')
        ax.set_title(f'{result.responses[i]}', fontsize=10, fontweight='bold')

    # Hide unused subplots
    for idx in range(len(tuned), len(axes)):
        axes[idx].set_visible(False)

    plt.suptitle(f'Tuning Profiles - {metric}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Tuning profiles saved to {save_path}")

    return fig


def plot_metric_summary(
    metrics: Dict[str, Any],
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of each test-set metric across responses.

    Args:
        metrics: Metrics dictionary from calculate_metrics
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    responses = list(metrics['per_response'].keys())
    names = [key[len('mean_'):] for key in metrics['overall'] if key.startswith('mean_')]

    fig, axes = plt.subplots(1, max(len(names), 1), figsize=figsize, squeeze=False)
    axes = axes.flatten()
    x = np.arange(len(responses))
    colors = ['steelblue', 'coral', 'seagreen', 'orchid']

    for idx, name in enumerate(names):
        ax = axes[idx]
        values = [metrics['per_response'][resp].get(name, np.nan) for resp in responses]
        mean_value = metrics['overall'][f'mean_{name}']
        ax.bar(x, values, 0.6, color=colors[idx % len(colors)], alpha=0.8)
        if mean_value is not None:
            ax.axhline(mean_value, color='red', linestyle='--', label=f"Mean: {mean_value:.4f}")
            ax.legend()
        ax.set_xlabel('Response')
        ax.set_ylabel(name)
        ax.set_title(name, fontweight='bold')
        ax.set_xticks(x)
        ax.set_xticklabels(responses, rotation=45, ha='right')

    plt.suptitle('Test-Set Performance Summary', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Metric summary plot saved to {save_path}")

    return fig


def evaluate_batch(
    result: BatchResult,
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Run the complete evaluation of a batch and write all reports.

    Args:
        result: Batch output
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing metrics and file paths
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    metrics = calculate_metrics(result)

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(metrics, f, indent=2, default=str)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []
    if result.succeeded:
        if result.info.get('mode', 'classification') == 'classification':
            logger.info("Generating confusion matrices...")
            plot_confusion_matrices(result, save_path=str(figures_dir / "eval_confusion.png"))
            figures.append("eval_confusion.png")
        else:
            logger.info("Generating Actual vs Predicted plots...")
            plot_actual_vs_predicted(
                result, save_path=str(figures_dir / "eval_actual_vs_predicted.png")
            )
            figures.append("eval_actual_vs_predicted.png")

        metric = result.info.get('metric')
        if metric:
            logger.info("Generating tuning profiles...")
            plot_tuning_profiles(result, metric,
                                 save_path=str(figures_dir / "eval_tuning_profiles.png"))
            figures.append("eval_tuning_profiles.png")

        logger.info("Generating metric summary...")
        plot_metric_summary(metrics, save_path=str(figures_dir / "eval_metric_summary.png"))
        figures.append("eval_metric_summary.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    for key, value in metrics['overall'].items():
        logger.info(f"  {key}: {value}")
    logger.info("=" * 60)

    return {
        'metrics': metrics,
        'figures': figures,
        'metrics_file': str(metrics_file)
    }


def print_evaluation_report(metrics: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        metrics: Metrics dictionary from calculate_metrics
    """
    names = [key[len('mean_'):] for key in metrics['overall'] if key.startswith('mean_')]

    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)

    print("\nPer-Response Test Metrics:")
    print("-" * 70)
    print(f"{'Response':<20} " + " ".join(f"{name:<12}" for name in names))
    print("-" * 70)
    for response, entry in metrics['per_response'].items():
        values = " ".join(f"{entry.get(name, float('nan')):<12.4f}" for name in names)
        print(f"{response:<20} {values}")

    print("-" * 70)
    print("\nOverall:")
    for name in names:
        value = metrics['overall'][f'mean_{name}']
        if value is not None:
            print(f"  • Mean {name}: {value:.4f}")
    print(f"  • Succeeded: {metrics['overall']['n_succeeded']} / "
          f"{metrics['overall']['n_responses']}")

    if metrics['failures']:
        print("\nFailed responses:")
        for failure in metrics['failures']:
            print(f"  ✗ [{failure['index']}] {failure['response']} "
                  f"({failure['stage']}): {failure['message']}")

    print("=" * 70 + "\n")
