#!/usr/bin/env python3
"""
Many-Response Modeling - Main Pipeline
======================================

Fits one tuned model per response variable over a shared feature set.

Phases:
    1. Data - Load, encode factors, stratified train/test split
    2. EDA - Train/test balance diagnostics
    3. Training - Per-response tuning, selection and final fit
    4. Evaluation - Held-out metrics and reports

Usage:
    # Run complete pipeline
    python main.py --data data/YOUR_DATA.csv

    # Run specific phase
    python main.py --data data/YOUR_DATA.csv --phase eda

    # Run with custom config
    python main.py --data data/YOUR_DATA.csv --config config/custom.yaml
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from multiresponse.batch import BatchResult, print_batch_summary, run_batch
from multiresponse.config import DataConfig, ModelConfig, ParallelConfig
from multiresponse.data_loader import (
    load_config, load_data, prepare_dataset, validate_data, print_data_summary
)
from multiresponse.eda import generate_eda_report, print_balance_insights
from multiresponse.evaluation import evaluate_batch, print_evaluation_report
from multiresponse.model import print_model_summary, spec_from_config
from multiresponse.persistence import save_results
from multiresponse.preprocessing import prepare_response_data, print_preprocessing_summary


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the pipeline."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        ]
    )


def run_data(data_path: str, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: load, encode and split the data.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary

    Returns:
        Data preparation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: DATA PREPARATION")
    print("=" * 70)

    data_config = DataConfig.from_dict(config)
    mode = (config.get('model', {}) or {}).get('mode', 'classification')

    df = load_data(data_path)
    df, responses, features = prepare_dataset(df, data_config, mode=mode)
    print_data_summary(df, responses)
    validate_data(df, responses, features, strict=True)

    result = prepare_response_data(
        df,
        responses,
        features,
        strata=data_config.strata,
        prop=data_config.prop,
        seed=data_config.seed,
        mode=mode
    )
    print_preprocessing_summary(result)
    return result


def run_eda(prep_result: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: train/test balance diagnostics.

    Args:
        prep_result: Output of run_data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: SPLIT DIAGNOSTICS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')

    report = generate_eda_report(
        prep_result['split'],
        prep_result['responses'],
        prep_result['features'],
        output_dir=output_dir,
        show_plots=False
    )
    print_balance_insights(pd.DataFrame(report['balance_tests']))

    print(f"\n✓ Diagnostics complete. {len(report['figures'])} figures saved to {output_dir}")
    return report


def run_training(prep_result: Dict[str, Any], config: Dict[str, Any]) -> BatchResult:
    """
    Execute Phase 3: per-response tuning and fitting, then save results.

    Args:
        prep_result: Output of run_data
        config: Configuration dictionary

    Returns:
        BatchResult
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TRAINING")
    print("=" * 70)

    model_config = ModelConfig.from_dict(config)
    parallel_config = ParallelConfig.from_dict(config)
    print_model_summary(spec_from_config(model_config))

    result = run_batch(
        prep_result['train_frames'],
        prep_result['test_frames'],
        model_config,
        parallel_config=parallel_config
    )
    print_batch_summary(result)

    models_path = config.get('output', {}).get('models_path', 'output/')
    paths = save_results(result, output_dir=models_path, prefix=model_config.file_prefix)
    for name, path in paths.items():
        print(f"  • {name}: {path}")

    return result


def run_evaluation(result: BatchResult, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 4: held-out evaluation.

    Args:
        result: Output of run_training
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL EVALUATION")
    print("=" * 70)

    output_dir = config.get('output', {}).get('reports_path', 'reports/')
    evaluation = evaluate_batch(result, output_dir=output_dir, show_plots=False)
    print_evaluation_report(evaluation['metrics'])
    return evaluation


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    phase: str = "all",
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the pipeline up to and including ``phase``.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        phase: 'eda', 'train', 'evaluate' or 'all'
        log_level: Overrides logging.level from the config

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("MANY-RESPONSE MODELING PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    setup_logging(log_level or config.get('logging', {}).get('level', 'INFO'))

    results = {'config': config}
    results['data'] = run_data(data_path, config)

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(results['data'], config)
    if phase == 'eda':
        return results

    results['batch'] = run_training(results['data'], config)

    if phase in ('evaluate', 'all'):
        results['evaluation'] = run_evaluation(results['batch'], config)

    batch = results['batch']
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Responses: {len(batch)}")
    print(f"  • Models fit: {len(batch.succeeded)}")
    print(f"  • Failed: {batch.failed or 'none'}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Fit one tuned model per response variable",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/YOUR_DATA.csv
  python main.py --data data/YOUR_DATA.csv --phase eda
  python main.py --data data/YOUR_DATA.csv --config config/custom.yaml
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Path to the input CSV file (default: data.path from the config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=['eda', 'train', 'evaluate', 'all'],
        default='all',
        help='Last phase to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    data_path: Optional[str] = args.data
    if data_path is None:
        data_path = (load_config(args.config).get('data', {}) or {}).get('path')

    # Check if data file exists
    if not data_path or not Path(data_path).exists():
        print(f"Error: Data file not found: {data_path}")
        print("\nPlace your CSV data file in the specified location.")
        print("Expected format: response columns first, then feature columns")
        sys.exit(1)

    try:
        run_full_pipeline(data_path, args.config, phase=args.phase,
                          log_level="DEBUG" if args.verbose else None)
        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
