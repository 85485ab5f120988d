"""
Many-Response Modeling
======================

Fits one tuned model per response variable over a shared feature set.

Modules:
    - data_loader: Configuration, CSV ingestion and factor encoding
    - config: Typed configuration records
    - preprocessing: Stratified split, per-response frames, folds, recipes
    - model: Model families, parameters and specifications
    - workflow: Recipe + model bundles, finalization and last fit
    - metrics: Named performance metrics
    - tuning: Regular grids, grid evaluation and selection
    - parallel: Shared worker pool
    - batch: The per-response fitting loop
    - persistence: Saving and loading result collections
    - eda: Train/test split diagnostics
    - evaluation: Held-out evaluation reports
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
