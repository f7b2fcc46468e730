"""
Sleep Health & Lifestyle Analysis
=================================

A batch pipeline predicting sleep duration and sleep quality from lifestyle
survey data with ordinary least squares regression.

Modules:
    - data_loader: CSV ingestion and validation
    - preprocessing: Type coercion and feature derivation
    - splitting: Stratified train/validation/test partitioning
    - model: Formula-driven OLS models and model selection
    - evaluation: RMSE scoring and reporting
    - exceptions: Pipeline error taxonomy
"""

__version__ = "1.0.0"
__author__ = "Sleep Health Analysis Team"
