#!/usr/bin/env python3
"""
Sleep Health & Lifestyle Analysis - Main Pipeline
=================================================

Orchestrates the batch pipeline for predicting sleep duration and quality.

Phases:
    1. Load - Read and validate the survey CSV
    2. Clean - Type coercion and feature derivation
    3. Split - Stratified train/validation/test partitioning
    4. Train - Baseline vs interaction OLS model selection
    5. Evaluate - RMSE on validation and test partitions

Usage:
    # Run complete pipeline
    python main.py --data data/raw/Sleep_health_and_lifestyle_dataset.csv

    # Run up to a specific phase
    python main.py --data data/raw/Sleep_health_and_lifestyle_dataset.csv --phase split

    # Run with custom config and seed
    python main.py --data data/raw/sleep.csv --config config/custom.yaml --seed 7
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

from sleep_analysis.data_loader import load_config, load_data, validate_data, print_data_summary
from sleep_analysis.exceptions import PipelineError
from sleep_analysis.preprocessing import clean_pipeline, print_cleaning_summary
from sleep_analysis.splitting import DataSplit, split_pipeline, print_split_summary
from sleep_analysis.model import ModelSelection, train_models, print_model_summary
from sleep_analysis.evaluation import (
    evaluate_models, format_rmse_lines, print_evaluation_report, save_metrics
)

PHASES = ['load', 'clean', 'split', 'train', 'evaluate']


def setup_logging(level: str = "INFO", log_file: bool = False) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(
            logging.FileHandler(f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log')
        )
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def run_load(data_path: str, verbose: bool = False) -> pd.DataFrame:
    """
    Execute Phase 1: load and validate the survey data.

    Args:
        data_path: Path to the input CSV
        verbose: Print the dataset summary

    Returns:
        Loaded DataFrame
    """
    df = load_data(data_path)
    is_valid, _ = validate_data(df, strict=True)
    if not is_valid:
        logging.warning("Data validation warnings detected. Proceeding anyway...")
    if verbose:
        print_data_summary(df)
    return df


def run_cleaning(df: pd.DataFrame, config: Dict[str, Any], verbose: bool = False) -> pd.DataFrame:
    """
    Execute Phase 2: derive the enriched table.

    Args:
        df: Loaded data
        config: Configuration dictionary
        verbose: Print the cleaning summary

    Returns:
        Enriched DataFrame
    """
    feature_config = config.get('features', {})

    enriched, report = clean_pipeline(
        df,
        strict_parsing=feature_config.get('strict_parsing', False),
        outlier_threshold=feature_config.get('outlier_threshold', 3.0),
        outlier_group_col=feature_config.get('outlier_group_col', 'BMI_Category'),
        top_occupations=feature_config.get('top_occupations', 5),
        date_seed=feature_config.get('date_seed')
    )

    if verbose:
        print_cleaning_summary(enriched, report)

    data_config = config.get('data', {})
    if data_config.get('save_processed'):
        output_path = Path(data_config.get('processed_path', 'data/processed/sleep_enriched.csv'))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        enriched.to_csv(output_path, index=False)
        logging.info(f"Enriched data saved to {output_path}")

    return enriched


def run_split(enriched: pd.DataFrame, config: Dict[str, Any], verbose: bool = False) -> DataSplit:
    """Execute Phase 3: stratified split."""
    split = split_pipeline(enriched, config)
    if verbose:
        print_split_summary(split)
    return split


def run_training(
    split: DataSplit,
    config: Dict[str, Any],
    verbose: bool = False
) -> Dict[str, ModelSelection]:
    """Execute Phase 4: model selection and refitting."""
    output_config = config.get('output', {})
    save_dir = output_config.get('model_dir', 'models/') if output_config.get('save_models') else None

    selections = train_models(split.train, split.validation, config, save_dir=save_dir)
    if verbose:
        print_model_summary(selections)
    return selections


def run_evaluation(
    selections: Dict[str, ModelSelection],
    split: DataSplit,
    config: Dict[str, Any],
    verbose: bool = False
) -> Dict[str, Any]:
    """Execute Phase 5: RMSE on validation and test partitions."""
    results = evaluate_models(
        selections,
        split.test,
        handle_unseen=config.get('evaluation', {}).get('handle_unseen', 'drop')
    )

    output_config = config.get('output', {})
    if output_config.get('save_metrics'):
        save_metrics(results, output_config.get('metrics_path', 'reports/metrics/'))

    if verbose:
        print_evaluation_report(results)
    else:
        for line in format_rmse_lines(results):
            print(line)

    return results


def run_pipeline(
    data_path: str,
    config: Dict[str, Any],
    until: str = 'evaluate',
    verbose: bool = False
) -> Dict[str, Any]:
    """
    Execute the pipeline phases in order, stopping after `until`.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary
        until: Last phase to run
        verbose: Print per-phase summaries

    Returns:
        Dictionary containing the result of each phase that ran
    """
    if until not in PHASES:
        raise ValueError(f"Unknown phase: {until}. Choose from: {', '.join(PHASES)}")
    last = PHASES.index(until)

    results: Dict[str, Any] = {'config': config}

    results['data'] = run_load(data_path, verbose)
    if last >= PHASES.index('clean'):
        results['enriched'] = run_cleaning(results['data'], config, verbose)
    if last >= PHASES.index('split'):
        results['split'] = run_split(results['enriched'], config, verbose)
    if last >= PHASES.index('train'):
        results['models'] = run_training(results['split'], config, verbose)
    if last >= PHASES.index('evaluate'):
        results['evaluation'] = run_evaluation(results['models'], results['split'], config, verbose)

    return results


def build_config(config_path: Optional[str], seed: Optional[int] = None) -> Dict[str, Any]:
    """Load the YAML config (or defaults) and apply command line overrides."""
    config = load_config(config_path) if config_path else {}
    if seed is not None:
        config.setdefault('split', {})['random_state'] = seed
    return config


def main(argv: Optional[list] = None) -> int:
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Sleep Health & Lifestyle regression pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/Sleep_health_and_lifestyle_dataset.csv
  python main.py --data data/raw/sleep.csv --phase clean --verbose
  python main.py --data data/raw/sleep.csv --config config/custom.yaml --seed 7
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the input CSV file'
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
        choices=PHASES + ['all'],
        default='all',
        help='Run the pipeline up to and including this phase (default: all)'
    )

    parser.add_argument(
        '--seed', '-s',
        type=int,
        default=None,
        help='Random seed for the stratified split (overrides config)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Print per-phase summaries'
    )

    args = parser.parse_args(argv)

    config_path = args.config if Path(args.config).exists() else None
    config = build_config(config_path, seed=args.seed)

    logging_config = config.get('logging', {})
    setup_logging(
        'DEBUG' if args.verbose else logging_config.get('level', 'INFO'),
        log_file=logging_config.get('log_file', False)
    )
    if config_path is None:
        logging.warning(f"Config file not found: {args.config}; using defaults")

    until = 'evaluate' if args.phase == 'all' else args.phase

    try:
        run_pipeline(args.data, config, until=until, verbose=args.verbose)
        return 0

    except PipelineError as e:
        logging.error(f"Pipeline failed at {e.stage}: {e}")
        print(f"\n❌ Pipeline failed at {e.stage}: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
