#!/usr/bin/env python3
"""
Main script to run the VA calibration pipeline
"""

import sys
import os
import json
import logging
import argparse
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))


def read_predictions(path, causes, prediction_column):
    """
    Read one algorithm's predictions from CSV.

    A file with one column per cause is read as a probability matrix;
    otherwise the prediction column holds one cause label per row.
    """
    import pandas as pd

    df = pd.read_csv(path)
    if all(c in df.columns for c in causes):
        return df[list(causes)]
    if prediction_column not in df.columns:
        raise ValueError(
            f"{path}: expected a '{prediction_column}' column or one column per cause"
        )
    return df[prediction_column].astype(str)


def write_results(results, output_dir):
    """Write DataFrames as CSV and dict outputs as JSON."""
    import pandas as pd

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, value in results.items():
        if isinstance(value, pd.DataFrame):
            path = output_dir / f"{name}.csv"
            value.to_csv(path, index=not isinstance(value.index, pd.RangeIndex))
        elif isinstance(value, dict):
            path = output_dir / f"{name}.json"
            with open(path, 'w') as f:
                json.dump(value, f, indent=2)
        else:
            continue
        written.append(path)
    return written


def main():
    """Main function to run the calibration pipeline."""
    parser = argparse.ArgumentParser(description="Calibrate VA cause predictions and estimate CSMFs")
    parser.add_argument("--config", type=str, default="config/default.yaml",
                       help="Path to configuration file (default: config/default.yaml)")
    parser.add_argument("--outputs", nargs="+",
                       help="Pipeline outputs to compute (default: CSMF summary, misclassification matrix, WAIC)")
    parser.add_argument("--tune", action="store_true",
                       help="Also run the WAIC grid search over the shrinkage strength")
    parser.add_argument("--output-dir", type=str,
                       help="Override the output directory from the config")

    args = parser.parse_args()

    # Load configuration
    try:
        from calibrated_va.config import load_config, TuningConfig
        config = load_config(Path(args.config))
        print(f"Loaded configuration from: {args.config}")
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        print("Available configs: config/default.yaml, config/test.yaml")
        return 1
    except Exception as e:
        print(f"Error loading config: {e}")
        return 1

    if config.data_paths is None:
        print("Error: the config has no data_paths section")
        return 1

    if args.tune and config.tuning is None:
        config = config.model_copy(update={"tuning": TuningConfig(method=config.prior.method)})

    output_dir = args.output_dir if args.output_dir else config.data_paths.output_dir

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('calibration.log')
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info("Starting VA calibration pipeline...")
    logger.info(f"Prior: {config.prior.method}, {config.sampler.nchains} chains x {config.sampler.ndraws} draws")

    try:
        import pandas as pd
        from calibrated_va.hamilton_pipeline import CalibrationPipeline

        paths = config.data_paths
        va_unlabeled = [read_predictions(p, config.causes, paths.prediction_column) for p in paths.va_unlabeled]
        va_labeled = [read_predictions(p, config.causes, paths.prediction_column) for p in paths.va_labeled]
        gold = pd.read_csv(paths.gold_standard)
        if paths.gold_standard_column not in gold.columns:
            raise ValueError(f"{paths.gold_standard}: missing column '{paths.gold_standard_column}'")
        gold_standard = gold[paths.gold_standard_column].astype(str)

        pipeline = CalibrationPipeline(config=config)
        results = pipeline.execute(va_unlabeled, va_labeled, gold_standard, outputs=args.outputs)

        if 'tuning_result' in results:
            tuning = results.pop('tuning_result')
            results['tuning_selection'] = {
                "method": tuning.method,
                "best_value": tuning.best_value,
                "uncalibrated_waic": tuning.uncalibrated_waic.waic,
            }

        written = write_results(results, output_dir)
        logger.info("Calibration pipeline completed successfully!")
        print("\n" + "="*60)
        print("CALIBRATION PIPELINE COMPLETED SUCCESSFULLY!")
        print("="*60)
        print(f"Generated outputs: {len(written)}")
        print(f"\nCheck the '{output_dir}' directory for generated files.")

    except Exception as e:
        logger.error(f"Pipeline execution failed: {str(e)}")
        print(f"\nError: {str(e)}")
        import traceback
        traceback.print_exc()
        return 1

    return 0

if __name__ == "__main__":
    sys.exit(main())
