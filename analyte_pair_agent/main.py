#!/usr/bin/env python3
"""
Analyte Pair Screening - Main Entry Point

Command-line interface that loads a dataset from a manifest, runs the
screening pipeline and optionally cross-validation and permutation testing,
and writes the resulting tables as delimited text.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .analyte_filter import filter_summary
from .config import ScreeningConfig, load_config
from .cross_validator import CrossValidator
from .data_loader import load_dataset
from .exceptions import PairScreeningError
from .permuter import Permuter
from .pipeline import ScreeningPipeline
from .result_processor import export_significant_pairs


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _sibling(output_path: Path, suffix: str) -> Path:
    return output_path.with_name(f"{output_path.stem}_{suffix}{output_path.suffix or '.csv'}")


def run_screening(manifest: str,
                  output_path: str,
                  config: ScreeningConfig,
                  cross_validate: bool = False,
                  save_all_pairs: bool = False) -> None:
    """Run the pipeline on a manifest and write all requested tables."""
    logger = logging.getLogger(__name__)
    output_path = Path(output_path)
    sep = '\t' if output_path.suffix.lower() in ('.tsv', '.txt') else ','

    dataset = load_dataset(manifest)

    pipeline = ScreeningPipeline(config)
    result = pipeline.run(dataset)
    logger.info(f"Filter summary: {filter_summary(pipeline.analyte_filter)}")
    logger.info(
        f"Fitted {result.model_result.n_evaluable} of {result.model_result.n_pairs} pairs; "
        f"{result.model_result.n_failed} unevaluable"
    )
    export_significant_pairs(result.significant, str(output_path), sep=sep)

    if save_all_pairs:
        all_pairs = pipeline.processor.adjust(result.model_result)
        all_pairs.to_csv(_sibling(output_path, 'all_pairs'), sep=sep, index=False)

    if cross_validate:
        cv_result = CrossValidator(config).run(dataset)
        cv_result.fold_counts().to_csv(_sibling(output_path, 'fold_counts'), sep=sep, index=False)
        cv_result.fold_summary().to_csv(_sibling(output_path, 'fold_summary'), sep=sep, index=False)
        logger.info(f"Pairs stable in more than half of the folds: {len(cv_result.stable_pairs())}")

    if config.permutation.num_permutations > 0:
        perm_result = Permuter(config).run(result.dataset, original=result)
        perm_result.count_summary().to_csv(_sibling(output_path, 'permutation_counts'), sep=sep, index=False)
        perm_result.pair_summary().to_csv(_sibling(output_path, 'permutation_pairs'), sep=sep, index=False)
        logger.info(f"Permutation empirical p-value: {perm_result.empirical_pvalue():.4g}")

    # Print top pairs
    top = result.significant.table.head(20)
    for i, row in enumerate(top.itertuples(index=False)):
        logger.info(
            f"{i+1:2d}. {row.independent}-{row.outcome} "
            f"(coef: {getattr(row, config.thresholds.coefficient + '_coeff'):.3f}, r2: {row.rsquared:.3f})"
        )


def main(argv=None):
    """Main function to handle command-line arguments and run the screening."""
    parser = argparse.ArgumentParser(
        description='Analyte Pair Screening - interaction linear models across two omics matrices'
    )
    parser.add_argument('--manifest', '-m', required=True, help='Manifest (JSON or two-column CSV) naming the input files')
    parser.add_argument('--output', '-o', required=True, help='Output path for the significant pairs table (.csv or .tsv)')
    parser.add_argument('--config', '-c', help='Configuration file path (JSON)')

    # Analysis parameters
    parser.add_argument('--cross-validate', action='store_true', help='Run k-fold cross-validation')
    parser.add_argument('--folds', type=int, help='Number of cross-validation folds')
    parser.add_argument('--permutations', type=int, help='Number of phenotype permutations (0 disables)')
    parser.add_argument('--seed', type=int, help='Base seed for permutations and fold assignment')
    parser.add_argument('--workers', type=int, help='Worker threads for pair model fitting')
    parser.add_argument('--save-all-pairs', action='store_true', help='Also write the full pair model table')

    # Logging
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--log-file', help='Also write logs to this file')

    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_file)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        # Override config with command-line arguments
        overrides = config.to_dict()
        if args.folds is not None:
            overrides['cross_validation']['folds'] = args.folds
        if args.permutations is not None:
            overrides['permutation']['num_permutations'] = args.permutations
        if args.seed is not None:
            overrides['permutation']['base_seed'] = args.seed
            overrides['cross_validation']['random_state'] = args.seed
        if args.workers is not None:
            overrides['processing']['max_workers'] = args.workers
        config = ScreeningConfig.from_dict(overrides)

        logger.info(f"Running screening on manifest: {args.manifest}")
        run_screening(
            args.manifest,
            args.output,
            config,
            cross_validate=args.cross_validate,
            save_all_pairs=args.save_all_pairs,
        )
    except (PairScreeningError, FileNotFoundError) as e:
        logger.error(f"Screening failed: {e}")
        sys.exit(1)

    logger.info("Process completed successfully!")


if __name__ == '__main__':
    main()
