#!/usr/bin/env python3
"""
suds - command line staging tool

Sub-commands:
    train      Fit trainers from staged recordings and write a corpus
    score      Stage a target recording with a trainer corpus
    soap       Self-evaluate a staged recording
    resoap     Edit a recording's staging and refit
    copy-db    Convert a corpus between text and binary formats

Recordings are .npz files holding one (epochs x samples) array per
channel, an `fs_<channel>` sample rate per channel and optionally a
`stages` array. Epoch numbers on the command line are 1-based.

Usage:
    suds train rec1.npz rec2.npz --out corpus.db
    suds score target.npz --library corpus.db --weights kl soap --out-dir results/
    suds soap rec1.npz
    suds resoap rec1.npz --alter 120=R --alter 121=R
    suds resoap rec1.npz --pick 3 --seed 1
    suds copy-db corpus.db corpus.txt --text
"""

import argparse
import glob
import logging
import os
import sys
from typing import Dict, List, Optional

from .config import StagingConfig, WEIGHT_METHODS
from .ensemble import EnsemblePredictor
from .errors import StagingError
from .library import TrainerLibrary, copy_library
from .pipeline import TARGET, build_library, build_target, fit_individual
from .recording import ArrayEpochSource, load_npz
from .reports import (
    StagingReporter,
    epoch_table,
    print_library_outcome,
    read_stage_file,
    stage_durations,
    trainer_table,
    write_labels,
)
from .soap import DROP, KEEP, Refiner, SelfEvaluator
from .utils import setup_logging

logger = logging.getLogger(__name__)


def _expand_inputs(paths: List[str]) -> List[str]:
    """Expand directories and glob patterns to .npz files."""
    files = []
    for p in paths:
        if os.path.isdir(p):
            files.extend(sorted(glob.glob(os.path.join(p, '*.npz'))))
        elif any(c in p for c in '*?['):
            files.extend(sorted(glob.glob(p)))
        else:
            files.append(p)
    return files


def _load_config(args) -> StagingConfig:
    """Staging configuration from YAML defaults, --config files and flags."""
    staging: Dict = {}

    def put(section, key, value):
        if value is not None:
            staging.setdefault(section, {})[key] = value

    put('projection', 'nc', getattr(args, 'nc', None))
    put('classifier', 'method', getattr(args, 'method', None))
    put('classifier', 'n_stages', getattr(args, 'n_stages', None))
    put('weighting', 'methods', getattr(args, 'weights', None))
    put('weighting', 'percentile', getattr(args, 'percentile', None))
    put('weighting', 'exponent', getattr(args, 'exponent', None))
    put('weighting', 'mean_threshold', getattr(args, 'mean_threshold', None))
    if getattr(args, 'best_guess', False):
        put('weighting', 'best_guess', True)
    if getattr(args, 'allow_self', False):
        put('weighting', 'allow_self', True)
    return StagingConfig.load(staging_overrides=staging or None,
                              staging_file=getattr(args, 'config', None),
                              features_file=getattr(args, 'features', None))


def _load_recording(path: str, labels: Optional[str], n_stages: int) -> ArrayEpochSource:
    source = load_npz(path)
    if labels:
        source = source.with_stages(read_stage_file(labels, n_stages))
    return source


def _parse_alter(value: str):
    try:
        epoch, stage = value.split('=', 1)
        return int(epoch), stage
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected EPOCH=STAGE, got '{value}'")


# === COMMANDS ===

def cmd_train(args) -> int:
    config = _load_config(args)
    files = _expand_inputs(args.recordings)
    if not files:
        logger.error("No recordings given")
        return 1
    sources = (load_npz(f) for f in files)
    outcome = build_library(sources, config, args.out, binary=not args.text,
                            include_features=args.include_features,
                            per_trainer=args.per_trainer)
    print_library_outcome(outcome, skipped_only=not args.verbose)
    return 0 if any(r is None for r in outcome.values()) else 1


def cmd_score(args) -> int:
    config = _load_config(args)
    library = TrainerLibrary.load(args.library, config)
    weight_library = TrainerLibrary.load(args.weight_library, config) if args.weight_library else None
    source = _load_recording(args.target, args.labels, config.classifier.n_stages)

    bounds = library.hjorth_bounds() if len(library) else None
    target = build_target(source, config, hjorth_bounds=bounds)
    predictor = EnsemblePredictor(config, library, weight_library)
    result = predictor.predict(target, diagnostics=args.verbose)

    reporter = StagingReporter(config.features.epoch_sec, verbose=args.verbose)
    reporter.print_result(result)

    if args.out_dir:
        os.makedirs(args.out_dir, exist_ok=True)
        stem = os.path.join(args.out_dir, source.recording_id)
        epoch_table(result).to_csv(f"{stem}-epochs.csv", index=False)
        stage_durations(result, config.features.epoch_sec).to_csv(f"{stem}-durations.csv")
        trainer_table(result).to_csv(f"{stem}-trainers.csv", index=False)
        write_labels(result.epoch_labels(), f"{stem}.eannot", numeric=args.numeric)
        logger.info(f"Wrote results to {args.out_dir}")
    return 0


def cmd_soap(args) -> int:
    config = _load_config(args)
    source = _load_recording(args.recording, args.labels, config.classifier.n_stages)
    result = SelfEvaluator(config).evaluate_source(source)
    StagingReporter(config.features.epoch_sec).print_soap(result)
    return 0


def cmd_resoap(args) -> int:
    config = _load_config(args)
    source = _load_recording(args.recording, args.labels, config.classifier.n_stages)
    fit = fit_individual(source, config, TARGET)
    if not fit.valid:
        logger.error(f"{fit.recording_id}: {fit.reason}")
        return 1

    refiner = Refiner(config, fit)
    history = [refiner.refit(args.policy)]
    if args.pick:
        refiner.pick(args.pick, exact=args.exact, seed=args.seed)
    for epoch, stage in args.alter or []:
        refiner.alter(epoch - 1, stage)
    if args.pick or args.alter:
        history.append(refiner.refit(args.policy))

    StagingReporter(config.features.epoch_sec).print_refinement(fit.recording_id, history)
    if args.out:
        write_labels(fit.retained.expand_labels(history[-1].predicted), args.out, numeric=args.numeric)
        logger.info(f"Wrote labels to {args.out}")
    return 0


def cmd_copy_db(args) -> int:
    n = copy_library(args.src, args.dst, binary=not args.text, drop_features=args.drop_features)
    print(f"Copied {n} trainers to {args.dst}")
    return 0


# === PARSER ===

def _add_staging_options(p: argparse.ArgumentParser):
    p.add_argument('--config', type=str, default=None,
                   help='YAML file with staging overrides')
    p.add_argument('--features', type=str, default=None,
                   help='YAML file with the feature model')
    p.add_argument('--nc', type=int, default=None,
                   help='Number of components')
    p.add_argument('--method', choices=['lda', 'qda'], default=None,
                   help='Discriminant method')
    p.add_argument('--n-stages', type=int, choices=[3, 5], default=None,
                   help='5-class or 3-class (NR/R/W) staging')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='suds',
        description="Automated sleep staging from trainer corpora",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging and diagnostics')
    parser.add_argument('-q', '--quiet', action='store_true', help='Only log warnings and errors')
    sub = parser.add_subparsers(dest='command')
    sub.required = True

    p = sub.add_parser('train', help='Build a trainer corpus')
    p.add_argument('recordings', nargs='+', help='Staged .npz recordings or directories')
    p.add_argument('--out', required=True, help='Corpus file (or directory with --per-trainer)')
    p.add_argument('--text', action='store_true', help='Write the text format')
    p.add_argument('--per-trainer', action='store_true', help='One file per trainer')
    p.add_argument('--include-features', action='store_true',
                   help='Store feature rows (needed for weight trainers)')
    _add_staging_options(p)
    p.set_defaults(func=cmd_train)

    p = sub.add_parser('score', help='Stage a target recording')
    p.add_argument('target', help='Target .npz recording')
    p.add_argument('--library', required=True, help='Trainer corpus')
    p.add_argument('--weight-library', default=None, help='Corpus of weight trainers (with features)')
    p.add_argument('--labels', default=None, help='Prior staging file for the target')
    p.add_argument('--weights', nargs='*', choices=WEIGHT_METHODS, default=None,
                   help='Weighting methods (none = uniform)')
    p.add_argument('--percentile', type=float, default=None, help='Keep the top N%% of trainers')
    p.add_argument('--exponent', type=float, default=None, help='Weight sharpening exponent')
    p.add_argument('--mean-threshold', type=float, default=None,
                   help='Drop trainers below this multiple of the mean weight')
    p.add_argument('--best-guess', action='store_true', help='Use one-hot trainer posteriors')
    p.add_argument('--allow-self', action='store_true', help="Keep the target's own trainer")
    p.add_argument('--out-dir', default=None, help='Write CSV tables and labels here')
    p.add_argument('--numeric', action='store_true', help='Write integer stage codes')
    _add_staging_options(p)
    p.set_defaults(func=cmd_score)

    p = sub.add_parser('soap', help='Self-evaluate a staged recording')
    p.add_argument('recording', help='.npz recording')
    p.add_argument('--labels', default=None, help='Staging file replacing the recording\'s own')
    _add_staging_options(p)
    p.set_defaults(func=cmd_soap)

    p = sub.add_parser('resoap', help='Edit staging and refit')
    p.add_argument('recording', help='.npz recording')
    p.add_argument('--labels', default=None, help='Staging file replacing the recording\'s own')
    p.add_argument('--alter', type=_parse_alter, action='append', metavar='EPOCH=STAGE',
                   help='Change the label of a (1-based) epoch; repeatable')
    p.add_argument('--pick', type=int, default=None, help='Keep N random labelled epochs per class')
    p.add_argument('--exact', action='store_true', help='With --pick, drop classes with fewer than N')
    p.add_argument('--seed', type=int, default=None, help='Random seed for --pick')
    p.add_argument('--policy', choices=[DROP, KEEP], default=DROP,
                   help='Classes with fewer than quality.resoap_required_n labelled epochs: drop from the fit or keep')
    p.add_argument('--out', default=None, help='Write the refitted labels here')
    p.add_argument('--numeric', action='store_true', help='Write integer stage codes')
    _add_staging_options(p)
    p.set_defaults(func=cmd_resoap)

    p = sub.add_parser('copy-db', help='Convert a corpus between formats')
    p.add_argument('src', help='Source corpus')
    p.add_argument('dst', help='Destination corpus')
    p.add_argument('--text', action='store_true', help='Write the text format (default binary)')
    p.add_argument('--drop-features', action='store_true', help='Omit stored feature rows')
    p.set_defaults(func=cmd_copy_db)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)
    try:
        return args.func(args)
    except StagingError as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
