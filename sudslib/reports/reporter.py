"""
Console Reporting

Prints staging summaries, confusion matrices, SOAP/RESOAP results and
per-trainer diagnostics for interactive use.
"""

from typing import List, Optional, Sequence

import numpy as np

from ..classification import AgreementStats
from ..ensemble import EnsembleResult
from ..soap import RefineResult, SoapResult
from ..stages import UNKNOWN
from .tables import stage_durations

WIDTH = 70


def _banner(title: str):
    print("=" * WIDTH)
    print(title)
    print("=" * WIDTH)


class StagingReporter:
    """
    Human-readable reports.

    Usage:
        reporter = StagingReporter(epoch_sec=30)
        reporter.print_result(result)
        reporter.print_confusion_matrix(result.stats)
    """

    def __init__(self, epoch_sec: float = 30.0, verbose: bool = False):
        """
        Args:
            epoch_sec: Epoch length in seconds (for durations)
            verbose: Also print per-trainer diagnostics
        """
        self.epoch_sec = epoch_sec
        self.verbose = verbose

    def print_result(self, result: EnsembleResult):
        """Print a full report for one scored target."""
        _banner(f"STAGING REPORT: {result.target_id}")
        print(f"Epochs: {result.retained.n_epochs} ({len(result.retained)} retained)")
        excluded = result.retained.summary()
        if excluded:
            print("Excluded: " + ", ".join(f"{k}={v}" for k, v in sorted(excluded.items())))
        print(f"Trainers used: {result.n_trainers} (weighted N = {result.info.get('weighted_n', 0):.2f})")
        print(f"Mean max posterior: {result.mean_max_posterior:.3f}")
        if result.soap_kappa is not None:
            print(f"SOAP kappa of final staging: {result.soap_kappa:.3f}")
        print()

        self.print_durations(result)

        if result.stats is not None:
            self.print_agreement(result.stats)
            self.print_confusion_matrix(result.stats)

        if self.verbose and result.diagnostics:
            self.print_trainers(result)

    def print_durations(self, result: EnsembleResult):
        print("Stage Durations (minutes):")
        print("-" * 40)
        df = stage_durations(result, self.epoch_sec)
        header = f"  {'Stage':8s}" + "".join(f"{c:>10s}" for c in df.columns)
        print(header)
        for stage, row in df.iterrows():
            print(f"  {stage:8s}" + "".join(f"{v:>10.1f}" for v in row.values))
        print()

    def print_agreement(self, stats: AgreementStats, title: str = "Agreement with observed staging"):
        print(f"{title}:")
        print("-" * 40)
        print(f"  Epochs compared: {stats.n}")
        print(f"  Kappa:           {stats.kappa:.3f}")
        print(f"  Kappa (NR/R/W):  {stats.kappa3:.3f}")
        print(f"  Accuracy:        {stats.accuracy:.1%}")
        print(f"  MCC:             {stats.mcc:.3f}")
        print(f"  Macro F1:        {stats.f1:.3f}")
        print()
        if stats.per_class:
            print("Per-Stage Recall:")
            print("-" * 40)
            for stage, values in stats.per_class.items():
                recall = values['recall']
                bar = "█" * int(recall * 20) + "░" * (20 - int(recall * 20))
                print(f"  {stage:6s} {bar} {recall:.1%} (n={values['support']})")
            print()

    def print_confusion_matrix(self, stats: AgreementStats):
        """Print a confusion matrix (rows = observed, columns = predicted)."""
        labels = list(stats.labels)
        matrix = np.asarray(stats.confusion)
        if not labels or matrix.sum() == 0:
            print("No confusion matrix data available.")
            return

        print("\nConfusion Matrix:")
        print("-" * WIDTH)
        header = "Observed\\Predicted"
        col_width = max(8, max(len(l) for l in labels) + 2)
        print(f"{header:18s}", end="")
        for label in labels:
            print(f"{label:>{col_width}}", end="")
        print(f"{'Total':>{col_width}}")

        print("-" * (18 + col_width * (len(labels) + 1)))
        for i, observed in enumerate(labels):
            print(f"{observed:18s}", end="")
            for j in range(len(labels)):
                print(f"{matrix[i, j]:>{col_width}}", end="")
            print(f"{matrix[i].sum():>{col_width}}")

        print("-" * (18 + col_width * (len(labels) + 1)))
        print(f"{'Total':18s}", end="")
        for j in range(len(labels)):
            print(f"{matrix[:, j].sum():>{col_width}}", end="")
        print(f"{matrix.sum():>{col_width}}")
        print()

    def print_trainers(self, result: EnsembleResult, limit: Optional[int] = None):
        print("Trainer Weights:")
        print("-" * WIDTH)
        ranked = sorted(result.diagnostics, key=lambda d: (-d.weight, d.trainer_id))
        if limit is not None:
            ranked = ranked[:limit]
        for d in ranked:
            counts = " ".join(f"{s}:{d.predicted_counts.get(s, 0)}" for s in result.labels_vocab)
            extra = ""
            if d.self_kappa is not None:
                extra += f"  soap={d.self_kappa:.3f}"
            if d.kappa3 is not None:
                extra += f"  k3={d.kappa3:.3f}"
            print(f"  {d.trainer_id:20s} w={d.weight:.4f}  {counts}{extra}")
        print()

    def print_soap(self, result: SoapResult):
        """Print a self-evaluation summary."""
        _banner(f"SOAP: {result.recording_id}")
        print(f"Method: {result.model.method.upper()}, classes: {', '.join(result.model.classes)}")
        print(f"Epochs: {len(result.predicted)} ({sum(1 for s in result.observed if s != UNKNOWN)} labelled)")
        print()
        self.print_agreement(result.stats, "Self-consistency")
        self.print_confusion_matrix(result.stats)

    def print_refinement(self, recording_id: str, results: Sequence[RefineResult]):
        """Print the history of RESOAP refits."""
        _banner(f"RESOAP: {recording_id}")
        print(f"{'Fit':>4s} {'Changed':>8s} {'Pred.chg':>9s} {'Kappa':>7s} {'Orig.k':>7s}  Dropped")
        print("-" * WIDTH)
        for i, r in enumerate(results, 1):
            orig = f"{r.original_stats.kappa:.3f}" if r.original_stats is not None else "-"
            dropped = ",".join(r.dropped_classes) or "-"
            print(f"{i:>4d} {r.n_changed:>8d} {r.n_prediction_changed:>9d} "
                  f"{r.kappa:>7.3f} {orig:>7s}  {dropped}")
        print()


def print_library_outcome(outcome: dict, skipped_only: bool = False):
    """Print which recordings were written to a corpus."""
    _banner("TRAINER LIBRARY")
    written: List[str] = [k for k, v in outcome.items() if v is None]
    print(f"Written: {len(written)} / {len(outcome)}")
    for rec_id, reason in sorted(outcome.items()):
        if reason is None and skipped_only:
            continue
        print(f"  {rec_id:24s} {'ok' if reason is None else 'skipped: ' + reason}")
    print()
