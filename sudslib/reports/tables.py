"""
Tabular outputs.

Per-epoch staging table, stage durations and per-trainer diagnostics as
pandas DataFrames, ready for `to_csv`.
"""

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ..ensemble import EnsembleResult
from ..stages import UNKNOWN


def epoch_table(result: EnsembleResult) -> pd.DataFrame:
    """
    One row per epoch of the target.

    Columns: epoch (1-based), retained, PP_<stage> per stage, predicted,
    observed (when the target had prior staging), excluded reason.
    """
    n = result.retained.n_epochs
    post = result.epoch_posteriors()
    df = pd.DataFrame({
        'epoch': np.arange(1, n + 1),
        'retained': result.retained.mask,
    })
    for j, stage in enumerate(result.labels_vocab):
        df[f'PP_{stage}'] = post[:, j]
    df['predicted'] = result.epoch_labels()
    if result.observed is not None:
        df['observed'] = list(result.observed)
    df['excluded'] = [result.retained.reason(i) or '' for i in range(n)]
    return df


def stage_durations(result: EnsembleResult, epoch_sec: float) -> pd.DataFrame:
    """
    Minutes per stage.

    Columns: posterior-weighted minutes (`pp`), arg-max minutes
    (`predicted`) and observed minutes (`observed`, when staged). The
    `?` row holds epochs excluded from prediction (or unscored).
    """
    minutes = epoch_sec / 60.0
    stages = list(result.labels_vocab)
    pp = result.posteriors.sum(axis=0) * minutes
    predicted = result.epoch_labels()
    rows = {
        'pp': list(pp) + [(result.retained.n_epochs - len(result.retained)) * minutes],
        'predicted': [predicted.count(s) * minutes for s in stages + [UNKNOWN]],
    }
    if result.observed is not None:
        rows['observed'] = [list(result.observed).count(s) * minutes for s in stages + [UNKNOWN]]
    df = pd.DataFrame(rows, index=stages + [UNKNOWN])
    df.index.name = 'stage'
    return df


def trainer_table(result: EnsembleResult) -> pd.DataFrame:
    """Per-trainer weights, predicted-stage counts and diagnostics."""
    records = []
    for d in result.diagnostics:
        row = {'trainer': d.trainer_id, 'weight': d.weight}
        for name, value in d.raw_weights.items():
            row[f'w_{name}'] = value
        for stage in result.labels_vocab:
            row[f'n_{stage}'] = d.predicted_counts.get(stage, 0)
        row['self_kappa'] = d.self_kappa
        row['kappa3'] = d.kappa3
        records.append(row)
    df = pd.DataFrame(records)
    if len(df):
        df = df.sort_values(['weight', 'trainer'], ascending=[False, True]).reset_index(drop=True)
    return df


def confusion_table(confusion: np.ndarray, labels: Sequence[str]) -> pd.DataFrame:
    """Confusion matrix with observed rows, predicted columns and totals."""
    df = pd.DataFrame(confusion, index=list(labels), columns=list(labels))
    df.index.name = 'observed'
    df.columns.name = 'predicted'
    df['Total'] = df.sum(axis=1)
    df.loc['Total'] = df.sum(axis=0)
    return df


def summary_row(result: EnsembleResult, epoch_sec: float) -> dict:
    """Aggregate per-recording statistics as a flat dict."""
    row = {
        'id': result.target_id,
        'n_epochs': result.retained.n_epochs,
        'n_retained': len(result.retained),
        'n_trainers': result.n_trainers,
        'weighted_n': result.info.get('weighted_n'),
        'mean_max_pp': result.mean_max_posterior,
        'soap_kappa': result.soap_kappa,
    }
    durations = stage_durations(result, epoch_sec)
    for stage, minutes in durations['predicted'].items():
        row[f'mins_{stage}'] = minutes
    if result.stats is not None:
        row.update({
            'kappa': result.stats.kappa,
            'kappa3': result.stats.kappa3,
            'accuracy': result.stats.accuracy,
            'mcc': result.stats.mcc,
            'f1': result.stats.f1,
        })
    return row


def summary_table(results: List[EnsembleResult], epoch_sec: float,
                  columns: Optional[List[str]] = None) -> pd.DataFrame:
    """One summary row per scored target."""
    df = pd.DataFrame([summary_row(r, epoch_sec) for r in results])
    return df[columns] if columns else df
