#!/usr/bin/env python3
"""Unified CLI for matchup network analysis.

Usage:
    python cli.py [--config CONFIG] [--verbose] <command> [args...]

Commands:
    data status     Show match log and covariate statistics
    adjacency       Summarise the per-meeting adjacency matrices
    fit             Fit the latent eigenmodel, run diagnostics and plots
    sweep           Fit, then tabulate metrics over classification thresholds
    tune            Hyperparameter search for latent dimension and step size
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Tuple

import numpy as np
import pandas as pd

from matchnet.adjacency import AdjacencyStack, build_adjacency_stack
from matchnet.config import Config
from matchnet.data import MatchnetError, load_covariates, load_matches, match_frame
from matchnet.diagnostics import (
    classification_metrics,
    classify,
    compare_predictions,
    convergence_report,
    edges_above,
    threshold_sweep,
)
from matchnet.features import build_payload
from matchnet.registry import TeamRegistry
from matchnet.sampling import fit_eigenmodel

log = logging.getLogger(__name__)

# Paths relative to project root
PROJECT_ROOT = Path(__file__).parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matchnet", description="Matchup network eigenmodel CLI")
    parser.add_argument("--config", type=str, default=None, help="Path to TOML config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")

    sub = parser.add_subparsers(dest="command")

    # --- data ---
    data_parser = sub.add_parser("data", help="Data inspection commands")
    data_sub = data_parser.add_subparsers(dest="data_command")
    data_sub.add_parser("status", help="Show match log and covariate statistics")

    # --- adjacency ---
    adj_p = sub.add_parser("adjacency", help="Summarise per-meeting adjacency matrices")
    adj_p.add_argument("--meeting", type=int, default=None, help="Print the matrix for this meeting")

    # --- fit / sweep ---
    for name, help_text in [
        ("fit", "Fit the latent eigenmodel"),
        ("sweep", "Fit, then sweep classification thresholds"),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--meeting", type=int, default=None, help="Meeting number to model (default: config)")
        p.add_argument("--latent-dim", type=int, default=None, help="Latent dimension K")
        p.add_argument("--chains", type=int, default=None, help="Number of chains")
        p.add_argument("--warmup", type=int, default=None, help="Warm-up iterations per chain")
        p.add_argument("--draws", type=int, default=None, help="Kept draws per chain")
        p.add_argument("--threshold", type=float, default=None, help="Classification threshold")
        p.add_argument("--no-plots", action="store_true", help="Skip writing figures")

    # --- tune ---
    tune_p = sub.add_parser("tune", help="Hyperparameter search for latent dimension and step size")
    tune_p.add_argument("--trials", type=int, default=20, help="Number of Optuna trials")
    tune_p.add_argument("--holdout", type=float, default=0.2, help="Fraction of dyads held out")
    tune_p.add_argument("--max-latent-dim", type=int, default=4, help="Largest latent dimension to try")

    return parser


def load_config(args) -> Config:
    if args.config:
        return Config.load(Path(args.config))
    # Try default config.toml
    default_path = PROJECT_ROOT / "config.toml"
    if default_path.exists():
        return Config.load(default_path)
    return Config.default()


def apply_overrides(args, config: Config) -> Config:
    """Fold command-line overrides for fit/sweep into the config."""
    model = config.model
    if getattr(args, "meeting", None) is not None:
        model = replace(model, meeting=args.meeting)
    if getattr(args, "latent_dim", None) is not None:
        model = replace(model, latent_dim=args.latent_dim)

    sampler = config.sampler
    for attr in ("chains", "warmup", "draws"):
        value = getattr(args, attr, None)
        if value is not None:
            sampler = replace(sampler, **{attr: value})

    analysis = config.analysis
    if getattr(args, "threshold", None) is not None:
        analysis = replace(analysis, threshold=args.threshold)

    config = replace(config, model=model, sampler=sampler, analysis=analysis)
    config.validate()
    return config


def resolve(path_str: str) -> Path:
    path = Path(path_str)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return path


def load_inputs(config: Config) -> Tuple[list, pd.DataFrame, AdjacencyStack]:
    """Load the match log and covariates, and build the adjacency stack."""
    d = config.data
    matches = load_matches(
        resolve(d.matches_path),
        date_column=d.date_column,
        team_column=d.team_column,
        opponent_column=d.opponent_column,
        margin_column=d.margin_column,
        sheet=d.sheet,
    )
    covariates = load_covariates(
        resolve(d.covariates_path),
        team_column=d.covariate_team_column,
        columns=d.covariate_columns or None,
        sheet=d.sheet,
    )
    stack = build_adjacency_stack(matches, TeamRegistry.from_matches(matches))
    return matches, covariates, stack


# =============================================================================
# Command handlers
# =============================================================================

def cmd_data_status(args, config: Config):
    """Show match log and covariate statistics."""
    matches, covariates, stack = load_inputs(config)
    frame = match_frame(matches)

    print(f"Match log: {resolve(config.data.matches_path)}")
    print(f"  Matches: {len(frame)}")
    print(f"  Teams:   {len(stack.registry)}")
    if len(frame):
        print(f"  Range:   {frame['date'].min():%Y-%m-%d} to {frame['date'].max():%Y-%m-%d}")
        print(f"  Overs:   {frame['edge'].sum()} ({frame['edge'].mean():.1%})")
        print(f"  Pushes:  {(frame['margin'] == 0).sum()}")
    print(f"\nCovariates: {resolve(config.data.covariates_path)}")
    print(f"  Columns: {', '.join(map(str, covariates.columns))}")
    missing = [t for t in stack.registry if t not in covariates.index]
    if missing:
        print(f"  Missing teams: {', '.join(missing)}")
    print(f"\nTeams:")
    for i, team in enumerate(stack.registry):
        marker = "" if team in covariates.index else "  (no covariates)"
        print(f"  {i:3d}  {team}{marker}")


def cmd_adjacency(args, config: Config):
    """Summarise the per-meeting adjacency matrices."""
    _, _, stack = load_inputs(config)

    print(f"{stack.max_meetings} meeting matrices over {stack.n_teams} teams\n")
    print(stack.summary().to_string(index=False))

    if args.meeting is not None:
        if args.meeting not in stack:
            print(f"\nNo meeting {args.meeting} (max {stack.max_meetings})")
            sys.exit(1)
        matrix = pd.DataFrame(stack[args.meeting], index=stack.registry.names, columns=stack.registry.names)
        print(f"\nMeeting {args.meeting}:")
        print(matrix.to_string())


def _fit(args, config: Config):
    config = apply_overrides(args, config)
    _, covariates, stack = load_inputs(config)

    print("=" * 60)
    print("Latent Eigenmodel Fit")
    print("=" * 60)

    print("\n[1/4] Building payload...")
    payload = build_payload(stack, covariates, config)
    print(f"  Meeting {payload.meeting}: N={payload.n_teams}, K={payload.latent_dim}, "
          f"P={payload.n_covariates} ({', '.join(payload.covariate_names)})")
    print(f"  Likelihood dyads: {int(payload.likelihood_mask().sum())}")

    print("\n[2/4] Sampling...")
    posterior = fit_eigenmodel(payload, config.sampler, verbose=args.verbose)
    print(f"  {posterior.n_chains} chains x {posterior.n_draws} draws, "
          f"acceptance {', '.join(f'{a:.2f}' for a in posterior.acceptance)}")

    print("\n[3/4] Diagnostics...")
    report = convergence_report(
        posterior,
        registry=payload.registry,
        covariate_names=payload.covariate_names,
        rhat_threshold=config.diagnostics.rhat_threshold,
        min_ess=config.diagnostics.min_ess,
    )
    scalars = report.summary[~report.summary["parameter"].str.startswith("edge_prob")]
    print(scalars.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    status = "OK" if report.converged else f"WARNING: {len(report.flagged)} parameter(s) flagged"
    print(f"  Max R-hat {report.max_rhat:.3f}, min ESS {report.min_effective:.0f}: {status}")

    comparison = compare_predictions(payload, posterior, stack)
    return config, stack, payload, posterior, comparison


def cmd_fit(args, config: Config):
    """Fit, evaluate and plot."""
    config, stack, payload, posterior, comparison = _fit(args, config)
    threshold = config.analysis.threshold

    print(f"\n[4/4] Evaluation (threshold {threshold:.2f})...")
    metrics = classification_metrics(comparison, threshold)
    print(f"  Dyads:     {metrics['n']}")
    print(f"  Accuracy:  {metrics['accuracy']:.1%}")
    print(f"  Precision: {metrics['precision']:.1%}  Recall: {metrics['recall']:.1%}  F1: {metrics['f1']:.3f}")
    print(f"  AUC:       {metrics['auc']:.3f}  Brier: {metrics['brier']:.4f}  Log loss: {metrics['log_loss']:.4f}")
    print(f"  Confusion: TP={metrics['tp']} FP={metrics['fp']} TN={metrics['tn']} FN={metrics['fn']}")

    classified = classify(comparison, threshold)
    top = edges_above(classified, threshold)
    print(f"\n  {len(top)} dyad(s) predicted over:")
    for _, row in top.head(15).iterrows():
        mark = "hit" if row["correct"] else "miss"
        print(f"    {row['team_a']:>20} vs {row['team_b']:<20} {row['prob']:.2f}  {mark}")

    from matchnet.plots import cluster_teams, plot_all

    clusters = cluster_teams(posterior.mean_embeddings(), payload.registry, config.analysis.n_clusters)
    if not clusters.empty:
        print("\n  Latent clusters:")
        for cluster, group in clusters.groupby("cluster"):
            print(f"    {cluster}: {', '.join(group['team'])}")

    if not args.no_plots:
        paths = plot_all(
            resolve(config.data.output_dir),
            payload.adjacency,
            comparison,
            posterior,
            clusters,
            payload.registry,
            payload.covariate_names,
        )
        print(f"\n  Wrote {len(paths)} figure(s) to {resolve(config.data.output_dir)}")


def cmd_sweep(args, config: Config):
    """Fit, then tabulate metrics over classification thresholds."""
    _, _, _, _, comparison = _fit(args, config)
    print("\n[4/4] Threshold sweep...")
    sweep = threshold_sweep(comparison)
    cols = ["threshold", "n", "accuracy", "precision", "recall", "f1", "tp", "fp", "tn", "fn"]
    print(sweep[cols].to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    if sweep["f1"].notna().any():
        best = sweep.loc[sweep["f1"].idxmax()]
        print(f"\n  Best F1 {best['f1']:.3f} at threshold {best['threshold']:.2f}")


def cmd_tune(args, config: Config):
    """Hyperparameter search for latent dimension and step size."""
    from matchnet.tuning import tune_eigenmodel

    _, covariates, stack = load_inputs(config)
    print(f"Tuning over {args.trials} trials (holdout {args.holdout:.0%})...")
    study = tune_eigenmodel(
        stack, covariates, config,
        n_trials=args.trials,
        holdout_fraction=args.holdout,
        max_latent_dim=args.max_latent_dim,
    )
    best = study.best_trial
    print(f"\nBest held-out log density: {best.value:.4f}")
    for key, value in best.params.items():
        print(f"  {key}: {value}")
    print(f"  acceptance: {best.user_attrs.get('acceptance', np.nan):.2f}")


# =============================================================================
# Main
# =============================================================================

def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    handlers = {
        "adjacency": cmd_adjacency,
        "fit": cmd_fit,
        "sweep": cmd_sweep,
        "tune": cmd_tune,
    }

    try:
        config = load_config(args)
        if args.command == "data":
            if not args.data_command:
                print("Usage: matchnet data {status}")
                sys.exit(1)
            data_handlers = {
                "status": cmd_data_status,
            }
            data_handlers[args.data_command](args, config)
        elif args.command in handlers:
            handlers[args.command](args, config)
        else:
            parser.print_help()
            sys.exit(1)
    except MatchnetError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
