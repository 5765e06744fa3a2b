"""
End-to-end analysis run and Markdown report.

    airbnb-pricing --data listings.csv --output-dir output/

loads the listings, runs the cleaning pipeline, fits the three price models,
draws the exploratory and diagnostic figures, and writes output/report.md.
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Union

import matplotlib
import matplotlib.pyplot as plt
import pandas as pd
from pydantic import ValidationError

from . import __version__
from .config import PipelineConfig, load_config
from .model import (
    fit_all_models, baseline_predictions, evaluate_models, evaluate_by_category,
    get_feature_importance, get_coefficient_table
)
from .plots import (
    plot_price_distribution, plot_price_by_group, plot_listing_locations,
    plot_predicted_vs_actual, plot_feature_importance
)
from .preprocessing import load_listings, run_full_preprocessing_pipeline, SchemaError


def summarize_by_group(df: pd.DataFrame, group_col: str = 'neighbourhood_cleansed', price_col: str = 'price') -> pd.DataFrame:
    """Listing count and price statistics per group, most expensive median first."""
    summary = (
        df.groupby(group_col, observed=True)[price_col]
        .agg(listings='count', median_price='median', mean_price='mean', std_price='std')
        .sort_values('median_price', ascending=False)
        .reset_index()
    )
    return summary


def run_analysis(
    data_path: Union[str, Path],
    config: PipelineConfig = None,
    output_dir: Union[str, Path] = 'output',
    verbose: bool = True
) -> Dict[str, Any]:
    """
    Run the whole analysis and save figures to output_dir.

    Returns:
        Dictionary with the preprocessing results, model results, summary
        tables and figure paths (relative to output_dir)
    """
    if config is None:
        config = PipelineConfig()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    raw = load_listings(data_path)
    if verbose:
        print(f"Loaded {len(raw):,} listings × {raw.shape[1]} columns from {data_path}")

    prep = run_full_preprocessing_pipeline(raw, config=config, verbose=verbose)
    fitted = fit_all_models(
        prep['X_train'], prep['y_train'],
        prep['X_test'], prep['y_test'],
        config=config,
        verbose=verbose
    )

    baselines = baseline_predictions(
        prep['y_train'],
        prep['train_df'][config.group_column],
        prep['test_df'][config.group_column]
    )
    comparison = evaluate_models({**baselines, **fitted['predictions']}, prep['y_test'], verbose=False)

    cleaned = prep['cleaned']
    group_summary = summarize_by_group(cleaned, group_col=config.group_column)
    room_summary = summarize_by_group(cleaned, group_col='room_type')
    importance = get_feature_importance(fitted['models']['xgboost'], prep['X_train'].columns)
    coefficients = get_coefficient_table(fitted['models']['log_ols'])
    by_group = evaluate_by_category(
        prep['y_test'],
        fitted['predictions']['XGBoost'],
        prep['test_df'][config.group_column]
    )

    figures = {
        'price_distribution.png': lambda p: plot_price_distribution(cleaned, save_path=p),
        'price_by_neighbourhood.png': lambda p: plot_price_by_group(cleaned, group_col=config.group_column, save_path=p),
        'price_by_room_type.png': lambda p: plot_price_by_group(cleaned, group_col='room_type', save_path=p),
        'listing_locations.png': lambda p: plot_listing_locations(cleaned, save_path=p),
        'predicted_vs_actual.png': lambda p: plot_predicted_vs_actual(prep['y_test'], fitted['predictions'], save_path=p),
        'feature_importance.png': lambda p: plot_feature_importance(importance, save_path=p),
    }
    for name, draw in figures.items():
        fig = draw(output_dir / name)
        plt.close(fig)

    return {
        'config': config,
        'preprocessing': prep,
        'models': fitted,
        'comparison': comparison,
        'group_summary': group_summary,
        'room_summary': room_summary,
        'feature_importance': importance,
        'coefficients': coefficients,
        'error_by_group': by_group,
        'figures': list(figures),
        'output_dir': output_dir,
    }


def _table(df: pd.DataFrame) -> str:
    return "```text\n" + df.to_string(index=False, float_format=lambda v: f"{v:,.2f}") + "\n```\n"


def write_report(results: Dict[str, Any], filename: str = 'report.md') -> Path:
    """Render the analysis results as a Markdown document next to the figures."""
    prep = results['preprocessing']
    config = results['config']
    path = Path(results['output_dir']) / filename

    stages = pd.DataFrame(prep['stage_counts'], columns=['stage', 'rows'])
    coercion = pd.DataFrame([
        {'column': col, 'failed': info['failed'], 'reason': info['reason']}
        for col, info in prep['coercion_report'].items() if info['failed'] > 0
    ], columns=['column', 'failed', 'reason'])

    lines = [
        "# San Diego AirBnB price analysis",
        "",
        f"Generated {datetime.now():%Y-%m-%d %H:%M} with airbnb-pricing {__version__}.",
        "",
        "## Cleaning",
        "",
        _table(stages),
        f"Price ceiling ({config.price_quantile:.0%} quantile): ${prep['price_threshold']:,.2f}. "
        f"Groups of `{config.group_column}` with fewer than {config.min_group_size} listings removed. "
        f"Host tenure measured to {config.reference_date.isoformat()}.",
        "",
        "### Coercion failures",
        "",
        _table(coercion) if len(coercion) else "None.\n",
        "## Exploration",
        "",
        "![Price distribution](price_distribution.png)",
        "",
        _table(results['group_summary']),
        "![Price by neighbourhood](price_by_neighbourhood.png)",
        "",
        _table(results['room_summary']),
        "![Price by room type](price_by_room_type.png)",
        "",
        "![Listing locations](listing_locations.png)",
        "",
        "## Models",
        "",
        f"Train {len(prep['X_train']):,} rows, test {len(prep['X_test']):,} rows "
        f"(ratio {config.train_ratio}, seed {config.random_seed}).",
        "",
        _table(results['comparison']),
        "![Predicted vs actual](predicted_vs_actual.png)",
        "",
        "### Log-price OLS coefficients",
        "",
        _table(results['coefficients']),
        "### XGBoost feature importance",
        "",
        _table(results['feature_importance']),
        "![Feature importance](feature_importance.png)",
        "",
        "### XGBoost error by neighbourhood",
        "",
        _table(results['error_by_group']),
    ]

    path.write_text("\n".join(lines), encoding='utf-8')
    return path


def main(argv=None) -> int:
    """
    Command line entry point (airbnb-pricing).

    Args:
        argv: Argument list (default: sys.argv[1:])

    Returns:
        Exit status: 0 on success, 1 with a one-line message on stderr
    """
    parser = argparse.ArgumentParser(description='Clean San Diego AirBnB listings and fit price models')
    parser.add_argument('--data', default='listings.csv', help='Path to listings.csv')
    parser.add_argument('--config', default=None, help='JSON file with PipelineConfig fields')
    parser.add_argument('--output-dir', default='output', help='Directory for report.md and figures')
    parser.add_argument('--seed', type=int, default=None, help='Override the random seed')
    parser.add_argument('--quiet', action='store_true', help='Only print the report path')
    args = parser.parse_args(argv)

    matplotlib.use('Agg')

    try:
        config = load_config(args.config, random_seed=args.seed)
        results = run_analysis(args.data, config=config, output_dir=args.output_dir, verbose=not args.quiet)
        path = write_report(results)
    except (FileNotFoundError, SchemaError, ValidationError, ValueError) as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return 1

    print(f"Report written to {path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
