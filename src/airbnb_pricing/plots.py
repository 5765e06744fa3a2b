"""
Exploratory and diagnostic plots.

Every function draws one figure, optionally saves it as a PNG, and returns the
Figure. Nothing calls plt.show() unless asked, so the module works under the
non-interactive Agg backend used for report generation.
"""

from pathlib import Path
from typing import Dict, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def _finish(fig, save_path: Optional[Union[str, Path]], show: bool):
    fig.tight_layout()
    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
    if show:
        plt.show()
    return fig


# ==================== DISTRIBUTIONS ====================

def plot_price_distribution(
    df: pd.DataFrame,
    price_col: str = 'price',
    bins: int = 50,
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
):
    """
    Histogram of nightly price next to a histogram of log price.

    The log panel shows why the log-price OLS is fitted at all: the raw price
    distribution is heavily right-skewed even after the percentile trim.

    Args:
        df: Cleaned listings
        price_col: Price column name
        bins: Number of histogram bins per panel
        save_path: Optional PNG path
        show: Call plt.show() after drawing

    Returns:
        matplotlib Figure
    """
    prices = df[price_col].astype(float)
    fig, (ax_raw, ax_log) = plt.subplots(1, 2, figsize=(12, 5))

    ax_raw.hist(prices, bins=bins, color='steelblue', edgecolor='black', alpha=0.8)
    ax_raw.axvline(prices.median(), color='darkred', linestyle='--', label=f'median ${prices.median():,.0f}')
    ax_raw.set_title('Nightly price')
    ax_raw.set_xlabel('Price ($)')
    ax_raw.set_ylabel('Listings')
    ax_raw.legend(loc='upper right')

    ax_log.hist(np.log(prices[prices > 0]), bins=bins, color='seagreen', edgecolor='black', alpha=0.8)
    ax_log.set_title('log(price)')
    ax_log.set_xlabel('log price')

    return _finish(fig, save_path, show)


def plot_price_by_group(
    df: pd.DataFrame,
    group_col: str = 'neighbourhood_cleansed',
    price_col: str = 'price',
    title: Optional[str] = None,
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
):
    """
    Box plot of price per group, groups ordered by median price (cheapest left).

    Args:
        df: Cleaned listings
        group_col: Column to group by (neighbourhood, room type, ...)
        price_col: Price column name
        title: Axes title (default: "Price by <group_col>")
        save_path: Optional PNG path
        show: Call plt.show() after drawing

    Returns:
        matplotlib Figure
    """
    data = df[[group_col, price_col]].dropna()
    data = data.assign(**{group_col: data[group_col].astype(str)})
    order = data.groupby(group_col)[price_col].median().sort_values().index.tolist()
    groups = [data.loc[data[group_col] == name, price_col].values for name in order]

    fig, ax = plt.subplots(figsize=(max(6, 0.35 * len(order)), 6))
    ax.boxplot(groups, showfliers=False)
    ax.set_xticks(range(1, len(order) + 1))
    ax.set_xticklabels(order, rotation=90, fontsize=8)
    ax.set_ylabel('Price ($)')
    ax.set_title(title or f'Price by {group_col}')

    return _finish(fig, save_path, show)


# ==================== MAPS ====================

def plot_listing_locations(
    df: pd.DataFrame,
    price_col: str = 'price',
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
):
    """Scatter of listing coordinates coloured by price."""
    fig, ax = plt.subplots(figsize=(10, 10))
    points = ax.scatter(
        df['longitude'],
        df['latitude'],
        c=df[price_col].astype(float),
        cmap='viridis',
        s=6,
        alpha=0.6
    )
    fig.colorbar(points, ax=ax, label='Price ($)')
    ax.set_title('Listings by location')
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')

    return _finish(fig, save_path, show)


# ==================== MODEL DIAGNOSTICS ====================

def plot_predicted_vs_actual(
    y_true,
    predictions: Dict[str, np.ndarray],
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
):
    """
    One panel per model: predicted against true test price, with the y = x line.

    Args:
        y_true: True prices for the test partition
        predictions: {model name: predictions in price space}
        save_path: Optional PNG path
        show: Call plt.show() after drawing

    Returns:
        matplotlib Figure
    """
    y_true = np.asarray(y_true, dtype=float)
    n = len(predictions)
    fig, axes = plt.subplots(1, n, figsize=(5 * n, 5), squeeze=False)
    upper = y_true.max() if len(y_true) else 1.0

    for ax, (name, y_pred) in zip(axes[0], predictions.items()):
        ax.scatter(y_true, y_pred, s=6, alpha=0.4)
        ax.plot([0, upper], [0, upper], color='darkred', linewidth=1)
        ax.set_title(name)
        ax.set_xlabel('Actual price ($)')
        ax.set_ylabel('Predicted price ($)')

    return _finish(fig, save_path, show)


def plot_feature_importance(
    importance_df: pd.DataFrame,
    value_col: str = 'importance',
    title: str = 'XGBoost feature importance (gain)',
    save_path: Optional[Union[str, Path]] = None,
    show: bool = False
):
    """
    Horizontal bars of feature importance, largest at the top.

    Args:
        importance_df: Output of model.get_feature_importance
        value_col: Column holding the importance values
        title: Axes title
        save_path: Optional PNG path
        show: Call plt.show() after drawing

    Returns:
        matplotlib Figure
    """
    data = importance_df.sort_values(value_col)
    fig, ax = plt.subplots(figsize=(8, max(3, 0.35 * len(data))))
    ax.barh(data['feature'], data[value_col], color='steelblue')
    ax.set_title(title)
    ax.set_xlabel(value_col)

    return _finish(fig, save_path, show)
