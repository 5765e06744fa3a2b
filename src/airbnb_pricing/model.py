"""
Model Training Module for AirBnB Price Analysis

This module handles:
1. OLS fits on price and on log(price) (statsmodels)
2. XGBoost fit with cross-validated early stopping
3. Held-out evaluation metrics (RMSE, MAE, R²)
4. Coefficient and feature importance tables

Key Technical Decisions:
- The algorithms are library calls; this module only wires data in and
  metrics out
- Log-price OLS predictions are exponentiated before scoring so every
  model is compared in dollars
- XGBoost rounds chosen by k-fold CV RMSE, then refit on the full training
  partition
- Fixed random seed for reproducibility
"""

import numpy as np
import pandas as pd
import statsmodels.api as sm
import xgboost as xgb
from sklearn.metrics import root_mean_squared_error, mean_absolute_error, r2_score
from typing import Dict, Tuple, Any
import warnings
warnings.filterwarnings('ignore')

from .config import BoostingConfig, PipelineConfig


# ==================== LINEAR MODELS ====================

def _with_intercept(X: pd.DataFrame) -> pd.DataFrame:
    # 'add' so a constant feature in a small partition never replaces the intercept
    return sm.add_constant(X, has_constant='add')


def fit_linear_model(X_train: pd.DataFrame, y_train: pd.Series, verbose: bool = True):
    """
    Ordinary least squares of nightly price on the numeric features.

    Returns:
        Fitted statsmodels RegressionResults
    """
    results = sm.OLS(y_train, _with_intercept(X_train)).fit()
    if verbose:
        print(f"OLS (price): R² = {results.rsquared:.4f}, adj. R² = {results.rsquared_adj:.4f}")
    return results


def fit_log_linear_model(X_train: pd.DataFrame, y_train: pd.Series, verbose: bool = True):
    """
    Ordinary least squares of log(price).

    y_train is in price space; the log is taken here. Use
    predict_linear(..., log_target=True) to get dollar predictions back.
    """
    results = sm.OLS(np.log(y_train), _with_intercept(X_train)).fit()
    if verbose:
        print(f"OLS (log price): R² = {results.rsquared:.4f}, adj. R² = {results.rsquared_adj:.4f}")
    return results


def predict_linear(results, X: pd.DataFrame, log_target: bool = False) -> np.ndarray:
    """Predict in price space from a fitted OLS model."""
    y_pred = np.asarray(results.predict(_with_intercept(X)))
    if log_target:
        y_pred = np.exp(y_pred)
    return y_pred


def get_coefficient_table(results) -> pd.DataFrame:
    """Coefficients, standard errors and p-values, sorted by absolute t statistic."""
    table = pd.DataFrame({
        'feature': results.params.index,
        'coefficient': results.params.values,
        'std_err': results.bse.values,
        't': results.tvalues.values,
        'p_value': results.pvalues.values,
    })
    table = table.reindex(table['t'].abs().sort_values(ascending=False).index)
    return table.reset_index(drop=True)


# ==================== GRADIENT BOOSTING ====================

def train_xgboost_model(
    X_train: pd.DataFrame,
    y_train: pd.Series,
    boosting: BoostingConfig = None,
    random_seed: int = 42,
    verbose: bool = True
) -> Tuple[xgb.Booster, pd.DataFrame]:
    """
    Train an XGBoost regressor with CV early stopping.

    The number of boosting rounds is picked by xgboost.cv: training stops
    once the mean test RMSE across folds has not improved for
    early_stopping_rounds rounds. The final booster is then trained on the
    whole training partition for that many rounds.

    Args:
        X_train: Training features
        y_train: Training target (price)
        boosting: Hyperparameters (default: BoostingConfig())
        random_seed: Seed for fold assignment and row/column subsampling
        verbose: Print progress

    Returns:
        Trained Booster, CV history (one row per kept round)
    """
    if boosting is None:
        boosting = BoostingConfig()
    params = boosting.to_xgb_params(random_seed)

    if verbose:
        print("=" * 80)
        print("TRAINING XGBOOST MODEL")
        print("=" * 80)
        print(f"\nHyperparameters:")
        for key, value in params.items():
            print(f"  {key}: {value}")

    dtrain = xgb.DMatrix(X_train, label=y_train)

    cv_results = xgb.cv(
        params,
        dtrain,
        num_boost_round=boosting.num_boost_round,
        nfold=boosting.nfold,
        early_stopping_rounds=boosting.early_stopping_rounds,
        seed=random_seed,
        verbose_eval=False
    )
    best_rounds = len(cv_results)

    booster = xgb.train(params, dtrain, num_boost_round=best_rounds)

    if verbose:
        print(f"\nBest round: {best_rounds}")
        print(f"CV RMSE: {cv_results['test-rmse-mean'].iloc[-1]:.2f} "
              f"(+/- {cv_results['test-rmse-std'].iloc[-1]:.2f})")

    return booster, cv_results


def predict_xgboost(booster: xgb.Booster, X: pd.DataFrame) -> np.ndarray:
    """Predict price for every row of X with a trained booster."""
    return booster.predict(xgb.DMatrix(X))


def get_feature_importance(booster: xgb.Booster, feature_names, top_n: int = 20) -> pd.DataFrame:
    """
    Gain importance for each feature, features never split on get 0.

    Args:
        booster: Trained XGBoost booster
        feature_names: Columns of the training matrix
        top_n: Number of top features to return

    Returns:
        DataFrame with features sorted by importance
    """
    scores = booster.get_score(importance_type='gain')
    importance_df = pd.DataFrame({
        'feature': list(feature_names),
        'importance': [scores.get(name, 0.0) for name in feature_names]
    }).sort_values('importance', ascending=False)

    return importance_df.head(top_n).reset_index(drop=True)


# ==================== BASELINES ====================

def baseline_predictions(
    y_train: pd.Series,
    train_groups: pd.Series,
    test_groups: pd.Series
) -> Dict[str, np.ndarray]:
    """
    Median baselines every model has to beat.

    - Global median: training median price for every test listing
    - Group median: training median of the listing's group, falling back to
      the global median for groups unseen in training
    """
    global_median = float(np.median(y_train))
    train = pd.DataFrame({
        'group': np.asarray(train_groups, dtype=object),
        'price': np.asarray(y_train, dtype=float),
    })
    group_medians = train.groupby('group')['price'].median()
    by_group = (
        pd.Series(np.asarray(test_groups, dtype=object))
        .map(group_medians)
        .fillna(global_median)
        .to_numpy(dtype=float)
    )

    return {
        'Baseline (global median)': np.full(len(test_groups), global_median),
        'Baseline (group median)': by_group,
    }


# ==================== EVALUATION ====================

def compute_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    dataset_name: str = "Dataset",
    verbose: bool = True
) -> Dict[str, float]:
    """
    Compute regression metrics in price space.

    Metrics:
    - RMSE: root mean squared error in dollars (the headline metric)
    - MAE: mean absolute error in dollars
    - R² Score: proportion of variance explained

    Returns:
        Dictionary with metrics
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)

    metrics = {
        'rmse': root_mean_squared_error(y_true, y_pred),
        'mae': mean_absolute_error(y_true, y_pred),
        'r2': r2_score(y_true, y_pred),
    }

    if verbose:
        print(f"\n{dataset_name}: RMSE ${metrics['rmse']:,.2f} | MAE ${metrics['mae']:,.2f} | R² {metrics['r2']:.4f}")

    return metrics


def evaluate_models(
    predictions: Dict[str, np.ndarray],
    y_true: np.ndarray,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Score several models on the same held-out target.

    Args:
        predictions: {model name: predictions in price space}
        y_true: True prices

    Returns:
        DataFrame with one row per model, sorted by RMSE
    """
    res = {'Model': [], 'RMSE': [], 'MAE': [], 'R²': []}
    for name, y_pred in predictions.items():
        metrics = compute_metrics(y_true, y_pred, dataset_name=name, verbose=verbose)
        res['Model'].append(name)
        res['RMSE'].append(metrics['rmse'])
        res['MAE'].append(metrics['mae'])
        res['R²'].append(metrics['r2'])

    return pd.DataFrame(res).sort_values('RMSE').reset_index(drop=True)


def evaluate_by_category(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    category: pd.Series,
    min_samples: int = 10
) -> pd.DataFrame:
    """
    Evaluate model performance by categorical feature.

    Shows whether the model is worse in some neighbourhoods or room types.

    Args:
        y_true: True prices
        y_pred: Predicted prices
        category: Categorical labels aligned with y_true
        min_samples: Minimum samples to include category in results

    Returns:
        DataFrame with metrics by category
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    category = np.asarray(category, dtype=object)

    results = []
    for cat_value in pd.unique(category):
        mask = (category == cat_value)
        cat_y_true = y_true[mask]
        cat_y_pred = y_pred[mask]

        if len(cat_y_true) >= min_samples:
            results.append({
                'category': cat_value,
                'n_samples': len(cat_y_true),
                'price_median': np.median(cat_y_true),
                'rmse': root_mean_squared_error(cat_y_true, cat_y_pred),
                'mae': mean_absolute_error(cat_y_true, cat_y_pred),
            })

    df = pd.DataFrame(results, columns=['category', 'n_samples', 'price_median', 'rmse', 'mae'])
    return df.sort_values('n_samples', ascending=False).reset_index(drop=True)


# ==================== ALL MODELS ====================

def fit_all_models(
    X_train: pd.DataFrame,
    y_train: pd.Series,
    X_test: pd.DataFrame,
    y_test: pd.Series,
    config: PipelineConfig = None,
    verbose: bool = True
) -> Dict[str, Any]:
    """
    Fit OLS, log-price OLS and XGBoost, then score each on the test partition.

    Returns:
        Dictionary with:
        - models: {'ols', 'log_ols', 'xgboost'}
        - predictions: test-set predictions in price space, keyed by model label
        - metrics: comparison DataFrame (RMSE, MAE, R²)
        - cv_results: XGBoost CV history
    """
    if config is None:
        config = PipelineConfig()

    if verbose:
        print("\n" + "=" * 80)
        print("FITTING MODELS")
        print("=" * 80)

    ols = fit_linear_model(X_train, y_train, verbose=verbose)
    log_ols = fit_log_linear_model(X_train, y_train, verbose=verbose)
    booster, cv_results = train_xgboost_model(
        X_train, y_train,
        boosting=config.boosting,
        random_seed=config.random_seed,
        verbose=verbose
    )

    predictions = {
        'OLS (price)': predict_linear(ols, X_test),
        'OLS (log price)': predict_linear(log_ols, X_test, log_target=True),
        'XGBoost': predict_xgboost(booster, X_test),
    }

    if verbose:
        print("\n" + "=" * 80)
        print("TEST SET METRICS (price space)")
        print("=" * 80)
    metrics = evaluate_models(predictions, y_test, verbose=verbose)

    return {
        'models': {'ols': ols, 'log_ols': log_ols, 'xgboost': booster},
        'predictions': predictions,
        'metrics': metrics,
        'cv_results': cv_results,
    }
