"""
Data Preprocessing Module for AirBnB Price Analysis

This module turns the raw 106-column listings.csv export into a clean numeric
feature matrix. It is used by:
1. The analysis run (airbnb_pricing.report)
2. The test suite (tests/)

Every coercion is explicit: the raw file is read as text, each column is
parsed by a dedicated function, and values that fail to parse are counted and
reported instead of silently becoming missing.

Architecture decisions:
- Schema is checked at load time (SchemaError lists every missing column)
- Seeded random split (70/30), not chronological: listings have no event date
- Percentile-based price trim recomputed on the filtered distribution
- Sparse neighbourhoods dropped so per-group statistics are stable
- Remaining optional gaps imputed with training set medians only
"""

from datetime import date
from pathlib import Path
from typing import Dict, Tuple, List, Any, Optional, Union

import numpy as np
import pandas as pd

from .config import PipelineConfig


# ==================== COLUMN CONTRACT ====================

SELECTED_COLUMNS = [
    'id',
    'host_since',
    'host_is_superhost',
    'host_listings_count',
    'neighbourhood_cleansed',
    'zipcode',
    'latitude',
    'longitude',
    'property_type',
    'room_type',
    'accommodates',
    'bathrooms',
    'bedrooms',
    'beds',
    'square_feet',
    'price',
    'minimum_nights',
    'availability_30',
    'availability_365',
    'number_of_reviews',
    'review_scores_rating',
    'instant_bookable',
    'reviews_per_month',
]

CATEGORICAL_COLUMNS = ['property_type', 'neighbourhood_cleansed', 'room_type']
FLAG_COLUMNS = ['host_is_superhost', 'instant_bookable']
DATE_COLUMN = 'host_since'
PRICE_COLUMN = 'price'
ZIPCODE_COLUMN = 'zipcode'
TENURE_COLUMN = 'host_days'

REQUIRED_COLUMNS = ['zipcode', 'host_days', 'bathrooms', 'bedrooms', 'beds']
SPARSE_COLUMNS = ['square_feet']

_FLAG_VALUES = {'t': True, 'f': False, 'true': True, 'false': False}


class SchemaError(ValueError):
    """Raised when the listings file lacks columns the pipeline needs."""

    def __init__(self, missing: List[str], source: str = 'input'):
        self.missing = list(missing)
        self.source = source
        super().__init__(
            f"{source} is missing {len(self.missing)} expected column(s): {', '.join(self.missing)}"
        )


# ==================== LOADING & SELECTION ====================

def validate_schema(df: pd.DataFrame, columns: List[str] = None, source: str = 'input') -> None:
    """
    Check that every expected column is present.

    Args:
        df: Raw DataFrame
        columns: Expected columns (default: SELECTED_COLUMNS)
        source: Name used in the error message (usually the file path)

    Raises:
        SchemaError: if any expected column is absent
    """
    if columns is None:
        columns = SELECTED_COLUMNS
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaError(missing, source=source)


def load_listings(path: Union[str, Path], columns: List[str] = None) -> pd.DataFrame:
    """
    Read listings.csv as text and validate its schema.

    All columns are read as strings so that every later type conversion is an
    explicit, counted step. Empty fields become missing values.

    Args:
        path: Path to listings.csv (UTF-8)
        columns: Columns that must be present (default: SELECTED_COLUMNS)

    Returns:
        Raw DataFrame with every column as object dtype

    Raises:
        FileNotFoundError: if the file does not exist
        SchemaError: if expected columns are missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Listings file not found: {path}")

    df = pd.read_csv(path, dtype=str, encoding='utf-8', keep_default_na=False, na_values=[''], low_memory=False)
    validate_schema(df, columns, source=str(path))
    return df


def select_features(df: pd.DataFrame, columns: List[str] = None, verbose: bool = True) -> pd.DataFrame:
    """
    Project the raw frame onto the fixed column list.

    Raises:
        SchemaError: if any of the requested columns is absent
    """
    if columns is None:
        columns = SELECTED_COLUMNS
    validate_schema(df, columns)

    if verbose:
        print(f"Selected {len(columns)} of {df.shape[1]} columns")

    return df[columns].copy()


# ==================== TYPE COERCION ====================

def _as_text(series: pd.Series) -> pd.Series:
    # str() and strip every present value; blank strings become missing
    text = series.where(series.isna(), series.astype(str).str.strip())
    return text.mask(text == '')


def count_failures(raw: pd.Series, parsed: pd.Series) -> int:
    """Number of values that were present before coercion and missing after."""
    return int((raw.notna() & parsed.isna()).sum())


def parse_price(series: pd.Series) -> pd.Series:
    """
    Strip currency symbols and thousands separators, then parse to float.

    "$1,234.00" -> 1234.0. The sign is kept, so "-$5.00" -> -5.0 and is
    removed later by the minimum price filter. Values that are not a number
    once the symbols are gone become NaN.
    """
    if pd.api.types.is_numeric_dtype(series):
        return series.astype(float)
    cleaned = _as_text(series).str.replace(r'[$,\s]', '', regex=True)
    return pd.to_numeric(cleaned, errors='coerce').astype(float)


def parse_zipcode(series: pd.Series) -> pd.Series:
    """
    Truncate postal codes to five characters and parse as nullable integer.

    Trailing characters (ZIP+4 suffixes, stray text) are discarded without
    checking that the result is a real postal code. Anything that is not a
    non-negative whole number after truncation becomes <NA>.
    """
    truncated = _as_text(series).str[:5]
    numbers = pd.to_numeric(truncated, errors='coerce')
    numbers = numbers.where((numbers >= 0) & (numbers == np.floor(numbers)))
    return numbers.astype('Int64')


def parse_flag(series: pd.Series) -> pd.Series:
    """Map "t"/"f" flags to a nullable boolean; anything else becomes <NA>."""
    if pd.api.types.is_bool_dtype(series):
        return series.astype('boolean')
    return _as_text(series).str.lower().map(_FLAG_VALUES).astype('boolean')


def parse_date(series: pd.Series) -> pd.Series:
    """Parse to datetime64; unparsable values become NaT."""
    return pd.to_datetime(series, errors='coerce')


def compute_tenure_days(host_since: pd.Series, reference_date: date) -> pd.Series:
    """
    Whole days between each host's join date and the reference date.

    Join dates after the reference date would give a negative tenure and are
    returned as <NA>.
    """
    days = (pd.Timestamp(reference_date) - host_since).dt.days
    days = days.where(days >= 0)
    return days.astype('Int64')


def normalize_types(
    df: pd.DataFrame,
    reference_date: date = date(2019, 11, 21),
    verbose: bool = True
) -> Tuple[pd.DataFrame, Dict[str, Dict[str, Any]]]:
    """
    Coerce every selected column to its analysis type.

    Conversions:
    - property_type, neighbourhood_cleansed, room_type -> category
    - host_since -> datetime, plus derived host_days (Int64)
    - price -> float (currency formatting removed)
    - zipcode -> Int64 (first five characters)
    - host_is_superhost, instant_bookable -> boolean
    - everything else (except id) -> numeric

    Args:
        df: Selected raw DataFrame (text columns)
        reference_date: Date host tenure is measured against
        verbose: Print the coercion report

    Returns:
        normalized DataFrame, coercion report {column: {'failed': n, 'reason': str}}
    """
    df = df.copy()
    report = {}

    # whitespace-only fields are as missing as empty ones
    text_cols = df.select_dtypes(include=['object', 'string']).columns
    if len(text_cols):
        df[text_cols] = df[text_cols].apply(_as_text)

    def record(column, raw, parsed, reason):
        report[column] = {'failed': count_failures(raw, parsed), 'reason': reason}

    for col in CATEGORICAL_COLUMNS:
        df[col] = _as_text(df[col]).astype('category')

    raw = df[DATE_COLUMN]
    df[DATE_COLUMN] = parse_date(raw)
    record(DATE_COLUMN, raw, df[DATE_COLUMN], 'unparsable date')

    df[TENURE_COLUMN] = compute_tenure_days(df[DATE_COLUMN], reference_date)
    record(TENURE_COLUMN, df[DATE_COLUMN], df[TENURE_COLUMN], 'join date after reference date')

    raw = df[PRICE_COLUMN]
    df[PRICE_COLUMN] = parse_price(raw)
    record(PRICE_COLUMN, raw, df[PRICE_COLUMN], 'no numeric price')

    raw = df[ZIPCODE_COLUMN]
    df[ZIPCODE_COLUMN] = parse_zipcode(raw)
    record(ZIPCODE_COLUMN, raw, df[ZIPCODE_COLUMN], 'not a 5-digit postal code')

    for col in FLAG_COLUMNS:
        raw = df[col]
        df[col] = parse_flag(raw)
        record(col, raw, df[col], "not a 't'/'f' flag")

    typed = set(CATEGORICAL_COLUMNS + FLAG_COLUMNS + [DATE_COLUMN, TENURE_COLUMN, PRICE_COLUMN, ZIPCODE_COLUMN])
    for col in df.columns:
        if col in typed:
            continue
        raw = df[col]
        df[col] = pd.to_numeric(raw, errors='coerce')
        record(col, raw, df[col], 'not numeric')

    if verbose:
        failures = {k: v for k, v in report.items() if v['failed'] > 0}
        if failures:
            print("Coercion failures (value present but unusable):")
            for col, info in failures.items():
                print(f"  {col}: {info['failed']:,} ({info['reason']})")
        else:
            print("All values coerced cleanly")

    return df, report


# ==================== NULL & OUTLIER FILTERS ====================

def _log_removed(label: str, before: int, after: int, verbose: bool) -> None:
    if not verbose:
        return
    removed = before - after
    removed_pct = (removed / before * 100) if before else 0.0
    print(f"{label}: removed {removed:,} rows ({removed_pct:.2f}%), remaining {after:,}")


def drop_sparse_columns(df: pd.DataFrame, columns: List[str] = None, verbose: bool = True) -> pd.DataFrame:
    """
    Drop columns that are almost entirely empty instead of imputing them.

    square_feet is ~99% missing in every AirBnB export.
    """
    if columns is None:
        columns = SPARSE_COLUMNS
    present = [c for c in columns if c in df.columns]
    if verbose and present:
        for col in present:
            print(f"Dropping sparse column {col} ({df[col].isna().mean() * 100:.1f}% missing)")
    return df.drop(columns=present)


def drop_missing_required(df: pd.DataFrame, required: List[str] = None, verbose: bool = True) -> pd.DataFrame:
    """Drop rows missing any required field (postal code, tenure, room counts)."""
    if required is None:
        required = REQUIRED_COLUMNS
    before = len(df)
    df = df.dropna(subset=required)
    _log_removed("Missing required fields", before, len(df), verbose)
    return df


def remove_price_outliers(
    df: pd.DataFrame,
    min_price: float = 0.0,
    upper_quantile: float = 0.99,
    max_price: Optional[float] = None,
    verbose: bool = True
) -> Tuple[pd.DataFrame, float]:
    """
    Remove non-positive (or too low) prices and the top price percentile.

    Rules, applied in order:
    1. price <= min_price (data-entry errors; rows with no price go too)
    2. price > max_price, if a fixed ceiling is configured
    3. price >= quantile(upper_quantile), computed on what survived 1-2

    Args:
        df: Normalized DataFrame
        min_price: Exclusive lower bound
        upper_quantile: Quantile used as the exclusive upper bound
        max_price: Optional inclusive fixed ceiling
        verbose: Print removal statistics

    Returns:
        filtered DataFrame, price threshold used for rule 3
    """
    before = len(df)
    df = df[df[PRICE_COLUMN] > min_price]
    if max_price is not None:
        df = df[df[PRICE_COLUMN] <= max_price]
    _log_removed(f"Price <= {min_price:g}" + (f" or > {max_price:g}" if max_price is not None else ""),
                 before, len(df), verbose)

    before = len(df)
    threshold = float(df[PRICE_COLUMN].quantile(upper_quantile))
    df = df[df[PRICE_COLUMN] < threshold]
    _log_removed(f"Price >= {upper_quantile:.0%} quantile (${threshold:,.2f})", before, len(df), verbose)

    return df, threshold


def remove_sparse_groups(
    df: pd.DataFrame,
    column: str = 'neighbourhood_cleansed',
    min_count: int = 30,
    verbose: bool = True
) -> pd.DataFrame:
    """
    Remove rows whose group has fewer than min_count members.

    Small neighbourhoods give unstable medians and box plots, so they are
    dropped rather than merged.
    """
    before = len(df)
    counts = df[column].value_counts()
    keep = counts[counts >= min_count].index
    df = df[df[column].isin(keep)].copy()
    if isinstance(df[column].dtype, pd.CategoricalDtype):
        df[column] = df[column].cat.remove_unused_categories()

    if verbose:
        dropped_groups = int((counts < min_count).sum())
        print(f"Dropped {dropped_groups} {column} groups with fewer than {min_count} listings")
    _log_removed(f"Sparse {column}", before, len(df), verbose)
    return df


# ==================== SPLIT & FEATURE MATRIX ====================

def random_split(
    df: pd.DataFrame,
    train_ratio: float = 0.70,
    seed: int = 42,
    verbose: bool = True
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Seeded random split without replacement.

    |train| = floor(train_ratio * N), |test| = N - |train|. The two parts are
    disjoint, cover every row exactly once, and are identical across runs for
    the same seed and input.

    Raises:
        ValueError: if either partition would be empty
    """
    n = len(df)
    n_train = int(np.floor(train_ratio * n))
    if n_train == 0 or n_train == n:
        raise ValueError(f"Cannot split {n} rows with train_ratio={train_ratio}: a partition would be empty")

    rng = np.random.default_rng(seed)
    train_positions = np.sort(rng.choice(n, size=n_train, replace=False))
    mask = np.zeros(n, dtype=bool)
    mask[train_positions] = True

    train_df = df.iloc[mask].copy()
    test_df = df.iloc[~mask].copy()

    if verbose:
        print(f"\nRandom Split (seed={seed}):")
        print(f"  Train: {len(train_df):,} rows ({len(train_df)/n*100:.1f}%)")
        print(f"  Test:  {len(test_df):,} rows ({len(test_df)/n*100:.1f}%)")

    return train_df, test_df


def numeric_feature_columns(df: pd.DataFrame, target_col: str = PRICE_COLUMN, drop_cols: List[str] = None) -> List[str]:
    """Numeric and boolean columns usable by the models, minus identifiers and the target."""
    if drop_cols is None:
        drop_cols = ['id']
    excluded = set(drop_cols) | {target_col}
    columns = []
    for col in df.columns:
        if col in excluded:
            continue
        dtype = df[col].dtype
        if isinstance(dtype, pd.CategoricalDtype) or pd.api.types.is_datetime64_any_dtype(dtype):
            continue
        if pd.api.types.is_numeric_dtype(dtype) or pd.api.types.is_bool_dtype(dtype):
            columns.append(col)
    return columns


def handle_missing_values(
    train_df: pd.DataFrame,
    test_df: pd.DataFrame = None,
    columns: List[str] = None
) -> Tuple[pd.DataFrame, pd.DataFrame, Dict[str, float]]:
    """
    Fill remaining numeric gaps with training set medians.

    Only optional fields still have gaps at this point (review scores and
    review rates for listings with no reviews). Medians are computed on the
    training partition only and reused for the test partition.

    Returns:
        train_df, test_df, imputation_values
    """
    if columns is None:
        columns = numeric_feature_columns(train_df)

    imputation_values = {}
    for col in columns:
        values = pd.Series(train_df[col].to_numpy(dtype='float64', na_value=np.nan))
        median = values.median()
        imputation_values[col] = 0.0 if pd.isna(median) else float(median)

    def apply_imputation(df):
        df = df.copy()
        for col, value in imputation_values.items():
            if df[col].isna().any():
                df[col] = df[col].to_numpy(dtype='float64', na_value=np.nan)
                df[col] = df[col].fillna(value)
        return df

    train_df = apply_imputation(train_df)
    test_df = apply_imputation(test_df) if test_df is not None else None

    return train_df, test_df, imputation_values


def prepare_features_and_target(
    df: pd.DataFrame,
    target_col: str = PRICE_COLUMN,
    log_transform_target: bool = False,
    drop_cols: List[str] = None
) -> Tuple[pd.DataFrame, pd.Series]:
    """
    Build the float feature matrix and target vector.

    Categorical labels and the raw join date stay in the cleaned frame for
    plotting but are not part of X. Booleans become 0/1.

    Args:
        df: Cleaned DataFrame
        target_col: Name of target column (default: 'price')
        log_transform_target: Return log(price) instead of price
        drop_cols: Identifier columns to exclude (default: ['id'])

    Returns:
        X (features), y (target)
    """
    columns = numeric_feature_columns(df, target_col=target_col, drop_cols=drop_cols)
    X = pd.DataFrame(
        {col: df[col].to_numpy(dtype='float64', na_value=np.nan) for col in columns},
        index=df.index
    )
    y = df[target_col].astype(float).copy()
    if log_transform_target:
        y = np.log(y)
    return X, y


# ==================== COMPLETE PREPROCESSING PIPELINE ====================

def run_full_preprocessing_pipeline(
    df: pd.DataFrame,
    config: PipelineConfig = None,
    verbose: bool = True
) -> Dict[str, Any]:
    """
    Run the complete cleaning pipeline on a raw listings frame.

    Steps:
    1. Select columns
    2. Normalize types
    3. Drop sparse columns
    4. Drop rows missing required fields
    5. Trim price outliers
    6. Drop sparse neighbourhoods
    7. Random train/test split
    8. Impute optional gaps and build X, y matrices

    Args:
        df: Raw listings DataFrame (as returned by load_listings)
        config: Thresholds and seed (default: PipelineConfig())
        verbose: Print progress

    Returns:
        Dictionary containing:
        - cleaned, train_df, test_df (with categorical labels)
        - X_train, y_train, X_test, y_test
        - coercion_report, price_threshold, imputation_values
        - stage_counts: [(stage, rows)] for reporting
    """
    if config is None:
        config = PipelineConfig()

    def step(k, label):
        if verbose:
            print(f"\n[{k}/8] {label}...")

    if verbose:
        print("=" * 80)
        print("RUNNING FULL PREPROCESSING PIPELINE")
        print("=" * 80)

    stage_counts = [('raw', len(df))]

    step(1, "Selecting columns")
    df = select_features(df, verbose=verbose)

    step(2, "Normalizing types")
    df, coercion_report = normalize_types(df, reference_date=config.reference_date, verbose=verbose)

    step(3, "Dropping sparse columns")
    df = drop_sparse_columns(df, verbose=verbose)

    step(4, "Dropping rows with missing required fields")
    df = drop_missing_required(df, verbose=verbose)
    stage_counts.append(('required fields present', len(df)))

    step(5, "Trimming price outliers")
    df, price_threshold = remove_price_outliers(
        df,
        min_price=config.min_price,
        upper_quantile=config.price_quantile,
        max_price=config.max_price,
        verbose=verbose
    )
    stage_counts.append(('price outliers removed', len(df)))

    step(6, "Dropping sparse groups")
    cleaned = remove_sparse_groups(df, column=config.group_column, min_count=config.min_group_size, verbose=verbose)
    stage_counts.append(('sparse groups removed', len(cleaned)))

    step(7, "Splitting train/test")
    train_df, test_df = random_split(cleaned, train_ratio=config.train_ratio, seed=config.random_seed, verbose=verbose)

    step(8, "Preparing feature matrices")
    train_df, test_df, imputation_values = handle_missing_values(train_df, test_df)
    X_train, y_train = prepare_features_and_target(train_df)
    X_test, y_test = prepare_features_and_target(test_df)

    if verbose:
        print("\n" + "=" * 80)
        print("PREPROCESSING COMPLETE")
        print("=" * 80)
        print(f"Cleaned: {len(cleaned):,} of {stage_counts[0][1]:,} listings")
        print(f"Train: {X_train.shape[0]:,} rows × {X_train.shape[1]} features")
        print(f"Test:  {X_test.shape[0]:,} rows × {X_test.shape[1]} features")

    return {
        'cleaned': cleaned,
        'train_df': train_df,
        'test_df': test_df,
        'X_train': X_train,
        'y_train': y_train,
        'X_test': X_test,
        'y_test': y_test,
        'coercion_report': coercion_report,
        'price_threshold': price_threshold,
        'imputation_values': imputation_values,
        'stage_counts': stage_counts,
    }
