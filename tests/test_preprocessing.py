from datetime import date

import numpy as np
import pandas as pd
import pytest

from airbnb_pricing.config import PipelineConfig
from airbnb_pricing.preprocessing import (
    SchemaError,
    compute_tenure_days,
    drop_missing_required,
    drop_sparse_columns,
    load_listings,
    normalize_types,
    parse_flag,
    parse_price,
    parse_zipcode,
    prepare_features_and_target,
    random_split,
    remove_price_outliers,
    remove_sparse_groups,
    run_full_preprocessing_pipeline,
    select_features,
)


# ==================== COERCION ====================

def test_parse_price_strips_currency_and_separators():
    parsed = parse_price(pd.Series(['$1,234.00', '$85.50', None, 'call me']))
    assert parsed.iloc[0] == 1234.0
    assert parsed.iloc[1] == 85.5
    assert parsed.iloc[2:].isna().all()


def test_parse_price_passes_numeric_through():
    parsed = parse_price(pd.Series([10, 20]))
    assert parsed.tolist() == [10.0, 20.0]


def test_parse_zipcode_truncates_to_five_characters():
    parsed = parse_zipcode(pd.Series(['92109-1234', '92037', None, 'CA', '921091']))
    assert str(parsed.dtype) == 'Int64'
    assert parsed.iloc[0] == 92109
    assert parsed.iloc[1] == 92037
    assert parsed.iloc[2] is pd.NA
    assert parsed.iloc[3] is pd.NA
    assert parsed.iloc[4] == 92109


def test_parse_flag_maps_t_and_f():
    parsed = parse_flag(pd.Series(['t', 'f', 'x', None]))
    assert parsed.tolist()[:2] == [True, False]
    assert parsed.iloc[2:].isna().all()


def test_tenure_is_non_negative_whole_days():
    host_since = pd.to_datetime(pd.Series(['2019-11-20', '2019-11-21', '2019-11-22', None]))
    days = compute_tenure_days(host_since, date(2019, 11, 21))
    assert days.iloc[0] == 1
    assert days.iloc[1] == 0
    assert days.iloc[2] is pd.NA
    assert days.iloc[3] is pd.NA


def test_normalize_types_reports_failures(raw_listings):
    selected = select_features(raw_listings, verbose=False)
    df, report = normalize_types(selected, verbose=False)

    assert report['price']['failed'] == 1
    assert report['zipcode']['failed'] == 1
    assert report['host_since']['failed'] == 1
    assert report['host_days']['failed'] == 1
    assert report['host_is_superhost']['failed'] == 0

    assert isinstance(df['room_type'].dtype, pd.CategoricalDtype)
    assert str(df['instant_bookable'].dtype) == 'boolean'
    assert pd.api.types.is_float_dtype(df['price'])
    assert pd.api.types.is_datetime64_any_dtype(df['host_since'])


# ==================== LOADING ====================

def test_load_listings_reads_text(listings_csv, selected_columns):
    df = load_listings(listings_csv)
    assert set(selected_columns) <= set(df.columns)
    assert df['price'].iloc[0].startswith('$')
    assert df['square_feet'].isna().sum() == len(df) - 1


def test_load_listings_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_listings(tmp_path / 'nope.csv')


def test_load_listings_missing_columns(tmp_path, raw_listings):
    path = tmp_path / 'listings.csv'
    raw_listings.drop(columns=['price', 'zipcode']).to_csv(path, index=False)

    with pytest.raises(SchemaError) as excinfo:
        load_listings(path)

    assert excinfo.value.missing == ['zipcode', 'price']
    assert 'price' in str(excinfo.value)
    assert str(path) in str(excinfo.value)


def test_select_features_projects_columns(raw_listings, selected_columns):
    df = select_features(raw_listings, verbose=False)
    assert list(df.columns) == selected_columns
    assert 'name' not in df.columns


# ==================== FILTERS ====================

@pytest.fixture
def normalized(raw_listings):
    df = select_features(raw_listings, verbose=False)
    df, _ = normalize_types(df, verbose=False)
    return df


def test_drop_sparse_columns(normalized):
    df = drop_sparse_columns(normalized, verbose=False)
    assert 'square_feet' not in df.columns


def test_drop_missing_required(normalized):
    df = drop_missing_required(normalized, verbose=False)
    assert df[['zipcode', 'host_days', 'bathrooms', 'bedrooms', 'beds']].notna().all().all()
    assert len(df) == len(normalized) - 5


def test_remove_price_outliers_bounds(normalized):
    df, threshold = remove_price_outliers(normalized, verbose=False)

    positive = normalized.loc[normalized['price'] > 0, 'price']
    assert threshold == pytest.approx(positive.quantile(0.99))
    assert (df['price'] > 0).all()
    assert (df['price'] < threshold).all()
    assert df['price'].max() < 10000


def test_remove_price_outliers_fixed_ceiling(normalized):
    df, _ = remove_price_outliers(normalized, min_price=50, max_price=200, verbose=False)
    assert (df['price'] > 50).all()
    assert (df['price'] <= 200).all()


def test_remove_sparse_groups(normalized):
    df = remove_sparse_groups(normalized, min_count=30, verbose=False)
    assert 'Tiny Town' not in set(df['neighbourhood_cleansed'])
    assert 'Tiny Town' not in df['neighbourhood_cleansed'].cat.categories
    assert df['neighbourhood_cleansed'].value_counts().min() >= 30


# ==================== SPLIT ====================

def test_random_split_partitions(normalized):
    df = normalized.reset_index(drop=True)
    train, test = random_split(df, train_ratio=0.7, seed=7, verbose=False)

    n = len(df)
    assert len(train) == int(np.floor(0.7 * n))
    assert len(test) == n - len(train)
    assert set(train.index).isdisjoint(test.index)
    assert set(train.index) | set(test.index) == set(df.index)


def test_random_split_is_deterministic(normalized):
    first, _ = random_split(normalized, seed=3, verbose=False)
    second, _ = random_split(normalized, seed=3, verbose=False)
    other, _ = random_split(normalized, seed=4, verbose=False)

    assert first.index.equals(second.index)
    assert not first.index.equals(other.index)


def test_random_split_rejects_empty_partition():
    with pytest.raises(ValueError):
        random_split(pd.DataFrame({'a': [1]}), verbose=False)


# ==================== PIPELINE ====================

def test_full_pipeline_invariants(raw_listings):
    config = PipelineConfig()
    result = run_full_preprocessing_pipeline(raw_listings, config=config, verbose=False)
    cleaned = result['cleaned']

    assert (cleaned['price'] > 0).all()
    assert (cleaned['price'] < result['price_threshold']).all()
    assert (cleaned['host_days'] >= 0).all()
    assert cleaned['zipcode'].dropna().between(0, 99999).all()
    assert 'Tiny Town' not in set(cleaned['neighbourhood_cleansed'])

    n = len(cleaned)
    assert len(result['X_train']) == int(np.floor(config.train_ratio * n))
    assert len(result['X_train']) + len(result['X_test']) == n
    assert set(result['train_df'].index).isdisjoint(result['test_df'].index)

    for X in (result['X_train'], result['X_test']):
        assert not X.isna().any().any()
        assert 'id' not in X.columns
        assert 'price' not in X.columns
        assert 'room_type' not in X.columns
        assert 'host_days' in X.columns
        assert 'instant_bookable' in X.columns

    assert result['stage_counts'][0] == ('raw', len(raw_listings))


def test_full_pipeline_same_seed_same_split(raw_listings):
    first = run_full_preprocessing_pipeline(raw_listings, verbose=False)
    second = run_full_preprocessing_pipeline(raw_listings, verbose=False)
    assert first['X_train'].index.equals(second['X_train'].index)
    assert first['X_test'].index.equals(second['X_test'].index)


def test_imputation_uses_training_medians(raw_listings):
    result = run_full_preprocessing_pipeline(raw_listings, verbose=False)
    median = result['imputation_values']['review_scores_rating']
    train_raw = result['cleaned'].loc[result['train_df'].index, 'review_scores_rating']
    assert median == pytest.approx(train_raw.median())


def test_prepare_features_log_target(normalized):
    df = normalized.dropna(subset=['price'])
    df = df[df['price'] > 0]
    _, y = prepare_features_and_target(df, log_transform_target=True)
    assert np.allclose(np.exp(y), df['price'])


# ==================== SIGNS AND BLANKS ====================

def test_parse_price_keeps_sign():
    parsed = parse_price(pd.Series(['-$5.00', '$-120.00', '$1,234.00', ' $85 ']))
    assert parsed.tolist() == [-5.0, -120.0, 1234.0, 85.0]


def test_negative_price_removed_by_pipeline(raw_listings):
    raw_listings.loc[20, 'price'] = '-$5.00'
    raw_listings.loc[21, 'price'] = '$-120.00'

    result = run_full_preprocessing_pipeline(raw_listings, verbose=False)
    cleaned = result['cleaned']

    assert result['coercion_report']['price']['failed'] == 1
    assert not cleaned['id'].isin([1020, 1021]).any()
    assert (cleaned['price'] > 0).all()


def test_blank_text_is_missing(raw_listings):
    raw_listings.loc[20, 'room_type'] = '   '
    raw_listings.loc[21, 'accommodates'] = ' '
    selected = select_features(raw_listings, verbose=False)

    df, report = normalize_types(selected, verbose=False)

    assert pd.isna(df.loc[20, 'room_type'])
    assert '' not in df['room_type'].cat.categories
    assert pd.isna(df.loc[21, 'accommodates'])
    assert report['accommodates']['failed'] == 0


def test_load_listings_only_empty_fields_are_missing(tmp_path, raw_listings):
    raw_listings.loc[20, 'property_type'] = 'NA'
    raw_listings.loc[21, 'property_type'] = 'None'
    path = tmp_path / 'listings.csv'
    raw_listings.to_csv(path, index=False)

    df = load_listings(path)

    assert df.loc[20, 'property_type'] == 'NA'
    assert df.loc[21, 'property_type'] == 'None'
    assert pd.isna(df.loc[11, 'zipcode'])
