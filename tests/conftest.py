import json

import matplotlib
matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest

from airbnb_pricing.preprocessing import SELECTED_COLUMNS


NEIGHBOURHOODS = ['Pacific Beach', 'North Park', 'La Jolla', 'Mission Bay']


def make_raw_listings(n_per_group: int = 100, seed: int = 0) -> pd.DataFrame:
    """
    Synthetic listings.csv rows, all values as text like the real export.

    Four large neighbourhoods plus one with only five listings, a handful of
    zero and absurd prices, unparsable dates and postal codes, ZIP+4 codes,
    and a mostly empty square_feet column.
    """
    rng = np.random.default_rng(seed)
    groups = [name for name in NEIGHBOURHOODS for _ in range(n_per_group)] + ['Tiny Town'] * 5
    n = len(groups)

    bedrooms = rng.integers(0, 5, size=n)
    bathrooms = np.maximum(1, bedrooms - rng.integers(0, 2, size=n))
    accommodates = 2 * np.maximum(bedrooms, 1)
    price = 60 + 45 * bedrooms + 20 * bathrooms + rng.normal(0, 15, size=n)
    price = np.round(np.clip(price, 25, None), 2)

    host_since = pd.Timestamp('2012-01-01') + pd.to_timedelta(rng.integers(0, 2800, size=n), unit='D')

    df = pd.DataFrame({
        'id': [str(1000 + i) for i in range(n)],
        'name': [f'Listing {i}' for i in range(n)],
        'host_since': host_since.strftime('%Y-%m-%d'),
        'host_is_superhost': rng.choice(['t', 'f'], size=n),
        'host_listings_count': rng.integers(1, 10, size=n).astype(str),
        'neighbourhood_cleansed': groups,
        'zipcode': rng.choice(['92109', '92104', '92037', '92109-1234'], size=n),
        'latitude': (32.7 + rng.random(n) * 0.2).round(5).astype(str),
        'longitude': (-117.25 + rng.random(n) * 0.1).round(5).astype(str),
        'property_type': rng.choice(['Apartment', 'House', 'Condominium'], size=n),
        'room_type': rng.choice(['Entire home/apt', 'Private room'], size=n),
        'accommodates': accommodates.astype(str),
        'bathrooms': bathrooms.astype(float).astype(str),
        'bedrooms': bedrooms.astype(float).astype(str),
        'beds': np.maximum(bedrooms, 1).astype(float).astype(str),
        'square_feet': [None] * n,
        'price': [f'${p:,.2f}' for p in price],
        'minimum_nights': rng.integers(1, 5, size=n).astype(str),
        'availability_30': rng.integers(0, 31, size=n).astype(str),
        'availability_365': rng.integers(0, 366, size=n).astype(str),
        'number_of_reviews': rng.integers(0, 200, size=n).astype(str),
        'review_scores_rating': rng.integers(60, 101, size=n).astype(float).astype(str),
        'instant_bookable': rng.choice(['t', 'f'], size=n),
        'reviews_per_month': (rng.random(n) * 5).round(2).astype(str),
    }, dtype=object)

    df.loc[3, 'square_feet'] = '850'
    df.loc[[5, 6], 'price'] = '$0.00'
    df.loc[7, 'price'] = 'call me'
    df.loc[[8, 9], 'price'] = '$10,000.00'
    df.loc[10, 'zipcode'] = 'CA'
    df.loc[11, 'zipcode'] = None
    df.loc[12, 'host_since'] = 'sometime'
    df.loc[13, 'host_since'] = '2020-03-01'
    df.loc[14, 'host_is_superhost'] = None
    df.loc[15, 'bedrooms'] = None
    df.loc[[16, 17, 18], 'review_scores_rating'] = None
    df.loc[[16, 17, 18], 'reviews_per_month'] = None

    return df


@pytest.fixture
def raw_listings():
    return make_raw_listings()


@pytest.fixture
def listings_csv(tmp_path, raw_listings):
    path = tmp_path / 'listings.csv'
    raw_listings.to_csv(path, index=False)
    return path


@pytest.fixture
def fast_config_file(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'boosting': {'num_boost_round': 40, 'early_stopping_rounds': 5, 'nfold': 3, 'eta': 0.3}
    }))
    return path


@pytest.fixture
def selected_columns():
    return list(SELECTED_COLUMNS)
