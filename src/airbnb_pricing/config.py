"""
Pipeline configuration.

All cleaning thresholds and model hyperparameters live here so that a run can
be reproduced from a single JSON file. Defaults match the San Diego
analysis (reference date 2019-11-21, 99th percentile price trim,
neighbourhoods with at least 30 listings, 70/30 split).
"""

import json
from datetime import date
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator


class BoostingConfig(BaseModel):
    """Hyperparameters for the XGBoost regressor and its CV early stopping."""
    max_depth: int = Field(6, ge=1, description="Maximum tree depth")
    eta: float = Field(0.05, gt=0, le=1, description="Learning rate")
    subsample: float = Field(0.8, gt=0, le=1)
    colsample_bytree: float = Field(0.8, gt=0, le=1)
    min_child_weight: float = Field(1.0, ge=0)
    num_boost_round: int = Field(1000, ge=1, description="Upper bound on boosting rounds")
    early_stopping_rounds: int = Field(25, ge=1)
    nfold: int = Field(5, ge=2, description="Folds for xgboost.cv")

    def to_xgb_params(self, seed: int) -> dict:
        """
        Parameter dict for xgboost.cv and xgboost.train.

        Args:
            seed: Random seed for row and column subsampling

        Returns:
            Dict of booster parameters (squared error objective, RMSE metric)
        """
        return {
            'objective': 'reg:squarederror',
            'eval_metric': 'rmse',
            'max_depth': self.max_depth,
            'eta': self.eta,
            'subsample': self.subsample,
            'colsample_bytree': self.colsample_bytree,
            'min_child_weight': self.min_child_weight,
            'seed': seed,
            'verbosity': 0,
        }


class PipelineConfig(BaseModel):
    """
    Thresholds for the cleaning pipeline and the train/test split.

    The price cutoffs and minimum group size are empirical choices from
    looking at the data, so they are exposed rather than hard-coded.
    """
    reference_date: date = Field(date(2019, 11, 21), description="Date host tenure is measured against")
    min_price: float = Field(0.0, ge=0, description="Rows with price <= min_price are dropped")
    max_price: Optional[float] = Field(None, gt=0, description="Optional fixed price ceiling")
    price_quantile: float = Field(0.99, gt=0, le=1, description="Rows at or above this price quantile are dropped")
    group_column: str = Field('neighbourhood_cleansed')
    min_group_size: int = Field(30, ge=1, description="Groups with fewer rows are dropped")
    train_ratio: float = Field(0.7, gt=0, lt=1)
    random_seed: int = 42
    boosting: BoostingConfig = Field(default_factory=BoostingConfig)

    @field_validator('max_price')
    @classmethod
    def validate_max_price(cls, v, info):
        if v is not None and 'min_price' in info.data and v <= info.data['min_price']:
            raise ValueError('max_price must be greater than min_price')
        return v


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> PipelineConfig:
    """
    Build a PipelineConfig from an optional JSON file plus keyword overrides.

    Overrides with a value of None are ignored so CLI flags that were not
    given do not clobber the file.
    """
    data = {}
    if path is not None:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    data.update({k: v for k, v in overrides.items() if v is not None})
    return PipelineConfig(**data)
