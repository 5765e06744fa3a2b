"""
San Diego AirBnB Price Analysis

Batch analysis of the public AirBnB listings dataset with:
- Schema-checked loading of listings.csv
- Explicit type coercion with per-column failure reporting
- Percentile-based price outlier trimming
- Seeded 70/30 train/test split
- OLS (price and log-price) and XGBoost price models
"""

__version__ = "1.0.0"
