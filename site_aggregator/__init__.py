"""
Site Data Aggregator - polls registered data sources into the site database.

Maintains one poller per active source and reconciles the set against
the source registry on SIGHUP.
"""
from .config import AggregatorSettings, get_settings
from .main import DataAggregator, read_aggregated_data

__all__ = [
    "AggregatorSettings",
    "get_settings",
    "DataAggregator",
    "read_aggregated_data",
]
