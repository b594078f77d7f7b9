"""The three data phases of a Run: fetch, aggregate, publish."""

from harvest.pipeline.aggregator import Aggregator, ProductRecord
from harvest.pipeline.fetcher import FetchStream, Fetcher, HttpSourceClient, SourceClient, SourceFetchError
from harvest.pipeline.publisher import PublishReport, Publisher
from harvest.pipeline.stores import DatasetStore, HttpDatasetStore, InMemoryDatasetStore, StoreSchema, UpsertResult

__all__ = [
    "Aggregator",
    "DatasetStore",
    "FetchStream",
    "Fetcher",
    "HttpDatasetStore",
    "HttpSourceClient",
    "InMemoryDatasetStore",
    "ProductRecord",
    "PublishReport",
    "Publisher",
    "SourceClient",
    "SourceFetchError",
    "StoreSchema",
    "UpsertResult",
]
