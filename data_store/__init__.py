"""DataFrame measurement log for power-supply polling."""

from data_store.schemas import SCHEMA, update_to_row
from data_store.store import DataStore

__all__ = ["SCHEMA", "update_to_row", "DataStore"]
