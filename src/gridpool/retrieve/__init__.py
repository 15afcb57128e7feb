"""Geodata retrieval: transports, Overpass query helpers, and the retriever."""

from gridpool.retrieve.overpass import (
    FALLBACK_ENDPOINTS,
    PRIMARY_ENDPOINTS,
    build_query,
    parse_response,
)
from gridpool.retrieve.retriever import DataRetriever
from gridpool.retrieve.transports import Transport, get_transport

__all__ = [
    "DataRetriever",
    "FALLBACK_ENDPOINTS",
    "PRIMARY_ENDPOINTS",
    "Transport",
    "build_query",
    "get_transport",
    "parse_response",
]
