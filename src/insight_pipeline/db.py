"""MongoDB helpers.

Centralizes creation of Mongo clients and lookup of the collections used by
the record store and the chunk store.
"""

from __future__ import annotations

from typing import Any
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database

import certifi

from insight_pipeline.config import Settings


def get_client(uri: str, tls: bool = True) -> MongoClient[dict[str, Any]]:
    """Return a configured PyMongo MongoClient for the provided URI.

    Args:
        uri: MongoDB connection URI.
        tls: Connect over TLS using the certifi CA bundle.

    Returns:
        Configured MongoClient instance.
    """
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": 30000,
        "socketTimeoutMS": 30000,
        "connectTimeoutMS": 30000,
    }
    if tls:
        options.update(tls=True, tlsCAFile=certifi.where())
    return MongoClient(uri, **options)


def get_db(
    client: MongoClient[dict[str, Any]],
    db_name: str,
) -> Database[dict[str, Any]]:
    """Return the named Database instance from a MongoClient.

    Args:
        client: PyMongo MongoClient.
        db_name: Database name.

    Returns:
        A Database object.
    """
    return client[db_name]


def get_collections(
    settings: Settings,
) -> tuple[Collection[dict[str, Any]], Collection[dict[str, Any]]]:
    """Return the `(deployments, chunks)` collections named by `settings`."""
    client = get_client(settings.mongo_uri, tls=settings.mongo_tls)
    db = get_db(client, settings.mongo_db)
    return db[settings.deployments_collection], db[settings.chunks_collection]
