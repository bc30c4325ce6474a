"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from todoapi.config import Settings, get_settings
from todoapi.db import DbClient
from todoapi.engine import DOCUMENT, StorageEngine, database_url_for, select_storage_engine
from todoapi.mongo_store import MongoDbClient
from todoapi.relations import RelationshipResolver
from todoapi.security import CredentialHasher
from todoapi.sql_store import SqlDbClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with (environment settings otherwise)."""
    settings = getattr(request.app.state, "settings", None)
    return settings or get_settings()


def build_db_client(engine: StorageEngine, settings: Settings) -> DbClient:
    hasher = CredentialHasher(rounds=settings.bcrypt_rounds)
    if engine.family == DOCUMENT:
        return MongoDbClient.from_uri(settings.mongodb_uri, settings.mongodb_db, hasher)
    return SqlDbClient(database_url_for(engine, settings), hasher, storage_engine=engine)


def init_db_client(settings: Settings) -> DbClient:
    """
    Return the process-wide DB client, built on first use for the selected engine.
    """
    global _db_client
    if _db_client:
        return _db_client

    engine = select_storage_engine(settings.db_type)
    _db_client = build_db_client(engine, settings)
    logger.info("Storage client ready: %s", _db_client.__class__.__name__)
    return _db_client


def get_db_client(settings: Settings = Depends(get_app_settings)) -> DbClient:
    return init_db_client(settings)


def close_db_client() -> None:
    global _db_client
    if _db_client:
        _db_client.close()
        logger.info("Storage client closed")
    _db_client = None


def get_resolver(db: DbClient = Depends(get_db_client)) -> RelationshipResolver:
    return RelationshipResolver(db)
