"""Strata - API module for REST endpoints.

This module provides the FastAPI application for creating projects,
reading ingestion state, and receiving GitHub webhooks.
"""

from .config import Settings, get_settings
from .dependencies import (
    get_github_client,
    get_ingestion_pipeline,
    get_record_store,
    get_webhook_processor,
)
from .main import app, create_app

__all__ = [
    "app",
    "create_app",
    "get_github_client",
    "get_ingestion_pipeline",
    "get_record_store",
    "get_webhook_processor",
    "get_settings",
    "Settings",
]
