"""
Configuration Management Module
Central settings for marketplace access, retries and pipeline defaults
"""
from .settings import (
    Settings,
    MarketplaceSettings,
    HttpSettings,
    PipelineSettings,
    ReconcileSettings,
    LoggingSettings,
    get_settings,
    get_marketplace_settings,
    get_http_settings,
    get_pipeline_settings,
    get_reconcile_settings,
)

__all__ = [
    "Settings",
    "MarketplaceSettings",
    "HttpSettings",
    "PipelineSettings",
    "ReconcileSettings",
    "LoggingSettings",
    "get_settings",
    "get_marketplace_settings",
    "get_http_settings",
    "get_pipeline_settings",
    "get_reconcile_settings",
]
