"""Telemetry module for logging and metrics."""

from strest_client.telemetry.logger import get_logger, setup_logging
from strest_client.telemetry.metrics import ClientMetrics

__all__ = ["get_logger", "setup_logging", "ClientMetrics"]
