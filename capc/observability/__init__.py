"""Logging for the controller manager."""

from capc.observability.logger import logger
from capc.observability.logging import LogConfig, setup_logging, teardown_logging

__all__ = ["LogConfig", "logger", "setup_logging", "teardown_logging"]
