"""Core query compilation and execution components."""

from fluxrest.core.config import PaginationConfig, RestConfig
from fluxrest.core.logging import Logger, LogLevel, color_palette, log

__all__ = ["RestConfig", "PaginationConfig", "Logger", "LogLevel", "log", "color_palette"]
