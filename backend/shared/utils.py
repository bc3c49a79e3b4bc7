import logging

from shared.config import ServiceConfig, config

__all__ = ["ServiceConfig", "config", "format_variant_id", "setup_logging", "truncate_text"]


def setup_logging(service_name: str, log_level: str = "INFO") -> logging.Logger:
    """Setup logging configuration for a service"""
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, log_level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(f"%(asctime)s - {service_name} - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def format_variant_id(index: int) -> str:
    """Human-readable variant label for a zero-based slot (0 -> V01)."""
    return f"V{index + 1:02d}"


def truncate_text(text: str, max_length: int = 80) -> str:
    """Shorten text for display, appending an ellipsis when cut"""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
