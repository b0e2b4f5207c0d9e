"""Utility modules."""

from connector_core.utils.validation import validate_connector_key, validate_identifier

__all__ = ["validate_connector_key", "validate_identifier"]
