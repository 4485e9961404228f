"""Utility helpers for the PropertyPerfect backend."""

from .helpers import (
    clamp_int,
    iso,
    is_data_url,
    is_image_reference,
    is_remote_url,
    log_db_continue,
    log_event,
    parse_data_url,
    short_ref,
    to_data_url,
    upstream_error_message,
)

__all__ = [
    "clamp_int",
    "iso",
    "is_data_url",
    "is_image_reference",
    "is_remote_url",
    "log_db_continue",
    "log_event",
    "parse_data_url",
    "short_ref",
    "to_data_url",
    "upstream_error_message",
]
