"""Judge module - Remote judgment service client."""

from .judge import Judge, extract_json_array, extract_json_object

__all__ = ["Judge", "extract_json_array", "extract_json_object"]
