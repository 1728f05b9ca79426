"""
Structured logging package for roomwire.

All imports should use explicit paths like
'from roomwire.structured_logging.enhanced_logging_config import get_logger'.

The package is named 'structured_logging' rather than 'logging' to stay clear of
the standard library module of the same name.
"""

__all__ = []
