"""Core module - configuration, errors, state, audit and observability.

Nothing in here talks to Xero; API access lives in /connectors/.
"""

__version__ = "1.0.0"
