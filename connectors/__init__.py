"""Accounting system connectors.

Only Xero is implemented. Connectors expose typed endpoint operations; the
reconciliation engine depends on XeroConnector, never on raw HTTP.
"""
