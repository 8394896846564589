"""Command line entry point for xero-reconcile."""
