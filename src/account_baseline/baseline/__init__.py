"""Baseline pipeline: catalog, inspection, reconciliation, apply and reporting."""
