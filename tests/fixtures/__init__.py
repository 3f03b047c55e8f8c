"""Synthetic data generators for comp-reduce tests."""
