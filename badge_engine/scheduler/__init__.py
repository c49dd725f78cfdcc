"""Scheduling of badge runs."""
