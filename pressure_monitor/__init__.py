"""Bed pressure monitoring and alerting engine.

This package contains the domain models, clinical configuration and the
services that turn raw sensor frames into readings, alerts and reports.
Persistence adapters live outside it, in ``adapters``.
"""
