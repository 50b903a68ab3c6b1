"""
Infrastructure module for the ChantierPro compliance core.

This module provides the request-path security components:
- monitoring.py: Prometheus metrics for security and RGPD operations
- rbac.py: Role -> action matrix with audited permission checks
- middleware.py: Security gate (rate limit, permission, anomaly score)

Submodules are imported directly (``from src.infra.rbac import Role``);
``src.lib`` depends on ``src.infra.monitoring``, so this package does not
re-export anything that would import ``src.lib`` back.
"""
