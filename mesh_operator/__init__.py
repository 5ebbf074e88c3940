"""Reconciliation core of the platform-mesh KCP operator."""
