"""
Core modules for the cost impact monitor.

This package contains cost estimation, risk assessment, per-space state,
change detection, trigger processing and the orchestrator.
"""
