"""Nervous System — execution governance between the channels and the runner.

Handles:
- Policy Gate: admission checks before a command runs
- State tracking: coordinator state machine and the single execution slot
- Execution Log: bounded history of finished executions
"""
