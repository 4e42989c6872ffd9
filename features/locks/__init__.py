"""
Locks feature — keeps runs of the same procedure from overlapping.

Public API:
    from features.locks import ExecutionSerializer
"""

from features.locks.serializer import ExecutionSerializer

__all__ = ["ExecutionSerializer"]
