"""
Features package — the deploy hook's self-contained building blocks.

  features/procedures/  — procedure and step definitions, loaded once from
                          the YAML procedures file into a read-only registry
  features/locks/       — per-procedure busy flags that keep two runs of the
                          same procedure from overlapping

Each sub-package re-exports its public API from __init__.py.
"""
