"""
Call management: call rows, the waiting queue, assignment and dispatch.

Keep this package __init__ lightweight; importing models here would trigger
ORM mapping whenever any submodule is imported.
"""

__all__: list[str] = []
