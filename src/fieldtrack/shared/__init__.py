"""
Shared Kernel Module
====================

Shared infrastructure used across bounded contexts.

DO NOT add tracking business logic to the shared kernel.
"""
