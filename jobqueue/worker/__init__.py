"""
Worker module.
Contains side-effect handlers, per-queue worker pools and the worker process.
"""
