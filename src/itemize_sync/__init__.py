"""Itemize sync agent - offline receipt capture with durable upload queue."""

__version__ = "0.1.0"
