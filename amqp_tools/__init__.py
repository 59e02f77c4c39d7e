"""Shared transport layer for amqp-consume and amqp-publish."""

__version__ = "1.0.0"
