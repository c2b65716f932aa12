"""Notification delivery, webhook ingest and monitoring engine.

The package is a regular package so the local ``notifyhub`` modules take
precedence over similarly named distributions installed in the environment.
"""
