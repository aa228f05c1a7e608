"""
Application layer: settings, metrics and the `pod` command line tool.

Key Components:
- config.py: Environment based settings using pydantic-settings
- metrics.py: Metrics abstraction over aio-statsd
- cli.py: The `pod` command
"""
