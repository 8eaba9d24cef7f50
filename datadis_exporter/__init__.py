"""Datadis InfluxDB Exporter package.

A scheduled exporter that authenticates with the Datadis API, discovers the
account's supply points, downloads interval consumption readings and writes
them to InfluxDB as timestamped metric points.
"""

__version__ = "0.1.0"
