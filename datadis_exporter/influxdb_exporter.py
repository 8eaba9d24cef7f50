"""InfluxDB exporter module.

This module handles:
- Receiving metric points from the collector (Accumulator interface)
- Pushing them to InfluxDB with the reading's own timestamp
- Logging collection errors reported by the host
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from datadis_exporter.collector import Accumulator

# Configure module logger
logger = logging.getLogger(__name__)


class InfluxDBExporter(Accumulator):
    """InfluxDB sink for Datadis consumption points.

    Points handed over with add_fields() are buffered and written in one
    batch by flush(), so a gather cycle maps to a single write.

    Measurements:
    - Datadis: Per-interval readings (field kwh)

    Tags:
    - cups: Supply point identifier
    - obtain_method: Real or estimated reading

    Attributes:
        url: InfluxDB server URL
        token: InfluxDB API token
        org: InfluxDB organization
        bucket: InfluxDB bucket name
    """

    def __init__(
        self,
        url: str = "http://localhost:8086",
        token: str = "",
        org: str = "datadis",
        bucket: str = "electricity",
    ):
        """Initialize the InfluxDB exporter.

        Args:
            url: InfluxDB server URL
            token: InfluxDB API token (required for writes)
            org: InfluxDB organization name
            bucket: InfluxDB bucket name
        """
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self._pending: List[Point] = []
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None

    def connect(self) -> bool:
        """Connect to InfluxDB.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self._client = InfluxDBClient(
                url=self.url,
                token=self.token,
                org=self.org
            )
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

            health = self._client.health()
            if health.status == "pass":
                logger.info(f"Connected to InfluxDB at {self.url}")
                return True
            else:
                logger.error(f"InfluxDB health check failed: {health.message}")
                return False
        except Exception as e:
            logger.error(f"Failed to connect to InfluxDB: {e}")
            return False

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._write_api = None
            logger.info("InfluxDB connection closed")

    @property
    def pending(self) -> List[Point]:
        """Points buffered since the last flush."""
        return list(self._pending)

    def add_fields(
        self,
        measurement: str,
        fields: Dict[str, float],
        tags: Dict[str, str],
        timestamp: datetime,
    ) -> None:
        point = Point(measurement).time(timestamp, WritePrecision.S)
        for key, value in tags.items():
            point.tag(key, value)
        for key, value in fields.items():
            point.field(key, float(value))
        self._pending.append(point)

    def add_error(self, err: Exception) -> None:
        logger.error(f"Collection error: {err}")

    def flush(self) -> int:
        """Write all buffered points to InfluxDB.

        The buffer is emptied even when the write fails; the next cycle
        fetches the same readings again.

        Returns:
            Number of points written

        Raises:
            RuntimeError: If not connected to InfluxDB
        """
        if not self._pending:
            logger.warning("No points to write")
            return 0

        points = self._pending
        self._pending = []

        if not self._write_api:
            raise RuntimeError("Not connected to InfluxDB. Call connect() first.")

        try:
            self._write_api.write(bucket=self.bucket, org=self.org, record=points)
            logger.info(f"Wrote {len(points)} points to InfluxDB")
        except Exception as e:
            logger.error(f"Failed to write to InfluxDB: {e}")
            raise

        return len(points)

