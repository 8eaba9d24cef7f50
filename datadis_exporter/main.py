"""Main entry point for the Datadis Exporter.

This module handles:
- Loading configuration from environment variables
- Scheduling periodic gather cycles with APScheduler
- Coordinating the collector, InfluxDB sink and Prometheus metrics
"""

import logging
import os
import re
import sys
import time
from datetime import timedelta
from typing import List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from datadis_exporter.client import DEFAULT_URL, DatadisError, MeasurementType
from datadis_exporter.collector import CollectorConfig, DatadisCollector, DateRange
from datadis_exporter.consumption import ConsumptionParseError, Supply
from datadis_exporter.exporter import DatadisExporter
from datadis_exporter.influxdb_exporter import InfluxDBExporter

# Configure module logger
logger = logging.getLogger(__name__)

# Global instances (shared across gather runs)
collector: Optional[DatadisCollector] = None
prometheus_exporter: Optional[DatadisExporter] = None
influxdb_exporter: Optional[InfluxDBExporter] = None

DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

# Configuration from environment
config = {
    "username": "",
    "password": "",
    "url": DEFAULT_URL,
    "http_timeout": timedelta(seconds=30),
    "measurement_type": MeasurementType.HOURLY,
    "supplies": [],
    "start_date": "",
    "end_date": "",
    "date_duration": timedelta(hours=24),
    "emit_partial": False,
    "gather_interval": timedelta(hours=1),
    "exporter_port": 9121,
    # InfluxDB config
    "influxdb_url": "http://localhost:8086",
    "influxdb_token": "",
    "influxdb_org": "datadis",
    "influxdb_bucket": "electricity",
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as "30s", "15m", "24h", "7d" or "90".

    A bare number is taken as seconds.

    Raises:
        ValueError: If the value is not a valid duration
    """
    match = DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * DURATION_UNITS[unit])


def parse_supplies_setting(value: str) -> List[Supply]:
    """Parse a static supply list.

    Format: comma separated "cups:pointType:distributorCode" entries, e.g.
    "ES0031000000000001AA:5:2,ES0031000000000002BB:5:2".

    Raises:
        ValueError: If an entry is malformed
    """
    supplies = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":")
        if len(parts) != 3 or not parts[0]:
            raise ValueError(f"Invalid supply entry {entry!r}, expected cups:pointType:distributorCode")
        cups, point_type, distributor_code = parts
        supplies.append(Supply(cups=cups, point_type=int(point_type), distributor_code=distributor_code))
    return supplies


def _duration_setting(name: str, key: str, default: str) -> None:
    raw = os.getenv(name, default)
    try:
        config[key] = parse_duration(raw)
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default}")
        config[key] = parse_duration(default)


def load_config() -> bool:
    """Load configuration from environment variables.

    Required:
        DATADIS_USERNAME: Datadis username
        DATADIS_PASSWORD: Datadis password
        INFLUXDB_TOKEN: InfluxDB API token

    Optional:
        DATADIS_URL: API base URL (default: https://datadis.es)
        DATADIS_HTTP_TIMEOUT: Request timeout (default: 30s)
        DATADIS_MEASUREMENT_TYPE: 0 hourly, 1 quarter-hourly (default: 0)
        DATADIS_SUPPLIES: Static supplies, cups:pointType:distributorCode,...
        DATADIS_START_DATE: Explicit start date, YYYY/MM/DD
        DATADIS_END_DATE: Explicit end date, YYYY/MM/DD
        DATADIS_DATE_DURATION: Lookback when no explicit dates (default: 24h)
        DATADIS_EMIT_PARTIAL: Emit data of supplies that succeeded when others fail (default: false)
        GATHER_INTERVAL: Time between gather cycles (default: 1h)
        EXPORTER_PORT: Prometheus port (default: 9121)
        INFLUXDB_URL: InfluxDB server URL (default: http://localhost:8086)
        INFLUXDB_ORG: InfluxDB organization (default: datadis)
        INFLUXDB_BUCKET: InfluxDB bucket (default: electricity)

    Returns:
        True if all required config loaded, False otherwise
    """
    config["username"] = os.getenv("DATADIS_USERNAME", "")
    config["password"] = os.getenv("DATADIS_PASSWORD", "")
    config["url"] = os.getenv("DATADIS_URL", DEFAULT_URL)
    config["start_date"] = os.getenv("DATADIS_START_DATE", "")
    config["end_date"] = os.getenv("DATADIS_END_DATE", "")
    config["emit_partial"] = os.getenv("DATADIS_EMIT_PARTIAL", "false").lower() in ("1", "true", "yes")

    # Optional with defaults
    _duration_setting("DATADIS_HTTP_TIMEOUT", "http_timeout", "30s")
    _duration_setting("DATADIS_DATE_DURATION", "date_duration", "24h")
    _duration_setting("GATHER_INTERVAL", "gather_interval", "1h")

    if bool(config["start_date"]) != bool(config["end_date"]):
        logger.warning("Only one of DATADIS_START_DATE/DATADIS_END_DATE is set, "
                       f"using the rolling {config['date_duration']} window instead")

    try:
        config["exporter_port"] = int(os.getenv("EXPORTER_PORT", "9121"))
    except ValueError:
        logger.warning("Invalid EXPORTER_PORT, using default: 9121")
        config["exporter_port"] = 9121

    errors = []
    try:
        config["measurement_type"] = MeasurementType(int(os.getenv("DATADIS_MEASUREMENT_TYPE", "0")))
    except ValueError:
        errors.append("DATADIS_MEASUREMENT_TYPE must be 0 (hourly) or 1 (quarter hourly)")

    try:
        config["supplies"] = parse_supplies_setting(os.getenv("DATADIS_SUPPLIES", ""))
    except ValueError as e:
        errors.append(f"DATADIS_SUPPLIES: {e}")

    # InfluxDB configuration
    config["influxdb_url"] = os.getenv("INFLUXDB_URL", "http://localhost:8086")
    config["influxdb_token"] = os.getenv("INFLUXDB_TOKEN", "")
    config["influxdb_org"] = os.getenv("INFLUXDB_ORG", "datadis")
    config["influxdb_bucket"] = os.getenv("INFLUXDB_BUCKET", "electricity")

    # Validate required config
    missing = []
    if not config["username"]:
        missing.append("DATADIS_USERNAME")
    if not config["password"]:
        missing.append("DATADIS_PASSWORD")
    if not config["influxdb_token"]:
        missing.append("INFLUXDB_TOKEN")

    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        return False

    if errors:
        for error in errors:
            logger.error(f"Invalid configuration: {error}")
        return False

    logger.info(f"Configuration loaded: user={config['username']}, "
                f"measurement_type={config['measurement_type'].name}, "
                f"static_supplies={len(config['supplies'])}, "
                f"gather_interval={config['gather_interval']}, "
                f"influxdb_url={config['influxdb_url']}")
    return True


def build_collector_config() -> CollectorConfig:
    """Build the collector settings from the loaded configuration."""
    return CollectorConfig(
        username=config["username"],
        password=config["password"],
        base_url=config["url"],
        http_timeout=config["http_timeout"].total_seconds(),
        measurement_type=config["measurement_type"],
        supplies=config["supplies"],
        date_range=DateRange(
            start_date=config["start_date"],
            end_date=config["end_date"],
            duration=config["date_duration"],
        ),
        emit_partial=config["emit_partial"],
    )


def run_gather() -> bool:
    """Execute one gather cycle and write its points to InfluxDB.

    Points emitted before a failure are still written.

    Returns:
        True if the cycle succeeded, False otherwise
    """
    logger.info("Starting scheduled gather")
    start_time = time.time()
    points = 0
    success = False

    try:
        points = collector.gather(influxdb_exporter)
        success = True
        logger.info("Gather completed successfully")

    except (DatadisError, ConsumptionParseError) as e:
        logger.error(f"Gather failed: {e}")
        influxdb_exporter.add_error(e)
        if prometheus_exporter:
            prometheus_exporter.record_error(e)

    except Exception as e:
        logger.error(f"Gather failed (unexpected error): {e}")
        influxdb_exporter.add_error(e)
        if prometheus_exporter:
            prometheus_exporter.record_error(e)

    try:
        written = influxdb_exporter.flush()
        if not success:
            points = written
    except Exception as e:
        logger.error(f"Failed to write points: {e}")
        success = False

    if prometheus_exporter:
        prometheus_exporter.set_scrape_success(success, time.time() - start_time, points)
        if collector.supplies is not None:
            prometheus_exporter.set_supplies(len(collector.supplies))

    return success


def main() -> int:
    """Main entry point.

    1. Load .env file with python-dotenv
    2. Load and validate configuration
    3. Connect to InfluxDB
    4. Start Prometheus HTTP server (for operational metrics)
    5. Initialize the collector (log in)
    6. Start scheduler with the periodic gather job
    7. Run initial gather at startup

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    global collector, prometheus_exporter, influxdb_exporter

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("Datadis Exporter starting")

    load_dotenv()

    if not load_config():
        logger.error("Configuration failed, exiting")
        return 1

    influxdb_exporter = InfluxDBExporter(
        url=config["influxdb_url"],
        token=config["influxdb_token"],
        org=config["influxdb_org"],
        bucket=config["influxdb_bucket"],
    )

    if not influxdb_exporter.connect():
        logger.error("Failed to connect to InfluxDB, exiting")
        return 1

    prometheus_exporter = DatadisExporter(port=config["exporter_port"])
    prometheus_exporter.start()
    logger.info(f"Prometheus metrics available at http://localhost:{config['exporter_port']}/metrics")

    collector = DatadisCollector(build_collector_config())

    # Login failures are retried by the next gather
    try:
        collector.init()
    except DatadisError as e:
        logger.error(f"Initial login failed: {e}")

    scheduler = BlockingScheduler()

    interval = config["gather_interval"]
    scheduler.add_job(
        run_gather,
        trigger=IntervalTrigger(seconds=interval.total_seconds()),
        id="datadis_gather",
        name=f"Datadis gather every {interval}",
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled gather every {interval}")

    logger.info("Running initial gather at startup")
    run_gather()

    logger.info("Starting scheduler, press Ctrl+C to exit")
    try:
        scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        scheduler.shutdown()
        influxdb_exporter.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
