"""Datadis collector module.

This module handles:
- Owning the client, token and supply list across gather cycles
- Resolving the date range of each cycle
- Turning consumption readings into metric points for an Accumulator
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from datadis_exporter.client import DEFAULT_URL, DatadisClient, MeasurementType
from datadis_exporter.consumption import Consumption, Supply

# Configure module logger
logger = logging.getLogger(__name__)

MEASUREMENT_NAME = "Datadis"
DATE_FORMAT = "%Y/%m/%d"


class Accumulator(ABC):
    """Sink for metric points produced by a gather cycle.

    Hosts provide a concrete implementation, e.g. InfluxDBExporter.
    """

    @abstractmethod
    def add_fields(
        self,
        measurement: str,
        fields: Dict[str, float],
        tags: Dict[str, str],
        timestamp: datetime,
    ) -> None:
        """Accept one metric point."""

    @abstractmethod
    def add_error(self, err: Exception) -> None:
        """Report an error of the gather cycle."""


class CollectorState(Enum):
    UNINITIALIZED = "uninitialized"
    CLIENT_READY = "client_ready"
    AUTHENTICATED = "authenticated"
    SUPPLIES_RESOLVED = "supplies_resolved"


@dataclass(frozen=True)
class DateRange:
    """Date range requested on every gather cycle.

    Explicit start/end dates take precedence over the rolling duration;
    both must be set to be used.

    Attributes:
        start_date: Explicit first day, YYYY/MM/DD
        end_date: Explicit last day, YYYY/MM/DD
        duration: Lookback from now when no explicit dates are set
    """
    start_date: str = ""
    end_date: str = ""
    duration: timedelta = timedelta(hours=24)

    def resolve(self, now: Optional[datetime] = None) -> tuple[str, str]:
        """Return the concrete (start, end) pair, formatted YYYY/MM/DD."""
        if self.start_date and self.end_date:
            return self.start_date, self.end_date

        if now is None:
            now = datetime.now()
        start = now - self.duration
        return start.strftime(DATE_FORMAT), now.strftime(DATE_FORMAT)


@dataclass
class CollectorConfig:
    """Settings of a DatadisCollector.

    Attributes:
        username: Datadis login username
        password: Datadis login password
        base_url: API base URL
        http_timeout: Request timeout in seconds, None or 0 for no timeout
        measurement_type: Hourly or quarter-hourly consumption
        supplies: Static supply list, discovered from the API when empty
        date_range: Range requested on every cycle
        emit_partial: Emit readings of successful supplies when others fail
    """
    username: str
    password: str
    base_url: str = DEFAULT_URL
    http_timeout: Optional[float] = 30.0
    measurement_type: MeasurementType = MeasurementType.HOURLY
    supplies: List[Supply] = field(default_factory=list)
    date_range: DateRange = field(default_factory=DateRange)
    emit_partial: bool = False


class DatadisCollector:
    """Collects Datadis consumption and emits it as metric points.

    The client is created lazily on first use and logs in whenever it
    holds no token. Discovered supplies are cached for the lifetime of the
    collector and never re-fetched, so supplies added to the account later
    require a restart.

    Attributes:
        config: Collector settings
        client: Datadis API client, None until first needed
        supplies: Supplies used for every cycle, None until resolved
    """

    def __init__(
        self,
        config: CollectorConfig,
        client: Optional[DatadisClient] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the collector.

        Args:
            config: Collector settings
            client: Optional pre-built client (for testing)
            clock: Source of the current time for rolling date ranges
        """
        self.config = config
        self.client = client
        self.clock = clock
        self.supplies: Optional[List[Supply]] = list(config.supplies) if config.supplies else None

    @property
    def state(self) -> CollectorState:
        if self.client is None:
            return CollectorState.UNINITIALIZED
        if not self.client.is_authenticated:
            return CollectorState.CLIENT_READY
        if self.supplies is None:
            return CollectorState.AUTHENTICATED
        return CollectorState.SUPPLIES_RESOLVED

    def _ensure_client(self) -> DatadisClient:
        if self.client is None:
            self.client = DatadisClient(
                username=self.config.username,
                password=self.config.password,
                base_url=self.config.base_url,
                timeout=self.config.http_timeout,
                measurement_type=self.config.measurement_type,
            )
        return self.client

    def _ensure_token(self) -> None:
        client = self._ensure_client()
        if not client.is_authenticated:
            client.login()

    def _ensure_supplies(self) -> List[Supply]:
        if self.supplies is None:
            self.supplies = self.client.get_supplies()
            if not self.supplies:
                logger.warning("No supplies found for this account")
        return self.supplies

    def init(self) -> None:
        """Create the client and log in.

        Raises:
            DatadisAuthError: If authentication fails
        """
        self._ensure_token()

    def gather(self, acc: Accumulator) -> int:
        """Run one collection cycle and emit its points to the accumulator.

        Args:
            acc: Sink receiving one point per reading

        Returns:
            Number of points emitted

        Raises:
            DatadisAuthError: If authentication fails
            DatadisFetchError: If supply discovery or a consumption fetch fails
            DatadisDecodeError: If a response cannot be decoded
            ConsumptionParseError: If a reading has an invalid timestamp
        """
        self._ensure_token()
        supplies = self._ensure_supplies()

        start_date, end_date = self.config.date_range.resolve(self.clock())
        logger.info(f"Gathering consumption for {len(supplies)} supplies from {start_date} to {end_date}")

        result = self.client.fetch_all_consumptions(supplies, start_date, end_date)

        if not result.ok:
            if self.config.emit_partial and result.consumptions:
                logger.warning(f"Emitting {len(result.consumptions)} readings despite fetch failure")
                self._emit(acc, result.consumptions)
            raise result.error

        return self._emit(acc, result.consumptions)

    def _emit(self, acc: Accumulator, consumptions: List[Consumption]) -> int:
        count = 0
        for consumption in consumptions:
            timestamp = consumption.timestamp()
            acc.add_fields(
                MEASUREMENT_NAME,
                {"kwh": consumption.kwh},
                consumption.tags(),
                timestamp,
            )
            count += 1

        logger.info(f"Emitted {count} points")
        return count
