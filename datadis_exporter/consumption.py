"""Datadis data model and parsing module.

This module handles:
- Supply and consumption records returned by the Datadis API
- Decoding the JSON payloads into those records
- Converting a reading's date and clock time to a timestamp

Datadis reports interval readings as a date (YYYY/MM/DD) plus a clock time
(HH:MM). The last interval of a day is reported as "24:00", which is not a
valid clock value and is normalized to "00:00" of the same date.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M"


class ConsumptionParseError(Exception):
    """Exception raised when a reading's date or time cannot be parsed."""
    pass


@dataclass(frozen=True)
class Supply:
    """A metered supply point of the Datadis account.

    Attributes:
        cups: Supply point identifier (CUPS)
        distributor_code: Code of the distributor serving the supply
        point_type: Metering point type (1-5)
        address: Street address of the supply
        postal_code: Postal code
        province: Province name
        municipality: Municipality name
        distributor: Distributor name
        valid_date_from: Start of the supply contract (YYYY/MM/DD)
        valid_date_to: End of the supply contract, empty if still active
    """
    cups: str
    distributor_code: str = ""
    point_type: int = 0
    address: str = ""
    postal_code: str = ""
    province: str = ""
    municipality: str = ""
    distributor: str = ""
    valid_date_from: str = ""
    valid_date_to: str = ""

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Supply":
        """Build a supply from one element of the get-supplies response.

        Raises:
            KeyError: If the CUPS identifier is missing
            ValueError: If pointType is not an integer
        """
        return cls(
            cups=item["cups"],
            distributor_code=item.get("distributorCode") or "",
            point_type=int(item.get("pointType") or 0),
            address=item.get("address") or "",
            postal_code=item.get("postalCode") or "",
            province=item.get("province") or "",
            municipality=item.get("municipality") or "",
            distributor=item.get("distributor") or "",
            valid_date_from=item.get("validDateFrom") or "",
            valid_date_to=item.get("validDateTo") or "",
        )


@dataclass(frozen=True)
class Consumption:
    """A single interval consumption reading.

    Attributes:
        cups: Supply point the reading belongs to
        date: Date in YYYY/MM/DD format
        time: Clock time in HH:MM format, HH may be 24
        kwh: Energy consumption in kWh
        obtain_method: How the reading was acquired ("Real" or "Estimada")
    """
    cups: str
    date: str
    time: str
    kwh: float
    obtain_method: str

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Consumption":
        """Build a reading from one element of the get-consumption-data response."""
        return cls(
            cups=item["cups"],
            date=item["date"],
            time=item["time"],
            kwh=float(item["consumptionKWh"]),
            obtain_method=item.get("obtainMethod") or "",
        )

    def timestamp(self) -> datetime:
        """Timestamp of the reading, see parse_timestamp()."""
        return parse_timestamp(self.date, self.time)

    def tags(self) -> Dict[str, str]:
        """Tags identifying the series this reading belongs to."""
        return {"cups": self.cups, "obtain_method": self.obtain_method}


def parse_timestamp(date: str, time: str) -> datetime:
    """Convert a Datadis date and clock time to a timestamp.

    A "24:00" clock value is rewritten to "00:00" on the same date. The date
    is not rolled forward to the next day.

    The wall-clock value is taken as-is, without any timezone conversion,
    and returned as an aware datetime in UTC.

    Args:
        date: Date in YYYY/MM/DD format
        time: Clock time in HH:MM format

    Returns:
        Timezone-aware datetime

    Raises:
        ConsumptionParseError: If either field is malformed

    Example:
        >>> int(parse_timestamp("2021/12/28", "24:00").timestamp())
        1640649600
    """
    if not isinstance(date, str) or not isinstance(time, str):
        raise ConsumptionParseError(f"Invalid reading timestamp {date!r} {time!r}")

    if time[:2] == "24":
        time = "00" + time[2:]

    try:
        parsed = datetime.strptime(f"{date} {time}", TIMESTAMP_FORMAT)
    except ValueError as e:
        raise ConsumptionParseError(f"Invalid reading timestamp {date!r} {time!r}: {e}")

    return parsed.replace(tzinfo=timezone.utc)


def parse_supplies(payload: Any) -> List[Supply]:
    """Decode the get-supplies JSON payload.

    Args:
        payload: Decoded JSON, expected to be a list of objects

    Returns:
        List of Supply records

    Raises:
        ValueError: If the payload does not have the expected shape
    """
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of supplies, got {type(payload).__name__}")

    try:
        return [Supply.from_json(item) for item in payload]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Invalid supply record: {e!r}")


def parse_consumptions(payload: Any) -> List[Consumption]:
    """Decode the get-consumption-data JSON payload.

    Args:
        payload: Decoded JSON, expected to be a list of objects

    Returns:
        List of Consumption records, in response order

    Raises:
        ValueError: If the payload does not have the expected shape
    """
    if not isinstance(payload, list):
        raise ValueError(f"Expected a JSON array of consumptions, got {type(payload).__name__}")

    try:
        return [Consumption.from_json(item) for item in payload]
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Invalid consumption record: {e!r}")
