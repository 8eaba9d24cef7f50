"""Datadis API client module.

This module handles:
- Authentication with the Datadis API (username/password -> bearer token)
- Listing the supply points of the account
- Downloading interval consumption data for one supply
- Fetching consumption for many supplies concurrently
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from datadis_exporter.consumption import Consumption, Supply, parse_consumptions, parse_supplies

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_URL = "https://datadis.es"


class DatadisError(Exception):
    """Base exception for Datadis client errors."""
    pass


class DatadisAuthError(DatadisError):
    """Exception raised when authentication fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DatadisFetchError(DatadisError):
    """Exception raised when a data request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, path: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.path = path


class DatadisDecodeError(DatadisError):
    """Exception raised when a response body cannot be decoded."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class MeasurementType(IntEnum):
    """Sampling resolution of the consumption data."""
    HOURLY = 0
    QUARTER_HOURLY = 1


@dataclass
class FetchResult:
    """Combined outcome of a consumption fan-out.

    Attributes:
        consumptions: Readings from every supply that succeeded, unordered
        error: First error raised by a supply fetch, None if all succeeded
    """
    consumptions: List[Consumption] = field(default_factory=list)
    error: Optional[DatadisError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DatadisClient:
    """Client for the Datadis private API.

    Logs in with the account credentials and keeps the returned token,
    which is sent as a bearer token on every data request. There is no
    token expiry handling: the token lives until it is cleared.

    Attributes:
        username: Datadis login username (NIF)
        password: Datadis login password
        base_url: API base URL
        timeout: Timeout in seconds applied to every request, None for no timeout
        measurement_type: Resolution requested for consumption data
    """

    LOGIN_PATH = "/nikola-auth/tokens/login"
    SUPPLIES_PATH = "/api-private/api/get-supplies"
    CONSUMPTION_PATH = "/api-private/api/get-consumption-data"

    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = DEFAULT_URL,
        timeout: Optional[float] = 30.0,
        measurement_type: MeasurementType = MeasurementType.HOURLY,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client with credentials.

        Args:
            username: Datadis login username
            password: Datadis login password
            base_url: API base URL
            timeout: Request timeout in seconds, None or <= 0 for no timeout
            measurement_type: Hourly or quarter-hourly consumption
            session: Optional session to use instead of a new one (for testing)
        """
        self.username = username
        self.password = password
        self.base_url = base_url
        self.timeout = timeout if timeout and timeout > 0 else None
        self.measurement_type = MeasurementType(measurement_type)
        self.session = session if session is not None else requests.Session()
        self.token = ""

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.token}",
        }

    def login(self) -> str:
        """Authenticate and store the bearer token.

        The credentials are sent as query parameters; on success the whole
        response body is the token.

        Returns:
            The new token

        Raises:
            DatadisAuthError: If the request fails or the status is not 200
        """
        logger.info(f"Authenticating as {self.username}")

        try:
            response = self.session.post(
                self._url(self.LOGIN_PATH),
                params={"username": self.username, "password": self.password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DatadisAuthError(f"Login request failed: {e}")

        if response.status_code != 200:
            raise DatadisAuthError(
                f"Error fetching token. Response status: {response.status_code} - {response.reason}",
                status_code=response.status_code,
            )

        self.token = response.text
        logger.info("Authentication successful")
        return self.token

    def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET an authorized endpoint and decode its JSON body.

        Raises:
            DatadisFetchError: If the request fails or the status is not 200
            DatadisDecodeError: If the body is not valid JSON
        """
        try:
            response = self.session.get(
                self._url(path),
                params=params,
                headers=self._build_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DatadisFetchError(f"Request to {path} failed: {e}", path=path)

        if response.status_code != 200:
            raise DatadisFetchError(
                f"Request to {path} failed with status {response.status_code} - {response.reason}",
                status_code=response.status_code,
                path=path,
            )

        try:
            return response.json()
        except ValueError as e:
            raise DatadisDecodeError(f"Invalid JSON from {path}: {e}", path=path)

    def get_supplies(self) -> List[Supply]:
        """List the supply points of the account.

        Returns:
            List of Supply records

        Raises:
            DatadisFetchError: If the request fails
            DatadisDecodeError: If the response cannot be decoded
        """
        payload = self._get_json(self.SUPPLIES_PATH)
        try:
            supplies = parse_supplies(payload)
        except ValueError as e:
            raise DatadisDecodeError(str(e), path=self.SUPPLIES_PATH)

        logger.info(f"Found {len(supplies)} supplies")
        return supplies

    def get_consumption(self, supply: Supply, start_date: str, end_date: str) -> List[Consumption]:
        """Download consumption readings for one supply.

        Args:
            supply: Supply to fetch
            start_date: First day, YYYY/MM/DD
            end_date: Last day, YYYY/MM/DD

        Returns:
            List of Consumption records

        Raises:
            DatadisFetchError: If the request fails
            DatadisDecodeError: If the response cannot be decoded
        """
        params = {
            "cups": supply.cups,
            "distributorCode": supply.distributor_code,
            "measurementType": str(int(self.measurement_type)),
            "pointType": str(supply.point_type),
            "startDate": start_date,
            "endDate": end_date,
        }

        logger.debug(f"Fetching consumption for {supply.cups} from {start_date} to {end_date}")
        payload = self._get_json(self.CONSUMPTION_PATH, params=params)
        try:
            consumptions = parse_consumptions(payload)
        except ValueError as e:
            raise DatadisDecodeError(str(e), path=self.CONSUMPTION_PATH)

        logger.debug(f"Received {len(consumptions)} readings for {supply.cups}")
        return consumptions

    def fetch_all_consumptions(self, supplies: List[Supply], start_date: str, end_date: str) -> FetchResult:
        """Fetch consumption for every supply concurrently.

        One task is started per supply and every task is waited for, even
        after a failure. Readings from the successful tasks are combined
        in completion order.

        Args:
            supplies: Supplies to fetch
            start_date: First day, YYYY/MM/DD
            end_date: Last day, YYYY/MM/DD

        Returns:
            FetchResult with the combined readings and the first error
        """
        result = FetchResult()
        if not supplies:
            return result

        with ThreadPoolExecutor(max_workers=len(supplies), thread_name_prefix="datadis-fetch") as executor:
            futures = {
                executor.submit(self.get_consumption, supply, start_date, end_date): supply
                for supply in supplies
            }

            for future in as_completed(futures):
                supply = futures[future]
                try:
                    result.consumptions.extend(future.result())
                except DatadisError as e:
                    if result.error is None:
                        result.error = e
                    else:
                        logger.warning(f"Additional fetch failure for {supply.cups}: {e}")

        logger.info(f"Fetched {len(result.consumptions)} readings from {len(supplies)} supplies")
        return result


def main():
    """Test the client with provided credentials."""
    import os

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    from dotenv import load_dotenv
    load_dotenv()

    username = os.getenv("DATADIS_USERNAME", "YOUR_NIF")
    password = os.getenv("DATADIS_PASSWORD", "YOUR_PASSWORD")

    print(f"Testing Datadis client for user: {username}")
    print("=" * 60)

    client = DatadisClient(username, password)

    try:
        print("\n1. Testing authentication...")
        client.login()
        print("   Authentication successful!")

        print("\n2. Testing supply discovery...")
        supplies = client.get_supplies()
        for supply in supplies:
            print(f"   {supply.cups} ({supply.distributor}, point type {supply.point_type})")

        print("\n" + "=" * 60)
        print("All tests passed!")

    except DatadisError as e:
        print(f"\n   FAILED: {e}")
        return False

    return True


if __name__ == "__main__":
    import sys
    success = main()
    sys.exit(0 if success else 1)
