"""Shared fixtures: a fake requests session that never touches the network."""

import json
import threading
from urllib.parse import urlparse

import pytest

from datadis_exporter.client import DatadisClient

SAMPLE_CONSUMPTION = """[ {
    "cups" : "1234",
    "date" : "2021/12/28",
    "time" : "01:00",
    "consumptionKWh" : 0.121,
    "obtainMethod" : "Real"
  }, {
    "cups" : "1234",
    "date" : "2021/12/28",
    "time" : "24:00",
    "consumptionKWh" : 0.117,
    "obtainMethod" : "Real"
  } ]"""

SAMPLE_SUPPLIES = json.dumps([
    {
        "address": "CALLE MAYOR 1",
        "cups": "1234",
        "postalCode": "28001",
        "province": "Madrid",
        "municipality": "MADRID",
        "distributor": "UFD",
        "validDateFrom": "2020/01/01",
        "validDateTo": "",
        "pointType": 5,
        "distributorCode": "2",
    },
])


class FakeResponse:
    def __init__(self, status_code=200, text="", reason="OK"):
        self.status_code = status_code
        self.text = text
        self.reason = reason

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Routes requests by URL path to handlers and records every call.

    A handler takes the query params and returns a FakeResponse, or raises.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self._lock = threading.Lock()

    def _handle(self, method, url, params=None, headers=None, timeout=None):
        path = urlparse(url).path
        with self._lock:
            self.calls.append({
                "method": method,
                "path": path,
                "params": dict(params or {}),
                "headers": dict(headers or {}),
                "timeout": timeout,
            })
        handler = self.routes.get(path)
        if handler is None:
            return FakeResponse(404, "", "Not Found")
        return handler(dict(params or {}))

    def get(self, url, params=None, headers=None, timeout=None):
        return self._handle("GET", url, params, headers, timeout)

    def post(self, url, params=None, headers=None, timeout=None):
        return self._handle("POST", url, params, headers, timeout)

    def calls_to(self, path):
        return [call for call in self.calls if call["path"] == path]


class RecordingAccumulator:
    def __init__(self):
        self.points = []
        self.errors = []

    def add_fields(self, measurement, fields, tags, timestamp):
        self.points.append((measurement, fields, tags, timestamp))

    def add_error(self, err):
        self.errors.append(err)


def respond(status_code=200, text="", reason="OK"):
    return lambda params: FakeResponse(status_code, text, reason)


@pytest.fixture
def session():
    return FakeSession({
        DatadisClient.LOGIN_PATH: respond(text="t0k3n"),
        DatadisClient.SUPPLIES_PATH: respond(text=SAMPLE_SUPPLIES),
        DatadisClient.CONSUMPTION_PATH: respond(text=SAMPLE_CONSUMPTION),
    })


@pytest.fixture
def client(session):
    return DatadisClient("user", "secret", base_url="http://datadis.test", timeout=5.0, session=session)


@pytest.fixture
def acc():
    return RecordingAccumulator()
