"""Tests for the collector state machine and gather cycle."""

from datetime import datetime, timedelta

import pytest

from datadis_exporter.client import DatadisAuthError, DatadisClient, DatadisFetchError
from datadis_exporter.collector import (
    MEASUREMENT_NAME,
    Accumulator,
    CollectorConfig,
    CollectorState,
    DatadisCollector,
    DateRange,
)
from datadis_exporter.consumption import ConsumptionParseError, Supply
from tests.conftest import SAMPLE_CONSUMPTION, FakeResponse, respond

NOW = datetime(2022, 1, 10, 15, 30)


def make_collector(client, **kwargs):
    config = CollectorConfig(username="user", password="secret", **kwargs)
    return DatadisCollector(config, client=client, clock=lambda: NOW)


def test_date_range_explicit_dates_win():
    date_range = DateRange(start_date="2021/12/01", end_date="2021/12/28", duration=timedelta(days=3))
    assert date_range.resolve(NOW) == ("2021/12/01", "2021/12/28")


def test_date_range_rolling_duration():
    assert DateRange(duration=timedelta(hours=24)).resolve(NOW) == ("2022/01/09", "2022/01/10")
    assert DateRange(duration=timedelta(days=30)).resolve(NOW) == ("2021/12/11", "2022/01/10")


def test_date_range_needs_both_dates():
    date_range = DateRange(start_date="2021/12/01", duration=timedelta(days=1))
    assert date_range.resolve(NOW) == ("2022/01/09", "2022/01/10")


def test_state_transitions(client):
    collector = DatadisCollector(CollectorConfig(username="user", password="secret"))
    assert collector.state is CollectorState.UNINITIALIZED

    collector = make_collector(client)
    assert collector.state is CollectorState.CLIENT_READY

    collector.init()
    assert collector.state is CollectorState.AUTHENTICATED


def test_client_built_lazily_from_config():
    collector = DatadisCollector(CollectorConfig(
        username="user", password="secret", base_url="http://datadis.test", http_timeout=12.0,
    ))
    client = collector._ensure_client()
    assert collector._ensure_client() is client
    assert client.timeout == 12.0
    assert client.base_url == "http://datadis.test"


def test_gather_emits_points(client, session, acc):
    collector = make_collector(client)

    assert collector.gather(acc) == 2
    assert collector.state is CollectorState.SUPPLIES_RESOLVED

    measurement, fields, tags, timestamp = acc.points[0]
    assert measurement == MEASUREMENT_NAME == "Datadis"
    assert fields == {"kwh": 0.121}
    assert tags == {"cups": "1234", "obtain_method": "Real"}
    assert int(acc.points[1][3].timestamp()) == 1640649600

    headers = session.calls_to(DatadisClient.CONSUMPTION_PATH)[0]["headers"]
    assert headers["Authorization"] == "Bearer t0k3n"


def test_gather_uses_explicit_dates(client, session, acc):
    collector = make_collector(client, date_range=DateRange(start_date="2021/12/01", end_date="2021/12/28"))
    collector.gather(acc)

    params = session.calls_to(DatadisClient.CONSUMPTION_PATH)[0]["params"]
    assert params["startDate"] == "2021/12/01"
    assert params["endDate"] == "2021/12/28"


def test_gather_uses_rolling_duration(client, session, acc):
    collector = make_collector(client, date_range=DateRange(duration=timedelta(hours=24)))
    collector.gather(acc)

    params = session.calls_to(DatadisClient.CONSUMPTION_PATH)[0]["params"]
    assert params["startDate"] == "2022/01/09"
    assert params["endDate"] == "2022/01/10"


def test_login_failure_stops_cycle(client, session, acc):
    session.routes[DatadisClient.LOGIN_PATH] = respond(401, "", "Unauthorized")
    collector = make_collector(client)

    with pytest.raises(DatadisAuthError):
        collector.gather(acc)

    assert session.calls_to(DatadisClient.SUPPLIES_PATH) == []
    assert session.calls_to(DatadisClient.CONSUMPTION_PATH) == []
    assert acc.points == []


def test_login_retried_next_cycle(client, session, acc):
    session.routes[DatadisClient.LOGIN_PATH] = respond(500, "", "Server Error")
    collector = make_collector(client)

    with pytest.raises(DatadisAuthError):
        collector.gather(acc)

    session.routes[DatadisClient.LOGIN_PATH] = respond(text="t0k3n")
    assert collector.gather(acc) == 2
    assert len(session.calls_to(DatadisClient.LOGIN_PATH)) == 2


def test_token_reused_across_cycles(client, session, acc):
    collector = make_collector(client)
    collector.init()
    collector.gather(acc)
    collector.gather(acc)

    assert len(session.calls_to(DatadisClient.LOGIN_PATH)) == 1


def test_supplies_discovered_once(client, session, acc):
    collector = make_collector(client)
    collector.gather(acc)
    collector.gather(acc)

    assert len(session.calls_to(DatadisClient.SUPPLIES_PATH)) == 1
    assert [s.cups for s in collector.supplies] == ["1234"]


def test_empty_discovery_is_cached(client, session, acc):
    session.routes[DatadisClient.SUPPLIES_PATH] = respond(text="[]")
    collector = make_collector(client)

    assert collector.gather(acc) == 0
    assert collector.gather(acc) == 0
    assert len(session.calls_to(DatadisClient.SUPPLIES_PATH)) == 1
    assert session.calls_to(DatadisClient.CONSUMPTION_PATH) == []


def test_static_supplies_skip_discovery(client, session, acc):
    supplies = [Supply(cups="ES01", point_type=5, distributor_code="2")]
    collector = make_collector(client, supplies=supplies)

    collector.gather(acc)

    assert session.calls_to(DatadisClient.SUPPLIES_PATH) == []
    params = session.calls_to(DatadisClient.CONSUMPTION_PATH)[0]["params"]
    assert params["cups"] == "ES01"
    assert params["pointType"] == "5"
    assert params["distributorCode"] == "2"


def _one_failing_supply(session):
    def by_cups(params):
        if params["cups"] == "bad":
            return FakeResponse(500, "", "Server Error")
        return FakeResponse(200, SAMPLE_CONSUMPTION)

    session.routes[DatadisClient.CONSUMPTION_PATH] = by_cups
    return [Supply(cups="good"), Supply(cups="bad")]


def test_fetch_failure_discards_partial_data(client, session, acc):
    collector = make_collector(client, supplies=_one_failing_supply(session))

    with pytest.raises(DatadisFetchError):
        collector.gather(acc)

    assert acc.points == []
    assert len(session.calls_to(DatadisClient.CONSUMPTION_PATH)) == 2


def test_fetch_failure_emits_partial_data_when_enabled(client, session, acc):
    collector = make_collector(client, supplies=_one_failing_supply(session), emit_partial=True)

    with pytest.raises(DatadisFetchError):
        collector.gather(acc)

    assert len(acc.points) == 2


def test_parse_error_keeps_earlier_points(client, session, acc):
    session.routes[DatadisClient.CONSUMPTION_PATH] = respond(text="""[
        {"cups": "1", "date": "2021/12/28", "time": "01:00", "consumptionKWh": 0.1, "obtainMethod": "Real"},
        {"cups": "1", "date": "28-12-2021", "time": "02:00", "consumptionKWh": 0.2, "obtainMethod": "Real"},
        {"cups": "1", "date": "2021/12/28", "time": "03:00", "consumptionKWh": 0.3, "obtainMethod": "Real"}
    ]""")
    collector = make_collector(client, supplies=[Supply(cups="1")])

    with pytest.raises(ConsumptionParseError):
        collector.gather(acc)

    assert [p[1]["kwh"] for p in acc.points] == [0.1]


def test_accumulator_requires_both_methods():
    class PointsOnly(Accumulator):
        def add_fields(self, measurement, fields, tags, timestamp):
            pass

    with pytest.raises(TypeError):
        PointsOnly()


def test_zero_timeout_builds_client_without_timeout():
    collector = DatadisCollector(CollectorConfig(username="user", password="secret", http_timeout=0.0))
    assert collector._ensure_client().timeout is None
