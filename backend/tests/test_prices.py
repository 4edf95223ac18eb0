import pytest
import requests

from predictoor.errors import OracleUnavailable
from predictoor.services.prices import (
    BinancePriceOracle, RandomWalkPriceOracle, StaticPriceOracle, build_price_oracle,
)


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.exc:
            raise self.exc
        return self.response


def test_binance_oracle_parses_ticker():
    session = FakeSession(FakeResponse({'symbol': 'BTCUSDT', 'price': '98123.45000000'}))
    oracle = BinancePriceOracle(session=session, timeout=2.0)
    assert oracle.current_value() == 98123.45
    assert oracle.snapshot_value() == 98123.45
    assert session.calls[0][1] == {'symbol': 'BTCUSDT'}
    assert session.calls[0][2] == 2.0


@pytest.mark.parametrize('session', [
    FakeSession(exc=requests.ConnectionError('down')),
    FakeSession(FakeResponse({}, status=500)),
    FakeSession(FakeResponse({'nope': 1})),
    FakeSession(FakeResponse({'price': 'abc'})),
    FakeSession(FakeResponse({'price': '0'})),
])
def test_binance_oracle_failures_are_oracle_unavailable(session):
    with pytest.raises(OracleUnavailable):
        BinancePriceOracle(session=session).snapshot_value()


def test_random_walk_stays_positive_and_moves():
    oracle = RandomWalkPriceOracle(start=100.0, step=25.0, seed=7)
    values = [oracle.current_value() for _ in range(200)]
    assert all(v > 0 for v in values)
    assert len(set(values)) > 1


def test_static_oracle_can_fail():
    oracle = StaticPriceOracle(42.0)
    assert oracle.snapshot_value() == 42.0
    oracle.fail = True
    with pytest.raises(OracleUnavailable):
        oracle.current_value()


def test_build_price_oracle_from_config():
    assert isinstance(build_price_oracle({'PRICE_ORACLE': 'binance'}), BinancePriceOracle)
    assert isinstance(build_price_oracle({'PRICE_ORACLE': 'random_walk'}), RandomWalkPriceOracle)
    assert build_price_oracle({'PRICE_ORACLE': 'static', 'RANDOM_WALK_START': 5}).current_value() == 5.0
    with pytest.raises(ValueError):
        build_price_oracle({'PRICE_ORACLE': 'carrier-pigeon'})
