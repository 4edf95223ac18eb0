"""Price oracles.

The engine pulls prices through two calls: ``current_value()`` for the
opening price of a round and ``snapshot_value()`` for the authoritative close
price. Both raise ``OracleUnavailable`` on failure; callers decide whether
that is retryable.
"""

import logging
import math
import random
import threading
from abc import ABC, abstractmethod

import requests

from predictoor.errors import OracleUnavailable

logger = logging.getLogger(__name__)


class PriceOracle(ABC):

    @abstractmethod
    def current_value(self) -> float:
        ...

    def snapshot_value(self) -> float:
        return self.current_value()


class BinancePriceOracle(PriceOracle):
    """Latest trade price from the public Binance ticker endpoint."""

    def __init__(self, symbol='BTCUSDT', url='https://api.binance.com/api/v3/ticker/price',
                 timeout=5.0, session=None):
        self.symbol = symbol
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def current_value(self) -> float:
        try:
            response = self._session.get(self.url, params={'symbol': self.symbol}, timeout=self.timeout)
            response.raise_for_status()
            price = float(response.json()['price'])
        except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
            logger.warning(f"[oracle-error] symbol={self.symbol} error={exc}")
            raise OracleUnavailable(f"Failed to fetch {self.symbol} price") from exc
        if not math.isfinite(price) or price <= 0:
            raise OracleUnavailable(f"Invalid {self.symbol} price {price!r}")
        return price


class RandomWalkPriceOracle(PriceOracle):
    """In-memory random walk used for local mode when no feed is reachable."""

    def __init__(self, start=98000.0, step=25.0, seed=None):
        self._price = float(start)
        self._step = float(step)
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def current_value(self) -> float:
        with self._lock:
            self._price = max(self._step, self._price + (self._rng.random() - 0.5) * 2 * self._step)
            return self._price


class StaticPriceOracle(PriceOracle):
    """Fixed prices, optionally failing on demand. Handy for tests and demos."""

    def __init__(self, price=100000.0):
        self.price = price
        self.fail = False

    def current_value(self) -> float:
        if self.fail or self.price is None:
            raise OracleUnavailable('Static price feed is down')
        return float(self.price)


def build_price_oracle(config) -> PriceOracle:
    kind = (config.get('PRICE_ORACLE') or 'binance').lower()
    if kind == 'binance':
        return BinancePriceOracle(
            symbol=config.get('PRICE_SYMBOL', 'BTCUSDT'),
            url=config.get('BINANCE_TICKER_URL', 'https://api.binance.com/api/v3/ticker/price'),
            timeout=float(config.get('ORACLE_TIMEOUT_SEC', 5)),
        )
    if kind == 'random_walk':
        return RandomWalkPriceOracle(
            start=float(config.get('RANDOM_WALK_START', 98000)),
            step=float(config.get('RANDOM_WALK_STEP', 25)),
        )
    if kind == 'static':
        return StaticPriceOracle(float(config.get('RANDOM_WALK_START', 98000)))
    raise ValueError(f"Unknown PRICE_ORACLE {kind!r}")
