import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from withdrawflow.client import FlowClient, FlowClientOptions
from withdrawflow.core.config import Config
from withdrawflow.core.types import now_ms
from withdrawflow.messaging import InMemoryMessageChannel


@pytest.fixture
def make_id():
    """Deterministic id generator: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def _balance_response() -> dict:
    return {
        "balances": [
            {
                "asset": "BTC",
                "amount": 0.5,
                "amountInFiat": 0,
                "networks": [
                    {
                        "id": "bitcoin",
                        "name": "bitcoin",
                        "displayName": "Bitcoin",
                        "minWithdrawal": "0.0001",
                        "assetName": "BTC",
                        "addressRegex": None,
                    }
                ],
            },
            {"asset": "ETH", "amount": "2", "networks": []},
        ]
    }


def _quote_response(quote_id: str = "quote-1", expires_in_ms: int = 60_000) -> dict:
    return {
        "id": quote_id,
        "asset": "BTC",
        "amountNoFee": 0.01,
        "estimatedFee": "0.0001",
        "estimatedTotal": "0.0101",
        "amountWithFeeInFiat": "650.00",
        "amountNoFeeInFiat": "643.50",
        "estimatedFeeInFiat": "6.50",
        "expiresAt": now_ms() + expires_in_ms,
    }


@pytest.fixture
def balance_payload():
    return _balance_response()


@pytest.fixture
def make_quote_payload():
    """Factory for quotation responses: make_quote_payload(quote_id, expires_in_ms)."""
    return _quote_response


@pytest.fixture
def channel():
    return InMemoryMessageChannel()


@pytest.fixture
def close_window():
    return MagicMock(name="close_window")


@pytest.fixture
def collaborators(close_window):
    """AsyncMock collaborators with happy-path defaults."""
    mocks = MagicMock()
    mocks.list_exchanges = AsyncMock(return_value=[{"id": "coinbase", "status": "live"}])
    mocks.fetch_withdrawable_balance = AsyncMock(return_value=_balance_response())
    mocks.request_quotation = AsyncMock(return_value=_quote_response())
    mocks.execute_withdrawal = AsyncMock(return_value={"status": "pending"})
    mocks.get_wallet = AsyncMock(return_value=None)
    mocks.ping_wallet = AsyncMock(return_value={"status": "SUCCESS"})
    mocks.open_oauth_window = MagicMock(return_value=close_window)
    mocks.on_wallet_connected = MagicMock()
    return mocks


@pytest.fixture
def config():
    return Config(org_id="org-1", project_id="proj-1", retry_transient_reads=False)


@pytest.fixture
def client(collaborators, channel, make_id, config):
    flow_client = FlowClient(
        FlowClientOptions(
            org_id="org-1",
            project_id="proj-1",
            fetch_withdrawable_balance=collaborators.fetch_withdrawable_balance,
            request_quotation=collaborators.request_quotation,
            execute_withdrawal=collaborators.execute_withdrawal,
            open_oauth_window=collaborators.open_oauth_window,
            list_exchanges=collaborators.list_exchanges,
            get_wallet=collaborators.get_wallet,
            ping_wallet=collaborators.ping_wallet,
            channel=channel,
            make_id=make_id,
            on_wallet_connected=collaborators.on_wallet_connected,
            config=config,
        )
    )
    yield flow_client
    flow_client.dispose()
