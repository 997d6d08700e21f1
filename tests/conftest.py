"""
Pytest configuration

Shared fixtures for adapter, key derivation and store tests. No test talks to
a real network: EVM calls are patched with AsyncMock and HTTP APIs are served
by httpx.MockTransport handlers.
"""
import json

import httpx
import pytest

from hodl.adapters.account import AccountBasedAdapter
from hodl.adapters.cell import CellBasedAdapter
from hodl.adapters.utxo import UtxoBasedAdapter
from hodl.config import get_network_config
from hodl.storage import EncryptedStore

# BIP39 test vector phrase
TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)
TEST_EVM_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
TEST_BTC_ADDRESS = "bc1qcr8te4kr609gcawutmrza0j4xv80jy8z306fyu"
SECOND_BTC_ADDRESS = "bc1qnjg0jd8228aq7egyzacy8cys3knf9xvrerkf9g"
RECIPIENT_EVM_ADDRESS = "0x000000000000000000000000000000000000dEaD"


@pytest.fixture
def mnemonic():
    return TEST_MNEMONIC


@pytest.fixture
def eth_config():
    return get_network_config('eth')


@pytest.fixture
def evm_adapter(eth_config):
    return AccountBasedAdapter(eth_config)


@pytest.fixture
def evm_account(evm_adapter, mnemonic):
    return evm_adapter.account_from_mnemonic(mnemonic)


class ApiRecorder:
    """Routes mock HTTP requests to per-path handlers and records them."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, method, path, handler):
        self.routes[(method, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for (method, path), handler in self.routes.items():
            if request.method == method and request.url.path.endswith(path):
                return handler(request)
        return httpx.Response(404, text="not found")

    def bodies(self, path):
        return [json.loads(r.content) for r in self.requests if r.url.path.endswith(path)]


@pytest.fixture
def api():
    return ApiRecorder()


@pytest.fixture
def btc_adapter(api):
    client = httpx.AsyncClient(base_url="https://esplora.test/api", transport=httpx.MockTransport(api))
    return UtxoBasedAdapter(get_network_config('btc'), client=client, fee_rate=10)


@pytest.fixture
def ton_adapter(api):
    client = httpx.AsyncClient(base_url="https://toncenter.test/api/v2", transport=httpx.MockTransport(api))
    return CellBasedAdapter(get_network_config('ton'), client=client, confirm_attempts=3, confirm_delay=0)


@pytest.fixture
def store(tmp_path):
    return EncryptedStore(directory=str(tmp_path), filename="store.json", encryption_key="test-passphrase")
