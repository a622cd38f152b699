from __future__ import annotations

from collections.abc import Callable

import pytest

from yieldledger.adapters.simulated import SimulatedAdapter
from yieldledger.domain.models import AdapterKind
from yieldledger.ledger import Ledger
from yieldledger.logging.event_sink import MemoryEventSink
from yieldledger.tokens import MAX_ALLOWANCE, InMemoryToken

CONTROLLER = "allocator"


@pytest.fixture
def usdc() -> InMemoryToken:
    return InMemoryToken(symbol="USDC")


@pytest.fixture
def events() -> MemoryEventSink:
    return MemoryEventSink()


@pytest.fixture
def ledger(events: MemoryEventSink) -> Ledger:
    return Ledger(controller=CONTROLLER, event_sink=events)


@pytest.fixture
def fund(ledger: Ledger) -> Callable[[InMemoryToken, str, int], None]:
    def _fund(token: InMemoryToken, holder: str, amount: int) -> None:
        token.mint(holder, amount)
        token.approve(holder, ledger.account, MAX_ALLOWANCE)

    return _fund


@pytest.fixture
def make_adapter(ledger: Ledger) -> Callable[..., SimulatedAdapter]:
    def _make(
        token: InMemoryToken,
        adapter_id: str,
        kind: AdapterKind = AdapterKind.LENDING,
        **kwargs: object,
    ) -> SimulatedAdapter:
        return SimulatedAdapter(
            adapter_id=adapter_id,
            token=token,
            ledger_account=ledger.account,
            kind=kind,
            **kwargs,
        )

    return _make


@pytest.fixture
def usdc_pool(
    ledger: Ledger,
    usdc: InMemoryToken,
    make_adapter: Callable[..., SimulatedAdapter],
) -> tuple[int, SimulatedAdapter]:
    asset_id = ledger.register_asset(CONTROLLER, usdc)
    adapter = make_adapter(usdc, "aave-usdc")
    ledger.add_strategy(CONTROLLER, asset_id, adapter)
    return asset_id, adapter
