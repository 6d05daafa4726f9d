from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Mapping

import pytest


def pytest_configure() -> None:
    """
    Ensure `src/` is on sys.path so tests can import `genflow`
    without requiring an editable install.
    """
    repo_root = Path(__file__).resolve().parents[1]
    src_root = repo_root / "src"
    sys.path.insert(0, str(src_root))


# The imports below need src/ on sys.path, so they happen inside fixtures.


@pytest.fixture
def node_registry():
    from genflow.core.node_types import NodeRegistry
    from genflow.nodes import register_all_nodes

    return register_all_nodes(NodeRegistry())


@pytest.fixture
def store():
    from genflow.storage import InMemoryStore

    return InMemoryStore()


@pytest.fixture
def ledger(store):
    from genflow.credits import CreditLedger

    return CreditLedger(store)


@pytest.fixture
def fake_provider():
    """
    Factory for scripted providers.

    Usage:
        provider = fake_provider("gemini", outputs={"output": "hi"})
        provider = fake_provider("gemini", error=ProviderError(...))
        provider = fake_provider("gemini", wait_for_abort=True)
    """
    from genflow.providers.base import Provider, ProviderExecuteOptions, ProviderOutput

    class FakeProvider(Provider):
        requires_api_key = False

        def __init__(
            self,
            provider_id: str,
            outputs: dict[str, Any] | None = None,
            error: Exception | None = None,
            credits_used: int | None = None,
            available: bool = True,
            wait_for_abort: bool = False,
        ):
            super().__init__()
            self.id = provider_id
            self.name = provider_id
            self.outputs = outputs if outputs is not None else {"output": f"from {provider_id}"}
            self.error = error
            self.credits_used = credits_used
            self.available = available
            self.wait_for_abort = wait_for_abort
            self.calls: list[dict[str, Any]] = []
            self.started = asyncio.Event()

        async def is_available(self) -> bool:
            return self.available and await super().is_available()

        async def generate(
            self,
            input: Mapping[str, Any],
            options: ProviderExecuteOptions,
        ) -> ProviderOutput:
            self.calls.append(dict(input))
            self.started.set()
            if self.wait_for_abort:
                await asyncio.sleep(3600)
            if self.error is not None:
                raise self.error
            return ProviderOutput(data=dict(self.outputs), credits_used=self.credits_used)

    return FakeProvider
