"""Mock implementations of secret providers and vault clients.

These mocks implement the provider protocols and the Azure Key Vault client
surface in memory, allowing tests to run without network access.
"""

from tests.mocks.secret_mocks import (
    FailingSecretProvider,
    FakeClock,
    InMemorySecretProvider,
    InMemorySyncSecretProvider,
    InMemoryVersionedSecretProvider,
    MockAsyncSecretClient,
    MockSecretClient,
    MockSecretVersions,
    forbidden,
    too_many_requests,
)

__all__ = [
    # Providers
    "InMemorySecretProvider",
    "InMemorySyncSecretProvider",
    "InMemoryVersionedSecretProvider",
    "FailingSecretProvider",
    "FakeClock",
    # Azure Key Vault
    "MockSecretClient",
    "MockAsyncSecretClient",
    "MockSecretVersions",
    "too_many_requests",
    "forbidden",
]
