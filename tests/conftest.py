import pytest
from typer.testing import CliRunner
from typing import Dict, Iterable, List, Optional, Tuple

from keysync.domain.errors import RemoteOperationFailed
from keysync.domain.interfaces.api_key_client import ApiKeyClient
from keysync.domain.models.api_key import ApiKey
from keysync.domain.models.common import ApiKeyID, FORCED_SCOPE, SecretValue
from keysync.infrastructure.config.settings import clear_test_config
from keysync.infrastructure.resilience.api_retry import ApiRetryService


class FakeApiKeyClient(ApiKeyClient):
    """In-memory stand-in for SendGrid.

    Behaves like the real service: ids are assigned on create, the secret is
    only returned once, and reads always include the forced scope.
    """

    def __init__(self, secret: str = "SG.abc"):
        self.keys: Dict[str, Dict] = {}
        self.calls: List[Tuple[str, Dict]] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.secret = secret
        self.closed = False
        self._counter = 0

    def fail_next(self, endpoint: str, *errors: Exception) -> None:
        """Makes the next calls to endpoint raise the given errors, in order."""
        self.failures.setdefault(endpoint, []).extend(errors)

    def calls_to(self, endpoint: str) -> List[Dict]:
        return [kwargs for name, kwargs in self.calls if name == endpoint]

    def _enter(self, endpoint: str, **kwargs) -> None:
        self.calls.append((endpoint, kwargs))
        pending = self.failures.get(endpoint)
        if pending:
            raise pending.pop(0)

    def _get(self, key_id: str) -> Dict:
        if key_id not in self.keys:
            raise RemoteOperationFailed(f"API key {key_id} not found", 404)
        return self.keys[key_id]

    async def create_api_key(self, name: str, scopes: Iterable[str], on_behalf_of: Optional[str] = None) -> ApiKey:
        scopes = list(scopes)
        self._enter("create_api_key", name=name, scopes=scopes, on_behalf_of=on_behalf_of)
        self._counter += 1
        key_id = f"X{self._counter}"
        self.keys[key_id] = {"name": name, "scopes": scopes}
        return ApiKey(ApiKeyID(key_id), name, tuple(scopes), SecretValue(self.secret))

    async def read_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> ApiKey:
        self._enter("read_api_key", key_id=key_id, on_behalf_of=on_behalf_of)
        key = self._get(key_id)
        return ApiKey(key_id, key["name"], (FORCED_SCOPE,) + tuple(key["scopes"]))

    async def update_api_key(
        self,
        key_id: ApiKeyID,
        name: str,
        scopes: Optional[Iterable[str]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> ApiKey:
        scopes = None if scopes is None else list(scopes)
        self._enter("update_api_key", key_id=key_id, name=name, scopes=scopes, on_behalf_of=on_behalf_of)
        key = self._get(key_id)
        key["name"] = name
        if scopes is not None:
            key["scopes"] = scopes
        return ApiKey(key_id, name, tuple(key["scopes"]))

    async def delete_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> None:
        self._enter("delete_api_key", key_id=key_id, on_behalf_of=on_behalf_of)
        self._get(key_id)
        del self.keys[key_id]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_client():
    return FakeApiKeyClient()


@pytest.fixture
def sleeps():
    """Collects every delay the retry service asked to sleep for."""
    return []


@pytest.fixture
def retry_service(sleeps):
    """ApiRetryService that records waits instead of sleeping."""
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ApiRetryService(max_retries=3, initial_backoff_s=0.5, backoff_factor=2.0, sleep=fake_sleep)


@pytest.fixture(autouse=True)
def reset_test_config():
    yield
    clear_test_config()
