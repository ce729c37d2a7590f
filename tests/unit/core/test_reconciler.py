import pytest

from keysync.core.services.reconciler import ApiKeyReconciler
from keysync.domain.errors import (
    MaxRetryError,
    RateLimitedError,
    ReconcileError,
    RefreshFailedError,
    RemoteOperationFailed,
)
from keysync.domain.events.api_events import ResourceTransitioned
from keysync.domain.models.api_key import ApiKeyState, DesiredApiKey, ResourceStatus


@pytest.fixture
def events():
    return []


@pytest.fixture
def reconciler(fake_client, retry_service, events):
    return ApiKeyReconciler(client=fake_client, retry_service=retry_service, event_sink=events.append)


@pytest.mark.asyncio
async def test_create_then_read_filters_forced_scope(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    assert state.key_id == "X1"
    assert state.api_key == "SG.abc"
    assert state.name == "svc-key"
    assert state.scopes == frozenset({"mail.send"})
    assert state.status is ResourceStatus.CREATED
    assert [name for name, _ in fake_client.calls] == ["create_api_key", "read_api_key"]

    read_back = await reconciler.read(state)
    assert read_back.scopes == frozenset({"mail.send"})
    assert read_back.name == "svc-key"
    assert read_back.status is ResourceStatus.READ
    # Reads never return the secret; it is carried over from create
    assert read_back.api_key == "SG.abc"


@pytest.mark.asyncio
@pytest.mark.parametrize("scopes", [
    [],
    ["mail.send"],
    ["mail.send", "alerts.read", "mail.send"],
    ["templates.read", "alerts.read", "mail.batch.create"],
])
async def test_round_trip_yields_desired_scopes(reconciler: ApiKeyReconciler, scopes):
    state = await reconciler.create(DesiredApiKey.build("round-trip", scopes))
    assert state.scopes == frozenset(scopes)
    assert "2fa_required" not in state.scopes


@pytest.mark.asyncio
async def test_create_sends_sorted_unique_scopes(reconciler: ApiKeyReconciler, fake_client):
    await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send", "alerts.read", "mail.send"]))

    assert fake_client.calls_to("create_api_key")[0]["scopes"] == ["alerts.read", "mail.send"]


@pytest.mark.asyncio
async def test_create_requires_name(reconciler: ApiKeyReconciler, fake_client):
    with pytest.raises(ReconcileError):
        await reconciler.create(DesiredApiKey.build("", ["mail.send"]))
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_create_retries_rate_limited_calls(reconciler: ApiKeyReconciler, fake_client, sleeps):
    fake_client.fail_next("create_api_key", RateLimitedError(retry_after=2), RateLimitedError(retry_after=1))

    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    assert state.key_id == "X1"
    assert len(fake_client.calls_to("create_api_key")) == 3
    assert len(fake_client.keys) == 1
    assert sleeps == [2, 1]


@pytest.mark.asyncio
async def test_create_fails_when_rate_limit_persists(reconciler: ApiKeyReconciler, fake_client):
    fake_client.fail_next("create_api_key", *[RateLimitedError(retry_after=1) for _ in range(4)])

    with pytest.raises(MaxRetryError):
        await reconciler.create(DesiredApiKey.build("svc-key"))
    assert fake_client.keys == {}


@pytest.mark.asyncio
async def test_create_refresh_failure_keeps_id_and_secret(reconciler: ApiKeyReconciler, fake_client):
    fake_client.fail_next("read_api_key", RemoteOperationFailed("internal error", 500))

    with pytest.raises(RefreshFailedError) as exc_info:
        await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    assert exc_info.value.state.key_id == "X1"
    assert exc_info.value.state.api_key == "SG.abc"
    assert isinstance(exc_info.value.__cause__, RemoteOperationFailed)


@pytest.mark.asyncio
async def test_update_with_unchanged_scopes_omits_them(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    updated = await reconciler.update(state, DesiredApiKey.build("svc-key", ["mail.send"]))

    call = fake_client.calls_to("update_api_key")[0]
    assert call["name"] == "svc-key"
    assert call["scopes"] is None
    assert updated.scopes == frozenset({"mail.send"})
    assert updated.status is ResourceStatus.UPDATED


@pytest.mark.asyncio
async def test_update_with_changed_scopes_sends_all_of_them(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    updated = await reconciler.update(
        state, DesiredApiKey.build("svc-key", ["mail.send", "sender_verification_eligible"])
    )

    call = fake_client.calls_to("update_api_key")[0]
    assert call["scopes"] == ["mail.send", "sender_verification_eligible"]
    assert updated.scopes == frozenset({"mail.send", "sender_verification_eligible"})
    assert updated.api_key == "SG.abc"


@pytest.mark.asyncio
async def test_update_reordered_scopes_is_not_a_change(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["b.read", "a.read"]))

    await reconciler.update(state, DesiredApiKey.build("renamed", ["a.read", "b.read", "a.read"]))

    call = fake_client.calls_to("update_api_key")[0]
    assert call["scopes"] is None
    assert call["name"] == "renamed"
    assert fake_client.keys["X1"]["name"] == "renamed"


@pytest.mark.asyncio
async def test_update_refreshes_from_remote(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))
    # Someone changed the scopes out of band; the refresh must reflect it
    fake_client.keys["X1"]["scopes"] = ["mail.send", "alerts.read"]

    updated = await reconciler.update(state, DesiredApiKey.build("svc-key", ["mail.send"]))

    assert updated.scopes == frozenset({"mail.send", "alerts.read"})
    assert len(fake_client.calls_to("read_api_key")) == 2


@pytest.mark.asyncio
async def test_update_failure_leaves_state_untouched(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))
    fake_client.fail_next("update_api_key", RemoteOperationFailed("invalid scope", 400))

    with pytest.raises(RemoteOperationFailed):
        await reconciler.update(state, DesiredApiKey.build("svc-key", ["bogus"]))

    assert len(fake_client.calls_to("update_api_key")) == 1
    assert state.scopes == frozenset({"mail.send"})
    assert state.status is ResourceStatus.CREATED


@pytest.mark.asyncio
async def test_delete_then_read_fails(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    deleted = await reconciler.delete(state)

    assert deleted.status is ResourceStatus.DELETED
    assert deleted.api_key is None
    assert "X1" not in fake_client.keys

    with pytest.raises(RemoteOperationFailed) as exc_info:
        await reconciler.import_key("X1")
    assert exc_info.value.status_code == 404

    calls_before = len(fake_client.calls)
    with pytest.raises(RemoteOperationFailed) as exc_info:
        await reconciler.read(deleted)
    assert exc_info.value.status_code == 404
    with pytest.raises(RemoteOperationFailed):
        await reconciler.delete(deleted)
    assert len(fake_client.calls) == calls_before


@pytest.mark.asyncio
async def test_delete_non_retryable_failure(reconciler: ApiKeyReconciler, fake_client, sleeps):
    state = ApiKeyState(key_id="missing", name="svc-key", status=ResourceStatus.READ)

    with pytest.raises(RemoteOperationFailed):
        await reconciler.delete(state)
    assert len(fake_client.calls_to("delete_api_key")) == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_operations_require_an_id(reconciler: ApiKeyReconciler):
    with pytest.raises(ReconcileError):
        await reconciler.read(ApiKeyState())
    with pytest.raises(ReconcileError):
        await reconciler.update(ApiKeyState(), DesiredApiKey.build("svc-key"))


@pytest.mark.asyncio
async def test_on_behalf_of_is_passed_to_every_call(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"], on_behalf_of="subuser-a"))
    await reconciler.update(state, DesiredApiKey.build("svc-key", ["alerts.read"], on_behalf_of="subuser-a"))
    await reconciler.delete(state)

    assert state.on_behalf_of == "subuser-a"
    assert {kwargs["on_behalf_of"] for _, kwargs in fake_client.calls} == {"subuser-a"}


@pytest.mark.asyncio
async def test_update_acts_on_behalf_of_desired_subuser_only(reconciler: ApiKeyReconciler, fake_client):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"], on_behalf_of="subuser-a"))

    updated = await reconciler.update(state, DesiredApiKey.build("svc-key", ["mail.send"]))

    assert fake_client.calls_to("update_api_key")[0]["on_behalf_of"] is None
    assert updated.on_behalf_of is None


@pytest.mark.asyncio
async def test_empty_scope_names_are_dropped(reconciler: ApiKeyReconciler, fake_client):
    desired = DesiredApiKey.build("svc-key", ["", "mail.send", ""])

    assert desired.scopes == frozenset({"mail.send"})
    await reconciler.create(desired)
    assert fake_client.calls_to("create_api_key")[0]["scopes"] == ["mail.send"]


@pytest.mark.asyncio
async def test_import_has_no_secret(reconciler: ApiKeyReconciler):
    created = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))

    imported = await reconciler.import_key(created.key_id)

    assert imported.api_key is None
    assert imported.scopes == frozenset({"mail.send"})
    assert imported.status is ResourceStatus.READ


@pytest.mark.asyncio
async def test_reads_are_retried_by_default(reconciler: ApiKeyReconciler, fake_client):
    await reconciler.create(DesiredApiKey.build("svc-key"))
    fake_client.fail_next("read_api_key", RateLimitedError(retry_after=1))

    state = await reconciler.import_key("X1")

    assert state.name == "svc-key"


@pytest.mark.asyncio
async def test_reads_fail_fast_when_not_wrapped(fake_client, retry_service):
    reconciler = ApiKeyReconciler(client=fake_client, retry_service=retry_service, wrap_reads=False)
    await reconciler.create(DesiredApiKey.build("svc-key"))
    fake_client.fail_next("read_api_key", RateLimitedError(retry_after=1))

    with pytest.raises(RateLimitedError):
        await reconciler.import_key("X1")


@pytest.mark.asyncio
async def test_transitions_are_reported(reconciler: ApiKeyReconciler, events):
    state = await reconciler.create(DesiredApiKey.build("svc-key", ["mail.send"]))
    await reconciler.delete(state)

    transitions = [(e.from_status, e.to_status) for e in events if isinstance(e, ResourceTransitioned)]
    assert transitions == [("absent", "created"), ("created", "deleted")]
