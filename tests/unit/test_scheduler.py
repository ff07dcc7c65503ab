"""Unit tests for the refresh scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from urllib3.exceptions import MaxRetryError

from tests.unit.conftest import make_binding, make_secret
from vault_crd.constants import COMPARE_ANNOTATION
from vault_crd.errors import BackendUnreachable, ListingFailed, SecretNotAccessible
from vault_crd.models.vault_api import VaultResponse
from vault_crd.services.event_handler import EventHandler
from vault_crd.services.refresh import RefreshOutcome, TypeRefreshFactory
from vault_crd.services.scheduler import RefreshScheduler
from vault_crd.utils.events import EventNotification, EventType


@pytest.fixture
def lister():
    lister = MagicMock()
    lister.list_bindings = AsyncMock(return_value=[])
    return lister


@pytest.fixture
def strategy():
    strategy = MagicMock()
    strategy.refresh_is_needed = AsyncMock(return_value=True)
    return strategy


@pytest.fixture
def event_handler():
    handler = MagicMock()
    handler.apply = AsyncMock(return_value=RefreshOutcome.REFRESHED)
    return handler


@pytest.fixture
def scheduler(lister, strategy, event_handler, event_notification) -> RefreshScheduler:
    factory = MagicMock()
    factory.get.return_value = strategy
    return RefreshScheduler(
        lister=lister,
        refresh_factory=factory,
        event_handler=event_handler,
        event_notification=event_notification,
        interval=60,
    )


def event_kinds(event_notification) -> list[EventType]:
    return [call.args[0] for call in event_notification.store_new_event.call_args_list]


class TestSchedulerInit:
    """Test scheduler construction."""

    @pytest.mark.parametrize("interval", [0, -1])
    def test_rejects_non_positive_interval(self, interval):
        with pytest.raises(ValueError, match="interval"):
            RefreshScheduler(MagicMock(), MagicMock(), MagicMock(), MagicMock(), interval)

    def test_rejects_negative_initial_delay(self):
        with pytest.raises(ValueError, match="initial_delay"):
            RefreshScheduler(
                MagicMock(), MagicMock(), MagicMock(), MagicMock(), 1, initial_delay=-1
            )


class TestRunOnce:
    """Test a single refresh pass."""

    @pytest.mark.asyncio
    async def test_empty_listing(self, scheduler, event_handler, event_notification):
        results = await scheduler.run_once()

        assert results == []
        assert scheduler.passes == 1
        event_handler.apply.assert_not_called()
        event_notification.store_new_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_fresh_bindings_cause_no_calls(
        self, scheduler, lister, strategy, event_handler, event_notification
    ):
        lister.list_bindings.return_value = [make_binding(name="a"), make_binding(name="b")]
        strategy.refresh_is_needed.return_value = False

        results = await scheduler.run_once()

        assert [r.outcome for r in results] == [RefreshOutcome.NO_ACTION_NEEDED] * 2
        event_handler.apply.assert_not_called()
        event_notification.store_new_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_binding_is_applied_and_recorded(
        self, scheduler, lister, event_handler, event_notification
    ):
        binding = make_binding()
        lister.list_bindings.return_value = [binding]

        results = await scheduler.run_once()

        assert results[0].outcome == RefreshOutcome.REFRESHED
        event_handler.apply.assert_awaited_once_with(binding)
        assert event_kinds(event_notification) == [EventType.MODIFICATION]

    @pytest.mark.asyncio
    async def test_failing_binding_does_not_stop_pass(
        self, scheduler, lister, event_handler, event_notification
    ):
        """A failure is recorded and the remaining bindings are still processed."""
        bindings = [make_binding(name=name) for name in ("a", "b", "c")]
        lister.list_bindings.return_value = bindings
        error = SecretNotAccessible("b", "default", "Vault error: HTTP 500")
        event_handler.apply.side_effect = [
            RefreshOutcome.REFRESHED,
            error,
            RefreshOutcome.REFRESHED,
        ]

        results = await scheduler.run_once()

        assert [r.name for r in results] == ["a", "b", "c"]
        assert [r.outcome for r in results] == [
            RefreshOutcome.REFRESHED,
            RefreshOutcome.FAILED,
            RefreshOutcome.REFRESHED,
        ]
        assert results[1].reason == str(error)
        assert event_kinds(event_notification) == [
            EventType.MODIFICATION,
            EventType.MODIFICATION_FAILED,
            EventType.MODIFICATION,
        ]
        failed_call = event_notification.store_new_event.call_args_list[1]
        assert failed_call.args == (
            EventType.MODIFICATION_FAILED,
            f"Modification of secret failed with exception {error}",
            bindings[1],
        )

    @pytest.mark.asyncio
    async def test_failing_staleness_check_is_isolated(
        self, scheduler, lister, strategy, event_handler, event_notification
    ):
        lister.list_bindings.return_value = [make_binding(name="a"), make_binding(name="b")]
        strategy.refresh_is_needed.side_effect = [RuntimeError("unexpected"), True]

        results = await scheduler.run_once()

        assert [r.outcome for r in results] == [
            RefreshOutcome.FAILED,
            RefreshOutcome.REFRESHED,
        ]
        event_handler.apply.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unreachable_event_api_does_not_stop_pass(
        self, lister, strategy, event_handler
    ):
        """Bindings after a failed event write are still processed."""
        mock_v1 = MagicMock()
        mock_v1.create_namespaced_event.side_effect = MaxRetryError(
            None, "/api/v1/namespaces/default/events", "timed out"
        )
        notification = EventNotification(request_timeout=5.0)
        notification._v1 = mock_v1
        factory = MagicMock()
        factory.get.return_value = strategy
        scheduler = RefreshScheduler(
            lister=lister,
            refresh_factory=factory,
            event_handler=event_handler,
            event_notification=notification,
            interval=60,
        )
        lister.list_bindings.return_value = [make_binding(name="a"), make_binding(name="b")]
        event_handler.apply.side_effect = [
            SecretNotAccessible("a", "default", "Vault error: HTTP 500"),
            RefreshOutcome.REFRESHED,
        ]

        results = await scheduler.run_once()

        assert [r.outcome for r in results] == [
            RefreshOutcome.FAILED,
            RefreshOutcome.REFRESHED,
        ]
        assert event_handler.apply.await_count == 2
        assert mock_v1.create_namespaced_event.call_count == 2

    @pytest.mark.asyncio
    async def test_raising_notifier_does_not_stop_pass(
        self, scheduler, lister, event_handler, event_notification
    ):
        lister.list_bindings.return_value = [make_binding(name="a"), make_binding(name="b")]
        event_notification.store_new_event.side_effect = RuntimeError("event sink down")

        results = await scheduler.run_once()

        assert [r.outcome for r in results] == [RefreshOutcome.REFRESHED] * 2
        assert event_handler.apply.await_count == 2

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, scheduler, lister):
        lister.list_bindings.side_effect = ListingFailed("Failed to list")

        with pytest.raises(ListingFailed):
            await scheduler.run_once()

        assert scheduler.passes == 0


class TestPkiRefreshPass:
    """Test a pass wired with the real strategies and apply entry point."""

    @pytest.mark.asyncio
    async def test_stale_certificate_is_reissued(
        self, lister, vault_client, secret_store, event_notification, clock
    ):
        factory = TypeRefreshFactory.create(vault_client, secret_store, clock=clock)
        scheduler = RefreshScheduler(
            lister=lister,
            refresh_factory=factory,
            event_handler=EventHandler(factory, secret_store, event_notification),
            event_notification=event_notification,
            interval=60,
        )
        stale = make_binding(name="stale")
        fresh = make_binding(name="fresh")
        lister.list_bindings.return_value = [stale, fresh]

        async def get_secret(name, namespace):
            stale_at = "12:00" if name == "stale" else "13:00"
            compare = f"2024-03-01T{stale_at}:00Z"
            return make_secret({COMPARE_ANNOTATION: compare})

        secret_store.get_secret.side_effect = get_secret
        vault_client.issue_certificate.return_value = VaultResponse(
            data={"certificate": "cert", "private_key": "key"}
        )

        results = await scheduler.run_once()

        assert [r.outcome for r in results] == [
            RefreshOutcome.REFRESHED,
            RefreshOutcome.NO_ACTION_NEEDED,
        ]
        vault_client.issue_certificate.assert_awaited_once()
        assert secret_store.write_secret.call_args.kwargs["name"] == "stale"
        assert event_kinds(event_notification) == [EventType.MODIFICATION]

    @pytest.mark.asyncio
    async def test_vault_error_leaves_secret_untouched(
        self, lister, vault_client, secret_store, event_notification, clock
    ):
        """A non-200 answer from Vault is recorded and nothing is written."""
        factory = TypeRefreshFactory.create(vault_client, secret_store, clock=clock)
        scheduler = RefreshScheduler(
            lister=lister,
            refresh_factory=factory,
            event_handler=EventHandler(factory, secret_store, event_notification),
            event_notification=event_notification,
            interval=60,
        )
        binding = make_binding()
        lister.list_bindings.return_value = [binding]
        vault_client.issue_certificate.side_effect = BackendUnreachable(
            "POST testpki/issue/testrole failed", status_code=500
        )

        results = await scheduler.run_once()

        assert len(results) == 1
        assert results[0].outcome == RefreshOutcome.FAILED
        assert (results[0].namespace, results[0].name) == ("default", "pki")
        assert "HTTP 500" in results[0].reason
        vault_client.issue_certificate.assert_awaited_once()
        secret_store.write_secret.assert_not_called()
        assert event_kinds(event_notification) == [EventType.MODIFICATION_FAILED]
        _, message, recorded = event_notification.store_new_event.call_args.args
        assert message.startswith("Modification of secret failed with exception ")
        assert "HTTP 500" in message
        assert str(recorded) == "default/pki"


class TestSchedulerLifecycle:
    """Test the periodic task."""

    @pytest.mark.asyncio
    async def test_runs_at_fixed_rate(self, scheduler):
        scheduler.interval = 0.05

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.13)
        await scheduler.stop()

        assert scheduler.passes >= 2
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_initial_delay_postpones_first_pass(self, scheduler, lister):
        scheduler.initial_delay = 10

        scheduler.start()
        await asyncio.sleep(0.02)
        await scheduler.stop()

        lister.list_bindings.assert_not_called()

    @pytest.mark.asyncio
    async def test_listing_failure_does_not_stop_schedule(self, scheduler, lister):
        lister.list_bindings.side_effect = ListingFailed("Failed to list")
        scheduler.interval = 0.05

        scheduler.start()
        await asyncio.sleep(0.13)
        await scheduler.stop()

        assert lister.list_bindings.await_count >= 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, scheduler):
        scheduler.start()
        task = scheduler._task
        scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()
        assert not scheduler.running
