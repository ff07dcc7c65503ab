"""
Scheduled refresh of managed secrets.

``RefreshScheduler`` runs a refresh pass at a fixed rate. Each pass lists
all Vault resources and, one binding at a time in listing order, asks the
binding's refresh strategy whether a refresh is due and delegates the
refresh to ``EventHandler.apply``.

A failing binding is logged, recorded as a MODIFICATION_FAILED event and
skipped; it never stops the pass. A pass that cannot list the Vault
resources at all raises ``ListingFailed`` and the next pass runs on
schedule.
"""

import asyncio
import logging
import time

from vault_crd.constants import ERROR_MODIFICATION_FAILED, SUCCESS_MODIFICATION
from vault_crd.errors import ListingFailed, OperatorError
from vault_crd.models.vault import VaultBinding
from vault_crd.observability.logging import generate_correlation_id, set_correlation_id
from vault_crd.observability.metrics import (
    LISTING_FAILURES,
    REFRESH_ERRORS,
    REFRESH_LAST_PASS_TIMESTAMP,
    REFRESH_PASS_DURATION,
    REFRESH_TOTAL,
)
from vault_crd.services.event_handler import EventHandler
from vault_crd.services.refresh import RefreshOutcome, RefreshResult, TypeRefreshFactory
from vault_crd.utils.events import EventNotification, EventType
from vault_crd.utils.kubernetes import VaultResourceLister

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Fixed-rate driver of refresh passes with an explicit start/stop lifecycle."""

    def __init__(
        self,
        lister: VaultResourceLister,
        refresh_factory: TypeRefreshFactory,
        event_handler: EventHandler,
        event_notification: EventNotification,
        interval: float,
        initial_delay: float = 0.0,
    ):
        """
        Initialize scheduler.

        Args:
            lister: Source of the Vault bindings
            refresh_factory: Registry of refresh strategies
            event_handler: Apply entry point shared with the kopf handlers
            event_notification: Recorder for failed refreshes
            interval: Seconds between the starts of two passes
            initial_delay: Seconds before the first pass
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if initial_delay < 0:
            raise ValueError("initial_delay must not be negative")

        self.lister = lister
        self.refresh_factory = refresh_factory
        self.event_handler = event_handler
        self.event_notification = event_notification
        self.interval = interval
        self.initial_delay = initial_delay

        self.passes = 0
        self.last_results: list[RefreshResult] = []
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="vault-crd-refresh-scheduler"
        )
        logger.info(
            f"Refresh scheduler started: interval={self.interval}s, "
            f"initial_delay={self.initial_delay}s"
        )

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Refresh scheduler stopped")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_run = loop.time() + self.initial_delay
        while True:
            await asyncio.sleep(max(0.0, next_run - loop.time()))
            next_run += self.interval
            try:
                await self.run_once()
            except ListingFailed as e:
                LISTING_FAILURES.inc()
                logger.error(f"Refresh pass aborted: {e}", exc_info=True)
            except Exception as e:
                logger.error(f"Refresh pass failed unexpectedly: {e}", exc_info=True)
            # An overrunning pass makes the next one start right away
            next_run = max(next_run, loop.time())

    async def run_once(self) -> list[RefreshResult]:
        """
        Run one refresh pass over all Vault bindings.

        Returns:
            One result per listed binding, in listing order

        Raises:
            ListingFailed: If the bindings cannot be listed
        """
        set_correlation_id(generate_correlation_id())
        start_time = time.time()
        logger.info("Start refresh of secrets")

        bindings = await self.lister.list_bindings()
        results = [await self._process_binding(binding) for binding in bindings]

        self.passes += 1
        self.last_results = results
        REFRESH_PASS_DURATION.observe(time.time() - start_time)
        REFRESH_LAST_PASS_TIMESTAMP.set(time.time())

        refreshed = sum(r.outcome == RefreshOutcome.REFRESHED for r in results)
        failed = sum(r.outcome == RefreshOutcome.FAILED for r in results)
        logger.info(
            f"Finished refresh of secrets: {len(results)} evaluated, "
            f"{refreshed} refreshed, {failed} failed"
        )
        return results

    async def _process_binding(self, binding: VaultBinding) -> RefreshResult:
        vault_type = str(binding.spec.type)
        try:
            strategy = self.refresh_factory.get(binding.spec.type)
            if await strategy.refresh_is_needed(binding):
                outcome = await self.event_handler.apply(binding)
            else:
                outcome = RefreshOutcome.NO_ACTION_NEEDED
        except Exception as e:
            return await self._record_failure(binding, e)

        REFRESH_TOTAL.labels(vault_type=vault_type, result=outcome.value).inc()
        if outcome == RefreshOutcome.REFRESHED:
            logger.info(f"Refreshed secret {binding}")
            await self._notify(
                EventType.MODIFICATION,
                SUCCESS_MODIFICATION.format(binding.spec.path),
                binding,
            )
        return RefreshResult(
            namespace=binding.namespace,
            name=binding.name,
            vault_type=vault_type,
            outcome=outcome,
        )

    async def _record_failure(
        self, binding: VaultBinding, error: Exception
    ) -> RefreshResult:
        vault_type = str(binding.spec.type)
        if isinstance(error, OperatorError):
            logger.info(
                f"Refresh of secret {binding.name} in namespace {binding.namespace} "
                f"failed with exception: {error}",
                exc_info=True,
            )
        else:
            logger.error(
                f"Refresh of secret {binding.name} in namespace {binding.namespace} "
                f"failed with unexpected exception: {error}",
                exc_info=True,
            )

        REFRESH_TOTAL.labels(
            vault_type=vault_type, result=RefreshOutcome.FAILED.value
        ).inc()
        REFRESH_ERRORS.labels(
            vault_type=vault_type, error_type=type(error).__name__
        ).inc()

        message = ERROR_MODIFICATION_FAILED.format(error)
        await self._notify(EventType.MODIFICATION_FAILED, message, binding)
        return RefreshResult(
            namespace=binding.namespace,
            name=binding.name,
            vault_type=vault_type,
            outcome=RefreshOutcome.FAILED,
            reason=str(error),
        )

    async def _notify(
        self, kind: EventType, message: str, binding: VaultBinding
    ) -> None:
        # Event recording must never end the pass for the remaining bindings
        try:
            await self.event_notification.store_new_event(kind, message, binding)
        except Exception as e:
            logger.warning(f"Could not record {kind.value} event for {binding}: {e}")
