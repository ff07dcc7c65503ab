#!/usr/bin/env python3
"""
Vault CRD Operator - Main entry point for the Kopf-based operator.

This operator keeps Kubernetes secrets in sync with HashiCorp Vault:
- Secrets are created from Vault custom resources
- Short-lived credentials are refreshed periodically
- Failures are reported as Kubernetes events

Usage:
    python -m vault_crd.operator
    # Or with kopf directly:
    kopf run -m vault_crd.operator --all-namespaces

Environment Variables:
    VAULT_URL: Base URL of the Vault HTTP API
    VAULT_TOKEN: Token used for Vault requests
    REFRESH_INTERVAL_SECONDS: Fixed rate of the refresh scheduler
    REFRESH_INITIAL_DELAY_SECONDS: Delay before the first refresh pass
    VAULT_CRD_NAMESPACES: Comma-separated list of namespaces to watch
"""

import logging
import sys
from dataclasses import dataclass

import kopf
from kubernetes import client

# Import handler modules to register them with kopf
from vault_crd.handlers import vault as vault_handler  # noqa: F401
from vault_crd.observability.logging import setup_structured_logging
from vault_crd.observability.metrics import MetricsServer
from vault_crd.services.event_handler import EventHandler
from vault_crd.services.refresh import TypeRefreshFactory
from vault_crd.services.scheduler import RefreshScheduler
from vault_crd.settings import Settings
from vault_crd.settings import settings as operator_settings
from vault_crd.utils.events import EventNotification
from vault_crd.utils.kubernetes import VaultResourceLister, get_kubernetes_client
from vault_crd.utils.secret_store import SecretStore
from vault_crd.utils.vault_client import VaultClient


@dataclass
class Components:
    """Long-lived collaborators shared by the handlers and the scheduler."""

    vault_client: VaultClient
    secret_store: SecretStore
    event_notification: EventNotification
    refresh_factory: TypeRefreshFactory
    event_handler: EventHandler
    scheduler: RefreshScheduler


def build_components(
    settings: Settings, k8s_client: client.ApiClient | None = None
) -> Components:
    """Wire the operator's components from settings."""
    timeout = settings.request_timeout_seconds

    vault_client = VaultClient(
        base_url=settings.vault_url, token=settings.vault_token, timeout=timeout
    )
    secret_store = SecretStore(k8s_client, request_timeout=timeout)
    event_notification = EventNotification(k8s_client, request_timeout=timeout)
    refresh_factory = TypeRefreshFactory.create(
        vault_client, secret_store, refresh_margin=settings.refresh_margin
    )
    event_handler = EventHandler(refresh_factory, secret_store, event_notification)
    scheduler = RefreshScheduler(
        lister=VaultResourceLister(
            k8s_client,
            namespaces=settings.watched_namespaces,
            request_timeout=timeout,
        ),
        refresh_factory=refresh_factory,
        event_handler=event_handler,
        event_notification=event_notification,
        interval=settings.refresh_interval_seconds,
        initial_delay=settings.refresh_initial_delay_seconds,
    )
    return Components(
        vault_client=vault_client,
        secret_store=secret_store,
        event_notification=event_notification,
        refresh_factory=refresh_factory,
        event_handler=event_handler,
        scheduler=scheduler,
    )


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Wires the components into the kopf memo, starts the metrics server and
    starts the refresh scheduler.
    """
    logging.info("Starting Vault CRD Operator...")
    settings.watching.reconnect_backoff = 1.0
    settings.persistence.finalizer = "vault.koudingspawn.de/cleanup"

    components = build_components(operator_settings, get_kubernetes_client())
    memo.components = components
    memo.event_handler = components.event_handler

    logging.info(f"Using Vault at {operator_settings.vault_url}")

    metrics_server = MetricsServer(
        port=operator_settings.metrics_port, host=operator_settings.metrics_host
    )
    try:
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")
        memo.metrics_server = None

    if operator_settings.refresh_scheduler_enabled:
        components.scheduler.start()
    else:
        logging.info("Refresh scheduler DISABLED")


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the scheduler, the metrics server and the Vault client."""
    logging.info("Shutting down Vault CRD Operator...")

    components: Components | None = getattr(memo, "components", None)
    if components is not None:
        await components.scheduler.stop()
        await components.vault_client.close()

    metrics_server: MetricsServer | None = getattr(memo, "metrics_server", None)
    if metrics_server is not None:
        await metrics_server.stop()


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging and runs kopf cluster-wide or on the configured
    namespaces.
    """
    configure_logging()

    watched_namespaces = operator_settings.watched_namespaces
    try:
        if watched_namespaces:
            logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
            kopf.run(namespaces=watched_namespaces)
        else:
            logging.info("Watching all namespaces (cluster-wide mode)")
            kopf.run(clusterwide=True)
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Operator failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
