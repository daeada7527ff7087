"""FastAPI application entry point for SpinWick.

Receives GitHub webhooks (label changes, new commits, closes and slash
commands) and provisioner state-change notifications, and drives the
lifecycle of the preview environments they describe. Webhooks are
acknowledged immediately; the work runs in background tasks.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .cloud.client import ProvisionerClient
from .config import SpinWickSettings, get_settings
from .cws.client import CustomerServiceClient
from .dispatcher import EventDispatcher
from .env_cache import EnvVarCache
from .events.emitter import EventSinkType, create_event_emitter
from .events.metrics import generate_metrics_output, get_metrics
from .github.client import GitHubAPIError, GitHubClient
from .github.comments import CommentReconciler
from .http import JSONAPIClient
from .images.builds import Builds, MockedBuilds
from .images.registry import DockerRegistryClient
from .kube.client import KubeClient
from .lifecycle.base import EnvironmentKind, LifecycleDependencies
from .lifecycle.bootstrap import MattermostInitializer
from .lifecycle.cloud import CloudStrategy
from .lifecycle.controller import LifecycleController
from .lifecycle.customer import CustomerServiceCloudStrategy
from .lifecycle.kubernetes import KubernetesStrategy
from .notifier import OperatorNotifier
from .state.waiter import PollingStateWaiter, StateWaiter, WebhookStateWaiter
from .webhook.channels import WebhookChannelRegistry
from .webhook.handler import WebhookHandler

logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: Optional[SpinWickSettings] = None
webhook_handler: Optional[WebhookHandler] = None
github_client: Optional[GitHubClient] = None
channel_registry: Optional[WebhookChannelRegistry] = None
dispatcher: Optional[EventDispatcher] = None
_clients: List[JSONAPIClient] = []
_started_at = time.monotonic()


def _configure_logging(cfg: SpinWickSettings) -> None:
    level = logging.DEBUG if cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger().setLevel(level)


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: SpinWickSettings) -> None:
    logger.info("SpinWick configuration:")
    logger.info(f"  GitHub Base URL: {cfg.github_base_url}")
    logger.info(f"  GitHub Token: {_redact_secret(cfg.github_token)}")
    logger.info(f"  GitHub Webhook Secret: {_redact_secret(cfg.github_webhook_secret)}")
    logger.info(f"  GitHub Username: {cfg.github_username}")
    logger.info(f"  Org: {cfg.org}")
    logger.info(f"  Provisioner URL: {cfg.provisioner_url}")
    logger.info(f"  Provisioner API Key: {_redact_secret(cfg.provisioner_api_key)}")
    logger.info(f"  DNS Base Domain: {cfg.dns_base_domain}")
    logger.info(f"  Docker Registry: {cfg.docker_registry_url}")
    logger.info(f"  CWS Public URL: {cfg.cws_public_url or '(disabled)'}")
    logger.info(f"  CWS API Key: {_redact_secret(cfg.cws_api_key)}")
    logger.info(f"  Kubernetes API: {cfg.kube_api_url or '(disabled)'}")
    logger.info(f"  Operator Webhook: {'set' if cfg.operator_webhook_url else '(disabled)'}")
    logger.info(f"  Build Override: {cfg.build_override or '(none)'}")
    logger.info(f"  State Waiter: {'polling' if cfg.use_polling_waiter else 'webhook'}")
    logger.info(f"  Local Testing: {cfg.local_testing}")
    logger.info(f"  Host: {cfg.host}")
    logger.info(f"  Port: {cfg.port}")


def _build_dispatcher(
    cfg: SpinWickSettings,
    gh_client: GitHubClient,
    registry: WebhookChannelRegistry,
) -> EventDispatcher:
    """Wire all lifecycle dependencies into an EventDispatcher."""
    provisioner = ProvisionerClient(cfg.provisioner_url, api_key=cfg.provisioner_api_key)
    notifier = OperatorNotifier(cfg.operator_webhook_url, footer=cfg.operator_webhook_footer)
    _clients.extend([provisioner, notifier])

    if cfg.build_override:
        builds: Builds = MockedBuilds(cfg.build_override)
    else:
        docker = DockerRegistryClient(
            cfg.docker_registry_url,
            username=cfg.docker_username,
            password=cfg.docker_password,
        )
        _clients.append(docker)
        builds = Builds(docker)

    cws = None
    if cfg.cws_public_url:
        cws = CustomerServiceClient(
            cfg.cws_public_url,
            cfg.cws_internal_url or cfg.cws_public_url,
            cfg.cws_api_key,
        )
        _clients.append(cws)

    kube = None
    if cfg.kube_api_url:
        kube = KubeClient(cfg.kube_api_url, token=cfg.kube_token, ca_path=cfg.kube_ca_path)
        _clients.append(kube)

    if cfg.use_polling_waiter:
        state_waiter: StateWaiter = PollingStateWaiter(provisioner)
    else:
        state_waiter = WebhookStateWaiter(registry)

    comments = CommentReconciler(
        gh_client,
        bot_username=cfg.github_username,
        label_messages=cfg.pr_labels,
        destroyed_message=cfg.destroyed_message,
        setup_failed_message=cfg.setup_failed_message,
    )
    env_cache = EnvVarCache()

    deps = LifecycleDependencies(
        settings=cfg,
        github=gh_client,
        comments=comments,
        provisioner=provisioner,
        builds=builds,
        state_waiter=state_waiter,
        env_cache=env_cache,
        cws=cws,
        kube=kube,
        initializer=MattermostInitializer(),
    )
    strategies = {
        EnvironmentKind.PLAIN_CLOUD: CloudStrategy(deps),
        EnvironmentKind.CUSTOMER_SERVICE_CLOUD: CustomerServiceCloudStrategy(deps),
        EnvironmentKind.KUBERNETES_NAMESPACE: KubernetesStrategy(deps),
    }

    metrics = get_metrics()
    metrics.bind_channel_registry(registry)

    controller = LifecycleController(
        strategies=strategies,
        github_client=gh_client,
        comments=comments,
        notifier=notifier,
        event_emitter=create_event_emitter([EventSinkType.LOGGING, EventSinkType.METRICS]),
        settings=cfg,
        env_cache=env_cache,
        metrics=metrics,
    )
    return EventDispatcher(
        controller=controller,
        github_client=gh_client,
        comments=comments,
        env_cache=env_cache,
        settings=cfg,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Dependency wiring for the dispatcher
    - Graceful shutdown and cleanup
    """
    global settings, webhook_handler, github_client, channel_registry, dispatcher

    settings = get_settings()
    _configure_logging(settings)
    logger.info("SpinWick starting up...")
    _log_configuration(settings)

    webhook_handler = WebhookHandler(secret=settings.github_webhook_secret)
    github_client = GitHubClient(token=settings.github_token, base_url=settings.github_base_url)
    _clients.append(github_client)
    channel_registry = WebhookChannelRegistry()
    dispatcher = _build_dispatcher(settings, github_client, channel_registry)

    logger.info("SpinWick started successfully")

    yield

    logger.info("SpinWick shutting down...")
    for client in _clients:
        await client.close()
    _clients.clear()
    logger.info("SpinWick shutdown complete")


app = FastAPI(
    title="SpinWick",
    description="Preview environments for pull requests",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def ping():
    return {"status": "ok", "uptime_seconds": round(time.monotonic() - _started_at, 1)}


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status plus the number of registered webhook channels and
        running background tasks.
    """
    return {
        "status": "healthy",
        "webhook_channels": len(channel_registry) if channel_registry is not None else 0,
        "pending_tasks": dispatcher.pending_tasks if dispatcher is not None else 0,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_metrics_output(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


async def _rate_limited() -> bool:
    """True when the GitHub token is too close to its limit to take work."""
    try:
        limits = await github_client.get_rate_limit()
    except GitHubAPIError as e:
        logger.warning("Unable to check GitHub rate limit", extra={"error": str(e)})
        return False
    if limits["remaining"] <= settings.github_token_reserve:
        logger.error(
            "GitHub rate limit reserve reached, rejecting webhook",
            extra={"remaining": limits["remaining"], "reset": limits["reset"]},
        )
        return True
    return False


@app.post("/github_event")
async def github_event(request: Request):
    """GitHub webhook receiver.

    Returns:
        202 once the event is accepted for background processing, 403 on
        a bad signature, 429 while rate limited, 501 for event types
        SpinWick does not handle.
    """
    if webhook_handler is None or dispatcher is None:
        logger.error("SpinWick not initialized")
        return JSONResponse({"status": "error", "message": "not initialized"}, status_code=503)

    if await _rate_limited():
        return JSONResponse({"status": "rate_limited"}, status_code=429)

    body = await request.body()
    if not webhook_handler.verify_signature(body, request.headers.get("X-Hub-Signature")):
        logger.warning("Rejected webhook with an invalid signature")
        return JSONResponse({"status": "forbidden"}, status_code=403)

    event_type = request.headers.get("X-GitHub-Event", "")
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"status": "invalid"}, status_code=400)

    if event_type == "ping":
        ping_event = webhook_handler.parse_ping_event(payload)
        logger.info("Ping received", extra={"hook_id": ping_event.hook_id if ping_event else None})
        return JSONResponse({"status": "accepted"}, status_code=202)

    if event_type == "pull_request":
        event = webhook_handler.parse_pull_request_event(payload)
        if event is not None and event.number != 0:
            dispatcher.spawn(
                dispatcher.handle_pull_request_event(event), name=event.pull_request.pr_id
            )
        return JSONResponse({"status": "accepted"}, status_code=202)

    if event_type == "issue_comment":
        comment_event = webhook_handler.parse_issue_comment_event(payload)
        if (
            comment_event is not None
            and comment_event.is_pull_request
            and comment_event.is_slash_command
        ):
            dispatcher.spawn(
                dispatcher.handle_issue_comment_event(comment_event),
                name=f"{comment_event.repository}#{comment_event.issue_number}",
            )
        return JSONResponse({"status": "accepted"}, status_code=202)

    logger.info("Unhandled GitHub event", extra={"event_type": event_type})
    return JSONResponse({"status": "not_implemented"}, status_code=501)


@app.post("/cloud_webhooks")
async def cloud_webhooks(request: Request):
    """Provisioner state-change receiver; fans out to waiting channels."""
    if webhook_handler is None or channel_registry is None:
        return JSONResponse({"status": "error", "message": "not initialized"}, status_code=503)

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"status": "invalid"}, status_code=400)

    payload = webhook_handler.parse_cloud_payload(body)
    if payload is None:
        return JSONResponse({"status": "invalid"}, status_code=400)

    channel_registry.dispatch(payload)
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.spinwick.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
