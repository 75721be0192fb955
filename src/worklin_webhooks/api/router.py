"""FastAPI router for webhook API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from worklin_webhooks import __version__
from worklin_webhooks.models import DeliveryAttemptLog, WebhookSubscription
from worklin_webhooks.webhooks import WebhookService

from .schemas import (
    DeliveryLogListResponse,
    DeliveryLogResponse,
    HealthResponse,
    RetryWorkerResponse,
    RotateSecretRequest,
    SecretResponse,
    TriggerEventRequest,
    TriggerEventResponse,
    WebhookCreateRequest,
    WebhookListResponse,
    WebhookResponse,
    WebhookSecretResponse,
    WebhookUpdateRequest,
)

router = APIRouter()

# Service instance (set by app lifespan)
_service: WebhookService | None = None


def set_service(service: WebhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> WebhookService:
    """Dependency to get the WebhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[WebhookService, Depends(get_service)]
LimitQuery = Annotated[int, Query(ge=1, le=1000, description="Maximum records to return")]


def _webhook_response(webhook: WebhookSubscription) -> WebhookResponse:
    return WebhookResponse.model_validate(webhook.model_dump(mode="json"))


def _logs_response(logs: list[DeliveryAttemptLog]) -> DeliveryLogListResponse:
    return DeliveryLogListResponse(
        logs=[DeliveryLogResponse.model_validate(log.model_dump(mode="json")) for log in logs],
        count=len(logs),
    )


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    if _service is None:
        return HealthResponse(status="unhealthy", version=__version__, storage_connected=False)
    return HealthResponse(
        status="healthy",
        version=__version__,
        storage_connected=True,
        retry_worker_running=_service.scheduler.is_running,
    )


@router.post(
    "/workspaces/{workspace_id}/webhooks",
    response_model=WebhookSecretResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    workspace_id: str,
    request: WebhookCreateRequest,
    service: ServiceDep,
) -> WebhookSecretResponse:
    """Register a webhook.

    The response is the only place the generated secret is returned
    besides secret rotation.
    """
    webhook = await service.create_webhook(workspace_id, request.model_dump(mode="json"))
    return WebhookSecretResponse.model_validate(webhook.model_dump(mode="json"))


@router.get(
    "/workspaces/{workspace_id}/webhooks",
    response_model=WebhookListResponse,
    tags=["webhooks"],
)
async def list_webhooks(workspace_id: str, service: ServiceDep) -> WebhookListResponse:
    """List a workspace's webhooks, newest first."""
    webhooks = await service.list_webhooks(workspace_id)
    return WebhookListResponse(
        webhooks=[_webhook_response(w) for w in webhooks],
        count=len(webhooks),
    )


@router.get(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}",
    response_model=WebhookResponse,
    tags=["webhooks"],
)
async def get_webhook(workspace_id: str, webhook_id: str, service: ServiceDep) -> WebhookResponse:
    """Get one webhook."""
    return _webhook_response(await service.get_webhook(workspace_id, webhook_id))


@router.patch(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}",
    response_model=WebhookResponse,
    tags=["webhooks"],
)
async def update_webhook(
    workspace_id: str,
    webhook_id: str,
    request: WebhookUpdateRequest,
    service: ServiceDep,
) -> WebhookResponse:
    """Partially update a webhook. Only fields present in the body change."""
    webhook = await service.update_webhook(
        workspace_id,
        webhook_id,
        request.model_dump(exclude_unset=True),
    )
    return _webhook_response(webhook)


@router.delete(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["webhooks"],
)
async def delete_webhook(workspace_id: str, webhook_id: str, service: ServiceDep) -> Response:
    """Delete a webhook. Pending retries for it are dropped."""
    await service.delete_webhook(workspace_id, webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}/rotate-secret",
    response_model=WebhookSecretResponse,
    tags=["webhooks"],
)
async def rotate_secret(
    workspace_id: str,
    webhook_id: str,
    service: ServiceDep,
    request: RotateSecretRequest | None = None,
) -> WebhookSecretResponse:
    """Replace a webhook's signing secret."""
    secret = request.secret if request is not None else None
    webhook = await service.rotate_webhook_secret(workspace_id, webhook_id, secret)
    return WebhookSecretResponse.model_validate(webhook.model_dump(mode="json"))


@router.post(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}/test",
    response_model=DeliveryLogResponse,
    tags=["webhooks"],
)
async def send_test_webhook(
    workspace_id: str,
    webhook_id: str,
    service: ServiceDep,
) -> DeliveryLogResponse:
    """Send a webhook.test event and return the attempt record."""
    log = await service.send_test_webhook(workspace_id, webhook_id)
    return DeliveryLogResponse.model_validate(log.model_dump(mode="json"))


@router.get(
    "/workspaces/{workspace_id}/webhooks/{webhook_id}/logs",
    response_model=DeliveryLogListResponse,
    tags=["deliveries"],
)
async def get_webhook_logs(
    workspace_id: str,
    webhook_id: str,
    service: ServiceDep,
    limit: LimitQuery = 100,
) -> DeliveryLogListResponse:
    """Recent delivery attempts for one webhook."""
    return _logs_response(await service.get_webhook_logs(workspace_id, webhook_id, limit))


@router.get(
    "/workspaces/{workspace_id}/logs",
    response_model=DeliveryLogListResponse,
    tags=["deliveries"],
)
async def get_delivery_logs(
    workspace_id: str,
    service: ServiceDep,
    limit: LimitQuery = 100,
) -> DeliveryLogListResponse:
    """Recent delivery attempts in a workspace."""
    return _logs_response(await service.get_delivery_logs(workspace_id, limit))


@router.get(
    "/workspaces/{workspace_id}/deliveries/{delivery_id}",
    response_model=DeliveryLogListResponse,
    tags=["deliveries"],
)
async def get_delivery_lineage(
    workspace_id: str,
    delivery_id: str,
    service: ServiceDep,
) -> DeliveryLogListResponse:
    """Every attempt of one delivery, in attempt order."""
    return _logs_response(await service.get_delivery_lineage(workspace_id, delivery_id))


@router.post(
    "/workspaces/{workspace_id}/events",
    response_model=TriggerEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["events"],
)
async def trigger_event(
    workspace_id: str,
    request: TriggerEventRequest,
    service: ServiceDep,
) -> TriggerEventResponse:
    """Trigger webhooks for an event. Delivery happens in the background."""
    await service.trigger_webhooks(workspace_id, request.event, request.data)
    return TriggerEventResponse(accepted=True, event=request.event, workspace_id=workspace_id)


@router.post("/secrets", response_model=SecretResponse, tags=["webhooks"])
async def generate_secret(service: ServiceDep) -> SecretResponse:
    """Generate a secret for a new webhook."""
    return SecretResponse(secret=service.generate_webhook_secret())


@router.post(
    "/workspaces/{workspace_id}/retry-worker/start",
    response_model=RetryWorkerResponse,
    tags=["system"],
)
async def start_retry_worker(workspace_id: str, service: ServiceDep) -> RetryWorkerResponse:
    """Start the retry worker for a workspace."""
    await service.start_retry_worker(workspace_id)
    return RetryWorkerResponse(
        running=service.scheduler.is_running,
        workspace_id=service.scheduler.workspace_id,
    )


@router.post("/retry-worker/stop", response_model=RetryWorkerResponse, tags=["system"])
async def stop_retry_worker(service: ServiceDep) -> RetryWorkerResponse:
    """Stop the retry worker."""
    await service.stop_retry_worker()
    return RetryWorkerResponse(running=service.scheduler.is_running)
