"""Calendly REST API client.

Fetches scheduled events, invitees and event types, and builds the
scheduling links that carry a booking's correlation key back to us in
the webhook's tracking.utm_content.
"""

import uuid
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from bookings.config import ReconcilerSettings, get_settings
from bookings.models.errors import ErrorCode, ReconciliationError
from bookings.models.events import CalendlyEventType, CalendlyInvitee, CalendlyScheduledEvent
from bookings.services.ssm_service import SSMServiceError, get_ssm_service
from bookings.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


def new_correlation_key() -> str:
    """Generate the booking reference carried through a scheduling link."""
    return f"bk-{uuid.uuid4().hex[:16]}"


class CalendlyAPIError(ReconciliationError):
    """A Calendly API call failed."""

    def __init__(self, details: dict[str, Any] | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(ErrorCode.CALENDLY_API_ERROR, details)


class CalendlyClient:
    """Thin synchronous client for the Calendly v2 API."""

    def __init__(
        self,
        api_token: str | None = None,
        *,
        settings: ReconcilerSettings | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_token: Personal access token. Defaults to the SSM secret
                calendly/api_token.
            settings: Process settings. Defaults to get_settings().
            transport: Optional httpx transport (tests use MockTransport).
        """
        self._settings = settings or get_settings()
        if api_token is None:
            try:
                api_token = get_ssm_service().get_parameter(
                    self._settings.secret_path("calendly/api_token")
                )
            except SSMServiceError as e:
                raise CalendlyAPIError({"reason": str(e)}) from e
        self._client = httpx.Client(
            base_url=self._settings.calendly_api_base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "CalendlyClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _get_resource(self, path: str) -> dict[str, Any]:
        try:
            response = self._client.get(path)
        except httpx.HTTPError as e:
            logger.error("Calendly request to %s failed: %s", path, e)
            raise CalendlyAPIError({"path": path, "reason": str(e)}) from e

        if response.status_code >= 400:
            logger.error("Calendly returned %d for %s", response.status_code, path)
            raise CalendlyAPIError(
                {"path": path, "status_code": response.status_code},
                status_code=response.status_code,
            )
        resource: dict[str, Any] = response.json().get("resource", {})
        return resource

    def get_scheduled_event(self, event_uuid: str) -> CalendlyScheduledEvent:
        """Fetch a scheduled event by UUID."""
        resource = self._get_resource(f"/scheduled_events/{event_uuid}")
        return CalendlyScheduledEvent.model_validate(resource)

    def get_invitee(self, event_uuid: str, invitee_uuid: str) -> CalendlyInvitee:
        """Fetch one invitee of a scheduled event."""
        resource = self._get_resource(f"/scheduled_events/{event_uuid}/invitees/{invitee_uuid}")
        return CalendlyInvitee.model_validate(resource)

    def get_event_type(self, event_type_uuid: str) -> CalendlyEventType:
        """Fetch an event type (a builder's session type on Calendly)."""
        resource = self._get_resource(f"/event_types/{event_type_uuid}")
        return CalendlyEventType.model_validate(resource)

    def build_scheduling_link(
        self,
        scheduling_url: str,
        correlation_key: str,
        *,
        session_type_id: str | None = None,
        client_id: str | None = None,
        builder_id: str | None = None,
    ) -> str:
        """Append tracking parameters to an event type's scheduling URL.

        utm_content carries booking_ref and the optional reference ids as a
        query string; the webhook normalizer parses it back.
        """
        content: dict[str, str] = {"booking_ref": correlation_key}
        for name, value in (
            ("session_type_id", session_type_id),
            ("client_id", client_id),
            ("builder_id", builder_id),
        ):
            if value:
                content[name] = value

        params = {
            "utm_source": self._settings.tracking_utm_source,
            "utm_campaign": "booking",
            "utm_content": urlencode(content),
        }
        scheme, netloc, path, query, fragment = urlsplit(scheduling_url)
        query = f"{query}&{urlencode(params)}" if query else urlencode(params)
        return urlunsplit((scheme, netloc, path, query, fragment))

    def scheduling_link_for_event_type(
        self,
        event_type_uuid: str,
        correlation_key: str,
        *,
        session_type_id: str | None = None,
        client_id: str | None = None,
        builder_id: str | None = None,
    ) -> tuple[CalendlyEventType, str]:
        """Fetch an event type and build its tracked scheduling link.

        Raises:
            CalendlyAPIError: If the event type cannot be fetched or
                cannot be scheduled.
        """
        event_type = self.get_event_type(event_type_uuid)
        if not event_type.scheduling_url or event_type.active is False:
            logger.warning("Event type %s cannot be scheduled", event_type_uuid)
            raise CalendlyAPIError(
                {"event_type": event_type_uuid, "reason": "event type is not schedulable"}
            )

        link = self.build_scheduling_link(
            event_type.scheduling_url,
            correlation_key,
            session_type_id=session_type_id,
            client_id=client_id,
            builder_id=builder_id,
        )
        logger.info(
            "Built scheduling link for event type %s (booking_ref=%s)",
            event_type_uuid,
            correlation_key,
        )
        return event_type, link
