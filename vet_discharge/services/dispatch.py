"""
Delayed-Job Dispatch

Scheduled discharge emails and calls are stored first and delivered later:
the dispatcher asks a delayed-job service (QStash) to call our execution
endpoint at the scheduled time with the record's id.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx

from ..config import settings
from .exceptions import DispatchError

logger = logging.getLogger(__name__)


class JobDispatcher(ABC):
    """
    Schedules an HTTP callback for later delivery.
    """

    @abstractmethod
    async def schedule(self, destination_url: str, payload: Dict[str, Any], deliver_at: datetime) -> str:
        """
        Schedules `payload` to be POSTed to `destination_url` at `deliver_at`.

        Returns:
            The dispatcher's message id.

        Raises:
            DispatchError: The job could not be scheduled.
        """
        pass

    async def schedule_email_execution(self, email_id: str, deliver_at: datetime) -> str:
        return await self.schedule(settings.EMAIL_EXECUTION_URL, {"emailId": email_id}, deliver_at)

    async def schedule_call_execution(self, call_id: str, deliver_at: datetime) -> str:
        return await self.schedule(settings.CALL_EXECUTION_URL, {"callId": call_id}, deliver_at)


class QStashDispatcher(JobDispatcher):
    """
    Upstash QStash publisher. Delivery time is passed as the
    Upstash-Not-Before header (unix seconds).
    """

    def __init__(
        self,
        base_url: str = settings.QSTASH_URL,
        token: Optional[str] = settings.QSTASH_TOKEN,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    async def schedule(self, destination_url: str, payload: Dict[str, Any], deliver_at: datetime) -> str:
        if not self.token:
            raise DispatchError("QStash token is not configured")
        if not destination_url:
            raise DispatchError("No execution URL configured for the scheduled job")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Upstash-Not-Before": str(int(deliver_at.timestamp())),
        }
        url = f"{self.base_url}/v2/publish/{destination_url}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise DispatchError(
                f"QStash rejected the job: HTTP {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise DispatchError(f"QStash request failed: {e}") from e
        except ValueError as e:
            raise DispatchError(f"QStash response was not valid JSON: {e}") from e

        message_id = body.get("messageId") if isinstance(body, dict) else None
        if not message_id:
            raise DispatchError("QStash response did not include a messageId")

        logger.info(f"Scheduled job {message_id} for {deliver_at.isoformat()} -> {destination_url}")
        return message_id


@dataclass
class DispatchedJob:
    message_id: str
    destination_url: str
    payload: Dict[str, Any]
    deliver_at: datetime


@dataclass
class InMemoryJobDispatcher(JobDispatcher):
    """
    Records jobs instead of sending them, for testing/dev purposes.
    Set `fail_with` to make every schedule() call fail.
    """

    jobs: List[DispatchedJob] = field(default_factory=list)
    fail_with: Optional[str] = None

    async def schedule(self, destination_url: str, payload: Dict[str, Any], deliver_at: datetime) -> str:
        if self.fail_with:
            raise DispatchError(self.fail_with)
        job = DispatchedJob(
            message_id=f"msg_{uuid4().hex}",
            destination_url=destination_url,
            payload=dict(payload),
            deliver_at=deliver_at,
        )
        self.jobs.append(job)
        return job.message_id
