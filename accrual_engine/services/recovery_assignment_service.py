import logging
from typing import Optional

import httpx

from accrual_engine.core import Settings
from accrual_engine.core.exceptions import AssignmentServiceError

logger = logging.getLogger(__name__)


class RecoveryAssignmentService:
    """Client for the admin service that assigns a recovery officer to an overdue loan."""

    def __init__(self, base_url: Optional[str] = None, api_token: Optional[str] = None, timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or Settings.RECOVERY_ASSIGNMENT_URL or "").rstrip("/")
        self.api_token = api_token or Settings.RECOVERY_ASSIGNMENT_TOKEN
        self.timeout = timeout
        self.transport = transport

    async def assign_recovery_officer(self, loan_id: int) -> Optional[int]:
        """Request an assignment and return the assigned officer id (None if nobody is available)."""
        if not self.base_url:
            raise AssignmentServiceError("RECOVERY_ASSIGNMENT_URL is not configured")

        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/loans/{loan_id}/recovery-officer",
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssignmentServiceError(f"Recovery officer assignment failed for loan #{loan_id}: {e}") from e

        try:
            officer_id = response.json().get("officer_id")
        except ValueError:
            officer_id = None
        logger.info(f"Recovery officer {officer_id} assigned to loan #{loan_id}")
        return officer_id


recovery_assignment_service = RecoveryAssignmentService()
