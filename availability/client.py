"""
HTTP clients for the availability API.

AvailabilityManager is used by schedule editors: it loads a therapist's
weekly availability and saves it to both the weekly and the legacy template
endpoints. AvailabilityClient is used by booking flows to list open days and
slots and to book one.
"""

import calendar
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from .services import transform_to_legacy_format
from .types import WeeklyAvailability, default_weekly_availability

logger = logging.getLogger(__name__)

WEEKLY_PATH = '/api/therapist/availability/weekly/'
TEMPLATE_PATH = '/api/therapist/availability/template/'
DAYS_PATH = '/api/availability/days/'
SLOTS_PATH = '/api/availability/slots/'
BOOK_PATH = '/api/sessions/book/'


class AvailabilityError(RuntimeError):
    """Raised when the availability API responds with an error or is unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


@dataclass
class LoadResult:
    availability: WeeklyAvailability
    from_server: bool
    error: Optional[str] = None


@dataclass
class SaveResult:
    """
    Outcome of a dual write.

    legacy_synced is False when the weekly store was updated but the legacy
    template store was not; the two stores then disagree until the next save.
    """
    weekly: Dict[str, Any]
    legacy_synced: bool
    legacy_error: Optional[str] = None


class _ApiClient:
    """Shared request handling for the availability API."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._base_url = base_url.rstrip('/')
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._transport = transport

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.request(
                    method,
                    url,
                    headers=self._headers,
                    json=json_body,
                    params=params,
                )
        except httpx.TransportError as exc:
            logger.error("Availability API unreachable for %s %s: %s", method, path, exc)
            raise AvailabilityError(f"Availability API unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {'error': response.text[:500]}
        if not isinstance(body, dict):
            body = {'data': body}

        if response.status_code >= 400 or body.get('success') is False:
            message = body.get('error') or body.get('message') or f"HTTP {response.status_code}"
            logger.error(
                "Availability API error %s for %s %s: %s",
                response.status_code, method, path, message,
            )
            raise AvailabilityError(message, status_code=response.status_code, code=body.get('code'))

        return body


class AvailabilityManager(_ApiClient):
    """Load and save one therapist's weekly availability."""

    def __init__(self, therapist_id: int, base_url: str, **kwargs):
        super().__init__(base_url, **kwargs)
        self.therapist_id = therapist_id

    def load(self) -> LoadResult:
        """
        Fetch availability from the template endpoint.

        Falls back to the default Monday to Friday schedule when the request
        fails or returns no availability; from_server tells the two apart.
        """
        try:
            body = self._request('GET', TEMPLATE_PATH, params={'therapist_id': self.therapist_id})
            payload = body.get('availability')
            if payload:
                return LoadResult(WeeklyAvailability.from_dict(payload), from_server=True)
            error = 'No availability returned'
        except (AvailabilityError, ValueError) as exc:
            error = str(exc)

        logger.warning(
            "Could not load availability for therapist %s, using default: %s",
            self.therapist_id, error,
        )
        return LoadResult(default_weekly_availability(), from_server=False, error=error)

    def save(self, availability: WeeklyAvailability) -> SaveResult:
        """
        Save to the weekly endpoint, then mirror to the legacy template endpoint.

        Raises:
            AvailabilityError: If the weekly save fails. A legacy failure is not
                raised; it is logged and reported on the result.
        """
        weekly = self._request('POST', WEEKLY_PATH, json_body={'availability': availability.to_dict()})

        try:
            self._request('POST', TEMPLATE_PATH, json_body={
                'therapist_id': self.therapist_id,
                'templates': transform_to_legacy_format(availability),
            })
        except AvailabilityError as exc:
            logger.warning(
                "Weekly availability saved but legacy templates not updated for therapist %s: %s",
                self.therapist_id, exc,
            )
            return SaveResult(weekly=weekly, legacy_synced=False, legacy_error=str(exc))

        return SaveResult(weekly=weekly, legacy_synced=True)


class AvailabilityClient(_ApiClient):
    """Read-side availability queries used while booking."""

    @staticmethod
    def _cache_buster() -> int:
        return int(time.time() * 1000)

    def get_available_days(self, therapist_id: int, month: int, year: int) -> List[str]:
        """ISO dates in the month with at least one open slot; [] on error."""
        last_day = calendar.monthrange(year, month)[1]
        params = {
            'therapist_id': therapist_id,
            'start_date': date(year, month, 1).isoformat(),
            'end_date': date(year, month, last_day).isoformat(),
            '_t': self._cache_buster(),
        }
        try:
            return self._request('GET', DAYS_PATH, params=params).get('availableDays', [])
        except AvailabilityError as exc:
            logger.warning("Failed to fetch available days for therapist %s: %s", therapist_id, exc)
            return []

    def get_time_slots(self, therapist_id: int, day: date) -> List[dict]:
        """Open slots for one date; [] on error."""
        params = {
            'therapist_id': therapist_id,
            'date': day.isoformat(),
            '_t': self._cache_buster(),
        }
        try:
            return self._request('GET', SLOTS_PATH, params=params).get('slots', [])
        except AvailabilityError as exc:
            logger.warning("Failed to fetch slots for therapist %s on %s: %s", therapist_id, day, exc)
            return []

    def book_slot(self, therapist_id: int, slot: dict, notes: str = '') -> dict:
        """
        Book a slot returned by get_time_slots.

        Returns:
            {'success': True, 'session': {...}} or {'success': False, 'error': ...}
        """
        try:
            body = self._request('POST', BOOK_PATH, json_body={
                'therapist_id': therapist_id,
                'session_date': slot['date'],
                'start_time': slot['start_time'],
                'duration_minutes': slot.get('session_duration', 60),
                'session_type': slot.get('session_type', 'individual'),
                'notes': notes,
            })
        except AvailabilityError as exc:
            return {'success': False, 'error': exc.message, 'code': exc.code}
        return {'success': True, 'session': body.get('session')}
