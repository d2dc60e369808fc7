"""Google Calendar client for creating published event entries."""
import logging
import time
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from processor.errors import CollaboratorError

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """Creates single events and recurring series through the Calendar v3 API."""

    API_BASE_URL = "https://www.googleapis.com/calendar/v3"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    MAX_ERROR_LENGTH = 200
    # Refresh access tokens this many seconds before Google says they expire
    TOKEN_EXPIRY_MARGIN = 60
    DEFAULT_TOKEN_LIFETIME = 3600

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        time_zone: str,
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the calendar client.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            refresh_token: Long-lived OAuth refresh token
            time_zone: IANA zone the local start/end values are expressed in
            timeout: HTTP request timeout in seconds (default: 30)
            session: Optional requests session
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.time_zone = time_zone
        self.timeout = timeout
        self.session = session or requests.Session()
        self._access_token = None
        self._access_token_expires_at = 0.0

    def create_entry(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        description: str = '',
        location: str = ''
    ) -> str:
        """
        Create a single calendar entry.

        Args:
            calendar_id: Target calendar
            title: Event title
            start: Naive local start
            end: Naive local end
            description: Event description
            location: Building spaces, shown as the event location

        Returns:
            ID of the created entry

        Raises:
            CollaboratorError: If the request fails for any reason
        """
        body = self._event_body(title, start, end, description, location)
        return self._insert_event(calendar_id, body)

    def create_series(
        self,
        calendar_id: str,
        title: str,
        start: datetime,
        end: datetime,
        rule: str,
        description: str = '',
        location: str = ''
    ) -> str:
        """
        Create a recurring series described by an RRULE body.

        Args:
            calendar_id: Target calendar
            title: Event title
            start: Naive local start of the first occurrence
            end: Naive local end of the first occurrence
            rule: Rule without the "RRULE:" prefix
            description: Event description
            location: Building spaces, shown as the event location

        Returns:
            ID of the created series

        Raises:
            CollaboratorError: If the request fails for any reason
        """
        body = self._event_body(title, start, end, description, location)
        body['recurrence'] = [f"RRULE:{rule}"]
        return self._insert_event(calendar_id, body)

    def _event_body(
        self,
        title: str,
        start: datetime,
        end: datetime,
        description: str,
        location: str
    ) -> dict:
        body = {
            'summary': title,
            'start': {
                'dateTime': start.isoformat(timespec='seconds'),
                'timeZone': self.time_zone
            },
            'end': {
                'dateTime': end.isoformat(timespec='seconds'),
                'timeZone': self.time_zone
            },
        }
        if description:
            body['description'] = description
        if location:
            body['location'] = location
        return body

    def _insert_event(self, calendar_id: str, body: dict) -> str:
        url = f"{self.API_BASE_URL}/calendars/{quote(calendar_id, safe='')}/events"
        headers = {'Authorization': f"Bearer {self._get_access_token()}"}

        logger.info(f"Creating calendar entry '{body.get('summary')}' on {calendar_id}")
        try:
            response = self.session.post(
                url,
                json=body,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise CollaboratorError(f"Calendar request failed: {e}") from e

        if not response.ok:
            raise CollaboratorError(
                f"Calendar API error ({response.status_code}): "
                f"{self._error_message(response)}",
                status_code=response.status_code
            )

        payload = self._json_object(response, "Calendar API")
        event_id = payload.get('id')
        if not event_id:
            raise CollaboratorError("Calendar API response is missing an event id")

        logger.info(f"Created calendar entry {event_id} on {calendar_id}")
        return event_id

    def _get_access_token(self) -> str:
        """
        Return a cached access token, refreshing it when close to expiry.

        Raises:
            CollaboratorError: If credentials are missing or the refresh fails
        """
        if self._access_token and time.time() < self._access_token_expires_at:
            return self._access_token

        if not (self.client_id and self.client_secret and self.refresh_token):
            raise CollaboratorError("Google Calendar credentials are not configured")

        try:
            response = self.session.post(
                self.TOKEN_URL,
                data={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'refresh_token': self.refresh_token,
                    'grant_type': 'refresh_token'
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise CollaboratorError(f"OAuth token refresh failed: {e}") from e

        if not response.ok:
            raise CollaboratorError(
                f"OAuth token refresh failed ({response.status_code}): "
                f"{self._error_message(response)}",
                status_code=response.status_code
            )

        payload = self._json_object(response, "OAuth token endpoint")
        access_token = payload.get('access_token')
        if not access_token:
            raise CollaboratorError("OAuth token response is missing access_token")

        try:
            expires_in = int(payload.get('expires_in') or self.DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            logger.warning(
                f"Ignoring invalid expires_in {payload.get('expires_in')!r} in token response"
            )
            expires_in = self.DEFAULT_TOKEN_LIFETIME
        self._access_token = access_token
        self._access_token_expires_at = (
            time.time() + max(expires_in - self.TOKEN_EXPIRY_MARGIN, 30)
        )
        logger.debug("Refreshed Google OAuth access token")
        return access_token

    def _json_object(self, response: requests.Response, source: str) -> dict:
        try:
            payload = response.json()
        except ValueError as e:
            raise CollaboratorError(f"{source} returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise CollaboratorError(
                f"{source} returned {type(payload).__name__} instead of a JSON object"
            )
        return payload

    def _error_message(self, response: requests.Response) -> str:
        """
        Extract a short readable message from an error response.

        Google APIs answer with JSON errors, but proxies and load balancers
        in front of them return HTML pages.

        Args:
            response: Failed HTTP response

        Returns:
            Message of at most MAX_ERROR_LENGTH characters
        """
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            error = payload.get('error')
            if isinstance(error, dict) and error.get('message'):
                return self._squash(error['message'])
            if isinstance(error, str) and error.strip():
                description = payload.get('error_description')
                return self._squash(f"{error}: {description}" if description else error)

        text = response.text or ''
        if 'html' in response.headers.get('Content-Type', '').lower():
            text = BeautifulSoup(text, 'html.parser').get_text(' ', strip=True)

        return self._squash(text) or 'Request failed without an error payload'

    def _squash(self, text: str) -> str:
        return ' '.join(str(text).split())[:self.MAX_ERROR_LENGTH]
