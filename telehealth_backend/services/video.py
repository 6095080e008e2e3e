import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from telehealth_backend.core import config
from telehealth_backend.core.errors import RoomProvisioningError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VideoRoom:
    url: str
    name: str


class DailyRoomProvisioner:
    """Creates private Daily.co rooms for booked sessions."""

    def __init__(self, api_key: str | None = None, base_url: str | None = None, timeout: float | None = None):
        self.api_key = api_key if api_key is not None else config.DAILY_API_KEY
        self.base_url = (base_url or config.DAILY_API_URL).rstrip('/')
        self.timeout = timeout or config.DAILY_TIMEOUT_SECONDS

    @staticmethod
    def room_name_for(session_id: int) -> str:
        return f'therapy-session-{session_id}'

    def build_room_payload(
        self,
        session_id: int,
        participant_names: list[str],
        duration_minutes: int,
        scheduled_time: datetime,
    ) -> dict:
        if scheduled_time.tzinfo is None:
            scheduled_time = scheduled_time.astimezone()
        expires_at = scheduled_time + timedelta(minutes=duration_minutes + config.ROOM_EXPIRY_GRACE_MINUTES)

        properties = {
            'exp': int(expires_at.timestamp()),
            'nbf': int((scheduled_time - timedelta(minutes=config.JOIN_WINDOW_MINUTES)).timestamp()),
            'eject_at_room_exp': True,
            'max_participants': max(2, len(participant_names)),
            'enable_chat': True,
        }
        if config.DAILY_ENABLE_RECORDING:
            properties['enable_recording'] = 'cloud'

        return {
            'name': self.room_name_for(session_id),
            'privacy': 'private',
            'properties': properties,
        }

    def create_room(
        self,
        session_id: int,
        participant_names: list[str],
        duration_minutes: int,
        scheduled_time: datetime,
    ) -> VideoRoom:
        if not self.api_key:
            raise RoomProvisioningError('DAILY_API_KEY is not configured.')

        payload = self.build_room_payload(session_id, participant_names, duration_minutes, scheduled_time)

        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f'{self.base_url}/rooms',
                    json=payload,
                    headers={'Authorization': f'Bearer {self.api_key}'},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error('Daily room creation failed with status %s', exc.response.status_code)
            raise RoomProvisioningError(f'Daily API returned {exc.response.status_code}.') from exc
        except httpx.HTTPError as exc:
            raise RoomProvisioningError(f'Daily API request failed: {exc}') from exc

        try:
            return VideoRoom(url=body['url'], name=body['name'])
        except (KeyError, TypeError) as exc:
            raise RoomProvisioningError('Daily API response is missing the room url or name.') from exc
