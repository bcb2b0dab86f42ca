"""
user_context.py – Identity and last known location of the monitored user.

The holder is written by the login / start-monitoring flow and by location
updates, and read by the event recorder and the alert dispatcher whenever a
seizure is detected.  Omitted arguments fall back to fixed defaults that mean
"no known user / location" rather than an error.

``user_context`` is the process-wide instance; engines accept any holder so
concurrent sessions can each own one.
"""

import logging
import threading

from seizure_monitor.common.models import UserContext

logger = logging.getLogger(__name__)

DEFAULT_EMAIL = "default@user.com"
DEFAULT_LATITUDE = 55.4038
DEFAULT_LONGITUDE = 10.4024
DEFAULT_USER_ID = 1


class UserContextHolder:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._context = UserContext(
            user_id=DEFAULT_USER_ID,
            email=DEFAULT_EMAIL,
            latitude=DEFAULT_LATITUDE,
            longitude=DEFAULT_LONGITUDE,
        )

    def set_user_data(
        self,
        email: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        user_id: int | None = None,
    ) -> UserContext:
        """Overwrite every field; anything omitted takes its default."""
        context = UserContext(
            user_id=DEFAULT_USER_ID if user_id is None else user_id,
            email=DEFAULT_EMAIL if email is None else email,
            latitude=DEFAULT_LATITUDE if latitude is None else latitude,
            longitude=DEFAULT_LONGITUDE if longitude is None else longitude,
        )
        with self._lock:
            self._context = context
        logger.info(
            "User context set",
            extra={"user_id": context.user_id, "email": context.email},
        )
        return context

    def update_location(self, latitude: float, longitude: float) -> UserContext:
        """Replace the coordinates, keeping the current identity."""
        with self._lock:
            self._context = self._context.model_copy(
                update={"latitude": latitude, "longitude": longitude}
            )
            return self._context

    def get_user_data(self) -> UserContext:
        with self._lock:
            return self._context


# Process-wide holder – the default for engines that are not given their own.
user_context = UserContextHolder()
