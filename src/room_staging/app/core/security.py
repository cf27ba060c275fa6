import hashlib
import hmac
import logging
import time
from datetime import timedelta
from typing import Callable, Optional, Union
from urllib.parse import parse_qs, quote, urlencode, urlsplit

from room_staging.app.domain.common import Err, Ok, Result
from room_staging.app.domain.common.enums import FileOperation
from room_staging.app.domain.files.errors import (
    ACCESS_DENIED_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    AccessDetails,
    AccessFailure,
    FileServiceConfigurationError,
    FileServiceErrorCode,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_BUFFER = timedelta(minutes=30)


def now_ms() -> int:
    return int(time.time() * 1000)


class HmacUrlSigner:
    """
    Signs `{path}:{user}:{expires}` with HMAC-SHA256.

    `expires` is a unix timestamp in milliseconds; a URL is valid up to and
    including that instant.
    """

    def __init__(
        self,
        secret: Union[str, bytes],
        *,
        route_prefix: str = '/files',
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if not secret:
            raise FileServiceConfigurationError('FILE_SIGNING_SECRET must be set to sign file URLs')
        self._secret = secret.encode('utf-8') if isinstance(secret, str) else secret
        self._route_prefix = route_prefix.rstrip('/')
        self._clock = clock

    def signature(self, file_path: str, user_id: str, expires: Union[int, str]) -> str:
        payload = f'{file_path}:{user_id}:{expires}'
        return hmac.new(self._secret, payload.encode('utf-8'), hashlib.sha256).hexdigest()

    def sign_url(self, file_path: str, user_id: str, expires_at: int) -> str:
        query = urlencode({
            'userId': user_id,
            'expires': expires_at,
            'sig': self.signature(file_path, user_id, expires_at),
        })
        return f'{self._route_prefix}/{quote(file_path)}?{query}'

    def expires_at(self, ttl: timedelta, *, now: Optional[int] = None) -> int:
        now = self._clock() if now is None else now
        return now + int(ttl.total_seconds() * 1000)

    def verify(
        self,
        file_path: Optional[str],
        user_id: Optional[str],
        expires: Optional[str],
        signature: Optional[str],
        *,
        now: Optional[int] = None,
    ) -> Result[None, AccessFailure]:
        resource = file_path or ''
        if not (file_path and user_id and expires and signature):
            return Err(AccessFailure(
                code=FileServiceErrorCode.UNAUTHORIZED,
                message=UNAUTHORIZED_MESSAGE,
                details={'reason': 'Missing signature parameters'},
                access_details=AccessDetails(requested_operation=FileOperation.READ, resource=resource),
            ))

        try:
            expires_ms = int(expires)
        except ValueError:
            return Err(self._denied(resource, user_id, 'Invalid expiry'))

        now = self._clock() if now is None else now
        if now > expires_ms:
            return Err(self._denied(resource, user_id, 'URL has expired'))

        # the exact string that was signed, not its integer value
        expected = self.signature(file_path, user_id, expires)
        if not hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8')):
            logger.warning('Invalid file URL signature for %s (user %s)', file_path, user_id)
            return Err(self._denied(resource, user_id, 'Invalid signature'))
        return Ok(None)

    @staticmethod
    def _denied(resource: str, user_id: str, reason: str) -> AccessFailure:
        return AccessFailure(
            code=FileServiceErrorCode.ACCESS_DENIED,
            message=ACCESS_DENIED_MESSAGE,
            details={'reason': reason},
            user_id=user_id,
            access_details=AccessDetails(requested_operation=FileOperation.READ, resource=resource),
        )

    def is_url_expiring_soon(
        self, url: str, buffer: timedelta = DEFAULT_EXPIRY_BUFFER, *, now: Optional[int] = None
    ) -> bool:
        """True when the signed URL expires within `buffer` (or carries no usable expiry)."""
        values = parse_qs(urlsplit(url).query).get('expires')
        try:
            expires_ms = int(values[0]) if values else None
        except ValueError:
            expires_ms = None
        if expires_ms is None:
            return True
        now = self._clock() if now is None else now
        return expires_ms - now < buffer.total_seconds() * 1000
