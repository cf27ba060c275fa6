from room_staging.app.core.config import Settings, get_settings
from room_staging.app.core.deps import get_file_service, get_url_signer
from room_staging.app.core.security import HmacUrlSigner

__all__ = ['Settings',
           'get_settings',
           'get_file_service',
           'get_url_signer',
           'HmacUrlSigner']
