import json
import logging

import requests

from ..auth.sessions import SessionStore
from ..core.settings import settings
from ..core.vpn import VpnCipher
from ..models.UserInfo import UserInfo, UserInfoResponse

logger = logging.getLogger(__name__)


class UserInfoError(Exception):
    """The user center could not be reached or returned an unusable answer."""


class UserService:
    """
    Fetches the detailed profile from the user center using the caller's
    already-authenticated session.
    """

    def __init__(self, store: SessionStore, vpn: VpnCipher, userinfo_url: str = settings.UC_USERINFO_URL):
        self.store = store
        self.vpn = vpn
        self.userinfo_url = userinfo_url

    def fetch_user_info(self, identity: str) -> UserInfo:
        session = self.store.require(identity)
        try:
            response = session.transport.get(self.vpn.to_vpn_url(self.userinfo_url))
        except requests.RequestException as e:
            raise UserInfoError(f"Fetch failed: {e}") from e

        if response.status_code != 200:
            raise UserInfoError(f"Fetch failed: {response.status_code}")
        try:
            parsed = UserInfoResponse.model_validate(json.loads(response.text))
        except ValueError as e:
            logger.warning("Unparsable user info for %s", identity)
            raise UserInfoError("Parse failed") from e

        if str(parsed.code) != "0" or parsed.data is None:
            raise UserInfoError(f"Error code: {parsed.code}")
        return parsed.data
