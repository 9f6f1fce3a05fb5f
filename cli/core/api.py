import requests
from typing import Optional, Tuple
from . import config


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {resp.status_code}"


def api_login(
    username: str,
    password: str,
    captcha: Optional[str] = None,
    execution: Optional[str] = None,
    client_id: Optional[str] = None,
) -> Tuple[Optional[dict], Optional[str]]:
    """
    Logs in through the backend.
    Returns (response body, None) on success or (None, error message).
    When the SSO wants a captcha the body is the challenge: it carries
    "captcha" and "client_id" instead of a token.
    """
    url = f"{config.BASE_URL}/api/v1/auth/login"
    data = {"username": username, "password": password}
    if captcha is not None:
        data.update({"captcha": captcha, "execution": execution, "client_id": client_id})

    try:
        resp = requests.post(url, json=data, timeout=config.LOGIN_TIMEOUT)
    except requests.RequestException as e:
        return None, f"Backend unreachable: {e}"
    if resp.status_code == 422:
        try:
            challenge = resp.json()
        except ValueError:
            challenge = None
        if isinstance(challenge, dict) and "captcha" in challenge:
            return challenge, None
        return None, _error_message(resp)
    if resp.status_code != 200:
        return None, _error_message(resp)
    return resp.json(), None


def api_get_captcha(captcha_id: str, client_id: Optional[str] = None) -> Optional[bytes]:
    url = f"{config.BASE_URL}/api/v1/auth/captcha/{captcha_id}"
    params = {"client_id": client_id} if client_id else None
    try:
        resp = requests.get(url, params=params, timeout=config.DEFAULT_TIMEOUT)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return resp.content


def api_logout(token: str) -> bool:
    url = f"{config.BASE_URL}/api/v1/auth/logout"
    headers = {"Authorization": f"Bearer {token}"}

    try:
        resp = requests.post(url, headers=headers, timeout=config.DEFAULT_TIMEOUT)
    except requests.RequestException:
        return False
    return resp.status_code == 200


def api_get_status(token: str) -> Optional[dict]:
    """
    Gets the backend session status for the token.
    """
    url = f"{config.BASE_URL}/api/v1/auth/status"
    headers = {"Authorization": f"Bearer {token}"}
    try:
        resp = requests.get(url, headers=headers, timeout=config.DEFAULT_TIMEOUT)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return resp.json()


def api_get_user_info(token: str) -> Optional[dict]:
    url = f"{config.BASE_URL}/api/v1/user/info"
    headers = {"Authorization": f"Bearer {token}"}
    try:
        resp = requests.get(url, headers=headers, timeout=config.DEFAULT_TIMEOUT)
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None
    return resp.json()
