"""
WebVPN URL rewriting.

Internal campus hosts are reachable from outside only through the WebVPN
gateway, which expects the real hostname AES-encrypted inside its own path:

    https://<gateway>/<scheme[-port]>/<hex(iv)><hex(ciphertext)><path>[?query][#fragment]

The key and IV are the same fixed 16-character string for every call. This is
the gateway's wire format and it is NOT confidentiality-grade encryption: do
not reuse this cipher to protect anything.
"""
import logging
from typing import Optional
from urllib.parse import urlsplit

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .settings import settings

logger = logging.getLogger(__name__)

BLOCK_SIZE = 16
DEFAULT_PORTS = {"http": 80, "https": 443}


class VpnCipher:
    def __init__(self, key: str = "wrdvpnisthebest!", enabled: bool = False, vpn_host: str = "d.buaa.edu.cn"):
        key_bytes = key.encode("utf-8")
        if len(key_bytes) != BLOCK_SIZE:
            raise ValueError("VPN key must be exactly 16 bytes")
        self._key = key_bytes
        self._iv = key_bytes
        self.enabled = enabled
        self.vpn_host = vpn_host

    @classmethod
    def from_settings(cls) -> "VpnCipher":
        return cls(key=settings.VPN_KEY, enabled=settings.USE_VPN, vpn_host=settings.VPN_HOST)

    @property
    def iv_hex(self) -> str:
        return self._iv.hex()

    def _cipher(self, iv: bytes) -> Cipher:
        # AES/CFB (128-bit segments), no padding
        return Cipher(algorithms.AES(self._key), modes.CFB(iv))

    def encrypt(self, text: str) -> str:
        """
        Encrypts a hostname into the gateway's hex form.

        The plaintext is padded with ASCII '0' up to a block boundary; the
        ciphertext of the padding is computed but cut from the output.
        """
        plain = text.encode("utf-8")
        padded = plain + b"0" * ((BLOCK_SIZE - len(plain) % BLOCK_SIZE) % BLOCK_SIZE)
        encryptor = self._cipher(self._iv).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return self.iv_hex + ciphertext.hex()[: len(plain) * 2]

    def decrypt(self, text: str) -> str:
        """
        Reverses encrypt(). The first 32 hex characters carry the IV.
        """
        iv = bytes.fromhex(text[:32])
        body = text[32:]
        body += "0" * ((32 - len(body) % 32) % 32)
        decryptor = self._cipher(iv).decryptor()
        plain = decryptor.update(bytes.fromhex(body)) + decryptor.finalize()
        return plain[: len(text) // 2 - BLOCK_SIZE].decode("utf-8")

    def to_vpn_url(self, url: str) -> str:
        """
        Rewrites a plain URL into its gateway form.

        Returns the input unchanged when the VPN is disabled, when the URL
        already points at the gateway, or when it cannot be parsed.
        """
        if not self.enabled:
            return url
        try:
            parts = urlsplit(url)
            host = parts.hostname
            scheme = parts.scheme
            if not scheme or not host:
                return url
            if host == self.vpn_host:
                return url

            port = parts.port
            if port is None or DEFAULT_PORTS.get(scheme) == port:
                segment = scheme
            else:
                segment = f"{scheme}-{port}"

            result = f"https://{self.vpn_host}/{segment}/{self.encrypt(host)}{parts.path}"
            if parts.query:
                result += f"?{parts.query}"
            if parts.fragment:
                result += f"#{parts.fragment}"
            return result
        except ValueError:
            logger.debug("Leaving unparsable URL as is: %s", url)
            return url

    def from_vpn_url(self, url: str) -> str:
        """
        Turns a gateway URL back into the plain URL it stands for.
        """
        try:
            parts = urlsplit(url)
            if parts.hostname != self.vpn_host:
                return url

            segment, _, remainder = parts.path.lstrip("/").partition("/")
            encrypted, slash, path = remainder.partition("/")
            if not segment or len(encrypted) < 32:
                return url

            scheme, _, port = segment.partition("-")
            host = self.decrypt(encrypted)
            netloc = f"{host}:{port}" if port else host

            result = f"{scheme}://{netloc}{slash}{path}"
            if parts.query:
                result += f"?{parts.query}"
            if parts.fragment:
                result += f"#{parts.fragment}"
            return result
        except ValueError:
            logger.debug("Leaving unparsable VPN URL as is: %s", url)
            return url
