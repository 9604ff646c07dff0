"""
Request signer for the OKX login handshake.

sign = base64(HMAC-SHA256(secret, timestamp + method + path + body))
"""

from __future__ import annotations

import base64
import hashlib
import hmac

from okx_relay.config.config import ConfigError

LOGIN_METHOD = "GET"
LOGIN_PATH = "/users/self/verify"


class Signer:
    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ConfigError("OKX secret key is required to sign the login request")
        self._secret = secret_key.encode("utf-8")

    def sign(self, timestamp: str, method: str, path: str, body: str = "") -> str:
        prehash = f"{timestamp}{method}{path}{body}"
        digest = hmac.new(self._secret, prehash.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign_login(self, timestamp: str) -> str:
        return self.sign(timestamp, LOGIN_METHOD, LOGIN_PATH)
