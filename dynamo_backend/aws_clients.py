from __future__ import annotations

import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import boto3
from botocore import UNSIGNED
from botocore.config import Config

from .observability.logging import get_logger
from .settings import ServerInfo

log = get_logger("aws_clients")


@lru_cache(maxsize=1)
def botocore_config() -> Config:
    # Conservative timeouts; adaptive retries.
    return Config(
        retries={"max_attempts": 10, "mode": "adaptive"},
        connect_timeout=2,
        read_timeout=12,
    )


@lru_cache(maxsize=4)
def sts_client(region: str):
    # AssumeRoleWithWebIdentity is an unsigned call: the web identity token is the credential.
    return boto3.client(
        "sts",
        region_name=region,
        config=botocore_config().merge(Config(signature_version=UNSIGNED)),
    )


class MissingCredentials(Exception):
    pass


class WebIdentityCredentials:
    """
    Temporary AWS credentials for the role in ``server_info``, obtained with the
    identity provider's access token.

    Credentials are reused until shortly before they expire.
    """

    # Refresh this many seconds before the STS expiration.
    REFRESH_MARGIN_S = 60

    def __init__(self, server_info: ServerInfo):
        self.server_info = server_info
        self._token: str | None = None
        self._credentials: dict[str, Any] | None = None

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    def set_token(self, token: str) -> None:
        if token != self._token:
            self._token = token
            self._credentials = None

    def clear(self) -> None:
        self._token = None
        self._credentials = None

    def _expired(self) -> bool:
        creds = self._credentials
        if not creds:
            return True
        exp = creds.get("Expiration")
        if isinstance(exp, datetime):
            exp_s = exp.astimezone(timezone.utc).timestamp()
        else:
            return False
        return exp_s - time.time() < self.REFRESH_MARGIN_S

    def _assume_role(self) -> dict[str, Any]:
        if not self._token:
            raise MissingCredentials("Not logged in: no web identity token.")
        info = self.server_info
        resp = sts_client(info.aws_region).assume_role_with_web_identity(
            RoleArn=info.role_arn,
            RoleSessionName=(info.app_name or "dynamo-backend")[:64],
            WebIdentityToken=self._token,
            ProviderId=info.provider_id,
        )
        log.info("web_identity_assumed", role_arn=info.role_arn)
        return resp["Credentials"]

    def session(self) -> boto3.session.Session:
        if self._expired():
            self._credentials = self._assume_role()
        creds = self._credentials or {}
        return boto3.session.Session(
            aws_access_key_id=creds.get("AccessKeyId"),
            aws_secret_access_key=creds.get("SecretAccessKey"),
            aws_session_token=creds.get("SessionToken"),
            region_name=self.server_info.aws_region,
        )


def dynamodb_table(credentials: WebIdentityCredentials):
    session = credentials.session()
    resource = session.resource("dynamodb", config=botocore_config())
    return resource.Table(credentials.server_info.table_name)
