from __future__ import annotations

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from .observability.logging import get_logger
from .properties import Properties

log = get_logger("profile")

DEFAULT_PROFILE_URL = "https://api.amazon.com/user/profile"


class Profile(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    email: str
    name: str
    user_id: str

    def to_properties(self) -> Properties:
        return Properties(
            [
                ("operation", "login"),
                ("email", self.email),
                ("name", self.name),
                ("user_id", self.user_id),
            ]
        )


def _error_bag(message: str, type_tag: str) -> Properties:
    return Properties([("operation", "login"), ("error", message), ("type", type_tag)])


class ProfileClient:
    """Fetches the Login with Amazon profile for an access token.

    The result is always a bag destined for ``update``: a ``login`` bag on
    success, or a ``login`` bag carrying an error.
    """

    def __init__(
        self,
        *,
        url: str = DEFAULT_PROFILE_URL,
        timeout_s: float = 60.0,
        client: httpx.Client | None = None,
    ):
        self.url = str(url)
        self.timeout_s = float(timeout_s)
        self._client = client

    def _get(self, access_token: str) -> httpx.Response:
        headers = {"Authorization": f"bearer {access_token}", "Accept": "application/json"}
        if self._client is not None:
            return self._client.get(self.url, headers=headers, timeout=self.timeout_s)
        with httpx.Client(timeout=self.timeout_s) as client:
            return client.get(self.url, headers=headers)

    def fetch(self, access_token: str) -> Properties:
        if not access_token:
            return _error_bag("No access token.", "FetchProfileError")

        try:
            resp = self._get(access_token)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            log.warning("profile_fetch_failed", status_code=e.response.status_code)
            return _error_bag(f"Bad status: {e.response.status_code}", "FetchProfileError")
        except httpx.TimeoutException:
            log.warning("profile_fetch_timeout", timeout_s=self.timeout_s)
            return _error_bag("Timeout", "FetchProfileError")
        except httpx.HTTPError as e:
            log.warning("profile_fetch_failed", error=str(e))
            return _error_bag(f"Network error: {e}", "FetchProfileError")
        except ValueError as e:
            return _error_bag(f"Bad payload: {e}", "FetchProfileError")

        try:
            profile = Profile.model_validate(body)
        except ValidationError as e:
            log.warning("profile_invalid", errors=e.error_count())
            return _error_bag(f"Malformed profile: {e.errors()[0].get('loc')}", "ReturnedProfileError")

        log.info("profile_fetched", user_id=profile.user_id)
        return profile.to_properties()
