"""Base class for best-effort enrichment API clients."""

import logging
from abc import ABC
from typing import Optional

import requests

from entityintel import __version__
from entityintel.config import config

log = logging.getLogger(__name__)


class BaseAPIClient(ABC):
    """
    Shared HTTP plumbing for third-party enrichment sources.

    Sources are non-authoritative: any transport error, non-2xx status or
    undecodable body is logged and surfaces as ``None``, never as an
    exception.
    """

    source_name: str = "base"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or self._default_base_url()).rstrip("/")
        self.timeout = timeout or config.api_timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"entityintel/{__version__}",
        })

    def _default_base_url(self) -> str:
        raise NotImplementedError

    def _request(self, method: str, endpoint: str, **kwargs) -> Optional[dict]:
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            log.warning("%s request failed (%s %s): %s", self.source_name, method, endpoint, e)
            return None
        except ValueError as e:
            log.warning("%s returned invalid JSON for %s: %s", self.source_name, endpoint, e)
            return None

    def _get(self, endpoint: str, params: Optional[dict] = None) -> Optional[dict]:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, payload: dict) -> Optional[dict]:
        return self._request("POST", endpoint, json=payload)
