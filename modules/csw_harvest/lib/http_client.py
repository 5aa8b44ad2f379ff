# csw_harvest/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "csw-harvest/0.1 (+https://example.invalid)"


class HttpClient:
    """
    Shared HTTP session for CSW POSTs.

    retries defaults to 0: a failed page fails the invocation, and the next
    scheduled invocation retries from the unchanged cursor.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        retries: int = 0,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "application/xml, text/xml;q=0.9, */*;q=0.1",
        })

        retry = Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["POST"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=2, pool_maxsize=4)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def post_xml(
        self,
        url: str,
        body: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        """
        POST an XML body and return the *streaming* response.
        Caller owns the response and must close it (use it as a context manager).
        Does not raise on HTTP status; the caller decides.
        """
        hdrs = {"Content-Type": "application/xml"}
        hdrs.update(headers or {})
        return self.session.post(
            url,
            data=body.encode("utf-8"),
            headers=hdrs,
            timeout=timeout or self.timeout,
            stream=True,
        )

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
