import logging
import os
import random
import time
from json import JSONDecodeError
from pprint import pformat
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class RestClient:
    """
    requests-based HTTP plumbing shared by the ResourceManager and WebHDFS
    clients: per-process Session, bounded retry with backoff on timeouts and
    connection errors, and HTTP errors annotated with the server's explanation.
    """

    def __init__(
        self,
        api_root: str,
        connect_timeout: float = 3.1,
        read_timeout: float = 60.0,
        retry_count: int = 3,
        user_name: Optional[str] = None,
    ) -> None:
        self.api_root = api_root.rstrip("/")
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.retry_count = retry_count
        self.user_name = user_name
        self._session: Optional[requests.Session] = None
        self._pid = os.getpid()

    @property
    def session(self) -> requests.Session:
        """
        requests.Session is not multiprocessing-safe: start a new Session if a
        PID change is detected.
        """
        pid = os.getpid()
        if pid != self._pid or self._session is None:
            self._session = requests.Session()
            self._session.headers["Accept"] = "application/json"
            self._pid = pid
        return self._session

    def close_session(self) -> None:
        if self._session is not None:
            self._session.close()
        self._session = None

    def backoff(self, reason: Exception, attempt: int) -> None:
        if attempt >= self.retry_count:
            raise TimeoutError(f"Exceeded max retries: {reason}")
        sleep_time = 2**attempt + random.random()
        time.sleep(sleep_time)

    def absolute_url(self, url: str) -> str:
        if "://" in url:
            return url
        return self.api_root + "/" + url.lstrip("/")

    def request(
        self,
        url: str,
        http_method: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        allow_redirects: bool = True,
    ) -> requests.Response:
        absolute_url = self.absolute_url(url)
        params = dict(params or {})
        if self.user_name:
            params.setdefault("user.name", self.user_name)
        attempt = 0
        while True:
            try:
                logger.debug(f"{http_method}: {absolute_url} {params if params else ''}")
                return self._do_request(absolute_url, http_method, params, json, data, allow_redirects)
            except requests.Timeout as exc:
                logger.warning(f"Attempt retry of timed-out request {http_method} {absolute_url}")
                self.backoff(exc, attempt)
                attempt += 1
            except requests.ConnectionError as exc:
                logger.warning(f"Attempt retry of connection: {exc}")
                self.backoff(exc, attempt)
                attempt += 1

    def request_json(self, url: str, http_method: str, **kwargs: Any) -> Any:
        response = self.request(url, http_method, **kwargs)
        try:
            return response.json()
        except (ValueError, JSONDecodeError):
            return None

    def _do_request(
        self,
        absolute_url: str,
        http_method: str,
        params: Optional[Dict[str, Any]],
        json: Any,
        data: Any,
        allow_redirects: bool,
    ) -> requests.Response:
        response = self.session.request(
            http_method,
            url=absolute_url,
            params=params,
            json=json,
            data=data,
            timeout=(self.connect_timeout, self.read_timeout),
            allow_redirects=allow_redirects,
        )
        if response.status_code >= 400:
            self._raise_with_explanation(response)
        return response

    def _raise_with_explanation(self, response: requests.Response) -> None:
        """
        Add the server's informative error message to Requests' generic status Exception
        """
        try:
            explanation = response.json()
        except (ValueError, JSONDecodeError):
            explanation = ""
        else:
            explanation = "\n" + pformat(explanation, indent=4)

        if response.reason is None:
            response.reason = explanation
        elif isinstance(response.reason, bytes):
            response.reason = response.reason.decode("utf-8") + explanation
        else:
            response.reason += explanation
        response.raise_for_status()
