import json
import logging
from typing import Any, Dict, Optional
import requests
from tenacity import (
	Retrying,
	stop_after_attempt,
	wait_exponential,
	retry_if_exception_type,
	retry_if_not_exception_type,
)

from .config import (
	REQUEST_TIMEOUT_SECONDS,
	MAX_RETRIES,
	BACKOFF_INITIAL_SECONDS,
	BACKOFF_MAX_SECONDS,
	USER_AGENT,
	ACQUIRE_TIMEOUT_SECONDS,
	DEFAULT_RETRY_AFTER_SECONDS,
)
from .errors import HttpError, TooManyRequestsError
from .token_bucket import TokenBucket

logger = logging.getLogger(__name__)


def _retry_after_seconds(response: requests.Response) -> float:
	raw = response.headers.get("Retry-After")
	if raw is None:
		return DEFAULT_RETRY_AFTER_SECONDS
	try:
		return max(0.0, float(raw))
	except ValueError:
		# HTTP-date form is not interpreted
		return DEFAULT_RETRY_AFTER_SECONDS


class HttpClient:
	"""requests session that takes a token from a TokenBucket before every call.

	A 429 answer puts the bucket into force stop for the server's Retry-After.
	"""

	def __init__(self,
			bucket: Optional[TokenBucket] = None,
			timeout_seconds: Optional[int] = None,
			max_retries: Optional[int] = None,
			backoff_initial_seconds: Optional[float] = None,
			backoff_max_seconds: Optional[float] = None,
			acquire_timeout_seconds: Optional[float] = None,
	):
		self.session = requests.Session()
		self.timeout_seconds = timeout_seconds or REQUEST_TIMEOUT_SECONDS
		self.max_retries = max_retries or MAX_RETRIES
		self.backoff_initial_seconds = backoff_initial_seconds or BACKOFF_INITIAL_SECONDS
		self.backoff_max_seconds = backoff_max_seconds or BACKOFF_MAX_SECONDS
		self.acquire_timeout_seconds = acquire_timeout_seconds if acquire_timeout_seconds is not None else ACQUIRE_TIMEOUT_SECONDS
		self.headers = {
			"User-Agent": USER_AGENT,
			"Accept": "application/json",
			"Content-Type": "application/json",
		}
		self._owns_bucket = bucket is None
		self.bucket = bucket if bucket is not None else TokenBucket.from_env()
		self.bucket.start()

	def _do_request(self, method: str, url: str, **kwargs) -> requests.Response:
		self.bucket.acquire(timeout=self.acquire_timeout_seconds)
		response = self.session.request(method=method, url=url, headers=self.headers, timeout=self.timeout_seconds, **kwargs)
		if response.status_code == 429:
			delay = _retry_after_seconds(response)
			logger.warning("429 from %s; pausing refills for %.1fs", url, delay)
			self.bucket.force_wait_until_milliseconds_passed(delay * 1000)
			raise TooManyRequestsError(url, delay, body=response.text)
		if response.status_code >= 400:
			raise HttpError(response.status_code, url, body=response.text)
		return response

	def request(self, method: str, url: str, **kwargs) -> requests.Response:
		for attempt in Retrying(
			stop=stop_after_attempt(self.max_retries),
			wait=wait_exponential(multiplier=self.backoff_initial_seconds, max=self.backoff_max_seconds),
			retry=(
				retry_if_exception_type((requests.RequestException, HttpError))
				& retry_if_not_exception_type(TooManyRequestsError)
			),
			reraise=True,
		):
			with attempt:
				return self._do_request(method, url, **kwargs)

	def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
		resp = self.request("GET", url, params=params)
		try:
			return resp.json()
		except ValueError:
			raise HttpError(resp.status_code, url, body=resp.text)

	def post_json(self, url: str, body: Dict[str, Any]) -> Any:
		resp = self.request("POST", url, data=json.dumps(body))
		try:
			return resp.json()
		except ValueError:
			raise HttpError(resp.status_code, url, body=resp.text)

	def close(self) -> None:
		# a bucket handed in by the caller may be shared, so it is left running
		if self._owns_bucket:
			self.bucket.stop()
		self.session.close()
