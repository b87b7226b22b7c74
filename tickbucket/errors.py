from typing import Optional, Union


class TokenBucketError(Exception):
	"""Base exception for tickbucket errors."""


class ConfigurationError(TokenBucketError, ValueError):
	"""Raised when a bucket is constructed with invalid parameters."""


class ValidationError(TokenBucketError, ValueError):
	"""Raised for invalid arguments to a bucket operation."""


class CapacityExceededError(ValidationError):
	"""Raised when a request asks for more tokens than the bucket can ever hold."""

	def __init__(self, amount: float, capacity: int):
		self.amount = amount
		self.capacity = capacity
		super().__init__(f"Requested {amount} tokens but capacity is {capacity}; request can never succeed")


class RateLimitError(TokenBucketError):
	"""Raised when a blocking acquire gives up before tokens became available."""


class HttpError(TokenBucketError):
	"""Raised for non-successful HTTP responses from the server."""

	def __init__(self, status_code: int, url: str, body: Optional[Union[str, bytes]] = None):
		self.status_code = status_code
		self.url = url
		self.body = body
		super().__init__(f"HTTP {status_code} for {url}")


class TooManyRequestsError(HttpError):
	"""Raised for a 429 answer; not retried, the bucket is force-stopped for `retry_after` seconds."""

	def __init__(self, url: str, retry_after: float, body: Optional[Union[str, bytes]] = None):
		self.retry_after = retry_after
		super().__init__(429, url, body=body)
