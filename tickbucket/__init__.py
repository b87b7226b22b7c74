from .token_bucket import TokenBucket
from .http_client import HttpClient
from .log import setup_logging
from .errors import (
	TokenBucketError,
	ConfigurationError,
	ValidationError,
	CapacityExceededError,
	RateLimitError,
	HttpError,
	TooManyRequestsError,
)

__all__ = [
	"__version__",
	"TokenBucket",
	"HttpClient",
	"setup_logging",
	"TokenBucketError",
	"ConfigurationError",
	"ValidationError",
	"CapacityExceededError",
	"RateLimitError",
	"HttpError",
	"TooManyRequestsError",
]

__version__ = "0.1.0"
