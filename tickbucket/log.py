import logging
import sys
from typing import Optional, Union

from .config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[Union[str, int]] = None) -> logging.Logger:
	"""Attach a stream handler to the package logger so verbose bucket diagnostics are visible.

	Safe to call more than once; the handler is only installed the first time.
	"""
	logger = logging.getLogger("tickbucket")
	resolved = level if level is not None else LOG_LEVEL
	if isinstance(resolved, str):
		resolved = getattr(logging, resolved.upper(), logging.INFO)
	logger.setLevel(resolved)
	if not any(getattr(h, "_tickbucket", False) for h in logger.handlers):
		handler = logging.StreamHandler(sys.stderr)
		handler.setFormatter(logging.Formatter(_FORMAT))
		handler._tickbucket = True  # type: ignore[attr-defined]
		logger.addHandler(handler)
	return logger
