import asyncio
import logging
import math
import threading
import time
from collections import deque
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Deque, Optional, Tuple

from .config import (
	DEFAULT_CAPACITY,
	DEFAULT_FILL_PER_WINDOW,
	DEFAULT_WINDOW_MS,
	DEFAULT_VERBOSE,
	STATUS_LOG_INTERVAL_SECONDS,
)
from .errors import CapacityExceededError, ConfigurationError, RateLimitError, ValidationError

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value) -> bool:
	return _is_number(value) and math.isfinite(value)


def _is_integral(value) -> bool:
	if isinstance(value, bool):
		return False
	if isinstance(value, int):
		return True
	return isinstance(value, float) and value.is_integer()


def _resolve(future: "asyncio.Future[bool]") -> None:
	if not future.done():
		future.set_result(True)


class _Waiter:
	__slots__ = ("amount", "notify", "granted")

	def __init__(self, amount: float, notify: Callable[[], None]):
		self.amount = amount
		self.notify = notify
		self.granted = False


class TokenBucket:
	"""Token-bucket rate limiter with a timed refill.

	Every `window_in_ms` milliseconds while running, `fill_per_window` tokens are added,
	clamped to `capacity`. Tokens are taken with `consume` (never blocks), `acquire`
	(blocks the calling thread) or `consume_async` (suspends the calling coroutine).
	Blocked callers are queued and served strictly in arrival order: a large request at
	the head of the queue holds back smaller ones behind it.

	`force_wait_until_milliseconds_passed` suspends refilling for a while, e.g. after a
	server answered 429. Ticks inside that window are skipped, not deferred.

	The bucket is created stopped unless `auto_start=True`; call `start()` to arm the
	refill timer. All state is guarded by a single lock, so a bucket may be shared between
	threads and event loops.
	"""

	def __init__(self,
			capacity: int,
			fill_per_window: float,
			window_in_ms: int,
			initial_tokens: Optional[float] = None,
			verbose: bool = False,
			auto_start: bool = False,
			clock: Callable[[], float] = time.monotonic,
			status_interval_seconds: Optional[float] = None,
	):
		if not _is_integral(capacity) or capacity <= 0:
			raise ConfigurationError(f"capacity must be a positive integer, got {capacity!r}")
		if not _is_finite_number(fill_per_window) or fill_per_window <= 0:
			raise ConfigurationError(f"fill_per_window must be a positive number, got {fill_per_window!r}")
		if not _is_integral(window_in_ms) or window_in_ms <= 0:
			raise ConfigurationError(f"window_in_ms must be a positive integer, got {window_in_ms!r}")
		if initial_tokens is None:
			initial_tokens = capacity
		elif not _is_number(initial_tokens) or not 0 <= initial_tokens <= capacity:
			raise ConfigurationError(f"initial_tokens must be between 0 and {capacity}, got {initial_tokens!r}")

		self.capacity = int(capacity)
		self.fill_per_window = fill_per_window
		self.window_in_ms = int(window_in_ms)
		self.verbose = bool(verbose)
		self.status_interval_seconds = float(
			status_interval_seconds if status_interval_seconds is not None else STATUS_LOG_INTERVAL_SECONDS
		)
		self._clock = clock
		self._tokens = float(initial_tokens)
		self._force_stop_until: Optional[float] = None
		self._waiters: Deque[_Waiter] = deque()
		self._timer: Optional[Tuple[threading.Thread, threading.Event]] = None
		self._lock = threading.Lock()
		if auto_start:
			self.start()

	@classmethod
	def from_env(cls, **overrides) -> "TokenBucket":
		"""Build a bucket from the TICKBUCKET_* environment defaults."""
		params = {
			"capacity": DEFAULT_CAPACITY,
			"fill_per_window": DEFAULT_FILL_PER_WINDOW,
			"window_in_ms": DEFAULT_WINDOW_MS,
			"verbose": DEFAULT_VERBOSE,
		}
		params.update(overrides)
		return cls(**params)

	@property
	def tokens(self) -> float:
		with self._lock:
			return self._tokens

	@property
	def running(self) -> bool:
		with self._lock:
			return self._timer is not None

	@property
	def pending(self) -> int:
		with self._lock:
			return len(self._waiters)

	@property
	def force_stopped(self) -> bool:
		with self._lock:
			return self._force_stop_active()

	def start(self) -> "TokenBucket":
		with self._lock:
			if self._timer is not None:
				return self
			stop_event = threading.Event()
			thread = threading.Thread(
				target=self._run,
				args=(stop_event,),
				name=f"tickbucket-refill-{id(self):x}",
				daemon=True,
			)
			self._timer = (thread, stop_event)
			thread.start()
		return self

	def stop(self) -> None:
		with self._lock:
			if self._timer is None:
				return
			thread, stop_event = self._timer
			# set under the lock so a tick racing with stop() sees it and bails out
			stop_event.set()
			self._timer = None
		if thread is not threading.current_thread():
			thread.join()

	def tick(self) -> None:
		"""Run one refill tick now. The internal timer calls this every window."""
		with self._lock:
			self._refill()

	def consume(self, amount: float = 1) -> bool:
		self._check_amount(amount)
		with self._lock:
			if self._tokens >= amount:
				self._tokens -= amount
				return True
			self._log_shortfall("consume", amount)
			return False

	def acquire(self, amount: float = 1, timeout: Optional[float] = None) -> None:
		"""Block the calling thread until `amount` tokens are taken.

		Raises RateLimitError if `timeout` seconds pass first.
		"""
		self._check_amount(amount)
		with self._lock:
			if self._take_if_first(amount):
				return
			ready = threading.Event()
			waiter = _Waiter(amount, ready.set)
			self._enqueue("acquire", waiter)
		if ready.wait(timeout):
			return
		if self._withdraw(waiter):
			return
		raise RateLimitError(f"Timed out after {timeout}s waiting for {amount} token(s)")

	async def consume_async(self, amount: float = 1, timeout: Optional[float] = None) -> bool:
		"""Take `amount` tokens, suspending until a refill makes them available.

		With no timeout the call waits indefinitely. When `timeout` seconds pass first the
		request is withdrawn from the queue and False is returned.
		"""
		self._check_amount(amount)
		loop = asyncio.get_running_loop()
		with self._lock:
			if self._take_if_first(amount):
				return True
			future = loop.create_future()
			waiter = _Waiter(amount, partial(loop.call_soon_threadsafe, _resolve, future))
			self._enqueue("consume_async", waiter)
		try:
			if timeout is None:
				await future
			else:
				await asyncio.wait_for(future, timeout)
		except asyncio.TimeoutError:
			return self._withdraw(waiter)
		except asyncio.CancelledError:
			self._release(waiter)
			raise
		return True

	def force_wait_until_milliseconds_passed(self, delay_in_ms: float) -> None:
		if not _is_finite_number(delay_in_ms) or delay_in_ms < 0:
			raise ValidationError(f"delay_in_ms must be a non-negative finite number, got {delay_in_ms!r}")
		with self._lock:
			self._clear_expired_force_stop()
			already_active = self._force_stop_active()
			self._force_stop_until = self._clock() + delay_in_ms / 1000.0
			if self.verbose and not already_active:
				logger.info("Force stop started: refilling suspended for %s ms", delay_in_ms)

	def estimate_wait_ms(self, amount: float = 1) -> float:
		self._check_amount(amount)
		with self._lock:
			return self._estimate_wait_ms(amount)

	def _check_amount(self, amount: float) -> None:
		if not _is_finite_number(amount) or amount <= 0:
			raise ValidationError(f"amount must be a positive finite number, got {amount!r}")
		if amount > self.capacity:
			raise CapacityExceededError(amount, self.capacity)

	def _force_stop_active(self) -> bool:
		return self._force_stop_until is not None and self._clock() < self._force_stop_until

	def _take_if_first(self, amount: float) -> bool:
		# queued callers keep their place; newcomers only pass when nobody is waiting
		if not self._waiters and self._tokens >= amount:
			self._tokens -= amount
			return True
		return False

	def _enqueue(self, action: str, waiter: _Waiter) -> None:
		self._waiters.append(waiter)
		self._log_shortfall(action, waiter.amount)

	def _clear_expired_force_stop(self) -> None:
		if self._force_stop_until is None or self._clock() < self._force_stop_until:
			return
		self._force_stop_until = None
		if self.verbose:
			logger.info("Force stop ended with %.2f tokens", self._tokens)

	def _refill(self) -> None:
		self._clear_expired_force_stop()
		if self._force_stop_active():
			return
		self._tokens = min(self.capacity, self._tokens + self.fill_per_window)
		self._sweep()

	def _sweep(self) -> None:
		while self._waiters and self._tokens >= self._waiters[0].amount:
			waiter = self._waiters.popleft()
			self._tokens -= waiter.amount
			waiter.granted = True
			try:
				waiter.notify()
			except RuntimeError:
				# the waiter's event loop is closed; nobody is left to receive the tokens
				waiter.granted = False
				self._tokens += waiter.amount

	def _withdraw(self, waiter: _Waiter) -> bool:
		"""Drop a timed-out waiter from the queue. Returns True if it was served meanwhile."""
		with self._lock:
			if waiter.granted:
				return True
			self._discard(waiter)
			return False

	def _release(self, waiter: _Waiter) -> None:
		with self._lock:
			if waiter.granted:
				waiter.granted = False
				self._tokens = min(self.capacity, self._tokens + waiter.amount)
				self._sweep()
			else:
				self._discard(waiter)

	def _discard(self, waiter: _Waiter) -> None:
		try:
			self._waiters.remove(waiter)
		except ValueError:
			pass
		self._sweep()

	def _estimate_wait_ms(self, amount: float) -> float:
		deficit = amount - self._tokens
		if deficit <= 0:
			return 0.0
		ticks = math.ceil(deficit / self.fill_per_window)
		wait_ms = float(ticks * self.window_in_ms)
		if self._force_stop_active():
			wait_ms += (self._force_stop_until - self._clock()) * 1000.0
		return wait_ms

	def _log_shortfall(self, action: str, amount: float) -> None:
		if not self.verbose:
			return
		wait_ms = self._estimate_wait_ms(amount)
		ready_at = datetime.now() + timedelta(milliseconds=wait_ms)
		logger.info(
			"%s(%s): not enough tokens (%.2f available); estimated ready in %.0f ms at %s",
			action, amount, self._tokens, wait_ms, ready_at.isoformat(timespec="milliseconds"),
		)

	def _log_status(self, stop_event: threading.Event) -> None:
		with self._lock:
			if stop_event.is_set():
				return
			tokens = self._tokens
			pending = len(self._waiters)
		logger.info("Bucket status: %.2f/%d tokens, %d waiting", tokens, self.capacity, pending)

	def _run(self, stop_event: threading.Event) -> None:
		window = self.window_in_ms / 1000.0
		now = self._clock()
		next_tick = now + window
		next_status = now + self.status_interval_seconds
		while True:
			deadline = min(next_tick, next_status) if self.verbose else next_tick
			if stop_event.wait(max(0.0, deadline - self._clock())):
				return
			now = self._clock()
			if now >= next_tick:
				with self._lock:
					if stop_event.is_set():
						return
					self._refill()
				next_tick += window
				if next_tick <= now:
					# fell behind; missed ticks are dropped rather than replayed
					next_tick = now + window
			if self.verbose and now >= next_status:
				self._log_status(stop_event)
				next_status = now + self.status_interval_seconds
