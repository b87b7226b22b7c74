import asyncio
import logging
import threading
import time

import pytest

from tickbucket import TokenBucket


@pytest.fixture
def bucket():
	b = TokenBucket(capacity=5, fill_per_window=1, window_in_ms=20, initial_tokens=0)
	yield b
	b.stop()


def wait_until(predicate, timeout=2.0):
	deadline = time.monotonic() + timeout
	while time.monotonic() < deadline:
		if predicate():
			return True
		time.sleep(0.005)
	return False


def test_timer_refills_up_to_capacity(bucket):
	bucket.start()
	assert wait_until(lambda: bucket.tokens == 5)
	time.sleep(0.1)
	assert bucket.tokens == 5


def test_stop_halts_ticks(bucket):
	bucket.start()
	assert wait_until(lambda: bucket.tokens >= 1)
	bucket.stop()
	frozen = bucket.tokens
	time.sleep(0.1)
	assert bucket.tokens == frozen


def test_force_stop_pauses_timer(bucket):
	bucket.start()
	bucket.force_wait_until_milliseconds_passed(150)
	time.sleep(0.1)
	assert bucket.tokens == 0
	assert wait_until(lambda: bucket.tokens >= 1)


def test_instances_tick_independently():
	fast = TokenBucket(capacity=3, fill_per_window=1, window_in_ms=20, initial_tokens=0).start()
	slow = TokenBucket(capacity=3, fill_per_window=1, window_in_ms=60000, initial_tokens=0).start()
	try:
		assert wait_until(lambda: fast.tokens == 3)
		assert slow.tokens == 0
	finally:
		fast.stop()
		slow.stop()


@pytest.mark.asyncio
async def test_consume_async_served_by_timer(bucket):
	bucket.start()
	assert await asyncio.wait_for(bucket.consume_async(3), 2) is True


@pytest.mark.asyncio
async def test_stop_start_keeps_tokens_and_waiters(bucket):
	bucket.start()
	for _ in range(400):
		if bucket.tokens >= 1:
			break
		await asyncio.sleep(0.005)
	bucket.stop()
	await asyncio.sleep(0.03)
	kept = bucket.tokens
	assert kept >= 1

	task = asyncio.create_task(bucket.consume_async(5))
	await asyncio.sleep(0.1)
	assert not task.done()
	assert bucket.pending == 1
	assert bucket.tokens == kept

	bucket.start()
	assert await asyncio.wait_for(task, 2) is True
	assert bucket.pending == 0


def test_verbose_status_logged_on_cadence(caplog):
	b = TokenBucket(capacity=2, fill_per_window=1, window_in_ms=1000, verbose=True, status_interval_seconds=0.02)
	with caplog.at_level(logging.INFO, logger="tickbucket"):
		b.start()
		try:
			assert wait_until(lambda: "Bucket status" in caplog.text)
		finally:
			b.stop()


def test_no_status_lines_after_stop_returns(caplog):
	b = TokenBucket(capacity=2, fill_per_window=1, window_in_ms=5, verbose=True, status_interval_seconds=0.005)
	with caplog.at_level(logging.INFO, logger="tickbucket"):
		b.start()
		assert wait_until(lambda: "Bucket status" in caplog.text)
		b.stop()
		logged = len(caplog.records)
		time.sleep(0.05)
		assert len(caplog.records) == logged
	assert not any(t.name == "tickbucket-refill-%x" % id(b) for t in threading.enumerate())
