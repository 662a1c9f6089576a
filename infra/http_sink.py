from __future__ import annotations

import queue
import threading
import time
from typing import Any, Dict, List, Optional

import httpx

from domain.models import WindowResult
from domain.ports import ResultSink

from .json_codec import result_to_dict

# marks the end of the queue for one worker
_STOP: Dict[str, Any] = {}


def _backoff(attempt: int) -> float:
    return min(0.25 * (2 ** attempt), 2.0)


class HttpResultSink(ResultSink):
    """
    POSTs each window result as JSON from a pool of worker threads.
    Failed posts are retried with exponential backoff, then counted.
    """

    def __init__(
        self,
        url: str,
        *,
        workers: int = 4,
        queue_max: int = 5000,
        timeout_sec: float = 2.0,
        max_retries: int = 3,
        drop_on_full: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.workers = workers
        self.timeout_sec = timeout_sec
        self.max_retries = max_retries
        self.drop_on_full = drop_on_full
        self._transport = transport

        self._pending: queue.Queue[Dict[str, Any]] = queue.Queue(maxsize=queue_max)
        self._pool: List[threading.Thread] = []
        self._client: Optional[httpx.Client] = None

        self._lock = threading.Lock()
        self.total_published = 0
        self.total_dropped = 0
        self.total_failed = 0
        self.total_sent = 0

    @property
    def running(self) -> bool:
        return self._client is not None

    def start(self) -> None:
        if self.running:
            return
        self._client = httpx.Client(timeout=self.timeout_sec, transport=self._transport)
        self._pool = [
            threading.Thread(target=self._worker, name=f"http-sink-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for t in self._pool:
            t.start()

    def stop(self) -> None:
        if not self.running:
            return
        # FIFO: everything queued so far is posted before a worker sees _STOP
        for _ in self._pool:
            self._pending.put(_STOP)
        for t in self._pool:
            t.join(timeout=3)
        self._pool = []

        client, self._client = self._client, None
        client.close()

    def publish(self, key: str, result: WindowResult) -> None:
        if not self.running:
            raise RuntimeError("HttpResultSink.publish called before start()")

        payload = result_to_dict(key, result)
        with self._lock:
            self.total_published += 1

        if not self.drop_on_full:
            self._pending.put(payload)
            return
        try:
            self._pending.put_nowait(payload)
        except queue.Full:
            with self._lock:
                self.total_dropped += 1

    def _post(self, client: httpx.Client, payload: Dict[str, Any]) -> bool:
        for attempt in range(self.max_retries + 1):
            if attempt:
                time.sleep(_backoff(attempt - 1))
            try:
                client.post(self.url, json=payload).raise_for_status()
                return True
            except httpx.HTTPError:
                continue
        return False

    def _worker(self) -> None:
        client = self._client
        assert client is not None

        while True:
            payload = self._pending.get()
            if payload is _STOP:
                return
            ok = self._post(client, payload)
            with self._lock:
                if ok:
                    self.total_sent += 1
                else:
                    self.total_failed += 1
