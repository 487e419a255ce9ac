from __future__ import annotations

import contextlib
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from .collector import LifecycleCollector
from .config import ClientConfig
from .errors import RequestTooLarge, TransportError
from .request import (
    ConvolutionRequest,
    ConvolutionResponse,
    RequestBuilder,
    StreamValueSource,
    ValueSource,
)

LOGGER = logging.getLogger("conv_client.load")


class ConvolutionClient(Protocol):
    def convolutional_layer(
        self, request: ConvolutionRequest, timeout: float
    ) -> ConvolutionResponse: ...


@dataclass
class LoadStatistics:
    launched: int
    started_at: float
    finished_at: float

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)


class ConvolutionLoadGenerator:
    """Fires ``request_count`` independent request lifecycles and waits for all of them."""

    def __init__(
        self,
        config: ClientConfig,
        client: ConvolutionClient,
        collector: LifecycleCollector,
        builder_factory: Callable[[ClientConfig], RequestBuilder] | None = None,
        value_source: ValueSource | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._client = client
        self._collector = collector
        self._value_source = value_source or StreamValueSource()
        self._builder_factory = builder_factory or self._default_builder
        self._sleep = sleep

        self._id_lock = threading.Lock()
        self._manual_entry_lock = threading.Lock()
        self._id_counter = itertools.count(start=1)

    def next_request_id(self) -> int:
        with self._id_lock:
            return next(self._id_counter)

    def run(self) -> LoadStatistics:
        started_at = time.time()
        threads: list[threading.Thread] = []
        for index in range(1, self._config.request_count + 1):
            self._sleep(self._config.launch_delay_s)
            thread = threading.Thread(
                target=self._lifecycle,
                name=f"conv-request-{index}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)

        LOGGER.info("All requests sent. Waiting for responses...")
        for thread in threads:
            thread.join()

        return LoadStatistics(
            launched=len(threads),
            started_at=started_at,
            finished_at=time.time(),
        )

    def _default_builder(self, config: ClientConfig) -> RequestBuilder:
        return RequestBuilder(config, value_source=self._value_source)

    def _lifecycle(self) -> None:
        request_id = self.next_request_id()
        started_at = time.time()
        try:
            self._execute(request_id)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Request #%d failed unexpectedly", request_id)
            self._collector.record_failure(
                request_id, repr(exc), [], started_at, time.time()
            )

    def _execute(self, request_id: int) -> None:
        config = self._config
        builder = self._builder_factory(config)
        LOGGER.info(
            "Request #%d started. Target size: %d, Kernel size: %d, Kernel number: %d, "
            "Avg Pool Size: %d, Use Kernels: %s, Use Sigmoid: %s",
            request_id,
            config.target_size,
            config.kernel_size,
            config.kernel_count,
            config.avg_pool_size,
            config.use_kernels,
            config.use_sigmoid,
        )

        # Manual entry reads one request's matrices from a shared stream at a time.
        entry_guard = (
            self._manual_entry_lock if config.manual_values else contextlib.nullcontext()
        )
        started_at = time.time()
        try:
            with entry_guard:
                request = builder.build(label=f"request #{request_id}")
        except RequestTooLarge as exc:
            self._collector.record_too_large(
                request_id, exc.expected_size, exc.limit, started_at, time.time()
            )
            return
        LOGGER.info(
            "Request #%d -> Expected size: %d, Expected results: %d",
            request_id,
            request.expected_size,
            request.expected_results,
        )

        sent_at = time.time()
        try:
            response = self._client.convolutional_layer(request, timeout=config.timeout_s)
        except TransportError as exc:
            self._collector.record_failure(
                request_id, exc.message, exc.details, sent_at, time.time()
            )
            return
        received_at = time.time()
        if response.sent_at is not None and response.received_at is not None:
            sent_at, received_at = response.sent_at, response.received_at
        self._collector.record_success(request_id, request, response, sent_at, received_at)


__all__ = ["ConvolutionClient", "LoadStatistics", "ConvolutionLoadGenerator"]
