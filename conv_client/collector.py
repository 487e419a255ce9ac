from __future__ import annotations

import collections
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any

import pandas as pd

from .matrices import format_matrix
from .request import ConvolutionRequest, ConvolutionResponse

LOGGER = logging.getLogger("conv_client.collector")

STATUS_OK = "ok"
STATUS_TOO_LARGE = "too_large"
STATUS_FAILED = "failed"

RECORD_COLUMNS = [
    "request_id",
    "status",
    "response_id",
    "result_count",
    "started_at",
    "finished_at",
    "duration_ms",
    "error",
]


@dataclass
class LifecycleRecord:
    request_id: int
    status: str
    started_at: float
    finished_at: float
    response_id: int | None = None
    result_count: int = 0
    error: str | None = None

    @property
    def duration_ms(self) -> int:
        return int(max(self.finished_at - self.started_at, 0.0) * 1000)

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["duration_ms"] = self.duration_ms
        return row


class LifecycleCollector:
    """Thread-safe sink for the terminal state of every request lifecycle.

    Each ``record_*`` call writes exactly one report line for its lifecycle.
    With ``verbose`` enabled successful lifecycles also dump their target,
    kernel and result matrices.
    """

    def __init__(self, verbose: bool = False, logger: logging.Logger | None = None) -> None:
        self._verbose = verbose
        self._logger = logger or LOGGER
        self._lock = threading.Lock()
        self._records: list[LifecycleRecord] = []

    def record_success(
        self,
        request_id: int,
        request: ConvolutionRequest,
        response: ConvolutionResponse,
        started_at: float,
        finished_at: float,
    ) -> LifecycleRecord:
        record = LifecycleRecord(
            request_id=request_id,
            status=STATUS_OK,
            started_at=started_at,
            finished_at=finished_at,
            response_id=response.id,
            result_count=len(response.results),
        )
        self._append(record)
        self._logger.info(
            "Request #%d -> Response: (#%d) in %d ms, Results: %d",
            request_id,
            response.id,
            record.duration_ms,
            record.result_count,
        )
        if self._verbose:
            self._logger.info(self.dump(request_id, request, response))
        return record

    def record_too_large(
        self,
        request_id: int,
        expected_size: int,
        limit: int,
        started_at: float,
        finished_at: float,
    ) -> LifecycleRecord:
        record = LifecycleRecord(
            request_id=request_id,
            status=STATUS_TOO_LARGE,
            started_at=started_at,
            finished_at=finished_at,
            error=f"expected size {expected_size} exceeds {limit}",
        )
        self._append(record)
        self._logger.warning(
            "Request #%d NOT SENT -> Expected size %d, size must be lower than: %d",
            request_id,
            expected_size,
            limit,
        )
        return record

    def record_failure(
        self,
        request_id: int,
        message: str,
        details: list[str],
        started_at: float,
        finished_at: float,
    ) -> LifecycleRecord:
        record = LifecycleRecord(
            request_id=request_id,
            status=STATUS_FAILED,
            started_at=started_at,
            finished_at=finished_at,
            error=message,
        )
        self._append(record)
        self._logger.error(
            "Request #%d -> Unsuccessful! %s: %s", request_id, message, details
        )
        return record

    @staticmethod
    def dump(
        request_id: int,
        request: ConvolutionRequest,
        response: ConvolutionResponse,
    ) -> str:
        sections = [f"Request #{request_id} matrices:", format_matrix("Target", request.target)]
        sections.extend(format_matrix("Kernel", kernel) for kernel in request.kernels)
        sections.extend(format_matrix("Result", result) for result in response.results)
        return "\n".join(sections)

    def records(self) -> list[LifecycleRecord]:
        with self._lock:
            return sorted(self._records, key=lambda record: record.request_id)

    def build_dataframe(self) -> pd.DataFrame:
        rows = [record.to_row() for record in self.records()]
        if not rows:
            return pd.DataFrame(columns=RECORD_COLUMNS)
        return pd.DataFrame(rows, columns=RECORD_COLUMNS)

    def summaries(self) -> dict[str, int]:
        with self._lock:
            counter = collections.Counter(record.status for record in self._records)
        return dict(counter)

    def latency_summary(self) -> dict[str, float]:
        df = self.build_dataframe()
        latencies = df.loc[df["status"] == STATUS_OK, "duration_ms"].astype(float)
        if latencies.empty:
            return {}
        return {
            "mean_ms": float(latencies.mean()),
            "p50_ms": float(latencies.quantile(0.5)),
            "p95_ms": float(latencies.quantile(0.95)),
            "max_ms": float(latencies.max()),
        }

    def log_summary(self) -> None:
        counts = self.summaries()
        total = sum(counts.values())
        self._logger.info(
            "Completed %d request(s): %s",
            total,
            ", ".join(f"{status}={counts[status]}" for status in sorted(counts)) or "<none>",
        )
        latency = self.latency_summary()
        if latency:
            self._logger.info(
                "Latency: mean %.1f ms, p50 %.1f ms, p95 %.1f ms, max %.1f ms",
                latency["mean_ms"],
                latency["p50_ms"],
                latency["p95_ms"],
                latency["max_ms"],
            )

    def _append(self, record: LifecycleRecord) -> None:
        with self._lock:
            self._records.append(record)


__all__ = [
    "STATUS_OK",
    "STATUS_TOO_LARGE",
    "STATUS_FAILED",
    "LifecycleRecord",
    "LifecycleCollector",
]
