from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Deque, Dict


@dataclass
class RouteStats:
    latencies_ms: Deque[float]
    errors: int = 0
    total: int = 0
    status_counts: Dict[int, int] = field(default_factory=dict)


class MetricsRegistry:
    """In-memory metrics registry.

    - ルートテンプレート（`/api/programmed-reviews/{review_id}` など）単位で集計し、
      ID 入りの実パスでキーが増え続けないようにする
    - p95 用のローリング窓、エラー件数、ステータス別件数を保持
    """

    def __init__(self, window_size: int = 200) -> None:
        self._window_size = window_size
        self._lock = threading.Lock()
        self._per_route: Dict[str, RouteStats] = defaultdict(
            lambda: RouteStats(latencies_ms=deque(maxlen=self._window_size))
        )

    def record(
        self,
        route: str,
        latency_ms: float,
        *,
        status_code: int | None = None,
        is_error: bool = False,
    ) -> None:
        with self._lock:
            stats = self._per_route[route]
            stats.latencies_ms.append(latency_ms)
            stats.total += 1
            if is_error or (status_code is not None and status_code >= 500):
                stats.errors += 1
            if status_code is not None:
                stats.status_counts[status_code] = stats.status_counts.get(status_code, 0) + 1

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            result: Dict[str, Dict[str, object]] = {}
            for route, stats in self._per_route.items():
                p95 = calculate_p95(list(stats.latencies_ms)) if stats.latencies_ms else 0.0
                result[route] = {
                    "p95_ms": round(p95, 2),
                    "count": stats.total,
                    "errors": stats.errors,
                    "status": {str(code): count for code, count in sorted(stats.status_counts.items())},
                }
            return result

    def reset(self) -> None:
        with self._lock:
            self._per_route.clear()


def calculate_p95(values: list[float]) -> float:
    if not values:
        return 0.0
    sorted_vals = sorted(values)
    k = int(0.95 * (len(sorted_vals) - 1))
    return sorted_vals[k]


registry = MetricsRegistry()
