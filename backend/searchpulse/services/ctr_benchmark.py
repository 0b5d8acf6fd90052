from __future__ import annotations

import json
import math
from collections.abc import Mapping

DEFAULT_CTR_CURVE: dict[int, float] = {
    1: 0.28,
    2: 0.15,
    3: 0.11,
    4: 0.08,
    5: 0.06,
    6: 0.05,
    7: 0.04,
    8: 0.03,
    9: 0.03,
    10: 0.02,
}
FALLBACK_CTR = 0.01
MIN_RANK = 1
MAX_RANK = 10


def round_half_away_from_zero(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def validate_curve(curve: Mapping[int, float]) -> dict[int, float]:
    normalized = {int(rank): float(ctr) for rank, ctr in curve.items()}
    missing = [rank for rank in range(MIN_RANK, MAX_RANK + 1) if rank not in normalized]
    if missing:
        raise ValueError(f"CTR curve must define ranks 1-10; missing {missing}")
    previous = None
    for rank in range(MIN_RANK, MAX_RANK + 1):
        value = normalized[rank]
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"CTR for rank {rank} must be within [0, 1]")
        if previous is not None and value > previous:
            raise ValueError(f"CTR curve must be non-increasing; rank {rank} exceeds rank {rank - 1}")
        previous = value
    return normalized


def parse_curve_json(raw: str) -> dict[int, float]:
    if not raw.strip():
        return dict(DEFAULT_CTR_CURVE)
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("CTR_BENCHMARK_CURVE_JSON is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("CTR_BENCHMARK_CURVE_JSON must be an object of rank -> ctr")
    try:
        return validate_curve(payload)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid CTR benchmark curve: {exc}") from exc


class CtrBenchmark:
    """Expected organic CTR for a ranking position."""

    def __init__(self, curve: Mapping[int, float] | None = None, *, fallback: float = FALLBACK_CTR) -> None:
        self.curve = validate_curve(curve) if curve is not None else dict(DEFAULT_CTR_CURVE)
        self.fallback = fallback

    @classmethod
    def from_json(cls, raw: str) -> "CtrBenchmark":
        return cls(parse_curve_json(raw))

    def benchmark(self, position: float) -> float:
        rank = min(max(round_half_away_from_zero(position), MIN_RANK), MAX_RANK)
        return self.curve.get(rank, self.fallback)


_default_benchmark = CtrBenchmark()


def benchmark(position: float) -> float:
    return _default_benchmark.benchmark(position)
