"""Fixed-window request counter per (provider, caller)."""

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitPolicy:
    window_seconds: float
    max_requests: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: float  # epoch seconds when the current window ends


@dataclass
class _Window:
    count: int
    reset_time: float


# Per-provider defaults (requests per minute)
DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    "anthropic": RateLimitPolicy(window_seconds=60, max_requests=50),
    "openai": RateLimitPolicy(window_seconds=60, max_requests=60),
    "google": RateLimitPolicy(window_seconds=60, max_requests=40),
    "grok": RateLimitPolicy(window_seconds=60, max_requests=30),
}


class RateLimiter:
    """Advisory admission control: check_limit() reports, callers decide whether to wait.

    State is in-process; one limiter is built per process and injected.
    """

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.policies = dict(policies if policies is not None else DEFAULT_POLICIES)
        self._clock = clock
        self._windows: dict[tuple[str, str], _Window] = {}

    @classmethod
    def from_settings(cls, limits: Mapping[str, Mapping[str, float]], **kwargs) -> "RateLimiter":
        policies = {
            provider: RateLimitPolicy(
                window_seconds=float(cfg["window_seconds"]),
                max_requests=int(cfg["max_requests"]),
            )
            for provider, cfg in limits.items()
        }
        return cls(policies, **kwargs)

    def check_limit(self, provider: str, caller_key: str = "global") -> RateLimitDecision:
        """Count one request against the window for ``(provider, caller_key)``.

        A new window starts once ``now > reset_time``. Providers without a
        policy are always allowed.
        """
        policy = self.policies.get(provider)
        now = self._clock()
        if policy is None:
            return RateLimitDecision(allowed=True, remaining=-1, reset_time=now)

        key = (provider, caller_key)
        window = self._windows.get(key)
        if window is None or now > window.reset_time:
            self._evict_expired(now)
            window = _Window(count=0, reset_time=now + policy.window_seconds)
            self._windows[key] = window

        if window.count >= policy.max_requests:
            return RateLimitDecision(allowed=False, remaining=0, reset_time=window.reset_time)

        window.count += 1
        return RateLimitDecision(
            allowed=True,
            remaining=policy.max_requests - window.count,
            reset_time=window.reset_time,
        )

    def _evict_expired(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if now > w.reset_time]:
            del self._windows[key]

    @property
    def tracked_windows(self) -> int:
        return len(self._windows)

    def reset(self, provider: str | None = None) -> None:
        if provider is None:
            self._windows.clear()
            return
        for key in [k for k in self._windows if k[0] == provider]:
            del self._windows[key]
