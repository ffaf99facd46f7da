import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from courtsync.upstream.lua_scripts import LuaScripts


class FakeRedis:
    """Minimal async Redis stub mirroring the limiter and breaker scripts."""

    def __init__(self):
        self.zsets: dict[str, dict[str, int]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.calls = 0

    async def eval(self, script: str, num_keys: int, key: str, *args):  # noqa: ARG002
        self.calls += 1

        if script == LuaScripts.SLIDING_WINDOW_ACQUIRE:
            now, window, limit = int(args[0]), int(args[1]), int(args[2])
            member = args[3]
            entries = self._prune(key, now, window)
            allowed = 0
            if len(entries) < limit:
                entries[member] = now
                allowed = 1
            return [allowed, max(0, limit - len(entries)), self._reset_at(entries, now, window)]

        if script == LuaScripts.SLIDING_WINDOW_USAGE:
            now, window = int(args[0]), int(args[1])
            entries = self._prune(key, now, window)
            return [len(entries), self._reset_at(entries, now, window)]

        if script == LuaScripts.CIRCUIT_BEFORE_CALL:
            now, trial_timeout = int(args[0]), int(args[1])
            state = self.hashes.get(key, {})
            current = state.get("state", "closed")
            if current == "closed":
                return [1, 0]
            open_until = int(state.get("open_until", 0))
            if current == "open":
                if now < open_until:
                    return [0, open_until]
                state["state"] = "half_open"
                state["trial_started"] = str(now)
                return [1, 0]
            if now - int(state.get("trial_started", 0)) > trial_timeout:
                state["trial_started"] = str(now)
                return [1, 0]
            return [0, open_until]

        if script == LuaScripts.CIRCUIT_RECORD_FAILURE:
            now, threshold, cooldown = int(args[0]), int(args[1]), int(args[2])
            state = self.hashes.setdefault(key, {})
            failures = int(state.get("failures", 0)) + 1
            state["failures"] = str(failures)
            if state.get("state") == "half_open" or failures >= threshold:
                state["state"] = "open"
                state["open_until"] = str(now + cooldown)
                return [1, failures]
            state["state"] = "closed"
            return [0, failures]

        if script == LuaScripts.CIRCUIT_RECORD_SUCCESS:
            self.hashes.pop(key, None)
            return 1

        raise AssertionError("Unexpected script")

    async def hgetall(self, key: str):
        return {k.encode(): v.encode() for k, v in self.hashes.get(key, {}).items()}

    def _prune(self, key: str, now: int, window: int) -> dict[str, int]:
        entries = self.zsets.setdefault(key, {})
        for member, score in list(entries.items()):
            if score <= now - window:
                del entries[member]
        return entries

    @staticmethod
    def _reset_at(entries: dict[str, int], now: int, window: int) -> int:
        if not entries:
            return now + window
        return min(entries.values()) + window


class BrokenRedis:
    """Every command fails as if the server were unreachable."""

    async def eval(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    async def hgetall(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def clock():
    return FakeClock()
