"""Lua scripts backing the shared rate limiter and circuit breaker.

Every script runs atomically inside Redis, so workers in separate processes
see one consistent quota window and one breaker state per upstream service.
All timestamps are integer milliseconds supplied by the caller.
"""

from __future__ import annotations


class LuaScripts:
    """Container for Redis Lua scripts.

    Usage:
        await redis.eval(LuaScripts.SLIDING_WINDOW_ACQUIRE, 1, key, now_ms, window_ms, limit, member)
    """

    # ─────────────────────────────────────────────────────────────────────────
    # RATE LIMITING: sliding window over a sorted set of request timestamps
    # ─────────────────────────────────────────────────────────────────────────

    SLIDING_WINDOW_ACQUIRE: str = (
        # Prune, count and record one request in a single step.
        #
        # KEYS[1]: rate_limit:{name}
        # ARGV[1]: now (ms)
        # ARGV[2]: window (ms)
        # ARGV[3]: limit
        # ARGV[4]: member (unique per request)
        #
        # Returns {allowed (1|0), remaining, reset_at_ms}
        #
        # INVARIANT: ZADD only happens while ZCARD < limit, so the window never
        # holds more than `limit` entries.
        "local key = KEYS[1]\n"
        "local now = tonumber(ARGV[1])\n"
        "local window = tonumber(ARGV[2])\n"
        "local limit = tonumber(ARGV[3])\n"
        "redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)\n"
        "local count = redis.call('ZCARD', key)\n"
        "local allowed = 0\n"
        "if count < limit then\n"
        "  redis.call('ZADD', key, now, ARGV[4])\n"
        "  redis.call('PEXPIRE', key, window)\n"
        "  count = count + 1\n"
        "  allowed = 1\n"
        "end\n"
        "local reset_at = now + window\n"
        "local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')\n"
        "if oldest[2] then\n"
        "  reset_at = tonumber(oldest[2]) + window\n"
        "end\n"
        "local remaining = limit - count\n"
        "if remaining < 0 then remaining = 0 end\n"
        "return {allowed, remaining, reset_at}\n"
    )

    SLIDING_WINDOW_USAGE: str = (
        # Prune and report usage without recording a request.
        #
        # KEYS[1]: rate_limit:{name}
        # ARGV[1]: now (ms)
        # ARGV[2]: window (ms)
        #
        # Returns {count, reset_at_ms}
        "local key = KEYS[1]\n"
        "local now = tonumber(ARGV[1])\n"
        "local window = tonumber(ARGV[2])\n"
        "redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)\n"
        "local count = redis.call('ZCARD', key)\n"
        "local reset_at = now + window\n"
        "local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')\n"
        "if oldest[2] then\n"
        "  reset_at = tonumber(oldest[2]) + window\n"
        "end\n"
        "return {count, reset_at}\n"
    )

    # ─────────────────────────────────────────────────────────────────────────
    # CIRCUIT BREAKER: hash with state, failures, open_until, trial_started
    # ─────────────────────────────────────────────────────────────────────────

    CIRCUIT_BEFORE_CALL: str = (
        # Decide whether a call may proceed.
        #
        # KEYS[1]: circuit:{service}
        # ARGV[1]: now (ms)
        # ARGV[2]: trial timeout (ms), a half-open trial older than this is abandoned
        #
        # Returns {allowed (1|0), open_until_ms}
        #
        # INVARIANT: open -> half_open admits exactly one caller; the rest fail
        # fast until that trial records success or failure.
        "local key = KEYS[1]\n"
        "local now = tonumber(ARGV[1])\n"
        "local trial_timeout = tonumber(ARGV[2])\n"
        "local state = redis.call('HGET', key, 'state') or 'closed'\n"
        "if state == 'closed' then\n"
        "  return {1, 0}\n"
        "end\n"
        "local open_until = tonumber(redis.call('HGET', key, 'open_until') or '0')\n"
        "if state == 'open' then\n"
        "  if now < open_until then\n"
        "    return {0, open_until}\n"
        "  end\n"
        "  redis.call('HSET', key, 'state', 'half_open', 'trial_started', now)\n"
        "  return {1, 0}\n"
        "end\n"
        "local trial_started = tonumber(redis.call('HGET', key, 'trial_started') or '0')\n"
        "if now - trial_started > trial_timeout then\n"
        "  redis.call('HSET', key, 'trial_started', now)\n"
        "  return {1, 0}\n"
        "end\n"
        "return {0, open_until}\n"
    )

    CIRCUIT_RECORD_FAILURE: str = (
        # Count a failure and open the breaker at the threshold.
        #
        # KEYS[1]: circuit:{service}
        # ARGV[1]: now (ms)
        # ARGV[2]: failure threshold
        # ARGV[3]: cooldown (ms)
        # ARGV[4]: key ttl (ms)
        #
        # Returns {opened (1|0), failures}
        "local key = KEYS[1]\n"
        "local now = tonumber(ARGV[1])\n"
        "local threshold = tonumber(ARGV[2])\n"
        "local cooldown = tonumber(ARGV[3])\n"
        "local ttl = tonumber(ARGV[4])\n"
        "local state = redis.call('HGET', key, 'state') or 'closed'\n"
        "local failures = redis.call('HINCRBY', key, 'failures', 1)\n"
        "if state == 'half_open' or failures >= threshold then\n"
        "  redis.call('HSET', key, 'state', 'open', 'open_until', now + cooldown)\n"
        "  redis.call('PEXPIRE', key, ttl)\n"
        "  return {1, failures}\n"
        "end\n"
        "redis.call('HSET', key, 'state', 'closed')\n"
        "redis.call('PEXPIRE', key, ttl)\n"
        "return {0, failures}\n"
    )

    CIRCUIT_RECORD_SUCCESS: str = (
        # Close the breaker and clear the failure tally.
        #
        # KEYS[1]: circuit:{service}
        #
        # Returns 1 if state existed, 0 otherwise
        "return redis.call('DEL', KEYS[1])\n"
    )
