"""Redis Lua scripts for the sliding-window limiter.

The default store path is two pipelined round-trips and may admit a small
overcount under concurrency. This script collapses trim, count and the
conditional insert into one server-side operation for deployments that
need the limit enforced exactly.
"""

# KEYS[1]: bucket key
# ARGV[1]: now in epoch milliseconds
# ARGV[2]: window length in milliseconds
# ARGV[3]: max requests
# ARGV[4]: key TTL in seconds
# ARGV[5]: unique event member
# Returns {allowed (0|1), count after the call}
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local now = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local limit = tonumber(ARGV[3])
    local ttl = tonumber(ARGV[4])
    local member = ARGV[5]

    -- Drop events strictly older than the window
    redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now - window_ms))

    local count = redis.call('ZCARD', key)
    if count >= limit then
        return {0, count}
    end

    redis.call('ZADD', key, now, member)
    redis.call('EXPIRE', key, ttl)
    return {1, count + 1}
"""
