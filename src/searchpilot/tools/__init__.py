"""Tools: SSRF gate and per-host rate limiter."""
