"""Cache key builders.

Each kind of data lives under its own prefix so session snapshots, refresh
tokens and throttling counters can never collide.
"""

from __future__ import annotations


def user_session(user_id: str) -> str:
    return f"user:session:{user_id}"


def user_refresh(user_id: str) -> str:
    return f"user:refresh:{user_id}"


def auth_attempts(scope_key: str) -> str:
    return f"auth:attempts:{scope_key}"


def otp_cooldown(subject: str, purpose: str) -> str:
    return f"otp:cooldown:{subject}:{purpose}"


# ── Rate-limit scopes ────────────────────────────────────

def ip_scope(ip: str) -> str:
    return f"ip:{ip}"


def login_scope(ip: str) -> str:
    return f"login:ip:{ip}"


def otp_scope(subject: str, purpose: str) -> str:
    return f"otp:{subject}:{purpose}"
