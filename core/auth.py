# auth.py - Bearer-token user resolution for FastAPI
import time
import secrets
import logging
from collections import defaultdict
from typing import Callable, Optional
from fastapi import Request, HTTPException

import config

logger = logging.getLogger(__name__)

# Failed-auth rate limiting state
_failures: dict = defaultdict(list)
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 10  # failed attempts per window

# Optional override: token -> user_id (or None). Replaces the AUTH_TOKENS lookup.
_token_verifier: Optional[Callable[[str], Optional[str]]] = None


def set_token_verifier(verifier: Optional[Callable[[str], Optional[str]]]):
    """Install an external session/identity check. None restores AUTH_TOKENS."""
    global _token_verifier
    _token_verifier = verifier


def check_rate_limit(ip: str) -> bool:
    """Returns True if this client has too many recent failures."""
    now = time.time()
    _failures[ip] = [t for t in _failures[ip] if now - t < RATE_LIMIT_WINDOW]
    return len(_failures[ip]) >= RATE_LIMIT_MAX


def _record_failure(ip: str):
    _failures[ip].append(time.time())


def verify_token(token: str) -> Optional[str]:
    """Map a bearer token to a user id using AUTH_TOKENS. Constant-time compare."""
    if _token_verifier is not None:
        return _token_verifier(token)

    user_id = None
    for known, uid in (config.get('AUTH_TOKENS') or {}).items():
        if secrets.compare_digest(token.encode(), str(known).encode()):
            user_id = uid
    return user_id


def extract_token(request: Request) -> Optional[str]:
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() == 'bearer' and token.strip():
        return token.strip()
    return None


async def require_user(request: Request) -> str:
    """Dependency that resolves the authenticated user id or raises 401."""
    ip = get_client_ip(request)
    if check_rate_limit(ip):
        logger.warning(f"[AUTH] Rate limited {ip}")
        raise HTTPException(status_code=429, detail="Too many failed attempts")

    token = extract_token(request)
    user_id = verify_token(token) if token else None
    if not user_id:
        _record_failure(ip)
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def get_client_ip(request: Request) -> str:
    """Direct connection IP only (X-Forwarded-For is spoofable)."""
    return request.client.host if request.client else '127.0.0.1'
