"""Rolling suppression window for message-notification emails.

One Redis key per (receiver, sender) pair, written with ``SET NX EX``: the first email
in a window claims the key, later ones find it taken until Redis expires it.
"""

import logging
import os

from redis.exceptions import RedisError

from taskhub.redis_client import get_redis

logger = logging.getLogger(__name__)

EMAIL_COOLDOWN_SECONDS = int(os.getenv("EMAIL_COOLDOWN_SECONDS", "900"))
KEY_PREFIX = "email_cooldown"


class EmailCooldown:
    def __init__(self, redis_client=None, ttl_seconds: int = EMAIL_COOLDOWN_SECONDS):
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds

    @property
    def redis(self):
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def key(self, receiver_id: int, sender_id: int) -> str:
        return f"{KEY_PREFIX}:{receiver_id}:{sender_id}"

    def acquire(self, receiver_id: int, sender_id: int) -> bool:
        """Claim the window for this pair; False while a previous email's window is open."""
        try:
            return bool(self.redis.set(self.key(receiver_id, sender_id), "1", nx=True, ex=self.ttl_seconds))
        except RedisError as exc:
            # Without the cache we cannot tell, so the email goes out
            logger.warning("Email cooldown unavailable for %s<-%s: %s", receiver_id, sender_id, exc)
            return True

    def reset(self, receiver_id: int, sender_id: int):
        self.redis.delete(self.key(receiver_id, sender_id))

    def release(self, receiver_id: int, sender_id: int):
        """Give back a claimed window whose email never went out."""
        try:
            self.reset(receiver_id, sender_id)
        except RedisError as exc:
            logger.warning("Could not release email cooldown for %s<-%s: %s", receiver_id, sender_id, exc)


_cooldown = None


def get_email_cooldown() -> EmailCooldown:
    global _cooldown
    if _cooldown is None:
        _cooldown = EmailCooldown()
    return _cooldown
