"""Like counters kept in Redis hashes."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import redis

_log = logging.getLogger(__name__)

USER_LIKES_FIELD = "totalLikes"
VIDEO_LIKES_FIELD = "totalVideoLikes"
_DEFAULT_PORT = 6379


class LikeStoreError(Exception):
    """Raised when the like store cannot be read or updated."""


def _user_key(user_id: int) -> str:
    return f"user:{user_id}"


def _video_key(video_id: int) -> str:
    return f"video:{video_id}"


def _likes_key(video_id: int) -> str:
    return f"likes:{video_id}"


def _to_int(value: Any, what: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise LikeStoreError(f"failed to parse {what}: {exc}") from exc


class LikeCounter:
    """Counts likes given by users and received by videos."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def _run(self, pipe: Any) -> list[Any]:
        try:
            return pipe.execute()
        except redis.RedisError as exc:
            raise LikeStoreError(f"failed to execute pipeline: {exc}") from exc

    def update_like_counts(self, user_id: int, video_id: int, like: bool) -> None:
        """Add or remove one like for both the user and the video."""
        _log.debug("updateLikeCounts")
        delta = 1 if like else -1
        pipe = self.client.pipeline(transaction=False)
        pipe.hincrby(_user_key(user_id), USER_LIKES_FIELD, delta)
        pipe.hincrby(_video_key(video_id), VIDEO_LIKES_FIELD, delta)
        self._run(pipe)

    def get_user_favorites(self, user_ids: Iterable[int]) -> dict[int, int]:
        """Return how many likes each user has given.

        Users without a counter get one initialised to zero and are left out
        of the result.
        """
        ids = list(dict.fromkeys(user_ids))
        pipe = self.client.pipeline(transaction=False)
        for user_id in ids:
            pipe.hget(_user_key(user_id), USER_LIKES_FIELD)
        values = self._run(pipe)

        result: dict[int, int] = {}
        for user_id, value in zip(ids, values):
            if value is None:
                try:
                    self.client.hset(_user_key(user_id), USER_LIKES_FIELD, "0")
                except redis.RedisError as exc:
                    raise LikeStoreError(
                        f"failed to set user favorites for user {user_id}: {exc}"
                    ) from exc
                continue
            result[user_id] = _to_int(value, f"favorites for user {user_id}")
        return result

    def get_total_videos_likes(self, video_ids: Iterable[int]) -> int:
        """Sum the likes received by the given videos.

        A video without a counter makes the whole pipeline fail.
        """
        ids = list(video_ids)
        pipe = self.client.pipeline(transaction=False)
        for video_id in ids:
            pipe.hget(_video_key(video_id), VIDEO_LIKES_FIELD)
        values = self._run(pipe)
        if any(value is None for value in values):
            raise LikeStoreError("failed to execute pipeline: redis: nil")
        return sum(_to_int(value, "likes") for value in values)

    def _like_count(self, video_id: int) -> int:
        try:
            value = self.client.hget(_likes_key(video_id), USER_LIKES_FIELD)
        except redis.RedisError as exc:
            raise LikeStoreError(f"cannot read like count: {exc}") from exc
        if value is None:
            return 0
        return _to_int(value, f"like count of video {video_id}")

    def get_video_like_counts(self, video_ids: Iterable[int]) -> dict[int, int]:
        """Return each video's like count; missing counters count as zero."""
        return {video_id: self._like_count(video_id) for video_id in video_ids}

    def get_total_like_counts(self, video_ids: Iterable[int]) -> int:
        """Sum the like counts of the given videos."""
        return sum(self._like_count(video_id) for video_id in video_ids)


def connect(addr: str, password: str | None = None, db: int = 0) -> LikeCounter:
    """Connect to Redis at ``host:port`` and check the connection."""
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        host, port_text = addr, str(_DEFAULT_PORT)
    host = host or "localhost"
    port = _to_int(port_text, f"port in {addr!r}")
    client = redis.Redis(
        host=host,
        port=port,
        password=password or None,
        db=db,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    try:
        client.ping()
    except redis.RedisError as exc:
        raise LikeStoreError(f"Failed to connect to Redis at {addr}: {exc}") from exc
    _log.info("Successfully connected to Redis at %s", addr)
    return LikeCounter(client)