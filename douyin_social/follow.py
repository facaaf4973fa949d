"""Follow relations between users, cached in Redis sets."""

from __future__ import annotations

import logging
import random
from datetime import timedelta
from enum import IntEnum
from typing import Any, Callable, Iterable, Mapping, Protocol

import redis

from .models import FriendUser, Message, User

_log = logging.getLogger(__name__)

FOLLOW_ADD_QUEUE = "follow_add"
FOLLOW_DEL_QUEUE = "follow_del"
UNKNOWN_USER_NAME = "未知用户"

Publisher = Callable[[str, str], Any]
NameLookup = Callable[[list[int]], Mapping[int, str]]


class BuildType(IntEnum):
    """Which list a user is being built for."""

    FOLLOWING = 0
    FOLLOWER = 1


class FollowRepository(Protocol):
    """Persistent store of follow relations."""

    def find_ever_following(self, user_id: int, target_id: int) -> Any | None:
        """Return the relation record, active or cancelled, or None if there never was one."""
        ...

    def update_follow_relation(self, user_id: int, target_id: int, followed: int) -> Any:
        """Set whether an existing relation is active (1) or cancelled (0)."""
        ...

    def insert_follow_relation(self, user_id: int, target_id: int) -> Any:
        """Record a new active relation."""
        ...

    def get_followings_info(self, user_id: int) -> tuple[list[int], int]:
        """Return the ids the user follows and their number."""
        ...

    def get_followers_info(self, user_id: int) -> tuple[list[int], int]:
        """Return the ids following the user and their number."""
        ...

    def get_friends_info(self, user_id: int) -> tuple[list[int], int]:
        """Return the ids of mutual follows and their number."""
        ...

    def get_following_cnt(self, user_id: int) -> int:
        """Return how many users the user follows."""
        ...

    def get_follower_cnt(self, user_id: int) -> int:
        """Return how many users follow the user."""
        ...

    def find_follow_relation(self, user_id: int, target_id: int) -> bool:
        """Return whether the user currently follows the target."""
        ...


def cache_ttl() -> timedelta:
    """Return a cache lifetime of 10 minutes plus up to 20 random minutes."""
    return timedelta(minutes=10 + random.randrange(20))


def parse_ids(values: Iterable[str | bytes]) -> list[int]:
    """Convert cached set members to integer ids."""
    return [int(value) for value in values]


def _short_ttl(count: int) -> timedelta | int:
    # Small sets change noticeably, so they expire quickly; large ones can live longer.
    if count < 100:
        return max(1, random.randrange(5))
    if count < 1000:
        return 60 + random.randrange(5)
    return cache_ttl()


class FollowService:
    """Follow, unfollow and list followings, followers and friends."""

    def __init__(
        self,
        repository: FollowRepository,
        followings: Any,
        followers: Any,
        friends: Any,
        publisher: Publisher | None = None,
        user_names: NameLookup | None = None,
        messages: Any = None,
        default_avatar: str = "",
    ) -> None:
        self.repository = repository
        self.followings = followings
        self.followers = followers
        self.friends = friends
        self.publisher = publisher
        self.user_names = user_names
        self.messages = messages
        self.default_avatar = default_avatar

    # ------------------------------------------------------------------ cache

    def _exists(self, cache: Any, user_id: int) -> bool:
        try:
            return cache.exists(str(user_id)) > 0
        except redis.RedisError as exc:
            _log.warning("Check Redis existence failed: %s", exc)
            return False

    def _import(self, cache: Any, user_id: int, ids: Iterable[int]) -> None:
        key = str(user_id)
        members = list(ids)
        try:
            if members:
                cache.sadd(key, *members)
            cache.expire(key, cache_ttl())
        except redis.RedisError as exc:
            _log.warning("Import to Redis failed: %s", exc)

    def _add_member(self, cache: Any, user_id: int, member: int) -> None:
        try:
            cache.sadd(str(user_id), member)
        except redis.RedisError as exc:
            _log.warning("Redis SADD failed: %s", exc)

    def _remove_member(self, cache: Any, user_id: int, member: int) -> None:
        try:
            cache.srem(str(user_id), member)
        except redis.RedisError as exc:
            _log.warning("Redis SREM failed: %s", exc)

    def _ids_cached(
        self, cache: Any, user_id: int, loader: Callable[[int], tuple[list[int], int]]
    ) -> list[int]:
        key = str(user_id)
        if cache.exists(key) > 0:
            return parse_ids(cache.smembers(key))
        ids, _count = loader(user_id)
        self._import(cache, user_id, ids)
        return list(ids)

    def _publish(self, queue: str, body: str) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher(queue, body)
        except Exception as exc:
            _log.warning("Publish follow message failed: %s", exc)

    def _add_to_cache_when_follow(self, user_id: int, target_id: int) -> None:
        repo = self.repository
        try:
            if not self._exists(self.followings, user_id):
                ids, _ = repo.get_followings_info(user_id)
                self._import(self.followings, user_id, ids)
            self._add_member(self.followings, user_id, target_id)

            if not self._exists(self.followers, target_id):
                ids, _ = repo.get_followers_info(target_id)
                self._import(self.followers, target_id, ids)
            self._add_member(self.followers, target_id, user_id)

            try:
                mutual = self.check_is_following(target_id, user_id)
            except Exception:
                mutual = False
            if not mutual:
                return

            if not self._exists(self.friends, user_id):
                ids, _ = repo.get_friends_info(user_id)
                self._import(self.friends, user_id, ids)
            self._add_member(self.friends, user_id, target_id)

            if not self._exists(self.friends, target_id):
                ids, _ = repo.get_friends_info(target_id)
                self._import(self.friends, target_id, ids)
            self._add_member(self.friends, target_id, user_id)
        except Exception as exc:
            _log.warning("Updating follow cache failed: %s", exc)

    def _remove_from_cache_when_cancel(self, user_id: int, target_id: int) -> None:
        self._remove_member(self.followings, user_id, target_id)
        self._remove_member(self.followers, target_id, user_id)
        self._remove_member(self.friends, user_id, target_id)
        self._remove_member(self.friends, target_id, user_id)

    # ---------------------------------------------------------------- actions

    def follow_action(self, user_id: int, target_id: int) -> bool:
        """Make the user follow the target."""
        follow = self.repository.find_ever_following(user_id, target_id)
        if follow is not None:
            self.repository.update_follow_relation(user_id, target_id, 1)
            self._publish(FOLLOW_ADD_QUEUE, f"{user_id}-{target_id}-update")
        else:
            self.repository.insert_follow_relation(user_id, target_id)
            self._publish(FOLLOW_ADD_QUEUE, f"{user_id}-{target_id}-insert")
        self._add_to_cache_when_follow(user_id, target_id)
        return True

    def cancel_follow_action(self, user_id: int, target_id: int) -> bool:
        """Stop the user following the target; False if there was no relation."""
        follow = self.repository.find_ever_following(user_id, target_id)
        if follow is None:
            return False
        self.repository.update_follow_relation(user_id, target_id, 0)
        self._publish(FOLLOW_DEL_QUEUE, f"{user_id}-{target_id}-update")
        self._remove_from_cache_when_cancel(user_id, target_id)
        return True

    # ------------------------------------------------------------------ lists

    def _list(self, cache: Any, user_id: int, loader, build_type: BuildType) -> list[User]:
        try:
            ids = self._ids_cached(cache, user_id, loader)
        except Exception as exc:
            _log.warning("Reading id list failed: %s", exc)
            ids = []
        try:
            return self.build_users(user_id, ids, build_type)
        except Exception as exc:
            _log.warning("BuildUser failed: %s", exc)
            return [User() for _ in ids]

    def get_followings(self, user_id: int) -> list[User]:
        """Return the users the given user follows."""
        return self._list(
            self.followings, user_id, self.repository.get_followings_info, BuildType.FOLLOWING
        )

    def get_followers(self, user_id: int) -> list[User]:
        """Return the users following the given user."""
        return self._list(
            self.followers, user_id, self.repository.get_followers_info, BuildType.FOLLOWER
        )

    def get_friends(self, user_id: int) -> list[FriendUser]:
        """Return mutual follows, each with the latest message exchanged."""
        try:
            ids = self._ids_cached(self.friends, user_id, self.repository.get_friends_info)
        except Exception as exc:
            _log.warning("GetFriendsByRedis failed: %s", exc)
            ids = []
        try:
            return self.build_friend_users(user_id, ids)
        except Exception as exc:
            _log.warning("BuildFriendUser failed: %s", exc)
            return [FriendUser() for _ in ids]

    # ----------------------------------------------------------------- counts

    def _count(self, cache: Any, user_id: int, loader) -> int:
        key = str(user_id)
        if cache.exists(key) > 0:
            count = int(cache.scard(key))
            cache.expire(key, _short_ttl(count))
            return count
        ids, _ = loader(user_id)
        self._import(cache, user_id, ids)
        return len(ids)

    def get_following_cnt(self, user_id: int) -> int:
        """Return how many users the given user follows."""
        return self._count(self.followings, user_id, self.repository.get_followings_info)

    def get_follower_cnt(self, user_id: int) -> int:
        """Return how many users follow the given user."""
        return self._count(self.followers, user_id, self.repository.get_followers_info)

    def check_is_following(self, user_id: int, target_id: int) -> bool:
        """Return whether the user follows the target."""
        key = str(user_id)
        if self.followings.exists(key) > 0:
            return bool(self.followings.sismember(key, target_id))
        ids, _ = self.repository.get_followings_info(user_id)
        self._import(self.followings, user_id, ids)
        return bool(self.repository.find_follow_relation(user_id, target_id))

    # ------------------------------------------------------------------ batch

    def batch_get_user_names(self, ids: list[int]) -> dict[int, str]:
        """Return the names of the given users."""
        if not ids or self.user_names is None:
            return {}
        return dict(self.user_names(list(ids)))

    def _batch_counts(self, cache: Any, ids: list[int], fallback) -> dict[int, int]:
        counts: dict[int, int] = {}
        for user_id in ids:
            key = str(user_id)
            try:
                present = cache.exists(key) > 0
            except redis.RedisError as exc:
                _log.warning("Check Redis existence failed: %s", exc)
                continue
            try:
                counts[user_id] = int(cache.scard(key)) if present else int(fallback(user_id))
            except Exception:
                counts[user_id] = 0
        return counts

    def batch_get_following_counts(self, ids: list[int]) -> dict[int, int]:
        """Return the following count of each user."""
        return self._batch_counts(self.followings, ids, self.repository.get_following_cnt)

    def batch_get_follower_counts(self, ids: list[int]) -> dict[int, int]:
        """Return the follower count of each user."""
        return self._batch_counts(self.followers, ids, self.repository.get_follower_cnt)

    def batch_check_is_following(self, user_id: int, target_ids: list[int]) -> dict[int, bool]:
        """Return, for each target, whether the user follows it."""
        if not target_ids:
            return {}
        result: dict[int, bool] = {}
        key = str(user_id)
        if self._exists(self.followings, user_id):
            for target_id in target_ids:
                try:
                    result[target_id] = bool(self.followings.sismember(key, target_id))
                except redis.RedisError:
                    result[target_id] = False
        else:
            for target_id in target_ids:
                try:
                    result[target_id] = bool(
                        self.repository.find_follow_relation(user_id, target_id)
                    )
                except Exception:
                    result[target_id] = False
        return result

    def batch_get_latest_messages(
        self, user_id: int, friend_ids: list[int]
    ) -> dict[int, Message | None]:
        """Return the latest message exchanged with each friend; failures are skipped."""
        result: dict[int, Message | None] = {}
        if self.messages is None:
            return result
        for friend_id in friend_ids:
            try:
                result[friend_id] = self.messages.get_latest_message(user_id, friend_id)
            except Exception as exc:
                _log.warning(
                    "GetLatestMessage failed for userId %d, friendId %d: %s",
                    user_id, friend_id, exc,
                )
        return result

    # ------------------------------------------------------------------ build

    def build_users(self, user_id: int, ids: list[int], build_type: int) -> list[User]:
        """Build user entries for a following or follower list."""
        if not ids:
            return []
        names = self.batch_get_user_names(ids)
        following_counts = self.batch_get_following_counts(ids)
        follower_counts = self.batch_get_follower_counts(ids)
        is_follower_list = build_type == BuildType.FOLLOWER
        follows = self.batch_check_is_following(user_id, ids) if is_follower_list else {}
        return [
            User(
                id=uid,
                name=names.get(uid) or UNKNOWN_USER_NAME,
                follow_count=following_counts.get(uid, 0),
                follower_count=follower_counts.get(uid, 0),
                is_follow=follows.get(uid, False) if is_follower_list else True,
            )
            for uid in ids
        ]

    def build_friend_users(self, user_id: int, ids: list[int]) -> list[FriendUser]:
        """Build friend entries, each carrying the latest message if any."""
        if not ids:
            return []
        names = self.batch_get_user_names(ids)
        following_counts = self.batch_get_following_counts(ids)
        follower_counts = self.batch_get_follower_counts(ids)
        latest = self.batch_get_latest_messages(user_id, ids)
        friends = []
        for uid in ids:
            friend = FriendUser(
                id=uid,
                name=names.get(uid) or UNKNOWN_USER_NAME,
                follow_count=following_counts.get(uid, 0),
                follower_count=follower_counts.get(uid, 0),
                is_follow=True,
                avatar=self.default_avatar,
            )
            message = latest.get(uid)
            if message is not None:
                friend.msg_content = message.content
                friend.msg_type = message.action_type
            friends.append(friend)
        return friends