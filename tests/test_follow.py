import sqlite3
from datetime import timedelta

import pytest
import redis

from douyin_social.follow import (
    FOLLOW_ADD_QUEUE,
    FOLLOW_DEL_QUEUE,
    UNKNOWN_USER_NAME,
    BuildType,
    FollowService,
    cache_ttl,
    parse_ids,
)
from douyin_social.messages import MessageService, create_schema

NAMES = {1: "Alice", 2: "Bob", 3: "Carol"}


class FakeSets:
    def __init__(self):
        self.sets = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("down")

    def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if self.sets.get(key))

    def sadd(self, key, *members):
        self._check()
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(str(m) for m in members)
        return len(bucket) - before

    def srem(self, key, *members):
        self._check()
        bucket = self.sets.get(key, set())
        for m in members:
            bucket.discard(str(m))
        return 0

    def smembers(self, key):
        self._check()
        return set(self.sets.get(key, ()))

    def scard(self, key):
        self._check()
        return len(self.sets.get(key, ()))

    def sismember(self, key, member):
        self._check()
        return str(member) in self.sets.get(key, ())

    def expire(self, key, ttl):
        self._check()
        if key in self.sets:
            self.ttls[key] = ttl
            return True
        return False


class FakeRepo:
    def __init__(self):
        self.relations = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RuntimeError("database down")

    def find_ever_following(self, user_id, target_id):
        self._check()
        key = (user_id, target_id)
        return {"followed": self.relations[key]} if key in self.relations else None

    def update_follow_relation(self, user_id, target_id, followed):
        self._check()
        self.relations[(user_id, target_id)] = followed
        return True

    def insert_follow_relation(self, user_id, target_id):
        self._check()
        self.relations[(user_id, target_id)] = 1
        return True

    def _followings(self, user_id):
        return sorted(t for (a, t), f in self.relations.items() if a == user_id and f)

    def _followers(self, user_id):
        return sorted(a for (a, t), f in self.relations.items() if t == user_id and f)

    def get_followings_info(self, user_id):
        self._check()
        ids = self._followings(user_id)
        return ids, len(ids)

    def get_followers_info(self, user_id):
        self._check()
        ids = self._followers(user_id)
        return ids, len(ids)

    def get_friends_info(self, user_id):
        self._check()
        ids = [t for t in self._followings(user_id) if self.relations.get((t, user_id)) == 1]
        return ids, len(ids)

    def get_following_cnt(self, user_id):
        self._check()
        return len(self._followings(user_id))

    def get_follower_cnt(self, user_id):
        self._check()
        return len(self._followers(user_id))

    def find_follow_relation(self, user_id, target_id):
        self._check()
        return self.relations.get((user_id, target_id)) == 1


@pytest.fixture
def connection():
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def env(connection):
    repo = FakeRepo()
    caches = {"followings": FakeSets(), "followers": FakeSets(), "friends": FakeSets()}
    published = []
    messages = MessageService(connection)
    service = FollowService(
        repo,
        caches["followings"],
        caches["followers"],
        caches["friends"],
        lambda queue, body: published.append((queue, body)),
        lambda ids: {i: NAMES[i] for i in ids if i in NAMES},
        messages,
        "avatar.png",
    )
    return service, repo, caches, published, messages


def test_cache_ttl_range():
    for _ in range(50):
        ttl = cache_ttl()
        assert timedelta(minutes=10) <= ttl < timedelta(minutes=30)


def test_parse_ids():
    assert parse_ids(["1", "22", b"3"]) == [1, 22, 3]
    with pytest.raises(ValueError):
        parse_ids(["x"])


def test_follow_action(env):
    service, repo, caches, published, _ = env
    assert service.follow_action(1, 2) is True
    assert repo.relations[(1, 2)] == 1
    assert published == [(FOLLOW_ADD_QUEUE, "1-2-insert")]
    assert caches["followings"].sets["1"] == {"2"}
    assert caches["followers"].sets["2"] == {"1"}
    assert "1" not in caches["friends"].sets


def test_refollow_publishes_update(env):
    service, repo, _, published, _ = env
    service.follow_action(1, 2)
    service.cancel_follow_action(1, 2)
    service.follow_action(1, 2)
    assert published[-1] == (FOLLOW_ADD_QUEUE, "1-2-update")
    assert repo.relations[(1, 2)] == 1


def test_mutual_follow_creates_friends(env):
    service, _, caches, _, _ = env
    service.follow_action(1, 2)
    service.follow_action(2, 1)
    assert caches["friends"].sets["1"] == {"2"}
    assert caches["friends"].sets["2"] == {"1"}


def test_cancel_follow_action(env):
    service, repo, caches, published, _ = env
    service.follow_action(1, 2)
    service.follow_action(2, 1)
    assert service.cancel_follow_action(1, 2) is True
    assert repo.relations[(1, 2)] == 0
    assert published[-1] == (FOLLOW_DEL_QUEUE, "1-2-update")
    assert "2" not in caches["followings"].sets["1"]
    assert "1" not in caches["followers"].sets["2"]
    assert "2" not in caches["friends"].sets["1"]
    assert "1" not in caches["friends"].sets["2"]


def test_cancel_without_relation(env):
    service, _, _, published, _ = env
    assert service.cancel_follow_action(1, 2) is False
    assert published == []


def test_follow_action_repository_failure(env):
    service, repo, _, _, _ = env
    repo.fail = True
    with pytest.raises(RuntimeError):
        service.follow_action(1, 2)


def test_follow_survives_publisher_failure(env):
    service, repo, caches, _, _ = env

    def broken(queue, body):
        raise ConnectionError("broker down")

    service.publisher = broken
    assert service.follow_action(1, 3) is True
    assert caches["followings"].sets["1"] == {"3"}


def test_get_followings(env):
    service, _, _, _, _ = env
    service.follow_action(1, 2)
    service.follow_action(1, 3)
    users = sorted(service.get_followings(1), key=lambda u: u.id)
    assert [u.id for u in users] == [2, 3]
    assert [u.name for u in users] == ["Bob", "Carol"]
    assert all(u.is_follow for u in users)
    assert users[0].follower_count == 1


def test_get_followings_from_database(env):
    service, repo, caches, _, _ = env
    repo.relations[(1, 2)] = 1
    users = service.get_followings(1)
    assert [u.id for u in users] == [2]
    assert caches["followings"].sets["1"] == {"2"}
    assert isinstance(caches["followings"].ttls["1"], timedelta)


def test_get_followers(env):
    service, _, _, _, _ = env
    service.follow_action(1, 2)
    service.follow_action(3, 2)
    service.follow_action(2, 1)
    users = {u.id: u for u in service.get_followers(2)}
    assert set(users) == {1, 3}
    assert users[1].is_follow is True
    assert users[3].is_follow is False


def test_get_friends_with_latest_message(env):
    service, _, _, _, messages = env
    service.follow_action(1, 2)
    service.follow_action(2, 1)
    messages.send_message(1, 2, 1, "hi")
    friends = service.get_friends(2)
    assert len(friends) == 1
    friend = friends[0]
    assert friend.id == 1
    assert friend.name == "Alice"
    assert friend.avatar == "avatar.png"
    assert friend.msg_content == "hi"
    assert friend.msg_type == 1
    assert friend.is_follow is True


def test_get_following_cnt(env):
    service, repo, caches, _, _ = env
    repo.relations[(2, 1)] = 1
    repo.relations[(2, 3)] = 1
    assert service.get_following_cnt(2) == 2
    assert isinstance(caches["followings"].ttls["2"], timedelta)
    assert service.get_following_cnt(2) == 2
    assert 1 <= caches["followings"].ttls["2"] <= 4


def test_get_follower_cnt(env):
    service, repo, caches, _, _ = env
    repo.relations[(1, 2)] = 1
    assert service.get_follower_cnt(2) == 1
    assert service.get_follower_cnt(2) == 1
    assert 1 <= caches["followers"].ttls["2"] <= 4


def test_get_following_cnt_redis_failure(env):
    service, _, caches, _, _ = env
    caches["followings"].fail = True
    with pytest.raises(redis.ConnectionError):
        service.get_following_cnt(2)


def test_get_followings_redis_failure_returns_empty(env):
    service, _, caches, _, _ = env
    caches["followings"].fail = True
    assert service.get_followings(1) == []


def test_check_is_following(env):
    service, repo, _, _, _ = env
    repo.relations[(1, 2)] = 1
    assert service.check_is_following(1, 2) is True
    assert service.check_is_following(1, 3) is False
    service.cancel_follow_action(1, 2)
    assert service.check_is_following(1, 2) is False


def test_build_users_empty_and_unknown_name(env):
    service, _, _, _, _ = env
    assert service.build_users(1, [], BuildType.FOLLOWING) == []
    users = service.build_users(1, [99], BuildType.FOLLOWING)
    assert users[0].name == UNKNOWN_USER_NAME
    assert users[0].is_follow is True


def test_batch_helpers(env):
    service, repo, _, _, _ = env
    repo.relations[(1, 2)] = 1
    assert service.batch_get_user_names([]) == {}
    assert service.batch_get_user_names([1, 2]) == {1: "Alice", 2: "Bob"}
    assert service.batch_get_following_counts([1, 2]) == {1: 1, 2: 0}
    assert service.batch_get_follower_counts([2]) == {2: 1}
    assert service.batch_check_is_following(1, [2, 3]) == {2: True, 3: False}
    assert service.batch_get_latest_messages(1, [2]) == {2: None}