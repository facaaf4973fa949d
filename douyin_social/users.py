"""User accounts, and user details served through a cache and a worker pool."""

from __future__ import annotations

import json
import logging
import queue
import sqlite3
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .encryption import PasswordMismatchError, compare_password, encrypt_password
from .follow import cache_ttl
from .models import User

_log = logging.getLogger(__name__)

DEFAULT_ROLE = "common_user"
DEFAULT_MIN_WORKERS = 10
DEFAULT_MAX_WORKERS = 100

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'common_user',
    avatar TEXT NOT NULL DEFAULT '',
    background_image TEXT NOT NULL DEFAULT '',
    signature TEXT NOT NULL DEFAULT ''
)
"""

_COLUMNS = "id, name, password, role, avatar, background_image, signature"

_STOP = object()

Handler = Callable[[int, "int | None"], "User | None"]


def user_cache_key(user_id: int) -> str:
    """Return the cache key under which a user's details are stored."""
    return f"user_details:{user_id}"


def create_schema(connection: sqlite3.Connection) -> None:
    """Create the users table if it does not exist."""
    connection.execute(_SCHEMA)
    connection.commit()


@dataclass
class UserRecord:
    """A stored user account."""

    id: int = 0
    name: str = ""
    password: str = field(default="", repr=False)
    role: str = DEFAULT_ROLE
    avatar: str = ""
    background_image: str = ""
    signature: str = ""

    @classmethod
    def from_row(cls, row: tuple) -> "UserRecord":
        return cls(*row)


class PoolBusyError(RuntimeError):
    """Raised when the worker pool's queue is full."""


class PoolClosedError(RuntimeError):
    """Raised when submitting to a closed worker pool."""


class UserWorkerPool:
    """A thread pool for user-detail queries that grows and shrinks with its queue."""

    QUEUE_SIZE = 10000
    MONITOR_INTERVAL = 5.0

    def __init__(self, handler: Handler, min_workers: int, max_workers: int) -> None:
        if min_workers < 1:
            raise ValueError("min_workers must be at least 1")
        if max_workers < min_workers:
            raise ValueError("max_workers must not be less than min_workers")
        self.handler = handler
        self.min_workers = min_workers
        self.max_workers = max_workers
        self._tasks: queue.Queue = queue.Queue(maxsize=self.QUEUE_SIZE)
        self._scale_lock = threading.Lock()
        self._threads: set[threading.Thread] = set()
        self._threads_lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()
        self._worker_count = min_workers
        for _ in range(min_workers):
            self._spawn()
        self._monitor = threading.Thread(target=self._watch, name="user-pool-monitor", daemon=True)
        self._monitor.start()

    @property
    def worker_count(self) -> int:
        """The number of workers the pool currently aims to run."""
        return self._worker_count

    @property
    def pending(self) -> int:
        """The number of tasks waiting in the queue."""
        return self._tasks.qsize()

    def _spawn(self) -> None:
        thread = threading.Thread(target=self._work, name="user-pool-worker", daemon=True)
        with self._threads_lock:
            self._threads.add(thread)
        thread.start()

    def _work(self) -> None:
        try:
            while True:
                item = self._tasks.get()
                if item is _STOP:
                    return
                user_id, cur_id, future = item
                if not future.set_running_or_notify_cancel():
                    continue
                try:
                    future.set_result(self.handler(user_id, cur_id))
                except BaseException as exc:
                    future.set_exception(exc)
        finally:
            with self._threads_lock:
                self._threads.discard(threading.current_thread())

    def _watch(self) -> None:
        while not self._stop.wait(self.MONITOR_INTERVAL):
            self.scale_workers(self._tasks.qsize())

    def scale_workers(self, queue_len: int) -> None:
        """Double the workers when the queue backs up, halve them when it is empty."""
        with self._scale_lock:
            if self._closed:
                return
            count = self._worker_count
            if queue_len > count // 2 and count < self.max_workers:
                target = min(count * 2, self.max_workers)
                _log.info(
                    "扩容Worker Pool",
                    extra={"fields": {"from": count, "to": target, "queueLen": queue_len}},
                )
                for _ in range(target - count):
                    self._spawn()
                self._worker_count = count = target

            if queue_len == 0 and count > self.min_workers:
                target = max(count // 2, self.min_workers)
                _log.info(
                    "缩容Worker Pool",
                    extra={"fields": {"from": count, "to": target, "queueLen": queue_len}},
                )
                for _ in range(count - target):
                    self._tasks.put(_STOP)
                self._worker_count = target

    def submit(self, user_id: int, cur_id: int | None = None) -> User | None:
        """Queue a query and wait for its result."""
        future: Future = Future()
        with self._scale_lock:
            if self._closed:
                raise PoolClosedError("worker pool已关闭")
            try:
                self._tasks.put_nowait((user_id, cur_id, future))
            except queue.Full:
                backlog = self._tasks.qsize() + 100
                threading.Thread(
                    target=self.scale_workers, args=(backlog,), daemon=True
                ).start()
                raise PoolBusyError("系统繁忙，请稍后重试") from None
        return future.result()

    def close(self) -> None:
        """Stop accepting work, let queued tasks finish and stop all workers."""
        with self._scale_lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        with self._threads_lock:
            threads = list(self._threads)
        for _ in threads:
            self._tasks.put(_STOP)
        for thread in threads:
            thread.join()
        self._monitor.join()

    def __enter__(self) -> "UserWorkerPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class UserService:
    """Registers users, checks logins and assembles user details.

    The connection is used from worker threads, so it must be opened with
    ``check_same_thread=False``.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        follows: Any = None,
        likes: Any = None,
        details_cache: Any = None,
        video_counter: Callable[[int], int] | None = None,
        received_likes: Callable[[list[int]], Mapping[int, int]] | None = None,
    ) -> None:
        self.connection = connection
        self.follows = follows
        self.likes = likes
        self.details_cache = details_cache
        self.video_counter = video_counter
        self.received_likes = received_likes
        self._db_lock = threading.Lock()
        self._pool: UserWorkerPool | None = None
        self._pool_lock = threading.Lock()

    # --------------------------------------------------------------- accounts

    def _fetch(self, sql: str, params: tuple) -> list[tuple]:
        with self._db_lock:
            return self.connection.execute(sql, params).fetchall()

    def insert_user(self, username: str, password: str, role: str = DEFAULT_ROLE) -> UserRecord:
        """Create a user with a hashed password and return the stored record."""
        hashed = encrypt_password(password)
        try:
            with self._db_lock, self.connection:
                cursor = self.connection.execute(
                    "INSERT INTO users (name, password, role) VALUES (?, ?, ?)",
                    (username, hashed, role),
                )
        except sqlite3.IntegrityError as exc:
            _log.error("新增用户失败", extra={"fields": {"err": str(exc)}})
            raise ValueError(f"user {username!r} already exists") from exc
        rows = self._fetch(f"SELECT {_COLUMNS} FROM users WHERE id = ?", (cursor.lastrowid,))
        return UserRecord.from_row(rows[0])

    def get_user_basic_by_password(self, username: str, password: str) -> UserRecord | None:
        """Return the user if the name exists and the password matches, else None."""
        try:
            rows = self._fetch(f"SELECT {_COLUMNS} FROM users WHERE name = ?", (username,))
        except sqlite3.Error as exc:
            _log.error("查询用户失败", extra={"fields": {"err": str(exc)}})
            return None
        if not rows:
            _log.warning("未查询到用户", extra={"fields": {"error": "用户名或密码错误"}})
            return None
        record = UserRecord.from_row(rows[0])
        try:
            compare_password(record.password, password)
        except PasswordMismatchError as exc:
            _log.warning("密码不正确", extra={"fields": {"error": str(exc)}})
            return None
        return record

    def get_user_name(self, user_id: int) -> str:
        """Return the user's name, or an empty string if there is no such user."""
        rows = self._fetch("SELECT name FROM users WHERE id = ?", (user_id,))
        return rows[0][0] if rows else ""

    # ---------------------------------------------------------------- details

    def _cached(self, user_id: int) -> User | None:
        if self.details_cache is None:
            return None
        try:
            data = self.details_cache.get(user_cache_key(user_id))
        except Exception as exc:
            _log.debug("reading user cache failed: %s", exc)
            return None
        if data is None:
            return None
        try:
            return User.from_dict(json.loads(data))
        except (ValueError, TypeError) as exc:
            _log.error("解析用户缓存失败", extra={"fields": {"userId": user_id, "error": str(exc)}})
            return None

    def _store(self, user: User) -> None:
        if self.details_cache is None:
            return
        data = json.dumps(user.to_dict(), ensure_ascii=False)
        try:
            self.details_cache.set(user_cache_key(user.id), data, ex=cache_ttl())
        except Exception as exc:
            _log.error("写入用户缓存失败", extra={"fields": {"userId": user.id, "error": str(exc)}})

    def _is_following(self, user_id: int, cur_id: int) -> bool | None:
        if self.follows is None:
            return None
        try:
            return bool(self.follows.check_is_following(user_id, cur_id))
        except Exception:
            return None

    def _pool_instance(self) -> UserWorkerPool:
        with self._pool_lock:
            if self._pool is None:
                self._pool = UserWorkerPool(
                    self._process, DEFAULT_MIN_WORKERS, DEFAULT_MAX_WORKERS
                )
            return self._pool

    def _process(self, user_id: int, cur_id: int | None) -> User | None:
        try:
            rows = self._fetch(f"SELECT {_COLUMNS} FROM users WHERE id = ?", (user_id,))
        except sqlite3.Error as exc:
            _log.error("查询用户失败", extra={"fields": {"userId": user_id, "error": str(exc)}})
            return None
        if not rows:
            _log.error("查询用户失败", extra={"fields": {"userId": user_id}})
            return None
        record = UserRecord.from_row(rows[0])
        user = User(
            id=record.id,
            name=record.name,
            avatar=record.avatar,
            background_image=record.background_image,
            signature=record.signature,
        )
        lookups: list[tuple[str, Callable[[], int]]] = []
        if self.video_counter is not None:
            lookups.append(("work_count", lambda: self.video_counter(user_id)))
        if self.follows is not None:
            lookups.append(("follow_count", lambda: self.follows.get_following_cnt(user_id)))
            lookups.append(("follower_count", lambda: self.follows.get_follower_cnt(user_id)))
        if self.received_likes is not None:
            lookups.append(("total_favorited", lambda: self.received_likes([user_id])[user_id]))
        if self.likes is not None:
            lookups.append(
                ("favorite_count", lambda: self.likes.get_user_favorites([user_id])[user_id])
            )
        for attr, lookup in lookups:
            try:
                setattr(user, attr, int(lookup()))
            except Exception as exc:
                _log.debug("%s lookup for user %d failed: %s", attr, user_id, exc)
        if cur_id is not None:
            is_follow = self._is_following(user_id, cur_id)
            if is_follow is not None:
                user.is_follow = is_follow
        self._store(user)
        return user

    def get_user_details_by_id(self, user_id: int, cur_id: int | None = None) -> User | None:
        """Return the user's details from the cache, or query them through the pool.

        The follow flag is always refreshed; None means there is no such user.
        """
        user = self._cached(user_id)
        if user is not None:
            if cur_id is not None:
                is_follow = self._is_following(user_id, cur_id)
                if is_follow is not None:
                    user.is_follow = is_follow
            return user
        return self._pool_instance().submit(user_id, cur_id)

    def close(self) -> None:
        """Shut down the worker pool, if one was started."""
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.close()

    def __enter__(self) -> "UserService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()