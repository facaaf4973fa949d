# douyin-social

Services for the social side of a short-video platform. The package covers
following and followers, friends, private messages, user accounts and
profiles, like counters, password hashing and signed login tokens.

It is a library. It has no command-line entry point.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `douyin_social.models`

This module holds dataclasses for the records the services return:

- `User` has the fields `id`, `name`, `follow_count`, `follower_count`,
  `is_follow`, `avatar`, `background_image`, `signature`, `total_favorited`,
  `work_count` and `favorite_count`. `User.to_dict()` returns these fields
  as a dict. `User.from_dict()` builds a `User` from such a dict and ignores
  any keys it does not know.
- `FriendUser` is a `User` with `msg_content` and `msg_type` added. In
  `to_dict()` the content is written under `"message"`, and only when it is
  not empty.
- `Message` has the fields `id`, `sender_id`, `receiver_id`, `action_type`,
  `content`, `created_at` and `updated_at`.

### `douyin_social.encryption`

- `encrypt_password(password)` returns a bcrypt hash made at cost 10. It
  raises `ValueError` if the password is longer than 72 bytes.
- `compare_password(hashed_password, password)` returns nothing when the
  password matches. It raises `PasswordMismatchError`, a subclass of
  `ValueError`, when the password does not match or the hash is malformed.

### `douyin_social.token`

- `Claims` holds `user_id`, `username` and `role`, plus these optional
  standard claims:

  | Attribute    | JWT claim |
  |--------------|-----------|
  | `audience`   | `aud`     |
  | `expires_at` | `exp`     |
  | `token_id`   | `jti`     |
  | `issued_at`  | `iat`     |
  | `issuer`     | `iss`     |
  | `not_before` | `nbf`     |
  | `subject`    | `sub`     |

  A standard claim that is empty is left out of the token.
- `generate_token(secret_key, claims)` signs the claims with HS256.
- `parse_token(secret_key, token_string)` checks the signature and the
  expiry. It accepts HS256, HS384 and HS512 and does not check the
  audience. It returns a `Claims` object, or raises `InvalidTokenError` if
  the token is not valid.

### `douyin_social.likes`

`LikeCounter(client)` wraps a Redis client. It keeps these counters:

- Likes given by each user, in the hash `user:<id>` under the field
  `totalLikes`.
- Likes received by each video, in the hash `video:<id>` under the field
  `totalVideoLikes`.

Its methods:

- `update_like_counts(user_id, video_id, like)` adds 1 to both counters, or
  subtracts 1 when `like` is false.
- `get_user_favorites(user_ids)` returns a dict that maps each user to the
  number of likes they have given. A user with no counter is given one set
  to `"0"` and is left out of the result.
- `get_total_videos_likes(video_ids)` returns the sum of the likes the
  videos received. If any video has no counter, it raises `LikeStoreError`.
- `get_video_like_counts(video_ids)` reads `likes:<id>` / `totalLikes` for
  each video and returns a dict. A missing counter counts as 0.
- `get_total_like_counts(video_ids)` returns the sum of those same counts.

`connect(addr, password=None, db=0)` takes an address of the form
`host:port`. The port defaults to 6379. It opens a client that decodes
responses, pings it and returns a `LikeCounter`. If the server cannot be
reached, it raises `LikeStoreError`.

### `douyin_social.logger`

- `LogConfig.from_settings(settings)` reads the `settings.log` section of a
  mapping. It uses these keys: `level`, `path`, `maxSize`, `maxAge`,
  `maxBackups`, `compress` and `mode`. Levels follow this scale:

  | Value | Level   |
  |-------|---------|
  | -1    | DEBUG   |
  | 0     | INFO    |
  | 1     | WARN    |
  | 2     | ERROR   |
  | 3+    | FATAL   |

- `init_logger(mode, settings)` sets up and returns the `douyin_social`
  logger. Output always goes to a log file. The file rotates when it
  exceeds `maxSize` megabytes (100 by default). Old files are pruned by
  `maxBackups` and `maxAge`, and they can be gzipped.
  - In `debug` mode, records are written as tab-separated console lines.
    Other modes write JSON records.
  - In every mode except `release`, records also go to stdout.

### `douyin_social.messages`

Call `create_schema(connection)` once to create the `messages` table in an
SQLite connection. `MessageService(connection)` then provides these
methods:

- `send_message(user_id, to_user_id, action_type, content)` stores a message
  and returns it. The only action it accepts is `1` (send). Any other
  action raises `UnsupportedActionError`.
- `get_chat_history(user_id, to_user_id, last_time)` returns the messages
  exchanged between the two users after `last_time`, oldest first.
- `get_latest_message(user_id, selected_user_id)` returns the newest message
  exchanged between the two users, or `None` if there is none.

### `douyin_social.follow`

`FollowService` takes the following arguments:

- `repository`: an object that satisfies the `FollowRepository` protocol.
- `followings`, `followers` and `friends`: three Redis-like set caches. Each
  is keyed by user id and must support `exists`, `sadd`, `srem`,
  `smembers`, `scard`, `sismember` and `expire`.
- `publisher`: optional. A `publisher(queue, body)` callable.
- `user_names`: optional. A `user_names(ids)` callable that returns a
  mapping of id to name.
- `messages`: optional. Any object with `get_latest_message`, such as a
  `MessageService`.
- `default_avatar`: optional. The avatar set on every friend entry.

Its methods:

- `follow_action(user_id, target_id)` does the following:
  1. It records the follow: a relation that already exists is reactivated,
     otherwise a new one is inserted.
  2. It publishes `"<user>-<target>-update"` or `"<user>-<target>-insert"`
     to the `follow_add` queue.
  3. It updates the caches. If the follow is now mutual, it also adds both
     users to each other's friend set.
- `cancel_follow_action(user_id, target_id)` deactivates the relation,
  publishes to `follow_del` and removes the ids from all three caches. It
  returns `False` if the two users never had a relation.
- `get_followings`, `get_followers` and `get_friends` return lists of `User`
  or `FriendUser`.
  - Names default to `未知用户`.
  - Entries in a following list have `is_follow=True`. Entries in a
    follower list show whether the user follows them back.
  - Friend entries carry the latest message, if there is one.
- `get_following_cnt`, `get_follower_cnt` and `check_is_following` read
  from the cache. A missing cache key is filled from the repository with a
  lifetime of 10 to 29 minutes.
- Batch helpers:
  - `batch_get_user_names`
  - `batch_get_following_counts`
  - `batch_get_follower_counts`
  - `batch_check_is_following`
  - `batch_get_latest_messages`
- List builders:
  - `build_users`
  - `build_friend_users`
- `cache_ttl()` returns the random cache lifetime.
- `parse_ids(values)` converts cached members to integers.

### `douyin_social.users`

Call `create_schema(connection)` once to create the `users` table.
`UserService(connection, follows=None, likes=None, details_cache=None,
video_counter=None, received_likes=None)` then provides these methods:

- `insert_user(username, password, role="common_user")` stores a bcrypt
  hash of the password and returns a `UserRecord`. It raises `ValueError`
  if the name is taken.
- `get_user_basic_by_password(username, password)` returns the
  `UserRecord`, or `None` if the name is unknown or the password does not
  match.
- `get_user_name(user_id)` returns the name, or `""` if there is no such
  user.
- `get_user_details_by_id(user_id, cur_id=None)` returns a `User`, or
  `None` for an unknown id.
  - It first looks in `details_cache` under `user_cache_key(user_id)`.
  - On a miss, it builds the profile on a `UserWorkerPool` thread and
    stores the result as JSON for 10 to 29 minutes.
  - The profile counts come from the optional collaborators:
    - `video_counter` gives `work_count`.
    - `follows` gives the following and follower counts, and `is_follow`
      for `cur_id`.
    - `received_likes` gives `total_favorited`.
    - `likes` gives `favorite_count`.
- `close()` shuts down the worker pool. `UserService` is also a context
  manager.

The connection is used from the pool's threads, so open it with
`check_same_thread=False`.

`UserWorkerPool(handler, min_workers, max_workers)` runs
`handler(user_id, cur_id)` on its worker threads. Its queue holds 10000
tasks. Every 5 seconds the pool checks the queue:

- If the backlog exceeds half the workers, it doubles the number of
  workers.
- If the queue is empty, it halves the number of workers.

The pool never goes outside the range `min_workers` to `max_workers`.

- `submit(user_id, cur_id=None)` waits for the result. It raises
  `PoolBusyError` when the queue is full and `PoolClosedError` after the
  pool has been closed.
- `close()` stops the pool.

## Example

```python
import sqlite3

from douyin_social import messages, users
from douyin_social.encryption import compare_password, encrypt_password
from douyin_social.token import Claims, generate_token, parse_token

password = "password"
hashed = encrypt_password(password)
compare_password(hashed, password)  # raises PasswordMismatchError on mismatch

secret_key = b"secret"
token_string = generate_token(secret_key, Claims(user_id=1, username="alice", role="common_user"))
assert parse_token(secret_key, token_string).username == "alice"

connection = sqlite3.connect(":memory:", check_same_thread=False)
messages.create_schema(connection)
users.create_schema(connection)

chat = messages.MessageService(connection)
chat.send_message(5, 8, 1, "hello")
print(chat.get_latest_message(8, 5).content)  # hello

with users.UserService(connection) as service:
    record = service.insert_user("alice", password)
    assert service.get_user_basic_by_password("alice", password).id == record.id
    print(service.get_user_details_by_id(record.id).name)  # alice
```

## What this package does not do

- It serves no HTTP API and has no routes, request handlers or server.
- It has no access-control rules.
- It does not store follow relations itself. `FollowService` needs a
  `FollowRepository` implementation from the caller.
- It sends no messages to a queue of its own. Follow events go only to the
  `publisher` callable you pass in.
- It counts no videos and no received likes on its own. Those numbers come
  from the `video_counter` and `received_likes` callables.
- It reads no configuration file. `init_logger` takes an already-loaded
  mapping.