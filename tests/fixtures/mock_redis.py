import itertools
import threading

import redis


class MockRedisClient:
    """Thread-safe in-memory subset of the redis-py API used by the stores."""

    def __init__(self):
        self.store = {}
        self.lists = {}
        self.zsets = {}
        self._order = itertools.count()
        self._lock = threading.RLock()

    def get(self, k):
        with self._lock:
            return self.store.get(k)

    def set(self, k, v, ex=None):
        with self._lock:
            self.store[k] = v

    def delete(self, *keys):
        with self._lock:
            removed = 0
            for k in keys:
                for bucket in (self.store, self.lists, self.zsets):
                    if k in bucket:
                        bucket.pop(k)
                        removed += 1
            return removed

    def ping(self):
        return True

    def lpush(self, k, *values):
        with self._lock:
            items = self.lists.setdefault(k, [])
            for v in values:
                items.insert(0, v)
            return len(items)

    def lrange(self, k, start, end):
        with self._lock:
            items = list(self.lists.get(k, []))
        return items[start:] if end == -1 else items[start:end + 1]

    def zadd(self, k, mapping):
        with self._lock:
            zset = self.zsets.setdefault(k, {})
            for member, score in mapping.items():
                zset[member] = (score, next(self._order))
            return len(mapping)

    def zpopmin(self, k, count=1):
        with self._lock:
            zset = self.zsets.get(k, {})
            ranked = sorted(zset.items(), key=lambda item: item[1])[:count]
            for member, _ in ranked:
                zset.pop(member)
            return [(member, rank[0]) for member, rank in ranked]

    def register_script(self, script):
        def claim(keys=None, args=None):
            expected, target, prefix, suffix = args
            with self._lock:
                zset = self.zsets.get(keys[0], {})
                for member, _ in sorted(zset.items(), key=lambda item: item[1]):
                    zset.pop(member)
                    status_key = f'{prefix}{member}{suffix}'
                    if self.store.get(status_key) == expected:
                        self.store[status_key] = target
                        return member
                return None

        if 'ZPOPMIN' in script:
            return claim

        def compare_and_set(keys=None, args=None):
            with self._lock:
                if self.store.get(keys[0]) == args[0]:
                    self.store[keys[0]] = args[1]
                    return 1
                return 0
        return compare_and_set


class BrokenRedisClient:
    """Every command fails as if the server went away."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError('connection refused')
        return fail
