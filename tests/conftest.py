import base64
import copy
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from kairos_capi.errors import AlreadyExistsError, ConflictError, NotFoundError
from kairos_capi.kube.store import object_key


class FakeStore:
    """
    In-memory Store.

    Mirrors what the API server does for the reconcilers: assigns uid,
    generation and resourceVersion, keeps status apart from spec writes,
    and rejects stale resourceVersions.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self._rv = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)
        # (verb, kind) -> exception raised on the next matching call
        self.fail_next = {}

    # -- helpers -------------------------------------------------------------

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.strftime("%Y-%m-%dT%H:%M:%SZ")

    def _maybe_fail(self, verb, kind):
        exc = self.fail_next.pop((verb, kind), None)
        if exc is not None:
            raise exc

    def add(self, obj: dict) -> dict:
        """Seed an object, status included."""
        return self.create(obj, _record=False)

    def find(self, kind, name, namespace="default"):
        for (api_version, k, ns, n), obj in self.objects.items():
            if k == kind and ns == namespace and n == name:
                return copy.deepcopy(obj)
        return None

    def kinds(self, kind, namespace="default"):
        return sorted(n for (_, k, ns, n) in self.objects if k == kind and ns == namespace)

    def _key(self, api_version, kind, namespace, name):
        # lookups ignore the version so v1beta1 / v1beta2 refs resolve alike
        group = api_version.rpartition("/")[0]
        for key in self.objects:
            if key[1] == kind and key[2] == namespace and key[3] == name and key[0].rpartition("/")[0] == group:
                return key
        return None

    # -- Store ---------------------------------------------------------------

    def get(self, api_version, kind, namespace, name):
        self.calls.append(("get", kind, name))
        self._maybe_fail("get", kind)
        key = self._key(api_version, kind, namespace, name)
        if key is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        return copy.deepcopy(self.objects[key])

    def list(self, api_version, kind, namespace, labels=None):
        self.calls.append(("list", kind, None))
        out = []
        for (av, k, ns, _), obj in sorted(self.objects.items()):
            if k != kind or ns != namespace:
                continue
            have = obj.get("metadata", {}).get("labels") or {}
            if all(have.get(lk) == lv for lk, lv in (labels or {}).items()):
                out.append(copy.deepcopy(obj))
        return out

    def create(self, obj, _record=True):
        api_version, kind, namespace, name = object_key(obj)
        if _record:
            self.calls.append(("create", kind, name))
            self._maybe_fail("create", kind)
        if self._key(api_version, kind, namespace, name) is not None:
            raise AlreadyExistsError(f"{kind} {namespace}/{name} already exists")
        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        meta["namespace"] = namespace
        if not meta.get("uid"):
            meta["uid"] = f"uid-{kind.lower()}-{name}"
        if not meta.get("generation"):
            meta["generation"] = 1
        meta["resourceVersion"] = str(next(self._rv))
        meta.setdefault("creationTimestamp", self._tick())
        self.objects[(api_version, kind, namespace, name)] = stored
        return copy.deepcopy(stored)

    def _check_rv(self, current, obj):
        rv = (obj.get("metadata") or {}).get("resourceVersion")
        if rv is not None and rv != current["metadata"]["resourceVersion"]:
            raise ConflictError(f"{current['kind']} {current['metadata']['name']} was modified concurrently")

    def update(self, obj):
        api_version, kind, namespace, name = object_key(obj)
        self.calls.append(("update", kind, name))
        self._maybe_fail("update", kind)
        key = self._key(api_version, kind, namespace, name)
        if key is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        current = self.objects[key]
        self._check_rv(current, obj)

        stored = copy.deepcopy(obj)
        stored.pop("status", None)
        if "status" in current:
            stored["status"] = copy.deepcopy(current["status"])
        meta = stored.setdefault("metadata", {})
        for field in ("uid", "creationTimestamp", "generation"):
            if field in current["metadata"]:
                meta[field] = current["metadata"][field]
        if stored.get("spec") != current.get("spec"):
            meta["generation"] = current["metadata"].get("generation", 1) + 1
        meta["resourceVersion"] = str(next(self._rv))
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def update_status(self, obj):
        api_version, kind, namespace, name = object_key(obj)
        self.calls.append(("update_status", kind, name))
        self._maybe_fail("update_status", kind)
        key = self._key(api_version, kind, namespace, name)
        if key is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        current = self.objects[key]
        self._check_rv(current, obj)
        current["status"] = copy.deepcopy(obj.get("status") or {})
        current["metadata"]["resourceVersion"] = str(next(self._rv))
        return copy.deepcopy(current)

    def delete(self, api_version, kind, namespace, name):
        self.calls.append(("delete", kind, name))
        self._maybe_fail("delete", kind)
        key = self._key(api_version, kind, namespace, name)
        if key is None:
            raise NotFoundError(f"{kind} {namespace}/{name} not found")
        del self.objects[key]


class DictSecrets:
    """SecretLookup over a plain dict: (namespace, name, key) -> bytes."""

    def __init__(self, values=None):
        self.values = dict(values or {})
        self.calls = []

    def get(self, namespace, name, key):
        self.calls.append((namespace, name, key))
        try:
            return self.values[(namespace, name, key)]
        except KeyError:
            raise NotFoundError(f"secret {namespace}/{name} key {key} not found")


class Capture:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def names(self):
        return [e.__class__.__name__ for e in self.events]


def secret_obj(name, data, namespace="default"):
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "data": {k: base64.b64encode(v.encode()).decode() for k, v in data.items()},
    }


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def capture():
    return Capture()
