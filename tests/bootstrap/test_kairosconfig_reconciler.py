import base64
import threading

import pytest

from kairos_capi.api.bootstrap import KairosConfig, KairosConfigSpec, WorkerTokenSecretReference
from kairos_capi.api.capi import APIEndpoint, Cluster, ClusterSpec, ClusterStatus, Machine, MachineSpec
from kairos_capi.api.meta import ObjectMeta, OwnerReference, get_condition
from kairos_capi.bootstrap.data_secret import read_data_secret
from kairos_capi.bootstrap.reconciler import KairosConfigReconciler
from kairos_capi.errors import DependencyNotReady, ReconcileCancelled

from conftest import secret_obj


def _seed_cluster(store, initialized=True):
    cluster = Cluster(
        metadata=ObjectMeta(name="c1"),
        spec=ClusterSpec(control_plane_endpoint=APIEndpoint(host="10.0.0.1", port=6443)),
        status=ClusterStatus(control_plane_ready=initialized, infrastructure_ready=True),
    )
    store.add(cluster.to_dict())


def _seed_machine(store, name="m1"):
    store.add(Machine(metadata=ObjectMeta(name=name), spec=MachineSpec(cluster_name="c1")).to_dict())


def _seed_config(store, spec: KairosConfigSpec, owner="m1"):
    owners = [OwnerReference(api_version="cluster.x-k8s.io/v1beta1", kind="Machine", name=owner)] if owner else []
    config = KairosConfig(metadata=ObjectMeta(name="cfg", owner_references=owners), spec=spec)
    store.add(config.to_dict())


def _conditions(config):
    return {c.type: c for c in config.status.conditions}


def test_missing_config_is_a_noop(store):
    assert KairosConfigReconciler(store).reconcile("default", "nope") is None


def test_worker_config_writes_data_secret(store, capture):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="worker", worker_token="tok"))

    config = KairosConfigReconciler(store, observers=[capture]).reconcile("default", "cfg")

    assert config.status.ready is True
    assert config.status.data_secret_name == "cfg"
    assert config.status.observed_generation == 1
    conds = _conditions(config)
    assert conds["BootstrapReady"].status == "True"
    assert conds["DataSecretAvailable"].status == "True"

    document = read_data_secret(store, "default", "cfg")
    assert "k0s-worker" in document

    secret = store.find("Secret", "cfg")
    assert secret["type"] == "cluster.x-k8s.io/secret"
    assert base64.b64decode(secret["data"]["format"]) == b"cloud-config"
    assert secret["metadata"]["ownerReferences"][0]["kind"] == "KairosConfig"
    assert capture.names() == ["BootstrapDataGenerated"]


def test_second_pass_is_a_noop(store):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="control-plane"))
    r = KairosConfigReconciler(store)
    r.reconcile("default", "cfg")

    store.calls.clear()
    r.reconcile("default", "cfg")
    assert [c[0] for c in store.calls] == ["get", "get"]


def test_waits_for_owning_machine(store, capture):
    _seed_cluster(store)
    _seed_config(store, KairosConfigSpec(role="control-plane"), owner=None)

    config = KairosConfigReconciler(store, observers=[capture]).reconcile("default", "cfg")

    assert config.status.ready is False
    assert get_condition(config.status.conditions, "BootstrapReady").reason == "WaitingForMachine"
    assert capture.names() == ["BootstrapWaiting"]
    assert store.find("Secret", "cfg") is None


def test_worker_waits_for_control_plane_initialization(store):
    _seed_cluster(store, initialized=False)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="worker", worker_token="tok"))

    config = KairosConfigReconciler(store).reconcile("default", "cfg")

    cond = get_condition(config.status.conditions, "BootstrapReady")
    assert cond.reason == "WaitingForControlPlaneInitialization"
    assert config.status.failure_reason is None


def test_control_plane_does_not_wait_for_initialization(store):
    _seed_cluster(store, initialized=False)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="control-plane"))

    config = KairosConfigReconciler(store).reconcile("default", "cfg")
    assert config.status.ready is True


def test_missing_token_is_sticky_until_generation_changes(store, capture):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="worker"))
    r = KairosConfigReconciler(store, observers=[capture])

    config = r.reconcile("default", "cfg")
    assert config.status.failure_reason == "MissingToken"
    assert "token is required" in config.status.failure_message
    assert get_condition(config.status.conditions, "BootstrapReady").reason == "BootstrapFailed"
    assert store.find("Secret", "cfg") is None

    # same generation: nothing is retried
    store.calls.clear()
    config = r.reconcile("default", "cfg")
    assert config.status.failure_reason == "MissingToken"
    assert [c[0] for c in store.calls] == ["get"]

    # a spec change bumps the generation and clears the failure
    raw = store.find("KairosConfig", "cfg")
    raw["spec"]["workerToken"] = "tok"
    store.update(raw)

    config = r.reconcile("default", "cfg")
    assert config.status.failure_reason is None
    assert config.status.failure_message is None
    assert config.status.ready is True
    assert config.status.observed_generation == 2


def test_unsupported_distribution_is_sticky(store):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="control-plane", distribution="k3s"))

    config = KairosConfigReconciler(store).reconcile("default", "cfg")
    assert config.status.failure_reason == "UnsupportedDistribution"


def test_missing_token_secret_is_retryable_not_sticky(store):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(
        store,
        KairosConfigSpec(role="worker", worker_token_secret_ref=WorkerTokenSecretReference(name="join")),
    )
    r = KairosConfigReconciler(store)

    with pytest.raises(DependencyNotReady):
        r.reconcile("default", "cfg")
    raw = store.find("KairosConfig", "cfg")
    assert "failureReason" not in raw["status"]

    store.add(secret_obj("join", {"token": "from-secret"}))
    config = r.reconcile("default", "cfg")
    assert config.status.ready is True
    assert "from-secret" in read_data_secret(store, "default", "cfg")


def test_paused_config_is_left_alone(store):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="control-plane", pause=True))

    config = KairosConfigReconciler(store).reconcile("default", "cfg")
    assert config.status.ready is False
    assert store.find("Secret", "cfg") is None


def test_existing_secret_is_overwritten(store):
    _seed_cluster(store)
    _seed_machine(store)
    _seed_config(store, KairosConfigSpec(role="control-plane"))
    store.add(secret_obj("cfg", {"value": "stale"}))

    KairosConfigReconciler(store).reconcile("default", "cfg")
    assert read_data_secret(store, "default", "cfg").startswith("#cloud-config\n")


def test_cancelled_before_first_call(store):
    _seed_config(store, KairosConfigSpec(role="control-plane"))
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ReconcileCancelled):
        KairosConfigReconciler(store, cancel=cancel).reconcile("default", "cfg")


def test_unparseable_spec_is_a_sticky_invalid_configuration(store, capture):
    _seed_cluster(store)
    _seed_machine(store)
    store.add(
        {
            "apiVersion": "bootstrap.cluster.x-k8s.io/v1beta2",
            "kind": "KairosConfig",
            "metadata": {
                "name": "cfg",
                "ownerReferences": [{"apiVersion": "cluster.x-k8s.io/v1beta1", "kind": "Machine", "name": "m1"}],
            },
            "spec": {"role": "etcd"},
        }
    )
    r = KairosConfigReconciler(store, observers=[capture])

    config = r.reconcile("default", "cfg")

    assert config.status.failure_reason == "InvalidConfiguration"
    assert config.status.ready is False
    assert _conditions(config)["BootstrapReady"].reason == "BootstrapFailed"
    stored = store.find("KairosConfig", "cfg")
    assert stored["status"]["failureReason"] == "InvalidConfiguration"
    assert stored["spec"] == {"role": "etcd"}
    assert store.kinds("Secret") == []
    assert capture.names() == ["BootstrapFailed"]

    store.calls.clear()
    r.reconcile("default", "cfg")
    assert [c[0] for c in store.calls] == ["get"]
