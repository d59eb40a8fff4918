import copy

import pytest

import kairos_capi.infrastructure.clone as clone
from kairos_capi.api.meta import ObjectReference
from kairos_capi.errors import DependencyNotReady, UnsupportedProvider
from kairos_capi.infrastructure.clone import (
    clone_infrastructure_machine,
    clone_kubevirt_template,
    register_cloner,
    registered_kinds,
)


def kubevirt_template(api_version="infrastructure.cluster.x-k8s.io/v1alpha1"):
    return {
        "apiVersion": api_version,
        "kind": "KubevirtMachineTemplate",
        "metadata": {"name": "kv", "namespace": "default"},
        "spec": {
            "template": {
                "spec": {
                    "virtualMachineTemplate": {
                        "spec": {
                            "running": True,
                            "template": {
                                "spec": {
                                    "domain": {
                                        "devices": {
                                            "disks": [
                                                {"name": "containervolume", "disk": {"bus": "virtio"}},
                                                {"name": "cloudinitdisk", "disk": {"bus": "virtio"}},
                                            ]
                                        }
                                    },
                                    "volumes": [
                                        {"name": "containervolume", "containerDisk": {"image": "kairos:latest"}},
                                        {"name": "cloudinitvolume", "cloudInitNoCloud": {"userData": "x"}},
                                        {"name": "data", "emptyDisk": {"capacity": "1Gi"}},
                                    ],
                                }
                            },
                        }
                    }
                }
            }
        },
    }


def docker_template(kind="DockerMachineTemplate"):
    return {
        "apiVersion": "infrastructure.cluster.x-k8s.io/v1beta2",
        "kind": kind,
        "metadata": {"name": "tpl", "namespace": "default"},
        "spec": {"template": {"spec": {"customImage": "kairos:latest", "extraMounts": [{"containerPath": "/x"}]}}},
    }


def _ref(obj):
    return ObjectReference(api_version=obj["apiVersion"], kind=obj["kind"], name=obj["metadata"]["name"])


def test_kubevirt_drops_cloud_init_volume_and_disk(store):
    store.add(kubevirt_template())

    out = clone_infrastructure_machine(
        store, _ref(kubevirt_template()), "cp-0", "default", labels={"a": "b"}, annotations={"n": "v"}
    )

    assert out["kind"] == "KubevirtMachine"
    assert out["apiVersion"] == "infrastructure.cluster.x-k8s.io/v1alpha1"
    assert out["metadata"] == {"name": "cp-0", "namespace": "default", "labels": {"a": "b"}, "annotations": {"n": "v"}}

    vm = out["spec"]["virtualMachineTemplate"]["spec"]
    assert vm["running"] is True
    volumes = [v["name"] for v in vm["template"]["spec"]["volumes"]]
    assert volumes == ["containervolume", "data"]
    disks = [d["name"] for d in vm["template"]["spec"]["domain"]["devices"]["disks"]]
    assert disks == ["containervolume"]


def test_kubevirt_empty_version_falls_back():
    tpl = kubevirt_template(api_version="infrastructure.cluster.x-k8s.io/")
    out = clone_kubevirt_template(tpl, "cp-0", "default", {}, {})
    assert out["apiVersion"] == "infrastructure.cluster.x-k8s.io/v1alpha1"


def test_kubevirt_keeps_template_version():
    tpl = kubevirt_template(api_version="infrastructure.cluster.x-k8s.io/v1beta1")
    out = clone_kubevirt_template(tpl, "cp-0", "default", {}, {})
    assert out["apiVersion"] == "infrastructure.cluster.x-k8s.io/v1beta1"


def test_template_is_not_mutated():
    tpl = kubevirt_template()
    before = copy.deepcopy(tpl)
    clone_kubevirt_template(tpl, "cp-0", "default", {}, {})
    assert tpl == before


@pytest.mark.parametrize("kind", ["DockerMachineTemplate", "VSphereMachineTemplate"])
def test_generic_template_copies_spec(store, kind):
    store.add(docker_template(kind))

    out = clone_infrastructure_machine(store, _ref(docker_template(kind)), "cp-0", "default")

    assert out["kind"] == kind[: -len("Template")]
    assert out["apiVersion"] == "infrastructure.cluster.x-k8s.io/v1beta1"
    assert out["spec"] == {"customImage": "kairos:latest", "extraMounts": [{"containerPath": "/x"}]}
    assert out["metadata"]["name"] == "cp-0"


def test_unknown_kind_names_the_kind(store):
    ref = ObjectReference(api_version="infrastructure.cluster.x-k8s.io/v1beta1", kind="AWSMachineTemplate", name="aws")
    with pytest.raises(UnsupportedProvider) as exc:
        clone_infrastructure_machine(store, ref, "cp-0", "default")
    msg = str(exc.value)
    assert "AWSMachineTemplate" in msg
    assert "infrastructure.cluster.x-k8s.io" in msg
    assert "v1beta1" in msg


def test_missing_template_is_dependency_not_ready(store):
    with pytest.raises(DependencyNotReady):
        clone_infrastructure_machine(store, _ref(docker_template()), "cp-0", "default")


def test_registering_a_new_provider(store, monkeypatch):
    monkeypatch.setattr(clone, "_CLONERS", dict(clone._CLONERS))

    @register_cloner("MetalMachineTemplate")
    def clone_metal(template, name, namespace, labels, annotations):
        return {"apiVersion": "metal/v1", "kind": "MetalMachine", "metadata": {"name": name}}

    assert "MetalMachineTemplate" in registered_kinds()
    store.add({"apiVersion": "metal/v1", "kind": "MetalMachineTemplate", "metadata": {"name": "m"}})
    ref = ObjectReference(api_version="metal/v1", kind="MetalMachineTemplate", name="m")
    assert clone_infrastructure_machine(store, ref, "cp-0", "default")["kind"] == "MetalMachine"


def test_registered_providers_do_not_leak_between_tests():
    assert "MetalMachineTemplate" not in registered_kinds()
    assert "DockerMachineTemplate" in registered_kinds()


def test_unknown_kind_is_rejected_after_fetching_the_template(store):
    store.add({"apiVersion": "infrastructure.cluster.x-k8s.io/v1beta2", "kind": "AWSMachineTemplate", "metadata": {"name": "aws"}})
    ref = ObjectReference(api_version="infrastructure.cluster.x-k8s.io/v1beta2", kind="AWSMachineTemplate", name="aws")

    with pytest.raises(UnsupportedProvider, match="AWSMachineTemplate"):
        clone_infrastructure_machine(store, ref, "cp-0", "default")
    assert ("get", "AWSMachineTemplate", "aws") in store.calls
