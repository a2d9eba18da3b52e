import pytest

from storageop.api import (
    InMemoryOperatorClient,
    ManagementState,
    NotFoundError,
    OperatorSpec,
    log_level_to_verbosity,
)
from storageop.defaultstorageclass import Infrastructure, PlatformType
from storageop.problem_detector import (
    ANNOTATION_PREFIX,
    OPERATOR_IMAGE_ENV,
    VSphereProblemDetectorStarter,
    add_object_hash,
    config_map_hash,
    render_manifest,
)


class _Starts:
    def __init__(self):
        self.count = 0

    def __call__(self):
        self.count += 1


def _starter(platform=PlatformType.VSPHERE, state=ManagementState.MANAGED, infra=True, exists=True,
             cloud_config_name="cloud-provider-config"):
    client = InMemoryOperatorClient(OperatorSpec(management_state=state), exists=exists)
    infrastructures = (
        {"cluster": Infrastructure(platform=platform, cloud_config_name=cloud_config_name)}
        if infra
        else {}
    )
    starts = _Starts()
    return VSphereProblemDetectorStarter(client, infrastructures, starts), starts


def test_starts_once_on_vsphere():
    starter, starts = _starter()
    starter.sync()
    starter.sync()
    assert starts.count == 1
    assert starter.running is True


@pytest.mark.parametrize("platform", [PlatformType.AWS, PlatformType.BARE_METAL, None])
def test_does_not_start_elsewhere(platform):
    starter, starts = _starter(platform=platform)
    starter.sync()
    assert starts.count == 0
    assert starter.running is False


def test_unmanaged_does_nothing():
    starter, starts = _starter(state=ManagementState.UNMANAGED)
    starter.sync()
    assert starts.count == 0


def test_missing_operator_is_ignored():
    starter, starts = _starter(exists=False)
    starter.sync()
    assert starts.count == 0


def test_missing_infrastructure_raises():
    starter, starts = _starter(infra=False)
    with pytest.raises(NotFoundError):
        starter.sync()
    assert starts.count == 0


def test_render_manifest_replaces_placeholders():
    manifest = "image: ${OPERATOR_IMAGE}\nlevel: ${LOG_LEVEL}\n"
    environ = {OPERATOR_IMAGE_ENV: "registry.example.com/detector"}
    out = render_manifest("Debug", manifest, environ)
    assert out == (
        f"image: registry.example.com/detector\nlevel: {log_level_to_verbosity('Debug')}\n"
    )


def test_render_manifest_bytes_and_missing_env():
    out = render_manifest("Normal", b"image: ${OPERATOR_IMAGE}", {})
    assert out == b"image: "


def test_add_object_hash_short_key():
    deployment = {}
    add_object_hash(deployment, {"foo": "h1"})
    assert deployment["metadata"]["annotations"] == {"operator.openshift.io/dep-foo": "h1"}
    assert deployment["spec"]["template"]["metadata"]["annotations"] == {
        "operator.openshift.io/dep-foo": "h1"
    }


def test_add_object_hash_long_key_truncated():
    deployment = {"metadata": {"annotations": None}}
    long_key = "configmaps." + "x" * 80
    add_object_hash(deployment, {long_key: "h"})
    (key,) = deployment["metadata"]["annotations"]
    assert len(key) == 63
    assert key.startswith(ANNOTATION_PREFIX)
    assert long_key not in key
    assert deployment["spec"]["template"]["metadata"]["annotations"] == {key: "h"}

    again = {}
    add_object_hash(again, {long_key: "h"})
    assert list(again["metadata"]["annotations"]) == [key]


def test_add_object_hash_none_deployment():
    with pytest.raises(ValueError):
        add_object_hash(None, {"a": "b"})


def test_config_map_hash_stable_and_sensitive():
    assert config_map_hash({"a": "1", "b": "2"}) == config_map_hash({"b": "2", "a": "1"})
    assert config_map_hash({"a": "1"}) != config_map_hash({"a": "2"})


def test_config_map_hash_hook_annotates_deployment():
    starter, _ = _starter()
    data = {"config": "[Global]"}
    deployment = {}
    starter.config_map_hash_hook(
        deployment, {("openshift-config", "cloud-provider-config"): data}, "openshift-config"
    )
    annotations = deployment["metadata"]["annotations"]
    assert list(annotations.values()) == [config_map_hash(data)]
    assert all(k.startswith(ANNOTATION_PREFIX) for k in annotations)
    assert deployment["spec"]["template"]["metadata"]["annotations"] == annotations


def test_config_map_hash_hook_missing_config_map():
    starter, _ = _starter()
    deployment = {}
    starter.config_map_hash_hook(deployment, {}, "openshift-config")
    assert deployment["metadata"]["annotations"] == {}


def test_config_map_hash_hook_missing_infrastructure():
    starter, _ = _starter(infra=False)
    with pytest.raises(NotFoundError):
        starter.config_map_hash_hook({}, {}, "openshift-config")