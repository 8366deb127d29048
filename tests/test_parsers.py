import json

import pytest

from containerdeck.errors import InvalidOutput
from containerdeck.model import ContainerStatus, DNSDomain, SystemServiceStatus
from containerdeck.parsers import (
    image_display_name, parse_containers, parse_dns_domains, parse_images, parse_status,
    parse_system_status, split_reference,
)

NGINX_LISTING = (
    '[{"status":"running","networks":[],"configuration":{"id":"abc123","hostname":"web1",'
    '"image":{"reference":"docker.io/library/nginx:alpine","descriptor":{"digest":"sha256:deadbeef",'
    '"size":123,"mediaType":"application/vnd.oci.image.manifest.v1+json"}},'
    '"platform":{"architecture":"arm64","os":"linux"},'
    '"resources":{"cpus":2,"memoryInBytes":1073741824},"rosetta":false}}]'
)


def make_record(container_id="abc123", reference="docker.io/library/nginx:alpine",
                status="running", networks=None, hostname="web1"):
    config = {
        "id": container_id,
        "image": {"reference": reference, "descriptor": {"digest": "sha256:1", "size": 1}},
        "platform": {"architecture": "arm64", "os": "linux"},
        "resources": {"cpus": 1, "memoryInBytes": 512},
        "rosetta": False,
    }
    if hostname is not None:
        config["hostname"] = hostname
    return {"status": status, "networks": networks or [], "configuration": config}


class TestContainerParsing:
    def test_end_to_end_record(self):
        containers = parse_containers(NGINX_LISTING)
        assert len(containers) == 1
        c = containers[0]
        assert c.container_id == "abc123"
        assert c.name == "web1"
        assert c.hostname == "web1"
        assert c.image == "nginx"
        assert c.image_reference == "docker.io/library/nginx:alpine"
        assert c.image_digest == "sha256:deadbeef"
        assert c.status == ContainerStatus.RUNNING
        assert c.cpus == 2
        assert c.memory_in_bytes == 1073741824
        assert c.os == "linux"
        assert c.arch == "arm64"
        assert c.rosetta is False
        assert c.pending is False
        assert c.networks == []
        assert c.primary_address is None

    @pytest.mark.parametrize("reference,expected", [
        ("docker.io/library/nginx:alpine", "nginx"),
        ("ghcr.io/org/team/app:1.2", "app"),
        ("redis", "redis"),
        ("localhost:5000/tool", "tool"),
        ("registry.example.com/app@sha256:abc", "app"),
    ])
    def test_image_name_is_last_segment_without_tag(self, reference, expected):
        listing = json.dumps([make_record(reference=reference)])
        assert parse_containers(listing)[0].image == expected
        assert image_display_name(reference) == expected

    @pytest.mark.parametrize("text", ["", "   ", "\n\t\n"])
    def test_empty_input_is_empty_list(self, text):
        assert parse_containers(text) == []
        assert parse_images(text) == []
        assert parse_dns_domains(text) == []

    def test_parsing_twice_gives_equal_lists(self):
        assert parse_containers(NGINX_LISTING) == parse_containers(NGINX_LISTING)

    def test_malformed_json(self):
        with pytest.raises(InvalidOutput):
            parse_containers("[{not json")

    def test_top_level_must_be_array(self):
        with pytest.raises(InvalidOutput):
            parse_containers('{"status": "running"}')

    def test_missing_configuration(self):
        with pytest.raises(InvalidOutput):
            parse_containers('[{"status": "running"}]')

    def test_wrong_type_for_id(self):
        record = make_record()
        record["configuration"]["id"] = 42
        with pytest.raises(InvalidOutput):
            parse_containers(json.dumps([record]))

    def test_networks_keep_every_attachment_in_order(self):
        networks = [
            {"address": "192.168.64.3/24", "gateway": "192.168.64.1", "network": "default", "hostname": "web1"},
            {"gateway": "10.0.0.1", "network": "broken"},
            {"address": "10.0.0.5/24", "gateway": "10.0.0.1", "network": "backend"},
        ]
        c = parse_containers(json.dumps([make_record(networks=networks)]))[0]
        assert [n.network for n in c.networks] == ["default", "broken", "backend"]
        assert c.networks[1].address == ""
        assert c.primary_address == "192.168.64.3/24"
        assert c.networks[0].hostname == "web1"
        assert c.networks[2].hostname is None

    def test_attachment_without_address_is_kept(self):
        networks = [{"address": "", "gateway": "", "network": "default"}]
        c = parse_containers(json.dumps([make_record(networks=networks)]))[0]
        assert len(c.networks) == 1
        assert c.networks[0].network == "default"
        assert c.primary_address is None

    def test_hostname_falls_back_to_id(self):
        c = parse_containers(json.dumps([make_record(hostname=None)]))[0]
        assert c.name == "abc123"
        assert c.display_name == "abc123"

    def test_duplicate_ids_last_one_wins_in_first_position(self):
        listing = json.dumps([
            make_record(container_id="dup", status="running"),
            make_record(container_id="other"),
            make_record(container_id="dup", status="stopped"),
        ])
        containers = parse_containers(listing)
        assert [c.container_id for c in containers] == ["dup", "other"]
        assert containers[0].status == ContainerStatus.STOPPED

    def test_negative_resources_are_clamped(self):
        record = make_record()
        record["configuration"]["resources"] = {"cpus": -1, "memoryInBytes": -5}
        c = parse_containers(json.dumps([record]))[0]
        assert c.cpus == 0
        assert c.memory_in_bytes == 0

    def test_optional_sections_may_be_missing(self):
        record = make_record()
        del record["configuration"]["platform"]
        del record["configuration"]["resources"]
        del record["configuration"]["image"]["descriptor"]
        c = parse_containers(json.dumps([record]))[0]
        assert c.os == ""
        assert c.cpus == 0
        assert c.image_digest == ""


class TestStatusParsing:
    @pytest.mark.parametrize("raw,expected", [
        ("running", ContainerStatus.RUNNING),
        ("RUNNING", ContainerStatus.RUNNING),
        ("stopped", ContainerStatus.STOPPED),
        ("exited", ContainerStatus.EXITED),
    ])
    def test_known_statuses(self, raw, expected):
        assert parse_status(raw) == expected

    @pytest.mark.parametrize("raw", ["paused", "unknown", "", "starting", "stopping"])
    def test_unknown_status_is_stopped(self, raw):
        assert parse_status(raw) == ContainerStatus.STOPPED


class TestImageParsing:
    def test_docker_hub_reference(self):
        listing = json.dumps([{
            "reference": "docker.io/library/nginx:alpine",
            "descriptor": {"mediaType": "application/vnd.oci.image.index.v1+json",
                           "size": 2048, "digest": "sha256:abc"},
        }])
        img = parse_images(listing)[0]
        assert img.registry == "docker.io"
        assert img.repository == "nginx"
        assert img.name == "nginx"
        assert img.tag == "alpine"
        assert img.digest == "sha256:abc"
        assert img.media_type == "application/vnd.oci.image.index.v1+json"
        assert img.size == 2048
        assert img.display_name == "nginx:alpine"

    @pytest.mark.parametrize("reference,expected", [
        ("nginx", ("docker.io", "nginx", "latest")),
        ("library/redis:7", ("docker.io", "redis", "7")),
        ("ghcr.io/org/app:1.0", ("ghcr.io", "org/app", "1.0")),
        ("localhost:5000/app:dev", ("docker.io", "localhost:5000/app", "dev")),
        ("org/app", ("docker.io", "org/app", "latest")),
    ])
    def test_split_reference(self, reference, expected):
        assert split_reference(reference) == expected

    def test_missing_descriptor_is_invalid(self):
        with pytest.raises(InvalidOutput):
            parse_images('[{"reference": "nginx"}]')


class TestDNSParsing:
    def test_default_marker(self):
        assert parse_dns_domains("*example.com\nother.com\n") == [
            DNSDomain(domain="example.com", is_default=True),
            DNSDomain(domain="other.com", is_default=False),
        ]

    def test_whitespace_and_blank_lines(self):
        domains = parse_dns_domains("\n  test.local  \n\n* dev.local\n")
        assert domains == [DNSDomain("test.local", False), DNSDomain("dev.local", True)]

    def test_only_one_default(self):
        domains = parse_dns_domains("*a.local\n*b.local\n")
        assert [d.is_default for d in domains] == [True, False]


class TestSystemStatusParsing:
    def test_running(self):
        assert parse_system_status("apiserver is running") == SystemServiceStatus.RUNNING

    def test_not_running(self):
        assert parse_system_status("apiserver is not running") == SystemServiceStatus.STOPPED

    def test_empty(self):
        assert parse_system_status("") == SystemServiceStatus.STOPPED
