"""Tests for LXC config parsing and reconstruction."""

from __future__ import annotations

import pydantic
import pytest

from pvefleet.models.lxc import LXCConfig
from pvefleet.utils.lxc_parser import (
    config_hash,
    parse,
    reconstruct,
    rootfs_volume_storage,
    size_to_bytes,
)
from tests.mock_executor import LXC_CONF_100, LXC_CONF_WITH_SNAPSHOT


class TestParse:
    def test_scalar_fields(self):
        cfg = parse(LXC_CONF_100)
        assert cfg.arch == "amd64"
        assert cfg.cores == 2
        assert cfg.memory == 2048
        assert cfg.swap == 512
        assert cfg.hostname == "homeassistant"
        assert cfg.ostype == "debian"
        assert cfg.onboot is True
        assert cfg.unprivileged is True
        assert cfg.tags == "community-script;smarthome"

    def test_rootfs_split(self):
        cfg = parse(LXC_CONF_100)
        assert cfg.rootfs_storage == "local-lvm:vm-100-disk-0"
        assert cfg.rootfs_size == "8G"

    def test_net0_dhcp(self):
        cfg = parse(LXC_CONF_100)
        assert cfg.net_name == "eth0"
        assert cfg.net_bridge == "vmbr0"
        assert cfg.net_hwaddr == "BC:24:11:2A:3B:4C"
        assert cfg.net_ip_type == "dhcp"
        assert cfg.net_ip is None
        assert cfg.net_type == "veth"
        assert cfg.net_options is None

    def test_net0_static_with_vlan_and_extras(self):
        cfg = parse(
            "net0: name=eth0,bridge=vmbr1,ip=192.168.1.50/24,gw=192.168.1.1,"
            "tag=20,firewall=1,mtu=1450\n",
        )
        assert cfg.net_ip_type == "static"
        assert cfg.net_ip == "192.168.1.50/24"
        assert cfg.net_gateway == "192.168.1.1"
        assert cfg.net_vlan == 20
        assert cfg.net_options == "firewall=1,mtu=1450"

    def test_features(self):
        cfg = parse("features: fuse=1,mount=nfs;cifs,nesting=1\n")
        assert cfg.feature_fuse is True
        assert cfg.feature_nesting is True
        assert cfg.feature_keyctl is None
        assert cfg.features_extra == "mount=nfs;cifs"

    def test_unrecognized_lines_go_to_advanced_in_order(self):
        cfg = parse(LXC_CONF_100)
        assert cfg.advanced.splitlines() == [
            "#Home Assistant LXC",
            "lxc.cgroup2.devices.allow: c 10:200 rwm",
            "lxc.mount.entry: /dev/net/tun dev/net/tun none bind,create=file",
            "mp0: /mnt/data,mp=/data",
        ]

    def test_unconvertible_value_kept_verbatim(self):
        cfg = parse("cores: two\nmemory: 512\n")
        assert cfg.cores is None
        assert cfg.memory == 512
        assert cfg.advanced == "cores: two"

    def test_duplicate_key_last_wins(self):
        cfg = parse("cores: 2\ncores: 4\n")
        assert cfg.cores == 4

    def test_snapshot_section_does_not_shadow_live_values(self):
        cfg = parse(LXC_CONF_WITH_SNAPSHOT)
        assert cfg.cores == 4
        assert cfg.memory == 1024
        lines = cfg.advanced.splitlines()
        assert lines[0] == "parent: before-upgrade"
        assert lines[1] == "[before-upgrade]"
        assert "cores: 2" in lines
        assert lines[-1] == "snaptime: 1700000000"

    def test_empty_text(self):
        cfg = parse("")
        assert cfg == LXCConfig()


class TestReconstruct:
    def test_roundtrip_recognized_fields(self):
        original = parse(LXC_CONF_100)
        assert parse(reconstruct(original)) == original

    def test_roundtrip_with_snapshot(self):
        original = parse(LXC_CONF_WITH_SNAPSHOT)
        text = reconstruct(original)
        assert parse(text) == original
        # pct keeps a blank line before each snapshot section
        assert "\n\n[before-upgrade]\n" in text

    def test_canonical_key_order(self):
        text = reconstruct(parse(LXC_CONF_100))
        keys = [line.split(":", 1)[0] for line in text.splitlines()[:12]]
        assert keys == [
            "arch", "cores", "features", "hostname", "memory", "net0",
            "onboot", "ostype", "rootfs", "swap", "tags", "unprivileged",
        ]

    def test_advanced_block_preserved_verbatim(self):
        cfg = parse(LXC_CONF_100)
        text = reconstruct(cfg)
        assert text.endswith(
            "lxc.cgroup2.devices.allow: c 10:200 rwm\n"
            "lxc.mount.entry: /dev/net/tun dev/net/tun none bind,create=file\n"
            "mp0: /mnt/data,mp=/data\n",
        )

    def test_none_fields_omitted(self):
        text = reconstruct(LXCConfig(hostname="web", cores=1))
        assert text == "cores: 1\nhostname: web\n"

    def test_edited_fields_emitted(self):
        cfg = parse(LXC_CONF_100).model_copy(update={"cores": 4, "rootfs_size": "16G"})
        text = reconstruct(cfg)
        assert "cores: 4\n" in text
        assert "rootfs: local-lvm:vm-100-disk-0,size=16G\n" in text

    def test_static_net_line(self):
        cfg = LXCConfig(
            net_name="eth0",
            net_bridge="vmbr0",
            net_ip_type="static",
            net_ip="10.0.0.5/24",
            net_gateway="10.0.0.1",
            net_vlan=30,
            net_type="veth",
        )
        assert reconstruct(cfg) == (
            "net0: name=eth0,bridge=vmbr0,gw=10.0.0.1,ip=10.0.0.5/24,tag=30,type=veth\n"
        )

    @pytest.mark.parametrize(
        "net",
        [
            {"net_bridge": "vmbr0", "net_ip": "10.0.0.5/24"},
            {"net_bridge": "vmbr0", "net_ip_type": "dhcp", "net_ip": "10.0.0.5/24"},
            {"net_bridge": "vmbr0", "net_ip_type": "manual"},
            {
                "net_ip_type": "static",
                "net_ip": "192.168.1.2/24",
                "net_gateway": "192.168.1.1",
            },
            {
                "net_name": "eth0",
                "net_bridge": "vmbr1",
                "net_hwaddr": "BC:24:11:00:00:01",
                "net_vlan": 4094,
                "net_options": "firewall=1,mtu=1400",
            },
            {"net_bridge": "vmbr0", "net_type": "veth", "net_ip_type": "dhcp"},
        ],
    )
    def test_roundtrip_network_shapes(self, net):
        cfg = LXCConfig(
            arch="amd64",
            cores=2,
            memory=1024,
            hostname="ct",
            ostype="debian",
            rootfs_storage="local-lvm:vm-100-disk-0",
            rootfs_size="8G",
            **net,
        )
        assert parse(reconstruct(cfg)) == cfg


class TestNetShape:
    def test_ip_without_type_is_static(self):
        cfg = LXCConfig(net_ip="10.0.0.5/24")
        assert cfg.net_ip_type == "static"

    @pytest.mark.parametrize("ip_type", ["dhcp", "manual"])
    def test_dynamic_types_drop_address(self, ip_type):
        cfg = LXCConfig(net_ip_type=ip_type, net_ip="10.0.0.5/24")
        assert cfg.net_ip is None
        assert "ip=10.0.0.5" not in reconstruct(cfg)

    def test_static_requires_address(self):
        with pytest.raises(pydantic.ValidationError):
            LXCConfig(net_ip_type="static")

    def test_unknown_type_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            LXCConfig(net_ip_type="slaac", net_ip="fe80::1/64")

    def test_empty_ip_line_kept_verbatim(self):
        cfg = parse("net0: name=eth0,bridge=vmbr0,ip=\n")
        assert cfg.net_bridge is None
        assert cfg.advanced == "net0: name=eth0,bridge=vmbr0,ip="

    def test_out_of_range_tag_stays_in_options(self):
        cfg = parse("net0: bridge=vmbr0,tag=0\n")
        assert cfg.net_vlan is None
        assert cfg.net_options == "tag=0"


class TestHash:
    def test_deterministic(self):
        assert config_hash(LXC_CONF_100) == config_hash(LXC_CONF_100)

    def test_sensitive_to_any_change(self):
        changed = LXC_CONF_100.replace("cores: 2", "cores: 3")
        assert config_hash(changed) != config_hash(LXC_CONF_100)

    def test_sha256_hex(self):
        digest = config_hash("")
        assert digest == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestSizes:
    @pytest.mark.parametrize(
        "size, expected",
        [
            ("8G", 8 * 1024 ** 3),
            ("512M", 512 * 1024 ** 2),
            ("1T", 1024 ** 4),
            ("4", 4 * 1024 ** 3),
            ("2048K", 2 * 1024 ** 2),
            ("1.5G", int(1.5 * 1024 ** 3)),
        ],
    )
    def test_size_to_bytes(self, size, expected):
        assert size_to_bytes(size) == expected

    def test_grow_and_shrink_compare_across_units(self):
        assert size_to_bytes("8G") > size_to_bytes("4096M")
        assert size_to_bytes("8G") == size_to_bytes("8192M")

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            size_to_bytes("big")

    def test_rootfs_volume_storage(self):
        assert rootfs_volume_storage("local-lvm:vm-100-disk-0") == "local-lvm"
        assert rootfs_volume_storage("vm-100-disk-0") is None
        assert rootfs_volume_storage(None) is None
