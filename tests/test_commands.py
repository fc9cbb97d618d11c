"""Tests for the command catalogue and parameter validators."""

from __future__ import annotations

import pytest

from dnsdeck.errors import InvalidParameter, UnknownCommand
from dnsdeck.services.commands import (
    CATALOGUE,
    CommandId,
    build_argv,
    build_validators,
    check_catalogue,
    make_file_validator,
    resolve_command,
    validate_lines,
    validate_service,
    validate_since,
    validate_zone,
)


class TestCatalogue:
    def test_every_command_has_entry(self):
        assert set(CATALOGUE) == set(CommandId)

    def test_read_only(self):
        with pytest.raises(TypeError):
            CATALOGUE[CommandId.UNBOUND_RELOAD] = CATALOGUE[CommandId.UNBOUND_STATUS]  # type: ignore[index]

    def test_every_placeholder_has_validator(self, tmp_path):
        check_catalogue(build_validators(tmp_path))

    def test_missing_validator_detected(self, tmp_path):
        validators = build_validators(tmp_path)
        del validators["ZONE"]
        with pytest.raises(RuntimeError, match="ZONE"):
            check_catalogue(validators)

    def test_resolve_known(self):
        spec = resolve_command("unbound-reload")
        assert spec.executable == "unbound-control"
        assert spec.args == ("reload",)

    def test_resolve_unknown(self):
        with pytest.raises(UnknownCommand):
            resolve_command("rm-rf")

    def test_is_active_allows_nonzero_exit(self):
        assert CATALOGUE[CommandId.SYSTEMCTL_IS_ACTIVE].allow_nonzero_exit
        assert not CATALOGUE[CommandId.UNBOUND_RELOAD].allow_nonzero_exit


class TestValidators:
    @pytest.mark.parametrize("zone", ["example.com", "example.com.", "sub-domain.example.org", "localhost"])
    def test_valid_zones(self, zone):
        validate_zone(zone)

    @pytest.mark.parametrize(
        "zone",
        ["../etc", "example.com; rm -rf /", "-bad.com", "bad-.com", "a..b", "", "$(id)", "a" * 254],
    )
    def test_invalid_zones(self, zone):
        with pytest.raises(InvalidParameter):
            validate_zone(zone)

    def test_service_allowlist(self):
        validate_service("cloudflared")
        with pytest.raises(InvalidParameter):
            validate_service("sshd")

    def test_lines(self):
        validate_lines("100")
        for bad in ("0", "10000", "-1", "1e3", "ten"):
            with pytest.raises(InvalidParameter):
                validate_lines(bad)

    def test_since(self):
        validate_since("2024-05-01")
        validate_since("2024-05-01T12:00:00Z")
        with pytest.raises(InvalidParameter):
            validate_since("yesterday")


class TestFileValidator:
    def test_accepts_conf_in_config_dir(self, tmp_path):
        validate = make_file_validator(tmp_path)
        validate(str(tmp_path / ".managed.staged.conf"))

    @pytest.mark.parametrize(
        "value",
        [
            "/etc/passwd",
            "relative.conf",
            "{dir}/../escape.conf",
            "{dir}//double.conf",
            "{dir}/notes.txt",
            "{dir}/nul\x00.conf",
            "{dir}/sub/nested.conf",
        ],
    )
    def test_rejects(self, tmp_path, value):
        validate = make_file_validator(tmp_path)
        with pytest.raises(InvalidParameter):
            validate(value.format(dir=tmp_path))


class TestBuildArgv:
    def test_substitutes_placeholder(self, tmp_path):
        spec = CATALOGUE[CommandId.UNBOUND_FLUSH_ZONE]
        argv = build_argv(spec, {"ZONE": "example.com"}, build_validators(tmp_path))
        assert argv == ["unbound-control", "flush_zone", "example.com"]

    def test_missing_parameter(self, tmp_path):
        spec = CATALOGUE[CommandId.UNBOUND_FLUSH_ZONE]
        with pytest.raises(InvalidParameter, match="Missing"):
            build_argv(spec, {}, build_validators(tmp_path))

    def test_non_string_parameter(self, tmp_path):
        spec = CATALOGUE[CommandId.JOURNALCTL_READ]
        with pytest.raises(InvalidParameter):
            build_argv(spec, {"UNIT": "unbound", "LINES": 50}, build_validators(tmp_path))  # type: ignore[dict-item]
