"""
Tests for native_build.core.environment and core.cache — immutable
environment descriptions.
"""
from pathlib import Path

import pytest

from native_build.core.cache import CacheVolume, cache_volume
from native_build.core.environment import (
    CacheMount,
    DirectoryMount,
    Environment,
    FileMount,
)


class TestFromImage:

    def test_image_recorded(self):
        env = Environment.from_image("debian:trixie")
        assert env.image == "debian:trixie"
        assert env.mounts == ()
        assert env.steps == ()

    def test_empty_address_rejected(self):
        with pytest.raises(ValueError, match="must not be empty"):
            Environment.from_image("")


class TestImmutability:

    def test_with_methods_return_new_values(self):
        base = Environment.from_image("img")
        derived = base.with_workdir("/w").with_env_variable("A", "1").with_exec(["true"])
        assert base.workdir is None
        assert base.env == ()
        assert base.steps == ()
        assert derived is not base

    def test_shared_prefix_does_not_leak_between_branches(self):
        base = Environment.from_image("img").with_exec(["apt-get", "update"])
        a = base.with_exec(["dotnet", "restore", "-r", "linux-x64"])
        b = base.with_exec(["dotnet", "restore", "-r", "linux-arm64"])
        assert len(base.steps) == 1
        assert a.steps[-1].args[-1] == "linux-x64"
        assert b.steps[-1].args[-1] == "linux-arm64"


class TestMounts:

    def test_directory_mount_keeps_ignore_patterns(self, tmp_path):
        env = Environment.from_image("img").with_mounted_directory(
            "/repo", tmp_path, ignore=["**/obj", "**/bin"]
        )
        mount = env.mount_at("/repo")
        assert isinstance(mount, DirectoryMount)
        assert mount.source == tmp_path
        assert mount.ignore == ("**/obj", "**/bin")

    def test_cache_and_file_mounts(self, tmp_path):
        save = tmp_path / "x.sav"
        env = (
            Environment.from_image("img")
            .with_mounted_cache("/root/.nuget/packages", cache_volume("nuget"))
            .with_mounted_file("/saves/x.sav", save)
        )
        assert isinstance(env.mount_at("/root/.nuget/packages"), CacheMount)
        assert isinstance(env.mount_at("/saves/x.sav"), FileMount)
        assert env.mount_at("/nowhere") is None

    def test_remount_same_path_replaces(self, tmp_path):
        env = (
            Environment.from_image("img")
            .with_mounted_directory("/repo", tmp_path / "a")
            .with_mounted_directory("/repo", tmp_path / "b")
        )
        assert len(env.mounts) == 1
        assert env.mount_at("/repo").source == Path(tmp_path / "b")


class TestExecSteps:

    def test_step_captures_workdir_and_env_at_add_time(self):
        env = (
            Environment.from_image("img")
            .with_workdir("/first")
            .with_exec(["ls"])
            .with_workdir("/second")
            .with_env_variable("DOTNET_ROOT", "/opt/dotnet")
            .with_exec(["dotnet", "--info"])
        )
        first, second = env.steps
        assert first.workdir == "/first"
        assert first.env == ()
        assert second.workdir == "/second"
        assert dict(second.env) == {"DOTNET_ROOT": "/opt/dotnet"}

    def test_env_variable_overwrite_keeps_last(self):
        env = (
            Environment.from_image("img")
            .with_env_variable("PATH", "/a")
            .with_env_variable("PATH", "/b")
        )
        assert env.env_dict() == {"PATH": "/b"}

    def test_stage_tags_in_order(self):
        env = (
            Environment.from_image("img")
            .with_exec(["apt-get", "update"], stage="provision")
            .with_exec(["dotnet", "restore"], stage="restore")
            .with_exec(["dotnet", "publish"], stage="compile")
        )
        assert env.stages() == ("provision", "restore", "compile")

    def test_args_are_stringified(self):
        env = Environment.from_image("img").with_exec(["sleep", 1])
        assert env.steps[0].args == ("sleep", "1")
        assert env.steps[0].command_line == "sleep 1"

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError, match="non-empty"):
            Environment.from_image("img").with_exec([])


class TestCacheVolume:

    def test_same_name_same_volume(self):
        assert cache_volume("nuget") == cache_volume("nuget")

    @pytest.mark.parametrize("name", ["", "a/b"])
    def test_invalid_names(self, name):
        with pytest.raises(ValueError, match="invalid cache volume name"):
            CacheVolume(name)
