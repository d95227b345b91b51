"""Tests for the temp resource registry."""

from pathlib import Path

import pytest

from avorch.errors import ResourceError
from avorch.jobs.resources import ResourceState, TempResourceRegistry


class TestTempResourceRegistry:
    def _registry(self, tmp_path: Path) -> TempResourceRegistry:
        return TempResourceRegistry(tmp_path / "temp")

    def test_reserve_under_owner_dir(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        assert resource.path == tmp_path / "temp" / "op-1" / "segment_s1.mp4"
        assert resource.path.parent.is_dir()
        assert resource.state is ResourceState.RESERVED
        assert registry.active("op-1") == [resource]

    def test_duplicate_reservation(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        registry.reserve("op-1", "segment_s1.mp4")
        with pytest.raises(ResourceError):
            registry.reserve("op-1", "segment_s1.mp4")

    @pytest.mark.parametrize("name", ["../escaped.mp4", "segment_/../../../escaped.mp4", "/tmp/abs.mp4"])
    def test_reserve_stays_under_owner_dir(self, tmp_path: Path, name: str) -> None:
        registry = self._registry(tmp_path)
        with pytest.raises(ResourceError):
            registry.reserve("op-1", name)
        assert registry.active() == []

    def test_mark_written_requires_file(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        with pytest.raises(ResourceError):
            registry.mark_written(resource, "op-1")
        resource.path.write_bytes(b"x")
        registry.mark_written(resource, "op-1")
        assert resource.state is ResourceState.WRITTEN

    def test_hand_off(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        resource.path.write_bytes(b"x")
        registry.mark_written(resource, "op-1")

        destination = registry.hand_off(resource, "op-1", tmp_path / "out" / "final.mp4")

        assert destination.read_bytes() == b"x"
        assert not resource.path.exists()
        assert resource.state is ResourceState.RELEASED
        with pytest.raises(ResourceError):
            registry.release(resource, "op-1")

    def test_hand_off_unwritten(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        with pytest.raises(ResourceError):
            registry.hand_off(resource, "op-1", tmp_path / "final.mp4")

    def test_wrong_owner(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        with pytest.raises(ResourceError):
            registry.release(resource, "op-2")

    def test_scope_releases_on_success(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        with registry.scope("op-1") as scope:
            resource = scope.reserve("segment_s1.mp4")
            resource.path.write_bytes(b"x")
            scope.mark_written(resource)
        assert not resource.path.exists()
        assert not registry.owner_dir("op-1").exists()
        assert registry.active() == []

    def test_scope_releases_on_error(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        with pytest.raises(RuntimeError):
            with registry.scope("op-1") as scope:
                resource = scope.reserve("segment_s1.mp4")
                resource.path.write_bytes(b"x")
                raise RuntimeError("engine failed")
        assert not resource.path.exists()
        assert registry.active("op-1") == []

    def test_scope_retains_on_error(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        with pytest.raises(RuntimeError):
            with registry.scope("op-1", retain_on_error=True) as scope:
                resource = scope.reserve("segment_s1.mp4")
                resource.path.write_bytes(b"x")
                raise RuntimeError("engine failed")
        assert resource.path.exists()
        assert registry.active("op-1") == []

    def test_release_all_reports_failures(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        registry = self._registry(tmp_path)
        resource = registry.reserve("op-1", "segment_s1.mp4")
        resource.path.write_bytes(b"x")

        def refuse(*args, **kwargs):
            raise PermissionError("busy")

        monkeypatch.setattr(Path, "unlink", refuse)
        errors = registry.release_all("op-1")
        assert len(errors) == 1
        assert isinstance(errors[0], ResourceError)

    def test_cleanup_removes_root(self, tmp_path: Path) -> None:
        registry = self._registry(tmp_path)
        registry.reserve("op-1", "a.mp4")
        registry.reserve("op-2", "b.mp4")
        registry.cleanup()
        assert not (tmp_path / "temp").exists()
        assert registry.active() == []
