"""Temporary file registry with single ownership."""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from uuid import uuid4

from avorch.errors import ResourceError

logger = logging.getLogger(__name__)


class ResourceState(str, Enum):
    """Lifecycle of a temporary file."""

    RESERVED = "reserved"
    WRITTEN = "written"
    RELEASED = "released"


@dataclass
class TempResource:
    """A temporary file owned by exactly one operation."""

    path: Path
    owner_id: str
    state: ResourceState = ResourceState.RESERVED
    id: str = field(default_factory=lambda: uuid4().hex)


class TempResourceRegistry:
    """Hands out temporary paths under ``root/<owner_id>/`` and releases them.

    Each resource has one owner and is released exactly once, either by
    handing it off to its durable destination or by deleting it.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._resources: dict[str, list[TempResource]] = {}

    def owner_dir(self, owner_id: str) -> Path:
        return self.root / owner_id

    def reserve(self, owner_id: str, name: str) -> TempResource:
        """Reserve ``root/<owner_id>/<name>``; the file is not created."""
        directory = self.owner_dir(owner_id)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Cannot create temp directory {directory}: {e}",
                                operation_id=owner_id) from e

        path = directory / name
        if not path.resolve().is_relative_to(directory.resolve()):
            raise ResourceError(f"Temp name {name!r} escapes {directory}", operation_id=owner_id)
        for existing in self._resources.get(owner_id, []):
            if existing.path == path and existing.state is not ResourceState.RELEASED:
                raise ResourceError(f"Temp path already reserved: {path}", operation_id=owner_id)

        resource = TempResource(path=path, owner_id=owner_id)
        self._resources.setdefault(owner_id, []).append(resource)
        logger.debug("Reserved %s for %s", path, owner_id)
        return resource

    def mark_written(self, resource: TempResource, owner_id: str) -> None:
        """Record that the engine produced the file."""
        self._check(resource, owner_id)
        if not resource.path.exists():
            raise ResourceError(f"Expected output missing: {resource.path}", operation_id=owner_id)
        resource.state = ResourceState.WRITTEN

    def release(self, resource: TempResource, owner_id: str) -> None:
        """Delete the file and mark the resource released."""
        self._check(resource, owner_id)
        try:
            resource.path.unlink(missing_ok=True)
        except OSError as e:
            raise ResourceError(f"Cannot remove {resource.path}: {e}", operation_id=owner_id) from e
        resource.state = ResourceState.RELEASED

    def hand_off(self, resource: TempResource, owner_id: str, destination: Path) -> Path:
        """Move a written resource to *destination*, releasing it."""
        self._check(resource, owner_id)
        if resource.state is not ResourceState.WRITTEN:
            raise ResourceError(f"Cannot hand off unwritten resource {resource.path}",
                                operation_id=owner_id)
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(resource.path), str(destination))
        except OSError as e:
            raise ResourceError(f"Cannot move {resource.path} to {destination}: {e}",
                                operation_id=owner_id) from e
        resource.state = ResourceState.RELEASED
        logger.debug("Handed off %s -> %s", resource.path, destination)
        return destination

    def active(self, owner_id: str | None = None) -> list[TempResource]:
        """Resources not yet released, for one owner or all."""
        owners = [owner_id] if owner_id is not None else list(self._resources)
        return [
            r
            for owner in owners
            for r in self._resources.get(owner, [])
            if r.state is not ResourceState.RELEASED
        ]

    def release_all(self, owner_id: str, *, retain: bool = False) -> list[ResourceError]:
        """Release every resource of *owner_id* whatever its state.

        Failures are logged and returned, never raised, so they cannot mask
        the error that triggered the cleanup. With *retain* the files are
        left on disk for inspection.
        """
        errors: list[ResourceError] = []
        for resource in self._resources.pop(owner_id, []):
            if resource.state is ResourceState.RELEASED:
                continue
            if retain:
                logger.info("Retaining partial output %s", resource.path)
                resource.state = ResourceState.RELEASED
                continue
            try:
                self.release(resource, owner_id)
            except ResourceError as e:
                logger.error(e.describe())
                errors.append(e)

        directory = self.owner_dir(owner_id)
        if not retain and directory.exists():
            try:
                shutil.rmtree(directory)
            except OSError as e:
                error = ResourceError(f"Cannot remove {directory}: {e}", operation_id=owner_id)
                logger.error(error.describe())
                errors.append(error)
        return errors

    @contextmanager
    def scope(self, owner_id: str, *, retain_on_error: bool = False) -> Iterator[ResourceScope]:
        """Release everything reserved inside the block on every exit path."""
        scope = ResourceScope(self, owner_id)
        try:
            yield scope
        except BaseException:
            self.release_all(owner_id, retain=retain_on_error)
            raise
        else:
            self.release_all(owner_id)

    def cleanup(self) -> None:
        """Remove the whole temp root (application shutdown)."""
        owners = list(self._resources)
        for owner_id in owners:
            self.release_all(owner_id)
        if self.root.exists():
            try:
                shutil.rmtree(self.root)
            except OSError as e:
                logger.error("Error cleaning temp directory %s: %s", self.root, e)

    def _check(self, resource: TempResource, owner_id: str) -> None:
        if resource.owner_id != owner_id:
            raise ResourceError(
                f"{owner_id} does not own {resource.path} (owner {resource.owner_id})",
                operation_id=owner_id,
            )
        if resource.state is ResourceState.RELEASED:
            raise ResourceError(f"Resource already released: {resource.path}", operation_id=owner_id)


class ResourceScope:
    """Registry view bound to one owner."""

    def __init__(self, registry: TempResourceRegistry, owner_id: str) -> None:
        self.registry = registry
        self.owner_id = owner_id

    def reserve(self, name: str) -> TempResource:
        return self.registry.reserve(self.owner_id, name)

    def mark_written(self, resource: TempResource) -> None:
        self.registry.mark_written(resource, self.owner_id)

    def release(self, resource: TempResource) -> None:
        self.registry.release(resource, self.owner_id)

    def hand_off(self, resource: TempResource, destination: Path) -> Path:
        return self.registry.hand_off(resource, self.owner_id, destination)
