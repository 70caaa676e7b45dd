"""Filesystem staging adapter."""

import os
import shutil
import tempfile
import threading
import time
from datetime import UTC, datetime
from pathlib import Path

from ..core.models import StagedObject
from ..ports.clock import ClockPort
from ..ports.logger import LoggerPort


class FsCacheAdapter:
    """Content-addressed staging area on local disk.

    Objects live at ``<base_dir>/<hex(object_key)>``. Bytes are written to a
    unique file under ``<base_dir>/tmp`` and renamed into place, so a final
    name only ever refers to a complete object. Action bindings are kept in
    memory for the lifetime of the process.
    """

    def __init__(
        self,
        base_dir: Path,
        clock: ClockPort,
        logger: LoggerPort,
        max_bytes: int = 0,
    ):
        self.base_dir = base_dir
        self.tmp_dir = base_dir / "tmp"
        self.clock = clock
        self.logger = logger
        self.max_bytes = max_bytes

        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

        self._objects: dict[bytes, StagedObject] = {}
        self._actions: dict[bytes, bytes] = {}
        self._pins: dict[bytes, int] = {}
        self._total = 0
        self._lock = threading.RLock()

    def object_path(self, object_key: bytes) -> Path:
        return self.base_dir / object_key.hex()

    def new_temp_path(self) -> Path:
        fd, name = tempfile.mkstemp(dir=self.tmp_dir, prefix="obj-", suffix=".tmp")
        os.close(fd)
        return Path(name)

    def commit(self, temp_path: Path, object_key: bytes, pin: bool = False) -> StagedObject:
        size = temp_path.stat().st_size
        final_path = self.object_path(object_key)
        # Rename, pin and eviction share the lock; no concurrent commit interleaves
        with self._lock:
            os.replace(temp_path, final_path)
            staged = StagedObject(
                object_key=object_key,
                path=final_path,
                size=size,
                mod_time=self.clock.now(),
                last_access=time.monotonic(),
            )
            previous = self._objects.get(object_key)
            if previous is not None:
                self._total -= previous.size
            self._objects[object_key] = staged
            self._total += size
            if pin:
                self._pins[object_key] = self._pins.get(object_key, 0) + 1
            victims = self._select_victims(keep=object_key)
            for victim in victims:
                victim.path.unlink(missing_ok=True)

        for victim in victims:
            self.logger.debug("Evicted staged object", key=victim.hex_key, size=victim.size)
        return staged

    def write_object(self, object_key: bytes, data: bytes, pin: bool = False) -> StagedObject:
        temp_path = self.new_temp_path()
        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return self.commit(temp_path, object_key, pin=pin)

    def lookup_object(self, object_key: bytes) -> StagedObject | None:
        with self._lock:
            staged = self._objects.get(object_key)
            if staged is None:
                staged = self._adopt(object_key)
                if staged is None:
                    return None
            elif not staged.path.exists():
                self._forget(object_key)
                return None
            staged.last_access = time.monotonic()
            return staged

    def bind_action(self, action_key: bytes, staged: StagedObject) -> None:
        with self._lock:
            self._actions[action_key] = staged.object_key

    def lookup_action(self, action_key: bytes) -> StagedObject | None:
        with self._lock:
            object_key = self._actions.get(action_key)
            if object_key is None:
                return None
            staged = self.lookup_object(object_key)
            if staged is None:
                del self._actions[action_key]
            return staged

    def pin(self, object_key: bytes) -> None:
        with self._lock:
            self._pins[object_key] = self._pins.get(object_key, 0) + 1

    def unpin(self, object_key: bytes) -> None:
        with self._lock:
            count = self._pins.get(object_key, 0) - 1
            if count > 0:
                self._pins[object_key] = count
            else:
                self._pins.pop(object_key, None)

    def total_bytes(self) -> int:
        with self._lock:
            return self._total

    def cleanup(self) -> None:
        with self._lock:
            staged = list(self._objects.values())
            self._objects.clear()
            self._actions.clear()
            self._pins.clear()
            self._total = 0
        for obj in staged:
            obj.path.unlink(missing_ok=True)
        shutil.rmtree(self.tmp_dir, ignore_errors=True)
        try:
            self.base_dir.rmdir()
        except OSError:
            # Directory holds files this process did not stage
            pass

    def _adopt(self, object_key: bytes) -> StagedObject | None:
        """Index an object left on disk by an earlier process."""
        path = self.object_path(object_key)
        try:
            st = path.stat()
        except FileNotFoundError:
            return None
        staged = StagedObject(
            object_key=object_key,
            path=path,
            size=st.st_size,
            mod_time=datetime.fromtimestamp(st.st_mtime, UTC),
        )
        self._objects[object_key] = staged
        self._total += staged.size
        return staged

    def _forget(self, object_key: bytes) -> StagedObject | None:
        staged = self._objects.pop(object_key, None)
        if staged is None:
            return None
        self._total -= staged.size
        self._actions = {a: o for a, o in self._actions.items() if o != object_key}
        return staged

    def _select_victims(self, keep: bytes) -> list[StagedObject]:
        """Drop least-recently-accessed objects until under the bound."""
        if not self.max_bytes or self._total <= self.max_bytes:
            return []
        candidates = sorted(
            (
                obj
                for key, obj in self._objects.items()
                if key != keep and key not in self._pins
            ),
            key=lambda obj: obj.last_access,
        )
        victims = []
        for obj in candidates:
            if self._total <= self.max_bytes:
                break
            self._forget(obj.object_key)
            victims.append(obj)
        return victims
