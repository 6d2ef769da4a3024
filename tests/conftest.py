import os
import sys
import errno
import inspect
from pathlib import Path
from collections import Counter
from tempfile import gettempdir
from typing import List, Optional

import pytest
from plumbum import local
from easypy.bunch import Bunch

ROOT = Path(__file__).resolve().parents[1]
# Extend python import path to get fileshare_csi package from here
sys.path += [ROOT.as_posix()]

with local.cwd(gettempdir()) as tempdir:
    # Temporary change working directory and create version.info file in order to allow reading
    # driver name, version and git commit by Config.
    tempdir["version.info"].open("w").write("fileshare.csi.k8s.io v0.0.0 #### local")
    from fileshare_csi.server import CsiIdentity, CsiNode, Config
    from fileshare_csi.mounter import Mounter
    from fileshare_csi.exceptions import MountFailed, UnmountFailed
    import fileshare_csi.csi_types as types

# Restore original methods on CsiIdentity and CsiNode in order to get rid of Instrumented logging layer.
for cls in (CsiIdentity, CsiNode):
    for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
        if name.startswith("_"):
            continue
        func = getattr(cls, name)
        setattr(cls, name, func.__wrapped__)
        # Simulate getting __wrapped__ context from function. This logic is used in csi driver so tests should also
        # support this.
        setattr(func, "__wrapped__", func.__wrapped__)


# ----------------------------------------------------------------------------------------------------------------------
# Helper classes
# ----------------------------------------------------------------------------------------------------------------------


class FakeMounter(Mounter):
    """
    In-memory mount table over a real directory tree.

    Mounts stack per target, so unmount has to be called once per mount.
    External tool invocations (blkid, mkfs) are answered from ``run_results`` in order;
    every call is recorded in ``calls``.
    """

    def __init__(
            self,
            run_results: Optional[List[tuple]] = None,
            mount_errors: Optional[dict] = None,
            check_errors: Optional[dict] = None,
            unmount_error: Optional[str] = None,
    ):
        self.run_results = list(run_results or [])
        self.mount_errors = dict(mount_errors or {})
        self.check_errors = dict(check_errors or {})
        self.unmount_error = unmount_error
        self.mounts = Counter()
        self.fs_types = {}
        self.calls = []

    def mount_point(self, path, fs_type="cifs"):
        """Mark an existing path as mounted"""
        self.mounts[str(path)] += 1
        self.fs_types[str(path)] = fs_type

    def is_likely_not_mount_point(self, path):
        path = str(path)
        if path in self.check_errors:
            raise self.check_errors.pop(path)
        if not os.path.lexists(path):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
        return not self.mounts[path]

    def mount(self, source, target, fs_type="", options=()):
        self.calls.append(("mount", str(source), str(target), fs_type, list(options)))
        self._mount(target, fs_type)

    def mount_sensitive(self, source, target, fs_type, options, sensitive_options):
        self.calls.append(
            ("mount_sensitive", str(source), str(target), fs_type, list(options), list(sensitive_options))
        )
        self._mount(target, fs_type)

    def _mount(self, target, fs_type):
        target = str(target)
        if target in self.mount_errors:
            raise MountFailed(self.mount_errors[target])
        self.mounts[target] += 1
        self.fs_types[target] = fs_type

    def unmount(self, target):
        target = str(target)
        self.calls.append(("unmount", target))
        if self.unmount_error:
            raise UnmountFailed(self.unmount_error)
        if not self.mounts[target]:
            raise UnmountFailed(f"umount: {target}: not mounted.")
        self.mounts[target] -= 1

    def make_dir(self, path):
        self.calls.append(("make_dir", str(path)))
        os.makedirs(path, exist_ok=True)

    def run(self, command, *args):
        self.calls.append(("run", command, *map(str, args)))
        assert self.run_results, f"unexpected invocation: {command} {' '.join(map(str, args))}"
        return self.run_results.pop(0)

    def mounted_fs_type(self, path):
        path = str(path)
        return self.fs_types.get(path) if self.mounts[path] else None

    def get_fs_stats(self, path):
        return Bunch(
            total_bytes=100 * 1024, available_bytes=60 * 1024, used_bytes=40 * 1024,
            total_inodes=1000, available_inodes=900, used_inodes=100,
        )

    def calls_of(self, kind):
        return [call for call in self.calls if call[0] == kind]


# ----------------------------------------------------------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------------------------------------------------------


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def mounter():
    return FakeMounter()


@pytest.fixture
def node(config, mounter):
    return CsiNode(config=config, mounter=mounter)


@pytest.fixture
def volume_capability():
    """Factory for building a mount VolumeCapability"""

    def __wrapped(
            mode: int = types.AccessModeType.MULTI_NODE_MULTI_WRITER, mount_flags: Optional[List[str]] = None
    ) -> types.VolumeCapability:
        return types.VolumeCapability(
            mount=types.MountVolume(mount_flags=mount_flags or []),
            access_mode=types.AccessMode(mode=mode),
        )

    return __wrapped


@pytest.fixture
def make_mounter():
    """FakeMounter factory, for tests that need scripted failures"""
    return FakeMounter
