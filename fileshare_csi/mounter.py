"""
OS mount primitives used by the node service.

The node service talks to a ``Mounter`` only, so that the stage/publish logic is the same
on every platform. One implementation exists per supported OS; ``get_mounter`` picks the
one for the running host.
"""

import os
import sys
import errno
import shutil
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Tuple

from plumbum import cmd
from plumbum import local, ProcessExecutionError, CommandNotFound
from easypy.bunch import Bunch

from .logging import logger
from .utils import get_mount
from .exceptions import MountFailed, UnmountFailed, UnsupportedOperation

COMMAND_NOT_FOUND = 127


class Mounter(ABC):

    @abstractmethod
    def is_likely_not_mount_point(self, path) -> bool:
        """
        Fast check whether ``path`` is *not* a mount point.
        Raises ``FileNotFoundError`` if the path does not exist, and ``OSError`` if it can't be inspected.
        """

    @abstractmethod
    def mount(self, source, target, fs_type: str = "", options: Sequence[str] = ()):
        """Mount ``source`` on ``target``. A ``bind`` option requests a bind mount. Raises ``MountFailed``."""

    @abstractmethod
    def mount_sensitive(
        self, source, target, fs_type: str, options: Sequence[str], sensitive_options: Sequence[str]
    ):
        """Like ``mount``, but ``sensitive_options`` (credentials) are never logged or put in errors."""

    @abstractmethod
    def unmount(self, target):
        """Unmount ``target``. Raises ``UnmountFailed``."""

    @abstractmethod
    def make_dir(self, path):
        """Create ``path`` and its parents."""

    def run(self, command: str, *args) -> Tuple[int, str, str]:
        """
        Run an external tool. Returns ``(retcode, stdout, stderr)`` and does not raise on non-zero exit;
        a tool missing from the host is reported with the shell's 127 status.
        """
        try:
            executable = local[command]
        except CommandNotFound:
            logger.error(f"{command} is not installed on this host")
            return COMMAND_NOT_FOUND, "", f"{command}: command not found"
        return executable[args].run(retcode=None)

    @abstractmethod
    def mounted_fs_type(self, path) -> Optional[str]:
        """Filesystem type of the topmost mount on ``path`` (None if not mounted)"""

    @abstractmethod
    def get_fs_stats(self, path) -> Bunch:
        """Capacity and inode figures of the filesystem holding ``path``"""


class LinuxMounter(Mounter):

    def is_likely_not_mount_point(self, path):
        path = os.path.abspath(path)
        stat = os.stat(path)
        parent = os.stat(os.path.dirname(path))
        if stat.st_dev != parent.st_dev:
            return False
        # bind mounts share the device of their parent
        return get_mount(path) is None

    def mount(self, source, target, fs_type="", options=()):
        options = list(options)
        if "bind" not in options:
            return self._mount(source, target, fs_type, options)

        # 'ro' and friends only take effect on a bind mount when remounting it
        self._mount(source, target, "", ["bind"])
        remount_options = [opt for opt in options if opt != "bind"]
        if remount_options:
            self._mount(source, target, "", ["bind", "remount", *remount_options])

    def mount_sensitive(self, source, target, fs_type, options, sensitive_options):
        logger.info(f"mounting {source} on {target} (type={fs_type or 'auto'}, options={','.join(options)})")
        self._mount(source, target, fs_type, [*options, *sensitive_options])

    def _mount(self, source, target, fs_type, options):
        executable = cmd.mount
        if fs_type:
            executable = executable["-t", fs_type]
        if options:
            executable = executable["-o", ",".join(options)]
        try:
            executable[source, target] & logger.pipe_info("mount >>")
        except ProcessExecutionError as exc:
            # the original exception holds the full argv, credentials included
            raise MountFailed(exc.stderr.strip() or f"mount exited with status {exc.retcode}") from None

    def unmount(self, target):
        try:
            cmd.umount[target] & logger.pipe_info("umount >>")
        except ProcessExecutionError as exc:
            raise UnmountFailed(exc.stderr.strip() or f"umount exited with status {exc.retcode}") from None

    def make_dir(self, path):
        os.makedirs(path, mode=0o755, exist_ok=True)

    def mounted_fs_type(self, path):
        found = get_mount(os.path.abspath(path))
        return found.fstype if found else None

    def get_fs_stats(self, path):
        # See http://man7.org/linux/man-pages/man2/statfs.2.html for details.
        fstats = os.statvfs(path)
        return Bunch(
            total_bytes=fstats.f_blocks * fstats.f_bsize,
            available_bytes=fstats.f_bavail * fstats.f_bsize,
            used_bytes=(fstats.f_blocks - fstats.f_bfree) * fstats.f_bsize,
            total_inodes=fstats.f_files,
            available_inodes=fstats.f_ffree,
            used_inodes=fstats.f_files - fstats.f_ffree,
        )


# Credentials are handed over through the environment so they never show up in a process listing
NEW_SMB_GLOBAL_MAPPING = (
    "$PWord = ConvertTo-SecureString -String $Env:smbpassword -AsPlainText -Force;"
    "$Credential = New-Object -TypeName System.Management.Automation.PSCredential "
    "-ArgumentList $Env:smbuser, $PWord;"
    "New-SmbGlobalMapping -RemotePath $Env:smbremotepath -Credential $Credential -RequirePrivacy $true"
)


class WindowsMounter(Mounter):
    """
    SMB shares are attached as global SMB mappings and exposed at the target path through a
    directory symlink; a "mount point" is therefore a symlink.
    """

    def is_likely_not_mount_point(self, path):
        if not os.path.lexists(path):
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path))
        return not os.path.islink(path)

    def mount(self, source, target, fs_type="", options=()):
        self._link(str(source), target)

    def mount_sensitive(self, source, target, fs_type, options, sensitive_options):
        if fs_type == "nfs":
            raise UnsupportedOperation(operation="NFS mount", platform="windows")
        remote_path = str(source).replace("/", "\\")
        credentials = dict(opt.split("=", 1) for opt in sensitive_options)
        with local.env(
            smbuser=credentials.get("username", ""),
            smbpassword=credentials.get("password", ""),
            smbremotepath=remote_path,
        ):
            retcode, _, stderr = self.run("powershell", "/c", NEW_SMB_GLOBAL_MAPPING)
        if retcode and "already" not in stderr:
            raise MountFailed(f"smb mapping failed with error: {stderr.strip()}")
        self._link(remote_path, target)

    def _link(self, source, target):
        if os.path.isdir(target) and not os.path.islink(target):
            os.rmdir(target)  # the link takes the place of the (empty) directory
        try:
            os.symlink(source, target, target_is_directory=True)
        except OSError as exc:
            raise MountFailed(str(exc)) from None

    def unmount(self, target):
        if not os.path.islink(target):
            raise UnmountFailed(f"{target} is not mounted")
        try:
            os.rmdir(target)
        except OSError as exc:
            raise UnmountFailed(str(exc)) from None

    def make_dir(self, path):
        os.makedirs(path, exist_ok=True)

    def mounted_fs_type(self, path):
        return "cifs" if os.path.islink(path) else None

    def get_fs_stats(self, path):
        usage = shutil.disk_usage(path)
        return Bunch(
            total_bytes=usage.total,
            available_bytes=usage.free,
            used_bytes=usage.used,
            total_inodes=0,
            available_inodes=0,
            used_inodes=0,
        )


def get_mounter() -> Mounter:
    if sys.platform == "win32":
        return WindowsMounter()
    return LinuxMounter()
