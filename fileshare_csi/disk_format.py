"""
Disk-image volumes: a filesystem image stored as a file inside the network share.

The share is mounted first; the image is then formatted (only when it has no filesystem yet)
and loop-mounted over the same staging path.
"""

import os

from .logging import logger
from .exceptions import FormatFailed, SignatureReadFailed

BLKID_NO_SIGNATURE = 2  # blkid: "the specified token was not found, or no devices could be identified"

DEFAULT_MKFS_ARGS = ("-f",)
MKFS_ARGS = {
    "ext2": ("-F", "-m0"),
    "ext3": ("-F", "-m0"),
    "ext4": ("-F", "-m0"),
    "xfs": ("-f",),
}


def get_disk_path(share_mount_path, disk_name) -> str:
    return os.path.join(str(share_mount_path), disk_name)


class DiskFormatter:

    def __init__(self, mounter):
        self.mounter = mounter

    def get_existing_format(self, disk_path) -> str:
        """
        Returns the filesystem found on ``disk_path``, or an empty string when there is none.
        Any unexpected blkid result raises - we never format a disk we could not read.
        """
        retcode, stdout, stderr = self.mounter.run(
            "blkid", "-p", "-s", "TYPE", "-s", "PTTYPE", "-o", "export", disk_path
        )
        if retcode == BLKID_NO_SIGNATURE:
            return ""
        if retcode != 0:
            logger.error(f"blkid {disk_path} failed ({retcode}): {stderr.strip()}")
            raise SignatureReadFailed(disk_path=disk_path, retcode=retcode, stderr=stderr.strip())

        found = dict(
            line.split("=", 1) for line in stdout.splitlines() if "=" in line
        )
        if fs_type := found.get("TYPE"):
            return fs_type
        if found.get("PTTYPE"):
            raise SignatureReadFailed(
                disk_path=disk_path, retcode=retcode, pttype=found["PTTYPE"],
                tip="the image holds a partition table; refusing to format it",
            )
        return ""

    def format(self, disk_path, fs_type):
        args = MKFS_ARGS.get(fs_type, DEFAULT_MKFS_ARGS)
        logger.info(f"Disk {disk_path} appears to be unformatted, formatting it as {fs_type} ({' '.join(args)})")
        retcode, _, stderr = self.mounter.run(f"mkfs.{fs_type}", *args, disk_path)
        if retcode != 0:
            raise FormatFailed(disk_path=disk_path, fs_type=fs_type, retcode=retcode, stderr=stderr.strip())
        logger.info(f"Disk {disk_path} formatted as {fs_type}")

    def format_and_mount(self, disk_path, target, fs_type, readonly=False):
        """
        Format ``disk_path`` as ``fs_type`` if it holds no filesystem, then loop-mount it on ``target``.
        Errors are not retried here.
        """
        existing_format = self.get_existing_format(disk_path)
        if not existing_format:
            if readonly:
                raise FormatFailed(
                    disk_path=disk_path, fs_type=fs_type, tip="cannot format a disk image requested as readonly"
                )
            self.format(disk_path, fs_type)
        elif existing_format != fs_type:
            logger.warning(f"{disk_path} already holds {existing_format}, requested {fs_type}")

        options = ["loop", "ro"] if readonly else ["loop"]
        logger.info(f"Mounting {disk_path} on {target} as {fs_type}")
        self.mounter.mount(disk_path, target, fs_type, options)
