import os
import errno

from .logging import logger
from .utils import is_corrupted_mount
from .exceptions import UnmountFailed


def ensure_mount_point(mounter, path) -> bool:
    """
    Make sure ``path`` is a directory that can be mounted on.

    Returns True if something is already mounted there, in which case the caller must not mount again.
    Mount check errors other than "does not exist" are raised as-is. A mount that can't be listed is
    unmounted and the listing error is raised.
    """
    try:
        not_mounted = mounter.is_likely_not_mount_point(path)
    except FileNotFoundError:
        not_mounted = True
    except OSError as exc:
        if not is_corrupted_mount(exc):
            raise
        logger.warning(f"detected corrupted mount for {path}: {exc}")
        not_mounted = False

    if not not_mounted:
        # make sure the mount is usable before reporting it as done
        try:
            os.listdir(path)
        except OSError as exc:
            # the mount is unusable: drop it and let the caller retry
            logger.warning(f"listing {path} failed with {exc}, unmounting it")
            mounter.unmount(path)
            raise
        logger.info(f"already mounted to target {path}")
        return True

    if os.path.lexists(path):
        if not os.path.isdir(path):
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), str(path))
    else:
        mounter.make_dir(path)
    return False


def cleanup_mount_point(mounter, path, attempts: int = 10):
    """
    Unmount ``path`` (if mounted) and remove the directory.
    Stacked mounts are unmounted one at a time, up to ``attempts`` times.
    """
    for _ in range(attempts):
        try:
            not_mounted = mounter.is_likely_not_mount_point(path)
        except FileNotFoundError:
            logger.info(f"{path} does not exist - no need to remove")
            return
        except OSError as exc:
            if not is_corrupted_mount(exc):
                raise
            logger.warning(f"detected corrupted mount for {path}: {exc}")
            not_mounted = False

        if not_mounted:
            logger.info(f"{path} is not mounted")
            break

        try:
            mounter.unmount(path)
        except UnmountFailed as exc:
            if "not mounted" not in exc.message:
                raise
            logger.info(f"umount failed - {path} is not mounted (race?)")
            break
    else:
        raise UnmountFailed(f"Stuck in unmount loop of {path} too many times ({attempts})")

    try:
        os.rmdir(path)  # never rmtree - anything left inside belongs to the volume
    except OSError as exc:
        logger.warning(f"could not remove {path}: {exc}")
    else:
        logger.info(f"{path} removed successfully")
