import errno


# errors returned by stat() on a mount point whose backing share went away
CORRUPTED_MOUNT_ERRNOS = {errno.ENOTCONN, errno.ESTALE, errno.EIO, errno.EACCES, errno.EHOSTDOWN}


def get_mount(target_path):
    """Return the topmost mount entry on ``target_path`` (or None)"""
    import psutil
    target_path = str(target_path)
    found = None
    for m in psutil.disk_partitions(all=True):
        if m.mountpoint == target_path:
            found = m
    return found


def is_corrupted_mount(exc: OSError) -> bool:
    return exc.errno in CORRUPTED_MOUNT_ERRNOS


def describe_os_error(exc, op: str) -> str:
    """
    Render a filesystem error as '<op> <path>: <reason>' (e.g. 'mkdir /mnt/stage: not a directory').
    Anything that is not an OSError with a reason is rendered as-is.
    """
    if not (isinstance(exc, OSError) and exc.strerror):
        return str(exc)
    reason = exc.strerror.lower()
    return f"{op} {exc.filename}: {reason}" if exc.filename else reason
