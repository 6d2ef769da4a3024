from easypy.exceptions import TException


class Abort(Exception):
    @property
    def code(self):
        return self.args[0]

    @property
    def message(self):
        return self.args[1]


class OperationFailed(Exception):
    """Failure of an external mount/format tool. ``message`` is the tool's error output."""

    @property
    def message(self):
        return self.args[0]

    def __str__(self):
        return self.message


class MountFailed(OperationFailed):
    pass


class UnmountFailed(OperationFailed):
    pass


class InvalidVolumeId(TException):
    template = "Invalid volume id: {volume_id!r} (expected <resource-group>#<account>#<share>[#<subdirectory>])"


class FormatFailed(TException):
    template = "Formatting {disk_path} as {fs_type} failed"


class SignatureReadFailed(TException):
    template = "Could not determine the filesystem on {disk_path} (blkid exited with {retcode})"


class UnsupportedOperation(TException):
    template = "{operation} is not supported on {platform}"
