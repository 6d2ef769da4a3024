"""
Where a volume lives and how to mount it: volume id parsing and share source/option resolution.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Mapping

from easypy.tokens import Token, SMB, NFS

from .exceptions import InvalidVolumeId

VOLUME_ID_SEPARATOR = "#"

# volume context keys
FS_TYPE_FIELD = "fstype"
DISK_NAME_FIELD = "diskname"
SHARE_NAME_FIELD = "sharename"
SERVER_NAME_FIELDS = ("server", "servername")

# secret keys
ACCOUNT_NAME_FIELDS = ("accountname", "azurestorageaccountname")
ACCOUNT_KEY_FIELDS = ("accountkey", "azurestorageaccountkey")

NFS_FS_TYPE = "nfs"
# filesystems that live in a disk image inside the share
DISK_FS_TYPES = {"ext2", "ext3", "ext4", "xfs"}

MOUNT_FS_TYPES = {SMB: "cifs", NFS: "nfs"}
# as reported by the mount table once a share is mounted
SHARE_FS_TYPES = {"cifs", "smb3", "nfs", "nfs4"}
DEFAULT_MOUNT_OPTIONS = {
    SMB: dict(actimeo="30", dir_mode="0777", file_mode="0777", vers="3.0"),
    NFS: dict(minorversion="1", sec="sys", vers="4"),
}


@dataclass
class VolumeId:
    resource_group: str
    account: str
    share: str
    subdir: Optional[str] = None

    @classmethod
    def parse(cls, volume_id: str) -> "VolumeId":
        """
        Parse '<resource-group>#<account>#<share>[#<subdirectory>]'.
        A trailing separator ('rg#acct#share#') marks an empty subdirectory.
        """
        segments = volume_id.split(VOLUME_ID_SEPARATOR)
        if len(segments) < 3:
            raise InvalidVolumeId(volume_id=volume_id)
        resource_group, account, share, *rest = segments
        subdir = VOLUME_ID_SEPARATOR.join(rest) if rest else None
        return cls(resource_group=resource_group, account=account, share=share, subdir=subdir)


@dataclass
class ShareMount:
    """Everything needed to mount the network share of a volume"""

    server: str
    share: str
    protocol: Token
    fs_type: str  # as requested in the volume context
    disk_name: str = ""
    subdir: Optional[str] = None
    options: List[str] = field(default_factory=list)
    sensitive_options: List[str] = field(repr=False, default_factory=list)

    @property
    def source(self) -> str:
        source = f"//{self.server}/{self.share}"
        if self.subdir:
            source = f"{source}/{self.subdir.strip('/')}"
        return source

    @property
    def mount_fs_type(self) -> str:
        return MOUNT_FS_TYPES[self.protocol]

    @property
    def is_disk(self) -> bool:
        return self.fs_type in DISK_FS_TYPES


def _lookup(mapping: Optional[Mapping[str, str]], *keys: str) -> str:
    """Case insensitive lookup of the first non-blank value among ``keys``"""
    lowered = {k.lower(): v for k, v in (mapping or {}).items()}
    for key in keys:
        if value := (lowered.get(key) or "").strip():
            return value
    return ""


def get_account_name(volume_id: str, secrets: Optional[Mapping[str, str]] = None) -> str:
    """Account name from the secrets, falling back to the one encoded in the volume id"""
    parsed = VolumeId.parse(volume_id)
    return _lookup(secrets, *ACCOUNT_NAME_FIELDS) or parsed.account


def get_disk_name(volume_context: Optional[Mapping[str, str]]) -> str:
    return _lookup(volume_context, DISK_NAME_FIELD)


def get_fs_type(volume_context: Optional[Mapping[str, str]]) -> str:
    return _lookup(volume_context, FS_TYPE_FIELD).lower()


def build_mount_options(protocol, readonly: bool, mount_flags=()) -> List[str]:
    """
    'ro' first, then the caller's flags, then protocol defaults the caller did not set (sorted by name).
    The order is stable - the resulting argument list must be reproducible.
    """
    options = ["ro"] if readonly else []
    options += [flag.strip() for flag in mount_flags if flag.strip()]
    given = {opt.partition("=")[0] for opt in options}
    options += [
        f"{name}={value}"
        for name, value in sorted(DEFAULT_MOUNT_OPTIONS[protocol].items())
        if name not in given
    ]
    return options


def resolve_share(
    volume_id: str,
    storage_endpoint_suffix: str,
    volume_context: Optional[Mapping[str, str]] = None,
    secrets: Optional[Mapping[str, str]] = None,
    readonly: bool = False,
    mount_flags=(),
) -> ShareMount:
    """
    Raises ``InvalidVolumeId`` for a malformed id, and ``ValueError`` when the account or share
    name can't be determined.
    """
    parsed = VolumeId.parse(volume_id)
    if not (account := get_account_name(volume_id, secrets)):
        raise ValueError(f"failed to get account name from {volume_id}")
    if not (share := _lookup(volume_context, SHARE_NAME_FIELD) or parsed.share):
        raise ValueError(f"failed to get file share name from {volume_id}")

    server = _lookup(volume_context, *SERVER_NAME_FIELDS) or f"{account}.file.{storage_endpoint_suffix}"
    fs_type = get_fs_type(volume_context)
    protocol = NFS if fs_type == NFS_FS_TYPE else SMB

    sensitive_options = []
    if protocol == SMB:
        sensitive_options.append(f"username={account}")
        if account_key := _lookup(secrets, *ACCOUNT_KEY_FIELDS):
            sensitive_options.append(f"password={account_key}")

    return ShareMount(
        server=server,
        share=share,
        protocol=protocol,
        fs_type=fs_type,
        disk_name=get_disk_name(volume_context),
        subdir=parsed.subdir,
        options=build_mount_options(protocol, readonly=readonly, mount_flags=mount_flags),
        sensitive_options=sensitive_options,
    )
