"""CSI node plugin for SMB/NFS file-share volumes."""

import os
import inspect
from concurrent import futures
from functools import wraps
from pprint import pformat

import grpc

from easypy.misc import kwargs_resilient
from easypy.exceptions import TException
from easypy.collections import separate

from .logging import logger, init_logging
from .utils import describe_os_error
from .proto import csi_pb2_grpc as csi_grpc
from . import csi_types as types
from .configuration import Config
from .exceptions import Abort, InvalidVolumeId, MountFailed, OperationFailed, UnmountFailed
from .volume_locks import VolumeLocks
from .mounter import get_mounter
from .mount_point import ensure_mount_point, cleanup_mount_point
from .share import DISK_FS_TYPES, SHARE_FS_TYPES, get_account_name, get_disk_name, get_fs_type, resolve_share
from .disk_format import DiskFormatter, get_disk_path


################################################################
#
# Helpers
#
################################################################


INVALID_ARGUMENT = grpc.StatusCode.INVALID_ARGUMENT
NOT_FOUND = grpc.StatusCode.NOT_FOUND
INTERNAL = grpc.StatusCode.INTERNAL
UNIMPLEMENTED = grpc.StatusCode.UNIMPLEMENTED


def _is_readonly(volume_capability):
    return volume_capability.access_mode.mode in types.READONLY_ACCESS_MODES


class Instrumented:

    SILENCED = ["Probe", "NodeGetCapabilities"]

    @classmethod
    def logged(cls, func):

        method = func.__name__
        log = logger.debug if (method in cls.SILENCED) else logger.info

        parameters = inspect.signature(func).parameters
        required_params, non_required_params = map(
            set, separate(parameters, key=lambda k: parameters[k].default is inspect._empty)
        )
        required_params.discard("self")
        accepts_secrets = "secrets" in parameters

        func = kwargs_resilient(func)

        @wraps(func)
        def wrapper(self, request, context):
            peer = context.peer()
            params = {fld.name: value for fld, value in request.ListFields()}
            # secrets are never logged
            secrets = params.pop("secrets", {})
            missing_params = required_params - {"request", "context"} - set(params)

            log(f"{peer} >>> {method}:")

            if params:
                for line in pformat(params).splitlines():
                    log(f"({method})    {line}")

            if accepts_secrets:
                params["secrets"] = dict(secrets)

            try:
                if missing_params:
                    msg = f'Missing required fields: {", ".join(sorted(missing_params))}'
                    logger.error(f"{peer} <<< {method}: {msg}")
                    raise Abort(INVALID_ARGUMENT, msg)

                ret = func(self, request=request, context=context, **params)
            except Abort as exc:
                logger.info(
                    f'{peer} <<< {method} ABORTED with {exc.code} ("{exc.message}")'
                )
                logger.debug("Traceback", exc_info=True)
                context.abort(exc.code, exc.message)
            except TException as exc:
                # Any exception inherited from TException
                logger.exception(f"Exception during {method}")
                context.abort(INTERNAL, f"[{method}]. {exc.render(color=False)}")
            except Exception as exc:
                logger.exception(f"Exception during {method}")
                context.abort(INTERNAL, f"[{method}]: {exc}")
            if ret:
                log(f"{peer} <<< {method}:")
                for line in pformat(ret).splitlines():
                    log(f"    {line}")
            log(f"{peer} --- {method}: Done")
            return ret

        return wrapper

    @classmethod
    def __init_subclass__(cls):
        for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
            if name.startswith("_"):
                continue
            func = getattr(cls, name)
            setattr(cls, name, cls.logged(func))
        super().__init_subclass__()


################################################################
#
# Identity
#
################################################################


class CsiIdentity(csi_grpc.IdentityServicer, Instrumented):
    def __init__(self, config):
        self.config = config
        self.capabilities = []
        self.node = None

    def GetPluginInfo(self, request, context):
        return types.InfoResp(
            name=self.config.plugin_name,
            vendor_version=self.config.plugin_version,
        )

    def GetPluginCapabilities(self, request, context):
        return types.CapabilitiesResp(
            capabilities=[
                types.Capability(service=types.Service(type=cap))
                for cap in self.capabilities
            ]
        )

    def Probe(self, request, context):
        return types.ProbeRespOK


################################################################
#
# Node
#
################################################################


class CsiNode(csi_grpc.NodeServicer, Instrumented):

    CAPABILITIES = [
        types.NodeCapabilityType.STAGE_UNSTAGE_VOLUME,
        types.NodeCapabilityType.GET_VOLUME_STATS,
    ]

    def __init__(self, config, mounter=None, volume_locks=None):
        self.config = config
        self.mounter = mounter or get_mounter()
        self.volume_locks = volume_locks or VolumeLocks()

    def NodeGetCapabilities(self):
        return types.NodeCapabilityResp(
            capabilities=[
                types.NodeCapability(rpc=types.NodeCapability.RPC(type=rpc))
                for rpc in self.CAPABILITIES
            ]
        )

    def NodeGetInfo(self):
        return types.NodeInfoResp(node_id=self.config.node_id)

    def NodeStageVolume(
        self,
        volume_id="",
        staging_target_path="",
        volume_capability=None,
        volume_context=None,
        secrets=None,
        publish_context=None,
    ):
        if not volume_id:
            raise Abort(INVALID_ARGUMENT, "Volume ID missing in request")
        if not staging_target_path:
            raise Abort(INVALID_ARGUMENT, "Staging target not provided")
        if volume_capability is None:
            raise Abort(INVALID_ARGUMENT, "Volume capability not provided")

        try:
            account_name = get_account_name(volume_id, secrets)
        except InvalidVolumeId:
            account_name = ""
        if not account_name:
            raise Abort(INVALID_ARGUMENT, f"failed to get account name from {volume_id}")

        # fs_type of the capability is ignored: it is ext4 by default on linux
        if get_fs_type(volume_context) in DISK_FS_TYPES and not get_disk_name(volume_context):
            raise Abort(INVALID_ARGUMENT, f"diskname could not be empty, targetPath: {staging_target_path}")

        readonly = _is_readonly(volume_capability)
        try:
            share = resolve_share(
                volume_id,
                self.config.storage_endpoint_suffix,
                volume_context=volume_context,
                secrets=secrets,
                readonly=readonly,
                mount_flags=volume_capability.mount.mount_flags,
            )
        except ValueError as exc:
            raise Abort(INVALID_ARGUMENT, str(exc))

        with self.volume_locks.locked(volume_id):
            try:
                already_mounted = ensure_mount_point(self.mounter, staging_target_path)
            except (OSError, UnmountFailed) as exc:
                raise Abort(
                    INTERNAL, f"MkdirAll {staging_target_path} failed with error: {describe_os_error(exc, 'mkdir')}"
                )

            if already_mounted:
                if not (share.is_disk and self.mounter.mounted_fs_type(staging_target_path) in SHARE_FS_TYPES):
                    logger.info(f"{volume_id} is already staged at {staging_target_path}")
                    return types.StageResp()
                # a previous attempt mounted the share but failed to mount the disk image
                logger.info(f"share of {volume_id} is already mounted at {staging_target_path}, resuming disk mount")
            else:
                try:
                    self.mounter.mount_sensitive(
                        share.source, staging_target_path, share.mount_fs_type, share.options, share.sensitive_options
                    )
                except MountFailed as exc:
                    raise Abort(
                        INTERNAL,
                        f'volume({volume_id}) mount "{share.source}" on "{staging_target_path}" failed with {exc.message}',
                    )
                logger.info(f"volume({volume_id}) mounted {share.source} on {staging_target_path}")

            if share.is_disk:
                disk_path = get_disk_path(staging_target_path, share.disk_name)
                try:
                    DiskFormatter(self.mounter).format_and_mount(
                        disk_path, staging_target_path, share.fs_type, readonly=readonly
                    )
                except (TException, OperationFailed):
                    logger.exception(f"format and mount of {disk_path} failed")
                    raise Abort(
                        INTERNAL, f'could not format "{staging_target_path}" and mount it at "{disk_path}"'
                    )
                logger.info(f"volume({volume_id}) disk {disk_path} mounted on {staging_target_path}")

        return types.StageResp()

    def NodeUnstageVolume(self, volume_id="", staging_target_path=""):
        if not volume_id:
            raise Abort(INVALID_ARGUMENT, "Volume ID missing in request")
        if not staging_target_path:
            raise Abort(INVALID_ARGUMENT, "Staging target not provided")

        with self.volume_locks.locked(volume_id):
            try:
                cleanup_mount_point(self.mounter, staging_target_path, self.config.unmount_attempts)
            except (OSError, UnmountFailed) as exc:
                raise Abort(INTERNAL, f'failed to unmount staging target "{staging_target_path}": {exc}')

        logger.info(f"volume({volume_id}) unstaged from {staging_target_path}")
        return types.UnstageResp()

    def NodePublishVolume(
        self,
        volume_id="",
        target_path="",
        staging_target_path="",
        volume_capability=None,
        readonly=False,
        volume_context=None,
        publish_context=None,
    ):
        if volume_capability is None:
            raise Abort(INVALID_ARGUMENT, "Volume capability missing in request")
        if not volume_id:
            raise Abort(INVALID_ARGUMENT, "Volume ID missing in request")
        if not target_path:
            raise Abort(INVALID_ARGUMENT, "Target path not provided")
        if not staging_target_path:
            raise Abort(INVALID_ARGUMENT, "Staging target not provided")

        options = ["bind"]
        if readonly or _is_readonly(volume_capability):
            options.append("ro")

        with self.volume_locks.locked(volume_id):
            try:
                already_mounted = ensure_mount_point(self.mounter, target_path)
            except (OSError, UnmountFailed) as exc:
                raise Abort(INTERNAL, f'Could not mount target "{target_path}": {describe_os_error(exc, "mkdir")}')
            if already_mounted:
                logger.info(f"{volume_id} is already mounted at {target_path}")
                return types.NodePublishResp()

            try:
                self.mounter.mount(staging_target_path, target_path, "", options)
            except MountFailed as exc:
                try:
                    os.rmdir(target_path)
                except OSError as rm_exc:
                    raise Abort(INTERNAL, f'Could not remove mount target "{target_path}": {rm_exc}')
                raise Abort(INTERNAL, f'Could not mount "{staging_target_path}" at "{target_path}": {exc.message}')

        logger.info(f"volume({volume_id}) bind mounted {staging_target_path} on {target_path} ({','.join(options)})")
        return types.NodePublishResp()

    def NodeUnpublishVolume(self, volume_id="", target_path=""):
        if not volume_id:
            raise Abort(INVALID_ARGUMENT, "Volume ID missing in request")
        if not target_path:
            raise Abort(INVALID_ARGUMENT, "Target path missing in request")

        with self.volume_locks.locked(volume_id):
            try:
                cleanup_mount_point(self.mounter, target_path, self.config.unmount_attempts)
            except (OSError, UnmountFailed) as exc:
                raise Abort(INTERNAL, f'failed to unmount target "{target_path}": {exc}')

        logger.info(f"volume({volume_id}) unpublished from {target_path}")
        return types.NodeUnpublishResp()

    def NodeGetVolumeStats(self, volume_id="", volume_path=""):
        if not volume_id:
            raise Abort(INVALID_ARGUMENT, "NodeGetVolumeStats volume ID was empty")
        if not volume_path:
            raise Abort(INVALID_ARGUMENT, "NodeGetVolumeStats volume path was empty")
        if not os.path.exists(volume_path):
            raise Abort(NOT_FOUND, f"path {volume_path} does not exist")

        try:
            stats = self.mounter.get_fs_stats(volume_path)
        except OSError as exc:
            raise Abort(INTERNAL, f"failed to get stats of {volume_path}: {exc}")

        return types.VolumeStatsResp(
            usage=[
                types.VolumeUsage(
                    unit=types.UsageUnit.BYTES,
                    available=stats.available_bytes,
                    total=stats.total_bytes,
                    used=stats.used_bytes,
                ),
                types.VolumeUsage(
                    unit=types.UsageUnit.INODES,
                    available=stats.available_inodes,
                    total=stats.total_inodes,
                    used=stats.used_inodes,
                ),
            ]
        )

    def NodeExpandVolume(self):
        # file shares are resized on the storage side only
        raise Abort(UNIMPLEMENTED, "")


################################################################
#
# Entrypoint
#
################################################################


def serve():
    config = Config()
    init_logging(level=config.log_level)
    logger.info("%s: %s (%s)", config.plugin_name, config.plugin_version, config.git_commit)

    server = grpc.server(futures.ThreadPoolExecutor(max_workers=config.worker_threads))

    identity = CsiIdentity(config)
    csi_grpc.add_IdentityServicer_to_server(identity, server)

    identity.node = CsiNode(config=config, mounter=get_mounter())
    csi_grpc.add_NodeServicer_to_server(identity.node, server)

    server.add_insecure_port(config.endpoint)
    server.start()

    logger.info(f"Server started, listening on {config.endpoint}, spawned threads {config.worker_threads}")
    server.wait_for_termination()
