from google.protobuf import wrappers_pb2 as wrappers

from .proto import csi_pb2


class EnumWrapper(object):
    def __init__(self, enum):
        self._enum = enum

    def __getattr__(self, name):
        try:
            return getattr(self._enum, name)
        except AttributeError:
            return self._enum.Value(name)


Bool = wrappers.BoolValue

InfoResp = csi_pb2.GetPluginInfoResponse
NodeInfoResp = csi_pb2.NodeGetInfoResponse

Capability = csi_pb2.PluginCapability
Service = Capability.Service
CapabilitiesResp = csi_pb2.GetPluginCapabilitiesResponse

NodeCapability = csi_pb2.NodeServiceCapability
NodeCapabilityType = EnumWrapper(NodeCapability.RPC.Type)
NodeCapabilityResp = csi_pb2.NodeGetCapabilitiesResponse

VolumeCapability = csi_pb2.VolumeCapability
MountVolume = VolumeCapability.MountVolume
AccessMode = VolumeCapability.AccessMode
AccessModeType = EnumWrapper(AccessMode.Mode)

StageResp = csi_pb2.NodeStageVolumeResponse
UnstageResp = csi_pb2.NodeUnstageVolumeResponse
NodePublishResp = csi_pb2.NodePublishVolumeResponse
NodeUnpublishResp = csi_pb2.NodeUnpublishVolumeResponse
ProbeRespOK = csi_pb2.ProbeResponse(ready=Bool(value=True))

VolumeStatsResp = csi_pb2.NodeGetVolumeStatsResponse
VolumeUsage = csi_pb2.VolumeUsage
UsageUnit = EnumWrapper(VolumeUsage.Unit)

# Request messages (used by tests and clients)
StageReq = csi_pb2.NodeStageVolumeRequest
UnstageReq = csi_pb2.NodeUnstageVolumeRequest
NodePublishReq = csi_pb2.NodePublishVolumeRequest
NodeUnpublishReq = csi_pb2.NodeUnpublishVolumeRequest
VolumeStatsReq = csi_pb2.NodeGetVolumeStatsRequest
NodeExpandReq = csi_pb2.NodeExpandVolumeRequest

READONLY_ACCESS_MODES = {
    AccessModeType.SINGLE_NODE_READER_ONLY,
    AccessModeType.MULTI_NODE_READER_ONLY,
}
