"""
CSI v1 message and service modules.

``csi.proto`` is compiled by grpcio-tools when this package is imported, producing the same
``csi_pb2`` / ``csi_pb2_grpc`` modules protoc would generate.
"""

import grpc

csi_pb2, csi_pb2_grpc = grpc.protos_and_services("fileshare_csi/proto/csi.proto")
