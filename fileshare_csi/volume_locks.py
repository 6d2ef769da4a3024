import threading
from contextlib import contextmanager

import grpc

from .exceptions import Abort

VOLUME_OPERATION_ALREADY_EXISTS_FMT = "operation already exists for {}"


class VolumeLocks:
    """
    Set of volume ids that have an operation in flight.

    Acquisition never waits: a second operation on the same volume is rejected right away
    and the caller (kubelet) is expected to retry.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._in_flight = set()

    def try_acquire(self, volume_id: str) -> bool:
        with self._mutex:
            if volume_id in self._in_flight:
                return False
            self._in_flight.add(volume_id)
            return True

    def release(self, volume_id: str):
        with self._mutex:
            self._in_flight.discard(volume_id)

    def __contains__(self, volume_id):
        with self._mutex:
            return volume_id in self._in_flight

    @contextmanager
    def locked(self, volume_id: str):
        if not self.try_acquire(volume_id):
            raise Abort(grpc.StatusCode.ABORTED, VOLUME_OPERATION_ALREADY_EXISTS_FMT.format(volume_id))
        try:
            yield
        finally:
            self.release(volume_id)
