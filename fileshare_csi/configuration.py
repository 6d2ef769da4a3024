import socket

from plumbum.typed_env import TypedEnv


class Config(TypedEnv):

    plugin_name, plugin_version, git_commit, ci_pipe = (
        open("version.info").read().strip().split()
    )
    plugin_name = TypedEnv.Str("X_CSI_PLUGIN_NAME", default=plugin_name)

    log_level = TypedEnv.Str("X_CSI_LOG_LEVEL", default="info")
    node_id = TypedEnv.Str("X_CSI_NODE_ID", default=socket.getfqdn())
    worker_threads = TypedEnv.Int("X_CSI_WORKER_THREADS", default=10)

    # default share server is "<account>.file.<suffix>"
    storage_endpoint_suffix = TypedEnv.Str("X_CSI_STORAGE_ENDPOINT_SUFFIX", default="core.windows.net")
    unmount_attempts = TypedEnv.Int("X_CSI_UNMOUNT_ATTEMPTS", default=10)

    _endpoint = TypedEnv.Str("CSI_ENDPOINT", default="unix:///var/run/csi.sock")

    @property
    def endpoint(self):
        endpoint = self._endpoint
        if endpoint.startswith("tcp://"):
            endpoint = endpoint[len("tcp://"):]
        return endpoint
