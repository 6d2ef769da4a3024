import sys
import argparse
from easypy.bunch import Bunch

OUTPUT_FORMATS = ["json", "yaml"]


def main(argv=None):
    parser = argparse.ArgumentParser(description="File Share CSI Node Plugin")
    parser.set_defaults(func=lambda *_, **__: parser.print_help())

    subparsers = parser.add_subparsers()

    serve_parse = subparsers.add_parser("serve", help="Start the CSI node server (run by the kubelet plugin pod)")
    serve_parse.set_defaults(func=_serve)

    info_parse = subparsers.add_parser("info", help="Print plugin name, version and node settings")
    info_parse.add_argument("--output", default="json", choices=OUTPUT_FORMATS, help="Output format")
    info_parse.set_defaults(func=_info)

    stats_parse = subparsers.add_parser("stats", help="Print byte and inode usage of a mounted volume path")
    stats_parse.add_argument("path", help="Volume path, as passed to NodeGetVolumeStats")
    stats_parse.add_argument("--output", default="json", choices=OUTPUT_FORMATS, help="Output format")
    stats_parse.set_defaults(func=_stats)

    args = parser.parse_args(argv, namespace=Bunch())
    return args.pop("func")(args)


def _dump(data, output):
    if output == "yaml":
        import yaml
        yaml.safe_dump(data, sys.stdout, default_flow_style=False)
    else:
        import json
        json.dump(data, sys.stdout, indent=2)
        sys.stdout.write("\n")


def _info(args):
    from . configuration import Config
    conf = Config()
    _dump(dict(
        name=conf.plugin_name, version=conf.plugin_version, commit=conf.git_commit,
        node_id=conf.node_id, storage_endpoint_suffix=conf.storage_endpoint_suffix,
        endpoint=conf.endpoint,
    ), args.output)


def _stats(args):
    from . mounter import get_mounter
    stats = get_mounter().get_fs_stats(args.path)
    _dump(dict(stats), args.output)


def _serve(args):
    from . server import serve
    return serve()


if __name__ == '__main__':
    sys.exit(main())
