import argparse
from pathlib import Path

from cvd2img import __version__
from cvd2img.config import layouts, settings
from cvd2img.domain.models import Arch
from cvd2img.images.exceptions import ImageError
from cvd2img.logging import setup_logging
from cvd2img.pipeline import ImageOutputs, create_disk_images


def build_parser():
    parser = argparse.ArgumentParser(
        prog="cvd2img",
        description="Create partitioned disk images from Android Cuttlefish images",
    )
    parser.add_argument("cvd_dir", type=Path, help="Directory containing the Android Cuttlefish images")
    parser.add_argument(
        "-a",
        "--arch",
        choices=[arch.value for arch in Arch],
        help="Architecture of the source images (defaults to the host)",
    )
    parser.add_argument("-s", "--system", type=Path, metavar="FILE", help="Output file for the system disk image")
    parser.add_argument("-p", "--props", type=Path, metavar="FILE", help="Output file for the properties disk image")
    parser.add_argument(
        "-v",
        "--virgl-props",
        type=Path,
        metavar="FILE",
        help="Output file for the virgl variant of the properties disk image",
    )
    parser.add_argument("--system-layout", type=Path, metavar="JSON", help="Alternate system component layout")
    parser.add_argument(
        "--table-backend",
        choices=["gpt", "sgdisk"],
        help="Partition table writer (default: built-in GPT writer)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log every copy chunk")
    parser.add_argument("--log-dir", type=Path, help="Also write log files to this directory")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    log = setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)

    defaults = ImageOutputs.from_settings()
    outputs = ImageOutputs(
        system=args.system or defaults.system,
        properties=args.props or defaults.properties,
        virgl_properties=args.virgl_props or defaults.virgl_properties,
    )

    try:
        arch = Arch.parse(args.arch) if args.arch else None
        system_components = layouts.load_layout(args.system_layout) if args.system_layout else None
        create_disk_images(
            args.cvd_dir,
            outputs,
            arch=arch,
            table_backend=args.table_backend or settings.get_setting("table_backend", "gpt"),
            system_components=system_components,
        )
    except (ImageError, ValueError) as error:
        log.error(f"Image creation failed: {error}")
        return 1

    log.success(
        f"Created {outputs.system}, {outputs.properties} and {outputs.virgl_properties}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
