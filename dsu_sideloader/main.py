import argparse
import re
import signal
import sys
from pathlib import Path

from dsu_sideloader.config import settings
from dsu_sideloader.domain import (
    CancellationToken,
    ImagePartition,
    InstallationState,
    MultipleImages,
    Package,
    RemoteURL,
    SingleImage,
)
from dsu_sideloader.installer import InstallationCallbacks, InstallationOrchestrator
from dsu_sideloader.installer.progress import human_size
from dsu_sideloader.logging import LoggerFactory, setup_logging
from dsu_sideloader.privileged import GetpropPropertyReader, ShellPrivilegedOperator
from dsu_sideloader.streams import DefaultStreamProvider, is_remote_locator, local_path


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}


def parse_size(value):
    """Parse ``8G``, ``512M``, ``1.5G`` or a raw byte count."""
    match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*([KMGT]?)(?:i?B)?\s*", value, re.IGNORECASE)
    if not match:
        raise argparse.ArgumentTypeError(f"invalid size: {value!r}")
    number, unit = match.groups()
    size = int(float(number) * _SIZE_UNITS[unit.upper()])
    if size <= 0:
        raise argparse.ArgumentTypeError(f"size must be positive: {value!r}")
    return size


def parse_image_argument(value):
    """Parse ``NAME=LOCATOR`` into an ImagePartition."""
    name, sep, locator = value.partition("=")
    if not sep or not name or not locator:
        raise argparse.ArgumentTypeError(f"expected NAME=PATH, got {value!r}")
    return ImagePartition(name, locator, local_file_size(locator))


def local_file_size(locator):
    """Size of a local image, 0 when unknown (remote or unreadable)."""
    path = local_path(locator)
    if path is None:
        return 0
    try:
        return path.stat().st_size
    except OSError:
        return 0


def build_source(args):
    if args.image:
        return SingleImage(args.image, local_file_size(args.image))
    if args.images:
        return MultipleImages(tuple(args.images))
    if args.package:
        return Package(args.package)
    if not is_remote_locator(args.url):
        raise argparse.ArgumentTypeError(f"not an http(s) URL: {args.url!r}")
    return RemoteURL(args.url)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="dsu-sideloader",
        description="Install a Dynamic System Update image on a rooted device",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", metavar="PATH", help="Install a single system image")
    source.add_argument(
        "--images",
        metavar="NAME=PATH",
        nargs="+",
        type=parse_image_argument,
        help="Install one image per partition, in the given order",
    )
    source.add_argument("--package", metavar="PATH", help="Install a zipped DSU package")
    source.add_argument("--url", metavar="URL", help="Download and install a zipped DSU package")
    parser.add_argument(
        "--userdata-size",
        type=parse_size,
        default=None,
        help="Size of the DSU userdata partition (e.g. 8G, default from settings)",
    )
    parser.add_argument("--staging-dir", type=Path, default=None, help="Directory for staged images")
    parser.add_argument(
        "--keep-staged-files",
        action="store_true",
        default=None,
        help="Keep staged images after a failed or cancelled installation",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        source = build_source(args)
    except argparse.ArgumentTypeError as error:
        parser.error(str(error))

    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()

    userdata_size = args.userdata_size or settings.get_int(
        "userdata_size_bytes", settings.DEFAULT_USERDATA_SIZE_BYTES
    )
    cancel_token = CancellationToken()

    def handle_interrupt(signum, frame):
        if not cancel_token.is_cancelled:
            log.warning("Cancellation requested, stopping after the current chunk")
        cancel_token.cancel()

    previous_handler = signal.signal(signal.SIGINT, handle_interrupt)

    last_percent = {}

    def on_progress(fraction, partition):
        percent = int(fraction * 100)
        if last_percent.get(partition) != percent:
            last_percent[partition] = percent
            log.info(f"{partition}: {percent}%")

    callbacks = InstallationCallbacks(
        on_error=lambda kind, detail: log.error(
            f"Installation failed: {kind.value}" + (f" ({detail})" if detail else "")
        ),
        on_progress=on_progress,
        on_partition_created=lambda partition: log.info(f"Installing {partition} partition"),
        on_step_changed=lambda step: log.debug(f"Step: {step.value}"),
        on_success=lambda: log.success("DSU installed, reboot to start it"),
    )

    orchestrator = InstallationOrchestrator(
        userdata_size,
        source,
        cancel_token,
        operator=ShellPrivilegedOperator(),
        property_reader=GetpropPropertyReader(),
        stream_provider=DefaultStreamProvider(),
        callbacks=callbacks,
        staging_dir=args.staging_dir,
        keep_staged_files=args.keep_staged_files,
    )
    log.info(f"Userdata size: {human_size(userdata_size)}")
    try:
        orchestrator.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if orchestrator.state is InstallationState.SUCCEEDED:
        return EXIT_SUCCESS
    if orchestrator.state is InstallationState.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
