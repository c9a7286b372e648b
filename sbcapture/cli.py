"""CLI interface for sbcapture."""

import sys
from pathlib import Path

import click
from loguru import logger

from sbcapture import __version__
from sbcapture.bioio_reader import open_reader
from sbcapture.capture import CaptureMetadata, position_info
from sbcapture.planewalk import PlaneStreamer
from sbcapture.reader import (
    NO_EXCEPTIONS_MASKED,
    CaptureAllocationError,
    ReadState,
    SBReaderError,
)

LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    envvar="SBCAPTURE_LOG_LEVEL",
    show_default=True,
    help="Log level for messages written to stderr",
)
@click.option("--verbose", "-v", is_flag=True, help="Shortcut for --log-level DEBUG")
def cli(log_level, verbose):
    """Slidebook capture loader - read capture metadata and image planes."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else log_level.upper())


@cli.command()
@click.argument("filename", type=click.Path(path_type=Path))
@click.option(
    "--position",
    "-p",
    default=0,
    type=click.IntRange(min=0),
    help="Stage position to read from every capture (0-based)",
)
@click.option(
    "--max-time",
    "-t",
    default=None,
    type=click.IntRange(min=0),
    help="Read at most this many timepoints per capture",
)
@click.option(
    "--detail/--no-detail",
    default=True,
    help="Print image, voxel and channel details for every capture",
)
def load(filename, position, max_time, detail):
    """
    Read every plane of every capture in FILENAME.

    Prints a header per capture and one line per (time point, channel) Z-stack.
    Failed planes, and captures whose buffer cannot be allocated, are reported
    and skipped; the exit code is 1 if anything could not be read.
    """
    click.echo(f"Slidebook capture loader v{__version__}")
    click.echo(str(filename))

    failed_planes = 0
    failed_captures = 0
    try:
        with open_reader(filename, exceptions=NO_EXCEPTIONS_MASKED) as reader:
            click.echo("file loaded")
            num_captures = reader.get_num_captures()
            click.echo(f"captures: {num_captures}")

            for capture_index in range(num_captures):
                metadata = CaptureMetadata.from_reader(reader, capture_index)
                click.echo(metadata.header(position))
                if detail:
                    click.echo(metadata.detail(), nl=False)

                streamer = PlaneStreamer(reader, metadata, position_index=position)
                try:
                    buffer = streamer.allocate()
                except CaptureAllocationError as e:
                    failed_captures += 1
                    click.echo(f"Skipping capture {capture_index}: {e}", err=True)
                    continue
                for stack in streamer.iter_stacks(buffer, max_timepoints=max_time):
                    failed_planes += len(stack.failures)
                    click.echo(
                        f"read buffer capture: {capture_index} "
                        f"time: {stack.timepoint} channel: {stack.channel}"
                    )
    except SBReaderError as e:
        click.echo(f"Failed with exception: {e}", err=True)
        sys.exit(1)

    click.echo("done")
    if failed_captures:
        click.echo(f"{failed_captures} capture(s) could not be read", err=True)
    if failed_planes:
        click.echo(f"{failed_planes} plane(s) could not be read", err=True)
    if failed_captures or failed_planes:
        sys.exit(1)


@cli.command()
@click.argument("filename", type=click.Path(path_type=Path))
def info(filename):
    """
    Print capture headers, details and stage positions without reading pixels.
    """
    try:
        # stage queries a reader does not implement report 0 instead of failing
        mask = NO_EXCEPTIONS_MASKED & ~ReadState.UNIMPLEMENTED
        with open_reader(filename, exceptions=mask) as reader:
            for capture_index in range(reader.get_num_captures()):
                metadata = CaptureMetadata.from_reader(reader, capture_index)
                click.echo(metadata.header())
                click.echo(metadata.detail(), nl=False)
                for p in range(metadata.num_positions):
                    pos = position_info(reader, capture_index, p)
                    click.echo(
                        f"Position {metadata.position_label(p)}: "
                        f"[{pos.x:g},{pos.y:g},{pos.z:g}] "
                        f"montage [{pos.montage_row},{pos.montage_column}]"
                    )
    except SBReaderError as e:
        click.echo(f"Failed with exception: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
