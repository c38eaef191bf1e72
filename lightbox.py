# /// script
# dependencies = ["pillow", "jinja2", "exifread", "click", "loguru"]
# ///
"""
Lightbox: Build a static photo album from a directory tree of photos.

Usage:
    uv run --script lightbox.py --input ~/Pictures --output ./public_html

Every directory that holds a JPEG (directly or further down) gets a mirrored
output directory with thumbnails, full-size copies and an index.html that
lists the photos grouped by capture date and links to its subalbums.
"""

from __future__ import annotations

import io
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

import click
import exifread
from jinja2 import Environment, StrictUndefined, TemplateError
from loguru import logger
from PIL import Image


def display_name(name: str) -> str:
    """File name as readable text; undecodable bytes become U+FFFD."""
    return os.fsencode(name).decode("utf-8", errors="replace")


def url_path(name: str) -> str:
    """Percent-encode the file name's raw bytes for use in an href."""
    return quote(os.fsencode(name))


_jinja_env = Environment(autoescape=True, undefined=StrictUndefined)
_jinja_env.filters["display_name"] = display_name
_jinja_env.filters["url_path"] = url_path
Template = _jinja_env.from_string

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

MAX_THUMBNAIL_WIDTH = 300
MAX_THUMBNAIL_HEIGHT = 400
THUMBNAIL_QUALITY = 80

# Inputs are the user's own photos; stitched panoramas easily pass Pillow's
# decompression bomb limit.
Image.MAX_IMAGE_PIXELS = None

# Matched case-sensitively against the end of the file name.
IMAGE_EXTENSIONS = (".jpg", ".jpeg")

INDEX_FILE_NAME = "index.html"
UNKNOWN_TIME_STRING = "???"
UNKNOWN_DATE_STRING = "???"
UNKNOWN_DATE_LABEL = "Unknown Date"
UNKNOWN_DATE_ANCHOR = "unknown-date"

EXIF_TIME_FORMAT = "%Y:%m:%d %H:%M:%S"

# (date-time tag, matching offset tag), most specific first
EXIF_TIME_TAGS = (
    ("EXIF DateTimeOriginal", "EXIF OffsetTimeOriginal"),
    ("Image DateTime", "EXIF OffsetTime"),
)

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | {message}"


def init_logging(level: str = "INFO") -> None:
    """Send log records to stderr at the given level."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AlbumError(Exception):
    """A failure that aborts the whole build.

    Always names the file or directory it happened on; the underlying cause
    is chained with ``raise ... from``.
    """

    def __init__(self, message: str, path: Path | str, cause: BaseException | None = None):
        self.path = Path(path)
        text = f"{message} {path}"
        if cause is not None:
            text += f": {cause}"
        super().__init__(text)


class InvariantError(AlbumError):
    """Internal state the pipeline should never reach."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Thumbnail:
    name: str
    width: int
    height: int


@dataclass(frozen=True)
class Photo:
    """One processed image: its name, thumbnail and (maybe) capture time."""

    name: str
    thumbnail: Thumbnail
    capture_time: datetime | None = None

    @property
    def time_string(self) -> str:
        return time_to_display_string(self.capture_time)


@dataclass(frozen=True)
class Album:
    """Summary of one directory and everything below it."""

    name: str
    num_images: int = 0
    min_time: datetime | None = None
    max_time: datetime | None = None

    @property
    def date_range_string(self) -> str:
        min_str = time_to_date_string(self.min_time)
        max_str = time_to_date_string(self.max_time)
        if min_str != max_str:
            return f"{min_str} – {max_str}"
        return min_str

    def __str__(self) -> str:
        if self.min_time is None and self.max_time is None:
            return f"Album {display_name(self.name)} has {self.num_images} image(s), dates n/a"
        return (
            f"Album {display_name(self.name)} has {self.num_images} image(s) from between "
            f"{time_to_display_string(self.min_time)} and {time_to_display_string(self.max_time)}"
        )


@dataclass
class DateGroup:
    """Photos of one directory sharing a date string, in display order."""

    date: str
    photos: list[Photo] = field(default_factory=list)

    @property
    def label(self) -> str:
        return UNKNOWN_DATE_LABEL if self.date == UNKNOWN_DATE_STRING else self.date

    @property
    def anchor(self) -> str:
        return UNKNOWN_DATE_ANCHOR if self.date == UNKNOWN_DATE_STRING else self.date


# ---------------------------------------------------------------------------
# Step 1: Date/time normalization
# ---------------------------------------------------------------------------

def time_to_display_string(t: datetime | None) -> str:
    if t is None:
        return UNKNOWN_TIME_STRING
    return t.isoformat(sep=" ")


def time_to_date_string(t: datetime | None) -> str:
    if t is None:
        return UNKNOWN_DATE_STRING
    return t.strftime("%Y-%m-%d")


def earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    """The earlier of two optional times; None never narrows a known bound."""
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def latest(a: datetime | None, b: datetime | None) -> datetime | None:
    """The later of two optional times; None never narrows a known bound."""
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


# ---------------------------------------------------------------------------
# Step 2: Per-image processing
# ---------------------------------------------------------------------------

def read_exif_datetime(image_bytes: bytes) -> datetime:
    """Extract the capture time from the EXIF block of a JPEG.

    Raises ValueError when no usable date-time tag is present. The result is
    always timezone-aware: the EXIF offset tag is used when the camera wrote
    one, otherwise the wall-clock time is taken to be local time.
    """
    tags = exifread.process_file(io.BytesIO(image_bytes), details=False)
    for time_tag, offset_tag in EXIF_TIME_TAGS:
        if time_tag not in tags:
            continue
        value = str(tags[time_tag]).strip()
        offset = tags.get(offset_tag)
        if offset is not None and str(offset).strip():
            return datetime.strptime(f"{value} {str(offset).strip()}", f"{EXIF_TIME_FORMAT} %z")
        return datetime.strptime(value, EXIF_TIME_FORMAT).astimezone()
    raise ValueError("no EXIF date-time tag")


def thumbnail_name(image_name: str) -> str:
    """pic.jpeg -> pic_thumbnail.jpeg"""
    stem, dot, ext = image_name.rpartition(".")
    if not dot:
        # Callers only pass names that matched IMAGE_EXTENSIONS.
        raise InvariantError("Image name missing extension:", image_name)
    return f"{stem}_thumbnail.{ext}"


def make_thumbnail(image_bytes: bytes, image_name: str, output_dir: Path) -> Thumbnail:
    """Write a bounded-box thumbnail of the image into output_dir."""
    name = thumbnail_name(image_name)
    dst = output_dir / name
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = img.convert("RGB")
            # Keeps the aspect ratio and never upscales.
            img.thumbnail((MAX_THUMBNAIL_WIDTH, MAX_THUMBNAIL_HEIGHT), Image.LANCZOS)
            img.save(dst, "JPEG", quality=THUMBNAIL_QUALITY)
            width, height = img.size
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise AlbumError("Couldn't create thumbnail", dst, e) from e
    return Thumbnail(name=name, width=width, height=height)


def process_image(input_dir: Path, image_name: str, output_dir: Path) -> Photo:
    """Extract the capture time, make a thumbnail and copy the original."""
    image_path = input_dir / image_name
    try:
        image_bytes = image_path.read_bytes()
    except OSError as e:
        raise AlbumError("Couldn't read image", image_path, e) from e

    capture_time = None
    try:
        capture_time = read_exif_datetime(image_bytes)
    except Exception as e:
        logger.warning("Problem reading EXIF date-time for {}: {}", image_path, e)

    thumbnail = make_thumbnail(image_bytes, image_name, output_dir)

    copy_path = output_dir / image_name
    try:
        copy_path.write_bytes(image_bytes)
    except OSError as e:
        raise AlbumError("Couldn't create copy", copy_path, e) from e

    logger.debug("  Processed {} ({})", image_path, time_to_display_string(capture_time))
    return Photo(name=image_name, thumbnail=thumbnail, capture_time=capture_time)


def process_images(
    input_dir: Path,
    image_names: list[str],
    output_dir: Path,
    max_workers: int | None = None,
) -> list[Photo]:
    """Process every image of one directory concurrently.

    One task per image unless max_workers caps the pool. Results come back
    in completion order. The first failure is re-raised; tasks that have not
    started yet are cancelled.
    """
    if not image_names:
        return []

    workers = len(image_names) if max_workers is None else min(max_workers, len(image_names))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="lightbox")
    photos: list[Photo] = []
    try:
        futures = [
            executor.submit(process_image, input_dir, name, output_dir)
            for name in image_names
        ]
        for fut in as_completed(futures):
            photos.append(fut.result())
    except BaseException:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown()
    return photos


# ---------------------------------------------------------------------------
# Step 3: Ordering
# ---------------------------------------------------------------------------

# Stands in for a missing time inside sort keys; the leading flag already
# puts those entries last.
_NO_TIME = datetime.min.replace(tzinfo=timezone.utc)


def photo_sort_key(photo: Photo):
    """Capture time ascending (undated last), then name."""
    t = photo.capture_time
    return (t is None, t or _NO_TIME, photo.name)


def album_sort_key(album: Album):
    """Earliest capture time ascending (undated last), then name."""
    t = album.min_time
    return (t is None, t or _NO_TIME, album.name)


def group_by_date(photos: list[Photo]) -> list[DateGroup]:
    """Group already sorted photos by date string, keeping first-seen order."""
    groups: dict[str, DateGroup] = {}
    for photo in photos:
        date = time_to_date_string(photo.capture_time)
        groups.setdefault(date, DateGroup(date=date)).photos.append(photo)
    return list(groups.values())


# ---------------------------------------------------------------------------
# Step 4: Generate HTML
# ---------------------------------------------------------------------------

INDEX_TEMPLATE = Template("""\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ album.name|display_name }}</title>
<style>
  .img-link { text-decoration: none; }
  .subalbums { margin-bottom: 16px; }
  .toc { margin-bottom: 16px; }
</style>
</head>
<body>
<h1>{{ album.name|display_name }}</h1>
<p>{{ album.num_images }} images in this album and subalbums.</p>
{% if sub_albums %}
<div class="subalbums">
{% for sub in sub_albums %}<a href="{{ sub.name|url_path }}/{{ index_file_name }}">{{ sub.name|display_name }}</a> ({{ sub.num_images }} images, {{ sub.date_range_string }})<br>
{% endfor %}
</div>
{% endif %}
{% if groups|length > 1 %}
<div class="toc">Dates: {% for group in groups %}<a href="#{{ group.anchor }}">{{ group.label }}</a>{% if not loop.last %}, {% endif %}{% endfor %}</div>
{% endif %}
{% for group in groups %}
<h2 id="{{ group.anchor }}">{{ group.label }}</h2>
{% for photo in group.photos %}<a class="img-link" href="{{ photo.name|url_path }}">
  <img src="{{ photo.thumbnail.name|url_path }}" alt="{{ photo.name|display_name }}" title="{{ photo.time_string }} {{ photo.name|display_name }}"
    width="{{ photo.thumbnail.width }}" height="{{ photo.thumbnail.height }}" loading="lazy">
</a>
{% endfor %}
{% endfor %}
</body>
</html>
""")


def render_index(album: Album, sub_albums: list[Album], photos: list[Photo], output_dir: Path):
    """Write index.html for one directory.

    Expects sub_albums and photos to be sorted already.
    """
    try:
        index_html = INDEX_TEMPLATE.render(
            album=album,
            sub_albums=sub_albums,
            groups=group_by_date(photos),
            index_file_name=INDEX_FILE_NAME,
        )
    except (TemplateError, UnicodeError) as e:
        raise InvariantError("Failed to render index for album", output_dir, e) from e

    index_path = output_dir / INDEX_FILE_NAME
    try:
        index_path.write_text(index_html, encoding="utf-8")
    except OSError as e:
        raise AlbumError(f"Couldn't write {INDEX_FILE_NAME}", index_path, e) from e
    logger.info("  Wrote {} ({} images, {} subalbums)", index_path, len(photos), len(sub_albums))


# ---------------------------------------------------------------------------
# Step 5: Walk the tree
# ---------------------------------------------------------------------------

def is_image_file(name: str) -> bool:
    return name.endswith(IMAGE_EXTENSIONS)


def build_album(input_dir: Path, output_dir: Path, max_workers: int | None = None) -> Album:
    """Recursively mirror input_dir into output_dir as an album.

    Subdirectories are finished (pages written) before this directory's own
    images are processed. Directories with no images anywhere below them
    produce no output and are left out of the parent's subalbum list.
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)
    name = input_dir.resolve().name or str(input_dir)

    try:
        entries = sorted(input_dir.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise AlbumError("Couldn't read dir", input_dir, e) from e

    num_images = 0
    min_time = max_time = None
    image_names: list[str] = []
    sub_albums: list[Album] = []

    for entry in entries:
        if entry.is_dir() and not entry.is_symlink():
            sub_album = build_album(entry, output_dir / entry.name, max_workers)
            if sub_album.num_images == 0:
                continue
            sub_albums.append(sub_album)
            num_images += sub_album.num_images
            min_time = earliest(min_time, sub_album.min_time)
            max_time = latest(max_time, sub_album.max_time)
        elif entry.is_file() and is_image_file(entry.name):
            image_names.append(entry.name)

    if image_names:
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AlbumError("Couldn't make output dir", output_dir, e) from e

    photos = process_images(input_dir, image_names, output_dir, max_workers)
    for photo in photos:
        min_time = earliest(min_time, photo.capture_time)
        max_time = latest(max_time, photo.capture_time)
    num_images += len(photos)

    photos.sort(key=photo_sort_key)
    sub_albums.sort(key=album_sort_key)

    album = Album(name=name, num_images=num_images, min_time=min_time, max_time=max_time)
    if album.num_images > 0:
        render_index(album, sub_albums, photos, output_dir)
    return album


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

@click.command()
@click.option("--input", "input_dir", required=True,
              type=click.Path(exists=True, file_okay=False, path_type=Path),
              help="Path to input photos directory.")
@click.option("--output", "output_dir", required=True,
              type=click.Path(file_okay=False, path_type=Path),
              help="Path at which to write album.")
@click.option("--max-workers", type=click.IntRange(min=1), default=None,
              help="Cap on images processed at once per directory (default: one per image).")
@click.option("--log-level", default="INFO", show_default=True,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Minimum level of log messages written to stderr.")
def main(input_dir: Path, output_dir: Path, max_workers: int | None, log_level: str):
    """Build a static photo album from INPUT into OUTPUT."""
    init_logging(log_level)
    logger.info("Building album from {} into {}", input_dir, output_dir)
    try:
        album = build_album(input_dir, output_dir, max_workers)
    except AlbumError as e:
        raise click.ClickException(str(e)) from e
    click.echo(str(album))


if __name__ == "__main__":
    main()
