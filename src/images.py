"""
Image resolution: turn a regex/family selector into one concrete image.
"""

import logging
import re
from datetime import datetime
from types import MappingProxyType
from typing import List, Mapping, Tuple

from exceptions import ConfigurationError, NoMatchingImage, TimestampParseError
from models import ImageFamily, ImageSpec, ResolvedImage

logger = logging.getLogger(__name__)


def parse_creation_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 creation timestamp (e.g. 2023-06-01T10:00:00.000-07:00).

    Raises:
        TimestampParseError: If the value is not RFC 3339 with an offset
    """
    text = (value or "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TimestampParseError(
            f"failed to parse image creation timestamp {value!r}: {e}"
        ) from e
    if parsed.tzinfo is None:
        raise TimestampParseError(
            f"failed to parse image creation timestamp {value!r}: missing UTC offset"
        )
    return parsed


class ImageResolver:
    """Picks the newest image in a project matching a regex and/or family."""

    def __init__(self, client):
        self.client = client

    def resolve(self, regex: str, family: str, project: str) -> str:
        """
        Return the most recently created image matching both filters.

        Args:
            regex: Pattern the image name must match (ignored if empty)
            family: Family the image must belong to (ignored if empty)
            project: Project whose images are listed

        Returns:
            Image name

        Raises:
            NoMatchingImage: If no image matches
            TimestampParseError: If a candidate has an unparsable timestamp
            ConfigurationError: If the regex is invalid
        """
        try:
            pattern = re.compile(regex) if regex else None
        except re.error as e:
            raise ConfigurationError(f"invalid image regex {regex!r}: {e}") from e

        candidates: List[Tuple[datetime, str]] = []
        for image in self.client.list_images(project):
            name = image.get("name", "")
            if pattern is not None and not pattern.search(name):
                continue
            if family and image.get("family") != family:
                continue
            created = parse_creation_timestamp(image.get("creationTimestamp", ""))
            candidates.append((created, name))

        if not candidates:
            raise NoMatchingImage(
                f"found zero images based on regex {regex!r} and family {family!r} in project {project!r}"
            )

        # sorted() is stable, so equal timestamps keep listing order
        candidates = sorted(candidates, key=lambda c: c[0], reverse=True)
        logger.debug(
            f"found images {[n for _, n in candidates]} based on regex {regex!r} and family {family!r} in project {project!r}"
        )
        return candidates[0][1]

    def resolve_spec(self, spec: ImageSpec, metadata: Mapping[str, str]) -> ResolvedImage:
        """
        Resolve an ImageSpec into a ResolvedImage.

        Args:
            spec: Image configuration entry
            metadata: Already decoded and merged instance metadata

        Raises:
            ConfigurationError: If the project is missing or nothing matches
        """
        if not spec.project:
            raise ConfigurationError(
                f"invalid config for {spec.short_name}; must specify a project"
            )

        image = spec.image
        if spec.needs_resolution:
            try:
                image = self.resolve(spec.image_regex, spec.image_family, spec.project)
            except NoMatchingImage as e:
                raise NoMatchingImage(
                    f"Could not retrieve a image based on image regex {spec.image_regex!r} and family {spec.image_family!r}: {e}"
                ) from e
            logger.info(f"Resolved {spec.short_name} to image {spec.project}/{image}")
        if not image:
            raise ConfigurationError(
                f"invalid config for {spec.short_name}; must specify image, image_regex or image_family"
            )

        return ResolvedImage(
            short_name=spec.short_name,
            image=image,
            project=spec.project,
            image_description=spec.image_description or image,
            metadata=MappingProxyType(dict(metadata)),
            kernel_arguments=tuple(spec.kernel_arguments),
            machine=spec.machine,
            accelerators=tuple(spec.accelerators),
            family=ImageFamily.from_image_name(image),
        )
