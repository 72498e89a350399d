"""Optional external services behind the image and web-search tools."""

from abc import ABC, abstractmethod
from typing import Optional


class ImageService(ABC):
    """Generates and resizes images.

    Both methods return a path the FileService can read, usually a
    temporary file under .relay/; agents move finished images into the
    project with <save_asset/>.
    """

    @abstractmethod
    def generate(self, prompt: str, aspect_ratio: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def resize(self, path: str, width: int, height: int, fmt: Optional[str] = None) -> str:
        pass


class SearchService(ABC):
    """Non-code search (documentation, web)."""

    @abstractmethod
    def search(self, query: str, search_type: str) -> str:
        """Return search results as text for the agent."""


ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")
IMAGE_FORMATS = ("png", "jpg", "jpeg", "webp")


def validate_aspect_ratio(aspect_ratio: Optional[str]) -> Optional[str]:
    """Return an error message for unsupported ratios, or None."""
    if aspect_ratio and aspect_ratio not in ASPECT_RATIOS:
        return f"unsupported aspect_ratio '{aspect_ratio}' (use one of {', '.join(ASPECT_RATIOS)})"
    return None


def validate_resize(width: int, height: int, fmt: Optional[str]) -> Optional[str]:
    if width <= 0 or height <= 0:
        return f"invalid size {width}x{height}"
    if fmt and fmt.lower() not in IMAGE_FORMATS:
        return f"unsupported format '{fmt}' (use one of {', '.join(IMAGE_FORMATS)})"
    return None
