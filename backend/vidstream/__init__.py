"""Video metadata retrieval and cancellable streaming downloads."""
from types import MappingProxyType

from vidstream.services.download import DownloadStream, download, download_from_info
from vidstream.services.formats import choose_format, filter_formats
from vidstream.services.identifier import (
    get_url_video_id,
    is_valid_identifier,
    is_valid_url,
    resolve_identifier,
)
from vidstream.services.info import basic_info_cache, full_info_cache, get_basic_info, get_full_info

# Read-only handles onto the two info caches
cache = MappingProxyType({"basic": basic_info_cache.view, "full": full_info_cache.view})

__all__ = [
    "DownloadStream",
    "cache",
    "choose_format",
    "download",
    "download_from_info",
    "filter_formats",
    "get_basic_info",
    "get_full_info",
    "get_url_video_id",
    "is_valid_identifier",
    "is_valid_url",
    "resolve_identifier",
]
