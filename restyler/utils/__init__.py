"""
Utilities
=========

Helper functions for image references and temporary storage.
"""

from .image_utils import (
    is_url,
    is_data_uri,
    to_data_uri,
    decode_data_uri,
    inspect_image,
)
from .storage import write_bytes, read_bytes, save_video, save_metadata, remove_tree

__all__ = [
    "is_url",
    "is_data_uri",
    "to_data_uri",
    "decode_data_uri",
    "inspect_image",
    "write_bytes",
    "read_bytes",
    "save_video",
    "save_metadata",
    "remove_tree",
]
