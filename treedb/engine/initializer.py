"""
StoreInitializer - Load persisted state at startup.
"""

import json
import logging
import os

from treedb.interfaces.codec import Codec

logger = logging.getLogger(__name__)


class StoreInitializer:
    """
    Handles store startup.

    Responsibilities:
    - Remove orphaned .tmp files from interrupted atomic saves
    - Decode the data file (missing file -> empty tree)
    - Parse the expiry metadata file (missing file -> empty table)
    - Fall back to empty state when either cannot be read

    Expired entries are swept and the index rebuilt by the caller.
    """

    def __init__(self, data_path: str, meta_path: str, codec: Codec) -> None:
        """
        Initialize the loader.

        Args:
            data_path: Path of the data file.
            meta_path: Path of the expiry metadata file.
            codec: Codec for the data file.
        """
        self.data_path = data_path
        self.meta_path = meta_path
        self._codec = codec

    def _cleanup_temp_files(self) -> None:
        """
        Remove temp files left by a save that crashed before its rename.

        The real targets are still intact, so the temp files carry nothing
        worth keeping.
        """
        for path in (self.data_path, self.meta_path):
            tmp_path = path + ".tmp"
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError as e:
                    logger.warning(f"Could not remove stale temp file {tmp_path}: {e}")

    def _read_data(self) -> dict:
        if not os.path.exists(self.data_path):
            return {}
        with open(self.data_path, "rb") as f:
            data = self._codec.decode(f.read())
        if not isinstance(data, dict):
            raise ValueError(f"root of {self.data_path} is {type(data).__name__}, expected a map")
        return data

    def _read_expires(self) -> dict[str, int]:
        if not os.path.exists(self.meta_path):
            return {}
        with open(self.meta_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"{self.meta_path} does not hold a mapping")
        return {str(k): v for k, v in raw.items() if isinstance(v, (int, float))}

    def recover(self) -> tuple[dict, dict[str, int]]:
        """
        Load state from disk.

        Returns:
            Tuple of (tree data, expiry table). Both are empty if loading failed.
        """
        self._cleanup_temp_files()
        try:
            return self._read_data(), self._read_expires()
        except Exception as e:
            # Startup favours availability; the unreadable files are left untouched
            logger.warning(f"Failed to load {self.data_path}, starting empty: {e}")
            return {}, {}
