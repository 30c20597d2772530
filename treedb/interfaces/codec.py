"""
Codec abstract base class for on-disk tree formats.
"""

from abc import ABC, abstractmethod


class Codec(ABC):
    """
    Converts a whole document tree to bytes and back.

    Implementations must round-trip maps, lists and scalars without loss
    (within what the format can represent).

    Implementations:
    - JsonCodec: json (default)
    - YamlCodec: PyYAML safe dump/load
    - TomlCodec: tomllib / tomli-w
    - MsgpackCodec: msgpack binary
    """

    # File extension used for the data file
    extension: str = ""

    @abstractmethod
    def encode(self, tree: dict) -> bytes:
        """
        Serialize a tree.

        Args:
            tree: Root map of the tree.

        Returns:
            Encoded bytes.
        """
        pass

    @abstractmethod
    def decode(self, data: bytes) -> dict:
        """
        Deserialize a tree.

        Args:
            data: Encoded bytes as read from disk.

        Returns:
            Root map of the tree. Empty input decodes to an empty map.
        """
        pass
