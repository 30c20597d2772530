"""
Codecs for the supported on-disk formats.
"""

from treedb.codecs.json_codec import JsonCodec
from treedb.codecs.msgpack_codec import MsgpackCodec
from treedb.codecs.toml_codec import TomlCodec
from treedb.codecs.yaml_codec import YamlCodec
from treedb.interfaces.codec import Codec
from treedb.models.exceptions import UnsupportedFormat

__all__ = [
    "JsonCodec",
    "MsgpackCodec",
    "TomlCodec",
    "YamlCodec",
    "get_codec",
]


def get_codec(format: str, json_indent: int | None = 2) -> Codec:
    """
    Return the codec for a storage format name.

    Raises:
        UnsupportedFormat: If the format is not one of json, yaml, toml, binary.
    """
    if format == "json":
        return JsonCodec(indent=json_indent)
    if format == "yaml":
        return YamlCodec()
    if format == "toml":
        return TomlCodec()
    if format == "binary":
        return MsgpackCodec()
    raise UnsupportedFormat(format)
