import tomllib

import tomli_w

from treedb.interfaces.codec import Codec


class TomlCodec(Codec):
    """
    TOML codec. tomllib is read-only, so writing goes through tomli-w.

    TOML has no null; trees holding None fail to encode.
    """

    extension = "toml"

    def encode(self, tree: dict) -> bytes:
        return tomli_w.dumps(tree).encode("utf-8")

    def decode(self, data: bytes) -> dict:
        return tomllib.loads(data.decode("utf-8"))
