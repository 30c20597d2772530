import yaml

from treedb.interfaces.codec import Codec


class YamlCodec(Codec):
    extension = "yaml"

    def encode(self, tree: dict) -> bytes:
        return yaml.safe_dump(tree, sort_keys=False, allow_unicode=True).encode("utf-8")

    def decode(self, data: bytes) -> dict:
        # An empty document loads as None
        return yaml.safe_load(data.decode("utf-8")) or {}
