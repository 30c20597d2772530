import json

from treedb.interfaces.codec import Codec


class JsonCodec(Codec):
    extension = "json"

    def __init__(self, indent: int | None = 2) -> None:
        self.indent = indent

    def encode(self, tree: dict) -> bytes:
        return json.dumps(tree, indent=self.indent, ensure_ascii=False).encode("utf-8")

    def decode(self, data: bytes) -> dict:
        if not data.strip():
            return {}
        return json.loads(data.decode("utf-8"))
