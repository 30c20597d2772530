import msgpack

from treedb.interfaces.codec import Codec


class MsgpackCodec(Codec):
    extension = "bin"

    def encode(self, tree: dict) -> bytes:
        return msgpack.packb(tree, use_bin_type=True)

    def decode(self, data: bytes) -> dict:
        if not data:
            return {}
        return msgpack.unpackb(data, raw=False)
