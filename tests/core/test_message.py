import unittest
from dataclasses import field, dataclass
from typing import Self, ClassVar

import msgpack  # type: ignore
from ulid import ULID

from dutch_auction.core.message import (
    Message,
    MessageType,
    Serializable,
)


class MessageTestCase(unittest.TestCase):
    def test_pack_unpack(self):
        msg = Message.create(MessageType(), b"data")

        packed_msg = msg.pack()
        msg_2 = Message.unpack(packed_msg)
        self.assertEqual(msg, msg_2)


@dataclass(slots=True)
class FooMsg(Serializable):
    MSG_TYPE: ClassVar[MessageType] = MessageType()

    data: ULID = field(default_factory=ULID)

    @classmethod
    def message_type(cls) -> MessageType:
        return cls.MSG_TYPE

    def pack(self) -> bytes:
        return msgpack.packb(self.data.bytes)

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        return cls(ULID.from_bytes(msgpack.unpackb(packed)))


class SerializableTestCase(unittest.TestCase):
    def test_to_message(self):
        foo = FooMsg()
        msg = Message.unpack(foo.to_message().pack())

        self.assertEqual(FooMsg.MSG_TYPE, msg.msg_type)
        self.assertEqual(foo, FooMsg.unpack(msg.data))


if __name__ == "__main__":
    unittest.main()
