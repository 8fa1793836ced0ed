"""
Standardized messaging format
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Self

import msgpack  # type: ignore
from ulid import ULID


class MessageId(ULID):
    """
    Unique message ID
    """


class MessageType(ULID):
    """
    Message type ID
    """


@dataclass(slots=True)
class Message:
    """
    Message

    :field:`msg_id` - unique message ID
    :field:`msg_type` - message type
    :field:`data` - msgpack serialization format
    """

    msg_id: MessageId
    msg_type: MessageType
    data: bytes

    @classmethod
    def create(cls, msg_type: MessageType, data: bytes) -> Self:
        return cls(
            msg_id=MessageId(),
            msg_type=msg_type,
            data=data,
        )

    @classmethod
    def unpack(cls, packed: bytes) -> Self:
        """
        deserializes the message
        """
        (msg_id, msg_type, data) = msgpack.unpackb(packed, use_list=False)
        return cls(
            msg_id=MessageId.from_bytes(msg_id),
            msg_type=MessageType.from_bytes(msg_type),
            data=data,
        )

    def pack(self) -> bytes:
        """
        Serialize the message
        """
        return msgpack.packb((self.msg_id.bytes, self.msg_type.bytes, self.data))


class Serializable(ABC):
    """
    Objects that can be carried as Message data
    """

    @classmethod
    @abstractmethod
    def message_type(cls) -> MessageType:
        """
        :return: the MessageType that identifies the object's type within a Message
        """

    @classmethod
    @abstractmethod
    def unpack(cls, packed: bytes) -> Self:
        """
        Unpacks the packed bytes into a new instance of Self
        """

    @abstractmethod
    def pack(self) -> bytes:
        """
        Packs the object into bytes
        """

    def to_message(self) -> Message:
        return Message.create(self.message_type(), self.pack())
