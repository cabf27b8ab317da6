"""NMEA 0183 AIVDM sentence framing."""

from dataclasses import dataclass
from typing import Optional

from ais_relay.ais.encoding import checksum
from ais_relay.ais.messages import BuildResult

MAX_FRAGMENT_CHARS = 62
DEFAULT_CHANNEL = "B"


class FramingError(ValueError):
    """Raised when a payload cannot be framed into at most two sentences."""

    pass


@dataclass(frozen=True)
class NMEASentence:
    fragment_count: int
    fragment_number: int
    message_id: Optional[int]
    channel: str
    payload: str
    fill_bits: int

    @property
    def body(self) -> str:
        message_id = "" if self.message_id is None else str(self.message_id)
        return (
            f"AIVDM,{self.fragment_count},{self.fragment_number},{message_id},"
            f"{self.channel},{self.payload},{self.fill_bits}"
        )

    @property
    def checksum(self) -> str:
        return checksum(self.body)

    def __str__(self) -> str:
        return f"!{self.body}*{self.checksum}"


def create_sentence(
    payload: str,
    fragment_count: int = 1,
    fragment_number: int = 1,
    message_id: Optional[int] = None,
    channel: str = DEFAULT_CHANNEL,
    fill_bits: Optional[int] = None,
) -> str:
    """Frame one armored payload as an ``!AIVDM`` sentence.

    Without an explicit ``fill_bits`` the payload is assumed to be whole
    sextets.
    """
    if fill_bits is None:
        fill_bits = (6 - (len(payload) * 6) % 6) % 6
    return str(
        NMEASentence(
            fragment_count=fragment_count,
            fragment_number=fragment_number,
            message_id=message_id,
            channel=channel,
            payload=payload,
            fill_bits=fill_bits,
        )
    )


def frame_payload(
    payload: str,
    message_id: Optional[int] = None,
    channel: str = DEFAULT_CHANNEL,
) -> list[str]:
    """Frame a payload, splitting it into two fragments when it is too long.

    Every fragment carries the fill-bit count of its own armored characters,
    which is 0 because each character holds six whole bits.
    """
    if len(payload) <= MAX_FRAGMENT_CHARS:
        return [create_sentence(payload, 1, 1, message_id, channel)]

    if len(payload) > 2 * MAX_FRAGMENT_CHARS:
        raise FramingError(
            f"Payload of {len(payload)} characters does not fit two fragments"
        )

    first, second = payload[:MAX_FRAGMENT_CHARS], payload[MAX_FRAGMENT_CHARS:]
    return [
        create_sentence(first, 2, 1, message_id, channel),
        create_sentence(second, 2, 2, message_id, channel),
    ]


def frame_message(
    result: BuildResult,
    message_id: Optional[int] = None,
    channel: str = DEFAULT_CHANNEL,
) -> list[str]:
    """Frame a successful build result; failed results yield nothing."""
    if not result.ok:
        return []
    return frame_payload(result.payload, message_id, channel)
