# mrlink/nucleus/codec.py
import json
import logging
from typing import Optional, Union

from pydantic import ValidationError

from mrlink.nucleus.errors import DecodeError
from mrlink.nucleus.protocol import Envelope

logger = logging.getLogger(__name__)


class EnvelopeCodec:
    """
    Turns transport frames into envelopes and back.

    Frames equal to the heartbeat payload are recognised before any JSON
    parsing and decode to ``None``.
    """

    def __init__(self, heartbeat: str = "X"):
        self._heartbeat = heartbeat

    def is_heartbeat(self, raw: Union[str, bytes]) -> bool:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return raw == self._heartbeat

    def decode(self, raw: Union[str, bytes]) -> Optional[Envelope]:
        """
        Decodes one frame.

        Returns ``None`` for heartbeats and for a JSON ``null`` body, raises
        ``DecodeError`` for anything that is not a structurally valid envelope.
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise DecodeError(f"Frame is not valid UTF-8: {e}") from e

        if raw == self._heartbeat:
            logger.debug("[Codec] Heartbeat received.")
            return None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Frame is not valid JSON: {e}", raw) from e

        if data is None:
            return None
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object, got {type(data).__name__}.", raw)

        try:
            return Envelope.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Frame is not an envelope: {e}", raw) from e

    def encode(self, envelope: Envelope) -> str:
        return envelope.model_dump_json(exclude_none=True)
