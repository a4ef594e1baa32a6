# mrlink/nucleus/protocol.py
import json
import platform as host_platform
import struct
import time
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

# msgType values
BLOCKING = "B"
RETURN = "R"


class _Undefined:
    """Marks an argument the caller did not supply. See ``encode_args``."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


class MessageIdGenerator:
    """
    Hands out time-based message ids, in milliseconds, strictly increasing
    for the lifetime of the generator.
    """

    def __init__(self):
        self._last = 0

    def next_id(self) -> int:
        now = time.time_ns() // 1_000_000
        self._last = now if now > self._last else self._last + 1
        return self._last


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_args(args: Sequence[Any]) -> List[str]:
    """
    JSON-encodes each argument into its own string.

    Trailing ``UNDEFINED`` arguments are dropped, not encoded, so the remote
    side sees a shorter argument list and resolves a lower-arity overload.
    ``f(None, UNDEFINED)`` is sent as one argument, ``f(None, None)`` as two.
    An ``UNDEFINED`` followed by a real argument is encoded as ``null``.
    """
    end = len(args)
    while end > 0 and args[end - 1] is UNDEFINED:
        end -= 1
    encoded = []
    for arg in args[:end]:
        encoded.append("null" if arg is UNDEFINED else json.dumps(arg, default=_jsonable))
    return encoded


def decode_arg(value: Any) -> Any:
    """Decodes one ``data`` element; values that are not JSON text are returned as-is."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class Envelope(BaseModel):
    """
    The unit exchanged with the remote process, one JSON object per frame.

    ``data`` holds the JSON-encoded arguments of ``method``; use ``args()``
    to get them decoded.
    """
    model_config = ConfigDict(extra="ignore")

    msgId: int = Field(..., description="Sender-local, time-based message id.")
    name: str = Field(..., description="Full name of the target service.")
    sender: str = Field(..., description="Full name of the originating service.")
    method: str = Field(..., description="Remote method or event name.")
    data: Optional[List[Any]] = Field(None, description="JSON-encoded arguments.")
    msgType: Optional[str] = Field(None, description="'B' expects a reply, 'R' is a reply.")
    sendingMethod: Optional[str] = Field(None, description="Provenance tag, diagnostic only.")

    @property
    def is_reply(self) -> bool:
        return self.msgType == RETURN

    @property
    def is_blocking(self) -> bool:
        return self.msgType == BLOCKING

    def args(self) -> List[Any]:
        """Returns the decoded arguments, an empty list when there is no data."""
        return [decode_arg(value) for value in self.data or []]

    def arg(self, index: int, default: Any = None) -> Any:
        if not self.data or index >= len(self.data):
            return default
        return decode_arg(self.data[index])


class Platform(BaseModel):
    """The platform descriptor exchanged in the hello."""
    model_config = ConfigDict(extra="allow")

    os: str = "unknown"
    lang: str = "python"
    bitness: int = 64
    mrlVersion: str = "unknown"

    @classmethod
    def local(cls, mrl_version: str = "unknown") -> "Platform":
        """Describes the interpreter this runtime is running on."""
        return cls(
            os=host_platform.system().lower() or "unknown",
            lang="python",
            bitness=struct.calcsize("P") * 8,
            mrlVersion=mrl_version,
            pythonVersion=host_platform.python_version(),
        )


class Hello(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    uuid: Optional[str] = None
    platform: Platform = Field(default_factory=Platform)


class Registration(BaseModel):
    """
    Payload of ``onRegistered``. ``state`` is a JSON string holding the
    service's full snapshot.
    """
    model_config = ConfigDict(extra="allow")

    name: str
    id: str
    typeKey: str = ""
    type: Any = None
    state: Any = None

    @property
    def full_name(self) -> str:
        return f"{self.name}@{self.id}"

    def decoded_state(self) -> Dict[str, Any]:
        if not self.state:
            return {}
        state = json.loads(self.state) if isinstance(self.state, str) else self.state
        return state if isinstance(state, dict) else {"value": state}
