"""STOMP 1.2 frame codec.

Frame layout: ``COMMAND\\n(header:value\\n)*\\nbody\\0``. A bare EOL between
frames is a heart-beat.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.application.exceptions import FrameError

NULL = "\x00"
HEARTBEAT = "\n"

# CONNECT/CONNECTED headers are never escaped (STOMP 1.2, "Value Encoding").
_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED", "STOMP"})

_ESCAPES = (
    ("\\", "\\\\"),
    ("\r", "\\r"),
    ("\n", "\\n"),
    (":", "\\c"),
)
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n", "c": ":"}


@dataclass(frozen=True, slots=True)
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == "\\":
            if i + 1 >= len(value) or value[i + 1] not in _UNESCAPES:
                raise FrameError(f"Invalid header escape in {value!r}")
            out.append(_UNESCAPES[value[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def encode_frame(command: str, headers: dict[str, str] | None = None, body: str = "") -> str:
    escape = command not in _UNESCAPED_COMMANDS
    lines = [command]
    for key, value in (headers or {}).items():
        if escape:
            key, value = _escape(key), _escape(str(value))
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + body + NULL


def decode_frames(raw: str) -> list[Frame]:
    """Decode every frame in one WebSocket message, skipping heart-beats."""
    frames: list[Frame] = []
    pos = 0
    while pos < len(raw):
        # Heart-beats and inter-frame EOLs
        while pos < len(raw) and raw[pos] in "\r\n":
            pos += 1
        if pos >= len(raw):
            break
        frame, pos = _decode_one(raw, pos)
        frames.append(frame)
    return frames


def decode_frame(raw: str) -> Frame | None:
    """Decode a single frame; returns None for a heart-beat."""
    frames = decode_frames(raw)
    if not frames:
        return None
    if len(frames) > 1:
        raise FrameError(f"Expected one frame, got {len(frames)}")
    return frames[0]


def _decode_one(raw: str, start: int) -> tuple[Frame, int]:
    head_end = raw.find("\n\n", start)
    crlf_end = raw.find("\r\n\r\n", start)
    if crlf_end != -1 and (head_end == -1 or crlf_end < head_end):
        head, body_start = raw[start:crlf_end], crlf_end + 4
    elif head_end != -1:
        head, body_start = raw[start:head_end], head_end + 2
    else:
        raise FrameError("Frame has no header terminator")

    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise FrameError("Frame has no command")

    unescape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if not sep:
            raise FrameError(f"Malformed header line {line!r}")
        if unescape:
            key, value = _unescape(key), _unescape(value)
        # Repeated headers: the first one wins
        headers.setdefault(key, value)

    length_raw = headers.get("content-length")
    if length_raw is not None:
        try:
            length = int(length_raw)
        except ValueError as exc:
            raise FrameError(f"Bad content-length {length_raw!r}") from exc
        encoded = raw[body_start:].encode()
        if len(encoded) < length or encoded[length:length + 1] != b"\x00":
            raise FrameError("Body shorter than content-length or missing NUL")
        body = encoded[:length].decode()
        end = body_start + len(body)
    else:
        end = raw.find(NULL, body_start)
        if end == -1:
            raise FrameError("Frame is not NUL-terminated")
        body = raw[body_start:end]

    return Frame(command=command, headers=headers, body=body), end + 1
