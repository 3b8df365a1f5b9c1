"""
ESC/POS command stream encoding
-------------------------------

Builds the byte stream sent to a thermal receipt printer for one text job:

  ESC @            reset
  ESC t 0          code page 0
  GS ! n           character size (double width/height by default)
  <text as UTF-8>
  LF LF LF         push the last line past the print head
  GS V A 16        partial cut

Caller text is copied verbatim. Control bytes embedded in it are NOT
escaped and will be interpreted by the printer.
"""

from dataclasses import dataclass
from typing import Optional


# ---------------------------------------------------------------------
# Protocol constants
# ---------------------------------------------------------------------

RESET_SEQUENCE = b"\x1b\x40"             # ESC @
CHARSET_SEQUENCE = b"\x1b\x74\x00"       # ESC t 0
TEXT_SIZE_PREFIX = b"\x1d\x21"           # GS ! n
TRAILING_FEED = b"\x0a\x0a\x0a"
PARTIAL_CUT_SEQUENCE = b"\x1d\x56\x41\x10"  # GS V A 16

MIN_SCALE = 1
MAX_SCALE = 8
DEFAULT_SCALE = 2

DEFAULT_TEST_MESSAGE = "Test Print\nBluetooth printing is working!\nV510 Thermal Printer\n"

# reset + charset + size + feeds + cut
COMMAND_OVERHEAD = (
    len(RESET_SEQUENCE)
    + len(CHARSET_SEQUENCE)
    + len(TEXT_SIZE_PREFIX) + 1
    + len(TRAILING_FEED)
    + len(PARTIAL_CUT_SEQUENCE)
)


@dataclass(frozen=True)
class PrintRequest:
    """One text job. ``text=None`` prints the self-test message."""

    text: Optional[str] = None
    width_scale: int = DEFAULT_SCALE
    height_scale: int = DEFAULT_SCALE
    cut: bool = True

    def __post_init__(self):
        for field_name in ("width_scale", "height_scale"):
            value = getattr(self, field_name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{field_name} must be an integer, got {value!r}")
            if not MIN_SCALE <= value <= MAX_SCALE:
                raise ValueError(
                    f"{field_name} must be between {MIN_SCALE} and {MAX_SCALE}, got {value}"
                )
        if self.text is not None and not isinstance(self.text, str):
            raise ValueError(f"text must be a string, got {type(self.text).__name__}")

    @property
    def effective_text(self) -> str:
        return DEFAULT_TEST_MESSAGE if self.text is None else self.text


def text_size_byte(width_scale: int, height_scale: int) -> int:
    """GS ! argument: high nibble is width-1, low nibble is height-1."""
    return ((width_scale - 1) << 4) | (height_scale - 1)


def text_size_sequence(width_scale: int, height_scale: int) -> bytes:
    return TEXT_SIZE_PREFIX + bytes([text_size_byte(width_scale, height_scale)])


def build_command_stream(request: PrintRequest) -> bytes:
    """Encode ``request`` into the full command stream."""
    stream = bytearray()
    stream += RESET_SEQUENCE
    stream += CHARSET_SEQUENCE
    stream += text_size_sequence(request.width_scale, request.height_scale)
    stream += request.effective_text.encode("utf-8")
    stream += TRAILING_FEED
    if request.cut:
        # Printers without a cutter ignore GS V
        stream += PARTIAL_CUT_SEQUENCE
    return bytes(stream)


def expected_stream_length(request: PrintRequest) -> int:
    overhead = COMMAND_OVERHEAD if request.cut else COMMAND_OVERHEAD - len(PARTIAL_CUT_SEQUENCE)
    return overhead + len(request.effective_text.encode("utf-8"))
