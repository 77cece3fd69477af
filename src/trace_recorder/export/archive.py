"""Uncompressed ZIP container for exported sessions.

Entries are stored (no compression) with a fixed 1980-01-01 timestamp so the
same session always encodes to the same bytes. Non-ASCII names get the UTF-8
general purpose flag.
"""

import io
import zipfile

# The earliest timestamp a ZIP entry can carry
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class ZipArchiveWriter:
    """Collects entries in memory and serializes them with :meth:`build`."""

    def __init__(self):
        self._entries: list[tuple[str, bytes]] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._entries]

    def add_file(self, name: str, data: bytes) -> None:
        self._entries.append((name, bytes(data)))

    def add_text(self, name: str, text: str) -> None:
        self.add_file(name, text.encode("utf-8"))

    def build(self) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as archive:
            for name, data in self._entries:
                info = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
                info.compress_type = zipfile.ZIP_STORED
                archive.writestr(info, data)
        return buffer.getvalue()
