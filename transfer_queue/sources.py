"""
Content sources: local byte providers read by the upload engine
"""
import os


class ContentSource:
    """Random-access byte provider with a known length"""

    name = ""

    @property
    def size(self) -> int:
        raise NotImplementedError("Subclasses must implement size")

    def read(self, offset: int, length: int) -> bytes:
        """Return up to `length` bytes starting at `offset`"""
        raise NotImplementedError("Subclasses must implement read method")


class LocalFileSource(ContentSource):
    """A file on this machine, reopened for every read"""

    def __init__(self, path, name=None):
        self.path = os.path.abspath(os.fspath(path))
        self.name = name or os.path.basename(self.path)
        self._size = os.path.getsize(self.path)

    @property
    def size(self):
        return self._size

    def read(self, offset, length):
        with open(self.path, 'rb') as f:
            f.seek(offset)
            return f.read(length)

    def __repr__(self):
        return f"LocalFileSource({self.path!r})"


class BytesSource(ContentSource):
    """In-memory content, e.g. data produced by another component"""

    def __init__(self, name, data: bytes):
        self.name = name
        self._data = bytes(data)

    @property
    def size(self):
        return len(self._data)

    def read(self, offset, length):
        return self._data[offset:offset + length]

    def __repr__(self):
        return f"BytesSource({self.name!r}, {len(self._data)} bytes)"
