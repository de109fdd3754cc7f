import os
from array import array
from fcntl import ioctl
from io import StringIO
import termios

__all__ = ["CharposStream", "terminal_width"]

default_width = 80

def terminal_width(stream=None):
    """Return $COLUMNS if it holds an integer, else the width of the terminal
    attached to stream (if any), else the default width."""
    try:
        return int(os.environ["COLUMNS"])
    except (KeyError, ValueError):
        pass
    try:
        winsize = array("H", [0, 0, 0, 0])  # rows, columns, hsize, vsize
        ioctl(stream.fileno(), termios.TIOCGWINSZ, winsize)
        return winsize[1] or default_width
    except (AttributeError, OSError, ValueError):
        # io.UnsupportedOperation is both an OSError and a ValueError
        return default_width

class CharposStream(object):
    """An output sink that counts the characters written since the last
    newline.  Output is passed straight through to the underlying stream;
    nothing already written is ever revisited."""

    def __init__(self, stream, charpos=0):
        self.stream = stream
        self.charpos = charpos
        self.closed = False

    @classmethod
    def wrap(cls, stream):
        return stream if isinstance(stream, cls) else cls(stream)

    def substream(self):
        """Return a stream that captures output in memory, starting at our
        current column."""
        return CharposStream(StringIO(), self.charpos)

    def close(self):
        if not self.closed:
            self.stream.close()
            self.closed = True

    def flush(self):
        self.stream.flush()

    def write(self, s):
        newline = s.rfind("\n")
        if newline == -1:
            self.charpos += len(s)
        else:
            self.charpos = len(s) - (newline + 1)
        self.stream.write(s)

    def fill(self, n, padchar=" "):
        if n > 0:
            self.write(padchar * n)

    def terpri(self):
        self.write("\n")

    def fresh_line(self):
        if self.charpos > 0:
            self.terpri()
            return True
        return False

    def getvalue(self):
        return self.stream.getvalue()

    @property
    def output_width(self):
        return terminal_width(self.stream)
