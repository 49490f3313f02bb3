"""RangeClip — labeled range marking and clip export."""

__version__ = "0.1.0"
