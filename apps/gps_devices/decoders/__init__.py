from .base import BaseHttpProtocolDecoder, DecodeError, DecodeResult
from .osmand import OsmAndProtocolDecoder

__all__ = ['BaseHttpProtocolDecoder', 'DecodeError', 'DecodeResult', 'OsmAndProtocolDecoder']
