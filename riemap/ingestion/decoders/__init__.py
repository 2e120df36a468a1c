"""Streaming decoders for the supported extract encodings."""

from riemap.ingestion.decoders.base import ElementKind, GeoDecoder, GeoRecord
from riemap.ingestion.decoders.dataset import DecodedDataset
from riemap.ingestion.decoders.router import DecoderRouter, decode

__all__ = [
    "DecodedDataset",
    "DecoderRouter",
    "ElementKind",
    "GeoDecoder",
    "GeoRecord",
    "decode",
]
