"""Format -> decoder selection and the top-level ``decode`` entry point."""

from __future__ import annotations

from collections.abc import Iterable
from typing import BinaryIO

from riemap.ingestion.decoders.base import GeoDecoder
from riemap.ingestion.decoders.dataset import (
    DEFAULT_BATCH_SIZE,
    CancelCheck,
    DecodedDataset,
    fold_records,
)
from riemap.ingestion.decoders.geojson_seq import GeoJsonSeqDecoder
from riemap.ingestion.decoders.osm_xml import OsmXmlDecoder
from riemap.ingestion.decoders.pbf import PbfDecoder
from riemap.models.artifact import DataFormat


class DecoderRouter:
    """Routes each DataFormat to its decoder."""

    def __init__(self, decoders: Iterable[GeoDecoder] | None = None) -> None:
        if decoders is None:
            decoders = (PbfDecoder(), OsmXmlDecoder(), GeoJsonSeqDecoder())
        self._decoders = {d.data_format: d for d in decoders}

    def decoder_for(self, data_format: DataFormat) -> GeoDecoder:
        try:
            return self._decoders[data_format]
        except KeyError:
            msg = f"No decoder registered for format: {data_format}"
            raise ValueError(msg) from None

    def decode(
        self,
        stream: BinaryIO,
        data_format: DataFormat,
        *,
        should_cancel: CancelCheck | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> DecodedDataset:
        """Stream ``stream`` through the matching decoder into a DecodedDataset.

        Raises:
            DecodeError: The stream is not ``data_format`` or is unrecoverably
                truncated.
            JobCancelledError: ``should_cancel`` returned True at a checkpoint.
        """
        records = self.decoder_for(data_format).records(stream)
        return fold_records(
            records, data_format, should_cancel=should_cancel, batch_size=batch_size,
        )


def decode(
    stream: BinaryIO,
    data_format: DataFormat,
    *,
    should_cancel: CancelCheck | None = None,
) -> DecodedDataset:
    """Decode with the default decoder set."""
    return DecoderRouter().decode(stream, data_format, should_cancel=should_cancel)
