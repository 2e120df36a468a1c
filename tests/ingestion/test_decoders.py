"""Tests for the PBF, OSM XML and GeoJSON-sequence decoders and the router."""

import io
from datetime import datetime, timezone

import pytest

from riemap.errors import DecodeError, JobCancelledError
from riemap.ingestion.categories import FeatureCategory, classify, has_semantic_tags
from riemap.ingestion.decoders import DecoderRouter, decode
from riemap.ingestion.decoders.base import ElementKind, GeoRecord
from riemap.ingestion.decoders.pbf import PbfDecoder
from riemap.ingestion.decoders.wire import WireFormatError, delta_decode, iter_fields, read_varint
from riemap.models.artifact import DataFormat

PBF = DataFormat.PACKED_BINARY
XML = DataFormat.XML_TEXT
JSONL = DataFormat.JSON_FEATURES


# ===================================================================
# Categories
# ===================================================================


class TestCategories:
    def test_priority_order(self) -> None:
        assert classify({"building": "yes", "highway": "service"}) == FeatureCategory.ROADS
        assert classify({"shop": "bakery", "building": "retail"}) == FeatureCategory.BUILDINGS
        assert classify({"waterway": "river"}) == FeatureCategory.WATER_FEATURES
        assert classify({"boundary": "administrative"}) == FeatureCategory.BOUNDARIES

    def test_unmatched_is_other(self) -> None:
        assert classify({}) == FeatureCategory.OTHER
        assert classify({"name": "Somewhere"}) == FeatureCategory.OTHER

    def test_bookkeeping_tags_are_not_semantic(self) -> None:
        assert has_semantic_tags({"created_by": "JOSM", "source": "survey"}) is False
        assert has_semantic_tags({"created_by": "JOSM", "name": "X"}) is True
        assert has_semantic_tags({}) is False


# ===================================================================
# Wire format
# ===================================================================


class TestWire:
    def test_varint(self) -> None:
        assert read_varint(b"\xac\x02", 0) == (300, 2)

    def test_truncated_varint(self) -> None:
        with pytest.raises(WireFormatError):
            read_varint(b"\x80", 0)

    def test_delta_decode(self) -> None:
        # zigzag: 20 -> 10, 3 -> -2, 4 -> 2
        assert delta_decode([20, 3, 4]) == [10, 8, 10]

    def test_length_overrun(self) -> None:
        with pytest.raises(WireFormatError):
            list(iter_fields(b"\x0a\x05ab"))


# ===================================================================
# PBF
# ===================================================================


class TestPbfDecoder:
    def test_counts_and_tags(self, make_pbf, sample_nodes, sample_ways) -> None:
        dataset = decode(io.BytesIO(make_pbf(sample_nodes, sample_ways)), PBF)

        assert dataset.total_nodes == 4
        assert dataset.total_ways == 2
        assert dataset.total_relations == 0
        assert dataset.tagged_features == 6
        assert dataset.geometry_errors == 0
        assert dataset.topology_errors == 0
        assert dataset.malformed_blocks == 0
        assert dataset.feature_distribution["roads"] == 2
        assert dataset.feature_distribution["buildings"] == 2
        assert dataset.writing_program == "riemap-tests"

    def test_coordinates_and_refs(self, make_pbf, sample_nodes, sample_ways) -> None:
        items = list(PbfDecoder().records(io.BytesIO(make_pbf(sample_nodes, sample_ways))))
        records = [i for i in items if isinstance(i, GeoRecord)]
        first = records[0]
        assert first.kind is ElementKind.NODE
        assert first.osm_id == 1
        assert first.lat == pytest.approx(47.10)
        assert first.lon == pytest.approx(9.10)
        way = next(r for r in records if r.kind is ElementKind.WAY and r.osm_id == 11)
        assert way.refs == (3, 4, 3)
        assert way.tags == {"building": "house"}

    def test_replication_timestamp(self, make_pbf, sample_nodes) -> None:
        dataset = decode(io.BytesIO(make_pbf(sample_nodes, replication_timestamp=1_700_000_000)), PBF)
        assert dataset.source_timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    @pytest.mark.parametrize("replication", [2**62, -(2**62)])
    def test_out_of_range_replication_timestamp_ignored(
        self, make_pbf, sample_nodes, replication,
    ) -> None:
        dataset = decode(io.BytesIO(make_pbf(sample_nodes, replication_timestamp=replication)), PBF)
        assert dataset.source_timestamp is None
        assert dataset.total_nodes == 4

    def test_edit_years_from_dense_info(self, make_pbf, sample_nodes) -> None:
        # 2015-06-01T00:00:00Z
        dataset = decode(io.BytesIO(make_pbf(sample_nodes, edit_timestamp=1_433_116_800)), PBF)
        assert dataset.edit_years == {2015: 4}

    def test_bad_coordinates_and_short_ways(self, make_pbf) -> None:
        nodes = [(1, 95.0, 9.0, {"amenity": "bench"}), (2, 47.0, 9.0, {"created_by": "x"})]
        ways = [(10, [1], {"highway": "path"})]
        relations = [(20, [], {"type": "multipolygon"})]
        dataset = decode(io.BytesIO(make_pbf(nodes, ways, relations)), PBF)

        assert dataset.geometry_errors == 1
        assert dataset.topology_errors == 2
        assert dataset.tagged_nodes == 1
        assert dataset.total_relations == 1

    def test_corrupt_data_block_is_counted_not_fatal(self, make_pbf, sample_nodes) -> None:
        dataset = decode(io.BytesIO(make_pbf(sample_nodes, corrupt_blocks=1)), PBF)
        assert dataset.total_nodes == 4
        assert dataset.malformed_blocks == 1
        assert dataset.geometry_errors > 0

    def test_truncated_stream_is_fatal(self, make_pbf, sample_nodes) -> None:
        raw = make_pbf(sample_nodes)
        with pytest.raises(DecodeError, match="truncated"):
            decode(io.BytesIO(raw[:-10]), PBF)

    def test_not_a_pbf(self) -> None:
        with pytest.raises(DecodeError):
            decode(io.BytesIO(b"<osm version='0.6'></osm>"), PBF)

    def test_empty_stream(self) -> None:
        with pytest.raises(DecodeError, match="Empty"):
            decode(io.BytesIO(b""), PBF)

    def test_unsupported_required_feature(self, make_pbf, sample_nodes) -> None:
        raw = make_pbf(sample_nodes, required_features=("OsmSchema-V0.6", "Sort.Type_then_ID_v2"))
        with pytest.raises(DecodeError, match="unsupported features"):
            decode(io.BytesIO(raw), PBF)


# ===================================================================
# OSM XML
# ===================================================================


class TestOsmXmlDecoder:
    def test_counts(self, make_osm_xml, sample_nodes, sample_ways) -> None:
        raw = make_osm_xml(sample_nodes, sample_ways, timestamp="2024-05-01T00:00:00Z")
        dataset = decode(io.BytesIO(raw), XML)

        assert dataset.total_nodes == 4
        assert dataset.total_ways == 2
        assert dataset.tagged_features == 6
        assert dataset.geometry_errors == 0
        assert dataset.topology_errors == 0
        assert dataset.source_timestamp == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert dataset.edit_years == {2024: 4}

    def test_empty_tag_value_is_a_tag_error(self, make_osm_xml) -> None:
        raw = make_osm_xml([(1, 47.0, 9.0, {"name": "", "amenity": "bench"})])
        assert decode(io.BytesIO(raw), XML).tag_errors == 1

    def test_long_tag_value_is_a_tag_error(self, make_osm_xml) -> None:
        raw = make_osm_xml([(1, 47.0, 9.0, {"name": "x" * 300})])
        assert decode(io.BytesIO(raw), XML).tag_errors == 1

    def test_truncated_document_is_fatal(self, make_osm_xml, sample_nodes) -> None:
        raw = make_osm_xml(sample_nodes)
        with pytest.raises(DecodeError):
            decode(io.BytesIO(raw[: len(raw) // 2]), XML)

    def test_wrong_root(self) -> None:
        with pytest.raises(DecodeError, match="<osm>"):
            decode(io.BytesIO(b"<gpx></gpx>"), XML)


# ===================================================================
# GeoJSON sequence
# ===================================================================


def _point(fid, lon, lat, **props) -> dict:
    return {
        "type": "Feature",
        "id": fid,
        "geometry": {"type": "Point", "coordinates": [lon, lat]},
        "properties": props,
    }


class TestGeoJsonSeqDecoder:
    def test_kinds_from_ids_and_geometry(self, make_geojsonl) -> None:
        features = [
            _point("node/1", 9.1, 47.1, amenity="cafe"),
            {
                "type": "Feature",
                "id": "way/2",
                "geometry": {"type": "LineString", "coordinates": [[9.1, 47.1], [9.2, 47.2]]},
                "properties": {"highway": "primary"},
            },
            {
                "type": "Feature",
                "id": 3,
                "geometry": {
                    "type": "MultiPolygon",
                    "coordinates": [[[[9, 47], [9.1, 47], [9.1, 47.1], [9, 47]]]],
                },
                "properties": {"boundary": "administrative"},
            },
        ]
        dataset = decode(io.BytesIO(make_geojsonl(features)), JSONL)

        assert (dataset.total_nodes, dataset.total_ways, dataset.total_relations) == (1, 1, 1)
        assert dataset.geometry_errors == 0
        assert dataset.feature_distribution["boundaries"] == 1

    def test_open_polygon_ring_is_topology_error(self, make_geojsonl) -> None:
        feature = {
            "type": "Feature",
            "id": "w5",
            "geometry": {"type": "Polygon", "coordinates": [[[9, 47], [9.1, 47], [9.1, 47.1]]]},
            "properties": {"building": "yes"},
        }
        dataset = decode(io.BytesIO(make_geojsonl([feature])), JSONL)
        assert dataset.topology_errors == 1

    def test_bad_later_line_is_malformed(self, make_geojsonl) -> None:
        raw = make_geojsonl([_point(1, 9.1, 47.1, amenity="bench")]) + b"{broken\n"
        raw += make_geojsonl([_point(2, 200.0, 47.1, amenity="bench")])
        dataset = decode(io.BytesIO(raw), JSONL)

        assert dataset.total_nodes == 2
        assert dataset.malformed_blocks == 1
        # One malformed line plus one out-of-range longitude.
        assert dataset.geometry_errors == 2

    def test_record_separator_prefix(self, make_geojsonl) -> None:
        raw = b"\x1e" + make_geojsonl([_point(1, 9.1, 47.1, name="A")])
        assert decode(io.BytesIO(raw), JSONL).total_nodes == 1

    def test_bad_first_line_is_fatal(self) -> None:
        with pytest.raises(DecodeError):
            decode(io.BytesIO(b"PK\x03\x04 not geojson\n"), JSONL)

    def test_null_property_is_tag_error(self, make_geojsonl) -> None:
        dataset = decode(io.BytesIO(make_geojsonl([_point(1, 9.1, 47.1, name=None)])), JSONL)
        assert dataset.tag_errors == 1

    def test_scalar_polygon_coordinates_counted(self, make_geojsonl) -> None:
        bad = {
            "type": "Feature",
            "id": "way/7",
            "geometry": {"type": "Polygon", "coordinates": 5},
            "properties": {"building": "yes"},
        }
        good = _point(1, 9.1, 47.1, amenity="bench")
        dataset = decode(io.BytesIO(make_geojsonl([good, bad, _point(2, 9.2, 47.2)])), JSONL)

        assert dataset.total_nodes == 2
        assert dataset.total_ways == 1
        assert dataset.geometry_errors == 1
        assert dataset.topology_errors == 1

    def test_scalar_geometry_collection_is_malformed(self, make_geojsonl) -> None:
        bad = {
            "type": "Feature",
            "id": 9,
            "geometry": {"type": "GeometryCollection", "geometries": 7},
            "properties": {},
        }
        good = _point(1, 9.1, 47.1, amenity="bench")
        dataset = decode(io.BytesIO(make_geojsonl([good, bad, _point(2, 9.2, 47.2)])), JSONL)

        assert dataset.total_nodes == 2
        assert dataset.total_relations == 0
        assert dataset.malformed_blocks == 1

    def test_infinite_timestamp_is_ignored(self, make_geojsonl) -> None:
        good = make_geojsonl([_point(1, 9.1, 47.1, amenity="bench")])
        raw = good + (
            b'{"type": "Feature", "id": 2, "geometry": {"type": "Point", '
            b'"coordinates": [9.2, 47.2]}, "properties": {"timestamp": 1e400}}\n'
        ) + good
        dataset = decode(io.BytesIO(raw), JSONL)

        assert dataset.total_nodes == 3
        assert dataset.malformed_blocks == 0
        assert dataset.geometry_errors == 0


# ===================================================================
# Router
# ===================================================================


class TestRouter:
    def test_decoder_for_each_format(self) -> None:
        router = DecoderRouter()
        for data_format in DataFormat:
            assert router.decoder_for(data_format).data_format is data_format

    def test_missing_decoder(self) -> None:
        router = DecoderRouter(decoders=[PbfDecoder()])
        with pytest.raises(ValueError, match="No decoder"):
            router.decoder_for(XML)

    def test_cancellation_between_batches(self, make_pbf, sample_nodes) -> None:
        router = DecoderRouter()
        with pytest.raises(JobCancelledError):
            router.decode(
                io.BytesIO(make_pbf(sample_nodes)), PBF, should_cancel=lambda: True, batch_size=2,
            )

    def test_format_from_filename(self) -> None:
        assert DataFormat.from_filename("germany-latest.osm.pbf") is PBF
        assert DataFormat.from_filename("https://x.test/a.osm?x=1") is XML
        assert DataFormat.from_filename("north.geojsonl") is JSONL
        with pytest.raises(ValueError):
            DataFormat.from_filename("archive.zip")
