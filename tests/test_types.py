"""
Tests for shared value types.
"""

import pytest

from aircache.core.types import (
    RefreshStats,
    SlotId,
    SourceRecord,
    TableDiff,
    TableMapping,
    extract_attachments,
)


@pytest.mark.unit
class TestSlotId:
    def test_other(self):
        assert SlotId.A.other is SlotId.B
        assert SlotId.B.other is SlotId.A

    def test_parse_default_when_missing(self):
        assert SlotId.parse(None, default=SlotId.A) is SlotId.A

    def test_parse_missing_without_default(self):
        with pytest.raises(ValueError):
            SlotId.parse(None)

    def test_parse_legacy_values(self):
        assert SlotId.parse("v1") is SlotId.A
        assert SlotId.parse("V2") is SlotId.B

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            SlotId.parse("C")


@pytest.mark.unit
class TestSourceRecord:
    def test_from_api(self):
        record = SourceRecord.from_api({"id": "rec1", "fields": {"Name": "A"}, "createdTime": "2024-01-01T00:00:00Z"})
        assert record.id == "rec1"
        assert record.fields == {"Name": "A"}
        assert record.to_dict()["createdTime"] == "2024-01-01T00:00:00Z"

    def test_from_api_without_fields(self):
        assert SourceRecord.from_api({"id": "rec1"}).fields == {}

    def test_to_json_rejects_nan(self):
        with pytest.raises(ValueError):
            SourceRecord(id="rec1", fields={"Score": float("nan")}).to_json()

    def test_to_json_rejects_objects(self):
        with pytest.raises(TypeError):
            SourceRecord(id="rec1", fields={"Blob": object()}).to_json()


@pytest.mark.unit
class TestExtractAttachments:
    def test_finds_attachment_refs(self):
        fields = {
            "Name": "Project",
            "Files": [
                {"url": "https://x/a.pdf", "filename": "a.pdf", "size": 100, "type": "application/pdf"},
                {"url": "https://x/b.png", "filename": "b.png", "size": 5},
            ],
        }
        attachments = extract_attachments("projects", "rec1", fields)
        assert [a.id for a in attachments] == ["rec1_Files_0", "rec1_Files_1"]
        assert attachments[0].expected_size == 100
        assert attachments[0].content_type == "application/pdf"
        assert attachments[1].content_type is None
        assert not attachments[0].downloaded

    def test_ignores_incomplete_refs(self):
        fields = {
            "Links": [{"url": "https://x", "filename": "a"}],
            "Tags": ["a", "b"],
            "Files": [{"url": "https://x/a", "filename": "a", "size": 1}],
        }
        attachments = extract_attachments("t", "rec1", fields)
        assert [a.field_name for a in attachments] == ["Files"]

    def test_index_counts_whole_list(self):
        fields = {"Mixed": ["text", {"url": "https://x/a", "filename": "a", "size": 1}]}
        assert extract_attachments("t", "rec1", fields)[0].id == "rec1_Mixed_1"


@pytest.mark.unit
class TestTableDiff:
    def test_from_payload(self):
        diff = TableDiff.from_payload(
            {
                "createdRecordsById": {"rec1": None},
                "changedRecordsById": {"rec3": {"current": {}}},
                "destroyedRecordIds": ["rec2"],
            }
        )
        assert diff.created_ids == ["rec1"]
        assert diff.changed_ids == ["rec3"]
        assert diff.destroyed_ids == ["rec2"]

    def test_upsert_ids_excludes_destroyed(self):
        diff = TableDiff(created_ids=["rec1", "rec2"], changed_ids=["rec1", "rec3"], destroyed_ids=["rec2"])
        assert diff.upsert_ids == ["rec1", "rec3"]

    def test_merge_dedupes(self):
        diff = TableDiff(created_ids=["rec1"])
        diff.merge(TableDiff(created_ids=["rec1", "rec2"], destroyed_ids=["rec9"]))
        assert diff.created_ids == ["rec1", "rec2"]
        assert diff.destroyed_ids == ["rec9"]

    def test_is_empty(self):
        assert TableDiff().is_empty()
        assert not TableDiff(destroyed_ids=["rec1"]).is_empty()


@pytest.mark.unit
class TestMappingAndStats:
    def test_mapping_round_trip(self):
        mapping = TableMapping("tbl1", "Projects", "projects", "fld1", {"fld1": {"name": "Name"}})
        assert TableMapping.from_dict(mapping.to_dict()) == mapping

    def test_refresh_stats_to_dict(self):
        stats = RefreshStats(tables=2, records=6, flipped_to=SlotId.B, duration=1.23456)
        data = stats.to_dict()
        assert data["flipped_to"] == "B"
        assert data["duration"] == 1.235
        assert data["skipped"] is False
