"""Tests for item schemas."""

import pytest

from scoutcache.base.schema import DictItemSchema, HerdModuleSchema, ItemSchema
from scoutcache.cache.validation import InvalidItemError


class Site:
    """Minimal domain object exposing to_serializable()."""

    def __init__(self, site_id, title):
        self.site_id = site_id
        self.title = title

    def to_serializable(self):
        return {"site_id": self.site_id, "title": self.title}


class SiteSchema(ItemSchema):
    def key_of(self, item):
        return str(item["site_id"])

    def label_of(self, item):
        return item["title"]


class TestHerdModuleSchema:
    """Test the default herd module schema."""

    def test_key_and_label(self):
        schema = HerdModuleSchema()
        item = {"herd": {"id": 7, "name": "Savanna"}}
        assert schema.key_of(item) == "7"
        assert schema.label_of(item) == "Savanna"

    @pytest.mark.parametrize(
        "item",
        [{}, {"herd": {}}, {"herd": {"id": None}}, {"herd": {"id": ""}}],
    )
    def test_missing_identifier_rejected(self, item):
        with pytest.raises(InvalidItemError):
            HerdModuleSchema().key_of(item)

    def test_missing_label_is_empty(self):
        assert HerdModuleSchema().label_of({"herd": {"id": 1}}) == ""

    def test_payload_shape_check(self):
        schema = HerdModuleSchema()
        assert schema.is_valid_payload({"herd": {"id": 1, "name": "A"}}) is True
        assert schema.is_valid_payload({"herd": {"name": "A"}}) is False
        assert schema.is_valid_payload(["not", "a", "mapping"]) is False
        assert schema.is_valid_payload(None) is False


class TestCustomSchema:
    """Test schemas for other collections."""

    def test_dict_schema_paths(self):
        schema = DictItemSchema(id_path=("id",), label_path=("name",))
        assert schema.key_of({"id": 3, "name": "Camera trap"}) == "3"
        assert schema.label_of({"id": 3, "name": "Camera trap"}) == "Camera trap"

    def test_dump_uses_to_serializable(self):
        schema = SiteSchema()
        assert schema.dump(Site(1, "North")) == {"site_id": 1, "title": "North"}

    def test_dump_rejects_unknown_objects(self):
        with pytest.raises(InvalidItemError):
            SiteSchema().dump(object())
