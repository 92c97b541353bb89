"""
Tests for announcement formatting.
"""

import json
import os
import sys

import pytest
from hypothesis import given
from hypothesis import strategies as st

sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from tests.mock_factories import make_gallery
from utils.formatting import TagTranslator, format_message, format_tag, format_tags


@given(st.text(alphabet=st.sampled_from("ab-/· c"), min_size=1, max_size=30))
def test_hashtags_never_keep_separators(tag):
    result = format_tag(tag)
    assert result.startswith("#")
    assert not any(separator in result[1:] for separator in "-/· ")


def test_format_tag_examples():
    assert format_tag("big eyes") == "#big_eyes"
    assert format_tag("x-ray") == "#x_ray"
    assert format_tag("full color / colour") == "#full_color___colour"


def test_format_tags_skips_empty_namespaces():
    lines = format_tags({"artist": ["someone"], "group": [], "female": ["glasses", "big eyes"]})

    assert lines == ["`artist`: #someone", "`female`: #glasses #big_eyes"]


def test_format_message_layout():
    gallery = make_gallery(gallery_id=7, title="Title", tags={"artist": ("someone",)})

    text = format_message(gallery, "https://telegra.ph/page-1")

    assert text.split("\n") == [
        "**Title**",
        "`artist`: #someone",
        "`preview`: [Title](https://telegra.ph/page-1)",
        "`source`: <https://exhentai.org/g/7/0123abcd/>",
    ]


class TestTagTranslator:
    DATABASE = {
        "data": [
            {"namespace": "rows", "frontMatters": {"name": "Namespace"}, "data": {}},
            {
                "namespace": "female",
                "frontMatters": {"name": "女性"},
                "data": {"big eyes": {"name": "大眼睛"}, "broken": "not an entry"},
            },
        ]
    }

    def test_from_file_reads_namespaces_and_tags(self, tmp_path):
        path = tmp_path / "db.text.json"
        path.write_text(json.dumps(self.DATABASE), encoding="utf-8")

        translator = TagTranslator.from_file(path)

        assert translator.namespaces["female"] == "女性"
        assert translator.tags["female"] == {"big eyes": "大眼睛"}

    def test_from_file_rejects_other_json(self, tmp_path):
        path = tmp_path / "db.text.json"
        path.write_text('{"version": 6}', encoding="utf-8")

        with pytest.raises(ValueError):
            TagTranslator.from_file(path)

    def test_unknown_names_pass_through(self):
        translator = TagTranslator({"female": "女性"}, {"female": {"big eyes": "大眼睛"}})

        translated = translator.translate({"artist": ["someone"], "female": ["glasses", "big eyes"]})

        assert translated == {"artist": ["someone"], "女性": ["glasses", "大眼睛"]}

    def test_message_uses_translated_tags(self):
        translator = TagTranslator({"female": "女性"}, {"female": {"big eyes": "大眼睛"}})
        gallery = make_gallery(gallery_id=7, title="Title", tags={"female": ("big eyes",)})

        text = format_message(gallery, "https://telegra.ph/page-1", translator)

        assert text.split("\n")[1] == "`女性`: #大眼睛"
