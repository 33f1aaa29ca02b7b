"""Tests for input record coercion."""

import pytest

from contextforge.components.models import CharacterProfile, Message, UserPersona
from contextforge.errors import InputShapeError


class TestCharacterProfile:
    def test_from_card_with_data_block(self):
        profile = CharacterProfile.from_dict(
            {"id": "char-1", "data": {"name": "Aria", "personality": "curious"}}
        )
        assert profile.id == "char-1"
        assert profile.name == "Aria"
        assert profile.personality == "curious"
        assert profile.description == ""

    def test_from_flat_mapping(self):
        profile = CharacterProfile.from_dict({"name": "Bo", "scenario": "A tavern"})
        assert profile.name == "Bo"
        assert profile.scenario == "A tavern"
        assert profile.id is None

    def test_identity_fallbacks(self):
        assert CharacterProfile(id="x", name="Bo").identity == "x"
        assert CharacterProfile(name="Bo").identity == "Bo"
        assert CharacterProfile().identity == "unknown"

    def test_none_fields_become_empty(self):
        profile = CharacterProfile.from_dict({"data": {"name": None, "description": None}})
        assert profile.name == ""
        assert profile.description == ""


class TestMessage:
    def test_camel_case_sender(self):
        message = Message.from_dict({"senderId": "user", "content": "hi", "timestamp": 3})
        assert message.sender_id == "user"
        assert message.timestamp == 3.0

    def test_snake_case_sender(self):
        assert Message.from_dict({"sender_id": "bo", "content": "x"}).sender_id == "bo"

    def test_numeric_string_timestamp(self):
        assert Message.from_dict({"senderId": "u", "content": "x", "timestamp": "12.5"}).timestamp == 12.5

    def test_missing_timestamp_is_zero(self):
        assert Message.from_dict({"senderId": "u", "content": "x"}).timestamp == 0.0

    def test_non_numeric_timestamp(self):
        with pytest.raises(InputShapeError, match="Invalid message timestamp: 'yesterday'"):
            Message.from_dict({"senderId": "u", "content": "x", "timestamp": "yesterday"})

    def test_coerce_passthrough(self):
        message = Message(sender_id="a", content="b")
        assert Message.coerce(message) is message


class TestUserPersona:
    def test_coerce_none(self):
        assert UserPersona.coerce(None) is None

    def test_coerce_string(self):
        assert UserPersona.coerce("A traveler").text == "A traveler"

    def test_coerce_mapping(self):
        persona = UserPersona.coerce({"description": "Tall", "background": "Sailor"})
        assert persona.description == "Tall"
        assert persona.background == "Sailor"
        assert persona.text == ""
