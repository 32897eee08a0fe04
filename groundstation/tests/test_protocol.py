import json

import pytest

from groundstation.models import Command, Direction, Ground, Rotation, TEMP_UNKNOWN, UnknownMessage
from groundstation.models.messages import Position
from groundstation.services import protocol


@pytest.mark.parametrize(
    "line",
    [
        "{not json",
        '{"CMD":"frobnicate"}',
        '{"NAME":"no command"}',
        "[1, 2, 3]",
        '{"CMD": 42}',
        '{"CMD":"unknown"}',
        '{"CMD":"init","SIZE":{"WIDTH":"wide"}}',
        '{"CMD":"status","STATUS":{"ENERGY":1e999,"MESSAGE":""}}',
        "[" * 5000,
    ],
)
def test_decode_never_raises_on_garbage(line):
    message = protocol.decode(line)

    assert isinstance(message, UnknownMessage)
    assert protocol.classify(message) == Command.UNKNOWN
    assert message.raw == line


def test_decode_empty_line_is_none():
    assert protocol.decode("") is None
    assert protocol.decode("   \n") is None
    assert protocol.decode(None) is None
    assert protocol.classify(None) == Command.UNKNOWN


def test_decode_is_case_insensitive():
    message = protocol.decode('{"CMD":"mOvEd","POSITION":{"X":2,"Y":3,"DIRECTION":"south"}}')

    assert message.command == Command.MOVED
    assert message.position == Position(x=2, y=3, direction=Direction.SOUTH)


def test_decode_measure_without_temperature_uses_sentinel():
    message = protocol.decode('{"CMD":"scaned","MEASURE":{"GROUND":"sand"}}')

    assert message.measure.ground == Ground.SAND
    assert message.measure.temperature == TEMP_UNKNOWN


def test_decode_init_and_status():
    init = protocol.decode('{"CMD":"init","SIZE":{"WIDTH":10,"HEIGHT":6}}')
    status = protocol.decode(
        '{"CMD":"status","STATUS":{"TEMP":31.5,"ENERGY":140,"MESSAGE":"WARN_LOW_ENERGY|HEATER=OK"}}'
    )

    assert (init.size.width, init.size.height) == (10, 6)
    assert status.status.energy == 100
    assert status.status.events() == ["WARN_LOW_ENERGY"]
    assert status.status.readings() == {"HEATER": "OK"}


def test_unknown_fields_are_ignored():
    message = protocol.decode('{"CMD":"rotated","DIRECTION":"WEST","EXTRA":true}')

    assert message.command == Command.ROTATED
    assert message.direction == Direction.WEST


def test_encoders_produce_lowercase_single_line_json():
    lines = [
        protocol.encode_orbit("Robot-1"),
        protocol.encode_land(3, 4, Direction.EAST),
        protocol.encode_move(),
        protocol.encode_scan(),
        protocol.encode_mvscan(),
        protocol.encode_rotate(Rotation.LEFT),
        protocol.encode_charge(5),
        protocol.encode_getpos(),
        protocol.encode_exit(),
    ]

    for line in lines:
        assert "\n" not in line
        payload = json.loads(line)
        assert payload["CMD"] == payload["CMD"].lower()

    assert json.loads(lines[0]) == {"CMD": "orbit", "NAME": "Robot-1"}
    assert json.loads(lines[1]) == {"CMD": "land", "POSITION": {"X": 3, "Y": 4, "DIRECTION": "EAST"}}
    assert json.loads(lines[5]) == {"CMD": "rotate", "ROTATION": "LEFT"}
    assert json.loads(lines[6]) == {"CMD": "charge", "DURATION": 5}


def test_encoded_commands_decode_to_the_same_kind():
    line = protocol.encode_land(1, 2, Direction.NORTH)
    message = protocol.decode(line)

    assert message.command == Command.LAND
    assert message.position.coord == (1, 2)
