import uuid

from geofencing.beacons import Beacon, beacon_set, diff_beacons

U = uuid.UUID("f7826da6-4fa2-4e98-8024-bc5b71e0893e")


def b(major, minor=1, location=None):
    return Beacon(U, major, minor, location)


def test_entered_and_left_are_set_differences():
    change = diff_beacons({b(1), b(2)}, {b(2), b(3)})
    assert change.entered == {b(3)}
    assert change.left == {b(1)}


def test_same_snapshot_is_no_change():
    assert diff_beacons({b(1), b(2)}, {b(2), b(1)}) is None
    assert diff_beacons([], []) is None


def test_rediff_after_applying_change_is_no_change():
    previous, current = {b(1)}, {b(1), b(2)}
    change = diff_beacons(previous, current)
    applied = (set(previous) - change.left) | change.entered
    assert diff_beacons(applied, current) is None


def test_location_is_not_part_of_identity():
    assert b(1, location="Front") == b(1, location="Back")
    assert diff_beacons({b(1, location="Front")}, {b(1)}) is None


def test_beacon_set_keeps_first_label():
    result = beacon_set([b(1, location="first"), b(1, location="second"), b(2)])
    assert len(result) == 2
    assert {x.location for x in result if x.major == 1} == {"first"}


def test_from_dict_accepts_strings():
    beacon = Beacon.from_dict({"uuid": str(U), "major": "4", "minor": "2", "location": "Gate"})
    assert beacon == b(4, 2)
    assert beacon.location == "Gate"
    assert str(beacon) == f"{U}:4:2"
    assert beacon.to_dict(include_location=False) == {"uuid": str(U), "major": 4, "minor": 2}
