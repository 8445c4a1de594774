import hashlib
import pathlib
import sys

repo_root = pathlib.Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import layout_identity as li


def test_display_identity_is_deterministic():
    a = li.display_identity(1552, 41234, 99, 2560, 1440)
    b = li.display_identity(1552, 41234, 99, 2560, 1440)
    assert a == b
    assert len(a) == 16
    int(a, 16)


def test_display_identity_matches_prefixed_sha256_prefix():
    expected = hashlib.sha256(b"v1552-m41234-s99-r2560x1440").hexdigest()[:16]
    assert li.display_identity(1552, 41234, 99, 2560, 1440) == expected


def test_display_identity_changes_with_any_component():
    base = li.display_identity(1552, 41234, 99, 2560, 1440)
    assert li.display_identity(1553, 41234, 99, 2560, 1440) != base
    assert li.display_identity(1552, 41235, 99, 2560, 1440) != base
    assert li.display_identity(1552, 41234, 100, 2560, 1440) != base
    assert li.display_identity(1552, 41234, 99, 1920, 1080) != base


def test_configuration_identity_is_order_independent():
    assert li.configuration_identity(["A", "B"]) == li.configuration_identity(["B", "A"])
    three = ["c1", "a9", "b5"]
    assert li.configuration_identity(three) == li.configuration_identity(sorted(three))
    assert li.configuration_identity(three) == li.configuration_identity(reversed(three))


def test_configuration_identity_has_prefix_and_differs_per_set():
    one = li.configuration_identity(["A"])
    two = li.configuration_identity(["A", "B"])
    assert one.startswith("config-")
    assert len(one) == len("config-") + 16
    assert one != two
