import pytest

from cbim.feature_versions import FeatureVersions, Version
from cbim.utils import ensure_escaped, ensure_port, format_elapsed, get_keyspace


class TestUtils:
    @pytest.mark.parametrize(
        "identifier, expected",
        [("idx", "`idx`"), ("`idx`", "`idx`"), ("a`b", "`a``b`")],
    )
    def test_ensure_escaped(self, identifier, expected):
        assert ensure_escaped(identifier) == expected

    def test_get_keyspace(self):
        assert get_keyspace("travel") == "`travel`"
        assert get_keyspace("travel", "inventory", "airline") == "`travel`.`inventory`.`airline`"

    def test_ensure_port(self):
        assert ensure_port("a") == "a:8091"
        assert ensure_port("a", is_secure=True) == "a:18091"
        assert ensure_port("a:9000") == "a:9000"

    def test_format_elapsed(self):
        assert format_elapsed(5) == "0m05s"
        assert format_elapsed(125.7) == "2m05s"


class TestFeatureVersions:
    def test_from_compatibility(self):
        version = Version.from_compatibility(6 * 65536 + 5)

        assert version == Version(6, 5)
        assert str(version) == "6.5"

    @pytest.mark.parametrize(
        "version, expected",
        [(None, True), (Version(5, 1), False), (Version(5, 5), True), (Version(6, 0), True)],
    )
    def test_alter_index_move(self, version, expected):
        assert FeatureVersions.alter_index_move(version) is expected

    @pytest.mark.parametrize(
        "version, expected",
        [(None, False), (Version(6, 0), False), (Version(6, 5), True), (Version(7, 0), True)],
    )
    def test_alter_index_replica_count(self, version, expected):
        assert FeatureVersions.alter_index_replica_count(version) is expected
