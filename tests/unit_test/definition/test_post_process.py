import pytest

from cbim.definition.index_definition import IndexDefinition
from cbim.definition.post_process import (
    list_post_process,
    register_post_process,
    resolve_post_process,
    unregister_post_process,
)
from cbim.exceptions import ValidationError


@pytest.fixture
def two_replicas():
    @register_post_process("test_two_replicas")
    def hook(definition):
        definition.num_replica = 2

    yield hook
    unregister_post_process("test_two_replicas")


class TestPostProcess:
    def test_registered_hook_by_name(self, two_replicas):
        definition = IndexDefinition({"name": "idx", "index_key": ["`type`"], "post_process": "test_two_replicas"})

        assert definition.num_replica == 2

    def test_list(self, two_replicas):
        assert "test_two_replicas" in list_post_process()

    def test_resolve_callable(self):
        def hook(definition):
            pass

        assert resolve_post_process(hook) is hook

    def test_unknown_name(self):
        with pytest.raises(ValidationError, match="Unknown post_process hook"):
            resolve_post_process("does_not_exist")

    def test_hook_result_is_validated(self):
        def make_primary(definition):
            definition.is_primary = True

        with pytest.raises(ValidationError, match="primary"):
            IndexDefinition({"name": "idx", "index_key": ["`type`"], "post_process": make_primary})

    def test_code_strings_are_not_executed(self):
        with pytest.raises(ValidationError):
            IndexDefinition({"name": "idx", "index_key": ["`type`"], "post_process": "this.num_replica = 2"})
