"""Unit tests for hub mode and gate flag overrides."""

import pytest

from src.state.hub_state import HubState


@pytest.fixture
def temp_state_file(tmp_path):
    return str(tmp_path / 'state' / 'hub_state.json')


class TestHubState:
    """Tests for HubState."""

    def test_default_mode(self, temp_state_file):
        assert HubState(temp_state_file, default_mode='Home').current_mode() == 'Home'

    def test_set_mode_persists(self, temp_state_file):
        HubState(temp_state_file).set_mode('Away')
        assert HubState(temp_state_file, default_mode='Home').current_mode() == 'Away'

    def test_flag_falls_back_to_config_value(self, temp_state_file):
        state = HubState(temp_state_file)

        assert state.get_flag('pause_all', False) is False
        assert state.get_flag('pause_all', True) is True

    def test_flag_override(self, temp_state_file):
        state = HubState(temp_state_file)
        state.set_flag('pause_all', True)

        assert HubState(temp_state_file).get_flag('pause_all', False) is True

    def test_clear_flag(self, temp_state_file):
        state = HubState(temp_state_file)
        state.set_flag('pause_all', True)
        state.clear_flag('pause_all')

        assert state.get_flag('pause_all', False) is False

    def test_flag_must_be_boolean(self, temp_state_file):
        with pytest.raises(ValueError):
            HubState(temp_state_file).set_flag('pause_all', 'yes')

    def test_invalid_file_ignored(self, temp_state_file, caplog):
        HubState(temp_state_file)
        with open(temp_state_file, 'w') as f:
            f.write('[1, 2, 3]')

        state = HubState(temp_state_file, default_mode='Home')

        assert state.current_mode() == 'Home'
        assert "Invalid hub state file format" in caplog.text
