import pytest

from shipwright_automation.errors import ConfigError
from shipwright_automation.templating import referenced_names, render_value


def test_referenced_names_walks_nested_parameters() -> None:
    data = {
        "command": "tar -xf app-{{ version }}.tgz",
        "env": {"HOME": "{{ app_home }}"},
        "packages": ["nodejs", "{{ extra_pkg }}"],
        "retries": 3,
    }
    assert referenced_names(data) == {"version", "app_home", "extra_pkg"}


def test_render_value_substitutes_variables() -> None:
    rendered = render_value({"dest": "/home/{{ linux_name }}/app", "mode": 493}, {"linux_name": "app"})
    assert rendered == {"dest": "/home/app/app", "mode": 493}


def test_render_value_leaves_plain_shell_untouched() -> None:
    assert render_value("echo $HOME ${PATH}", {}) == "echo $HOME ${PATH}"


def test_render_value_is_strict() -> None:
    with pytest.raises(ConfigError, match="undefined"):
        render_value("{{ missing }}", {})


def test_invalid_template_is_config_error() -> None:
    with pytest.raises(ConfigError, match="invalid template"):
        referenced_names("{{ broken")


def test_defaulted_names_are_not_required() -> None:
    data = {"command": "npm start --port {{ port | default(8080) }} --host {{ bind_host }}"}
    assert referenced_names(data) == {"bind_host"}
    assert render_value(data["command"], {"bind_host": "0.0.0.0"}) == "npm start --port 8080 --host 0.0.0.0"


def test_defaulted_name_used_elsewhere_still_fails_to_render() -> None:
    with pytest.raises(ConfigError, match="undefined"):
        render_value("{{ port | default(80) }} {{ port + 1 }}", {})
