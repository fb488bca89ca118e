import subprocess
from unittest.mock import MagicMock, patch

import pytest
import urllib3

from kubestrap.cli import confirm, Prompt
from kubestrap.config import ConfigError
from kubestrap.kubestrap import (Kubestrap, exit_on_error, connect,
                                 harbor_api)


def test_help():
    """
    It should be possible to call kubestrap --help without a configuration
    file or a cluster.
    """
    proc = subprocess.Popen(['kubestrap', '--help'], stdout=subprocess.PIPE,
                            stderr=subprocess.PIPE)
    stdout, _ = proc.communicate()
    output = stdout.decode("utf-8").strip()
    assert proc.returncode == 0
    assert "usage: kubestrap" in output


def test_exit_on_expected_error():
    with pytest.raises(SystemExit) as err:
        with exit_on_error():
            raise ConfigError("required variable 'harbor.url' is not set")
    assert err.value.code == 1


def test_exit_on_connection_error():
    with pytest.raises(SystemExit):
        with exit_on_error():
            raise urllib3.exceptions.MaxRetryError(None, "/api")


def test_unexpected_errors_propagate():
    with pytest.raises(KeyError):
        with exit_on_error():
            raise KeyError("bug")


def test_connect_exits_when_api_is_down(config):
    with patch("kubestrap.kubestrap.K8S") as k8s:
        k8s.return_value.is_ready = False
        with pytest.raises(SystemExit):
            connect(config)

        k8s.return_value.is_ready = True
        assert connect(config) is k8s.return_value


def test_harbor_api(config):
    config['harbor']['url'] = "harbor.example.org"
    config['harbor']['verify-tls'] = "no"
    prompt = MagicMock()
    prompt.required.return_value = "pw"

    with patch("kubestrap.kubestrap.HarborAPI") as api:
        harbor_api(config, prompt)

    api.assert_called_once_with("https://harbor.example.org", "admin", "pw",
                                verify=False)
    assert prompt.required.call_args[1] == {"secret": True}


def test_harbor_api_needs_project(config):
    config['harbor']['project'] = ""
    with pytest.raises(ConfigError):
        harbor_api(config, MagicMock())


def test_confirm():
    assert confirm(True)
    with patch("builtins.input", return_value="y"):
        assert confirm(False)
    with patch("builtins.input", return_value=""):
        assert not confirm(False)
        assert confirm(False, default=True)


def test_prompt():
    answers = iter(["", "  value  "])
    prompt = Prompt(ask=lambda q: next(answers), ask_secret=lambda q: "s3cr3t")

    assert prompt.required("Enter the App ID") == "value"
    assert prompt.value("Enter the token", secret=True) == "s3cr3t"
    assert prompt.required("Enter the App ID", current="42") == "42"


def test_prompt_default():
    prompt = Prompt(ask=lambda q: "")
    assert prompt.value("Namespace", default="default") == "default"
    assert not prompt.confirm("Continue?")
    assert prompt.confirm("Continue?", default=True)


def test_prompt_hides_default_of_secrets():
    questions = []

    def ask_secret(question):
        questions.append(question)
        return ""

    prompt = Prompt(ask_secret=ask_secret)
    assert prompt.value("Token", default="hunter2", secret=True) == "hunter2"
    assert "hunter2" not in questions[0]


@pytest.mark.parametrize("argv", [
    ["prepare", "c.yml"],
    ["init", "c.yml"],
    ["restart", "c.yml"],
    ["issuer", "c.yml"],
    ["storage", "c.yml"],
    ["harbor", "c.yml"],
    ["destroy", "c.yml", "-f"],
    ["configure", "c.yml"],
    ["app", "c.yml"],
    ["arc", "c.yml"],
    ["cleanup", "c.yml", "--force"],
    ["doctor", "c.yml"],
])
def test_parse_every_command(argv):
    args = Kubestrap().parser.parse_args(argv)
    assert args.cmd == argv[0]
    assert args.config == "c.yml"


def test_parse_prepare_options():
    parser = Kubestrap().parser
    args = parser.parse_args(["prepare", "c.yml", "-i", "-n", "-u"])
    assert args.iptables_keep and args.no_fail2ban and args.upgrades_off

    args = parser.parse_args(["-v", "2", "prepare", "c.yml"])
    assert args.verbosity == "2"
    assert not (args.iptables_keep or args.no_fail2ban or args.upgrades_off)


def test_run_dispatches_to_command():
    with patch("kubestrap.kubestrap.ServerPreparer") as preparer, \
            patch("kubestrap.kubestrap.load_config") as load:
        Kubestrap().run(["-v", "4", "prepare", "c.yml", "-n"])

    load.assert_called_once_with("c.yml")
    preparer.return_value.prepare.assert_called_once_with(
        iptables=True, fail2ban=False, upgrades=True)


def test_configure_deletes_other_projects_unattended(config):
    config['harbor']['delete-other-projects'] = "yes"
    with patch("kubestrap.kubestrap.load_config", return_value=config), \
            patch("kubestrap.kubestrap.harbor_api") as api, \
            patch("kubestrap.kubestrap.ProjectConfigurator") as configurator, \
            patch("builtins.input", side_effect=AssertionError("asked")):
        Kubestrap().configure("c.yml")

    assert configurator.call_args[0][0] is api.return_value
    assert configurator.call_args[1]["delete_others"] is True
    configurator.return_value.run.assert_called_once_with()
