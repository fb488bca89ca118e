import json
from unittest.mock import MagicMock

import yaml

from kubestrap.deploy.helm import Helm

from .conftest import completed

REPOS = [{"name": "jetstack", "url": "https://charts.jetstack.io/"},
         {"name": "goharbor", "url": "https://helm.goharbor.io"}]


def helm_with(*results):
    runner = MagicMock(side_effect=list(results))
    return Helm("microk8s helm3", runner=runner), runner


def test_command_prefix():
    helm, runner = helm_with(completed("v3.14.0\n"))
    assert helm.version() == "v3.14.0"
    assert runner.call_args[0][0] == ["microk8s", "helm3", "version",
                                      "--short"]


def test_repos_empty_when_none_configured():
    helm, _ = helm_with(completed(returncode=1, stderr="no repositories"))
    assert helm.repos() == []


def test_repo_listed_by_name_or_url():
    runner = MagicMock(return_value=completed(json.dumps(REPOS)))
    helm = Helm(runner=runner)

    assert helm.repo_listed(url="https://charts.jetstack.io")
    assert helm.repo_listed(name="goharbor")
    assert not helm.repo_listed(name="jetstack-mirror")
    assert not helm.repo_listed(url="https://example.org/charts")


def test_ensure_repo_adds_missing():
    helm, runner = helm_with(completed(json.dumps(REPOS)), completed())

    assert helm.ensure_repo("actions-runner-controller",
                            "https://actions-runner-controller.github.io/"
                            "actions-runner-controller", match="name")
    assert runner.call_args[0][0][2:5] == ["repo", "add",
                                           "actions-runner-controller"]


def test_ensure_repo_skips_existing():
    helm, runner = helm_with(completed(json.dumps(REPOS)))
    assert not helm.ensure_repo("jetstack", "https://charts.jetstack.io")
    assert runner.call_count == 1


def test_repo_add_force_update():
    helm, runner = helm_with(completed())
    helm.repo_add("arc", "https://example.org", force_update=True)
    assert runner.call_args[0][0][-1] == "--force-update"


def test_release_exists():
    helm, _ = helm_with(completed(), completed(returncode=1))
    assert helm.release_exists("harbor", "harbor")
    assert not helm.release_exists("harbor", "harbor")


def test_upgrade_install_passes_values_on_stdin():
    helm, runner = helm_with(completed())
    values = {"expose": {"type": "ingress"}, "harborAdminPassword": "pw"}

    helm.upgrade_install("harbor", "goharbor/harbor", "harbor", values=values,
                         atomic=True, timeout="30m")

    args = runner.call_args[0][0]
    assert args[2:6] == ["upgrade", "--install", "harbor", "goharbor/harbor"]
    assert "--create-namespace" in args
    assert "--atomic" in args
    assert args[args.index("--timeout") + 1] == "30m"
    assert args[-2:] == ["--values", "-"]
    # the password never shows up on the command line
    assert "pw" not in " ".join(args)
    assert yaml.safe_load(runner.call_args[1]["input"]) == values


def test_install_with_sets():
    helm, runner = helm_with(completed())

    helm.install("arc", "arc/actions-runner-controller", "arc",
                 sets={"authSecret.name": "controller-manager"},
                 create_namespace=False)

    args = runner.call_args[0][0]
    assert args[2] == "install"
    assert "--create-namespace" not in args
    assert args[args.index("--set") + 1] == "authSecret.name=controller-manager"
    assert runner.call_args[1]["input"] is None


def test_uninstall_failure_is_a_warning():
    helm, runner = helm_with(completed(returncode=1, stderr="not found"))
    assert not helm.uninstall("arc", "arc", wait=True)
    assert runner.call_args[0][0][-1] == "--wait"


def test_repo_remove():
    helm, _ = helm_with(completed(), completed(returncode=1))
    assert helm.repo_remove("arc")
    assert not helm.repo_remove("arc")
