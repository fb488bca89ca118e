import os
from unittest.mock import MagicMock, call, patch

import pytest
import requests
import yaml

from kubestrap import GHCR_PULL_SECRET, HARBOR_PULL_SECRET
from kubestrap.ci import arc
from kubestrap.config import ConfigError, load_config

from .conftest import completed


def answer(question, current=None, secret=False):
    return current or "typed"


@pytest.fixture
def prompt():
    prompt = MagicMock()
    prompt.required.side_effect = answer
    prompt.value.return_value = ""
    prompt.confirm.return_value = True
    return prompt


@pytest.fixture
def helm():
    helm = MagicMock()
    helm.release_exists.return_value = False
    return helm


@pytest.fixture
def configured(config, tmp_path):
    app = config['arc']['github-app']
    app['id'] = '"12345"'
    app['installation-id'] = "678"
    key = tmp_path / "app.pem"
    key.write_text("PEM")
    app['private-key-path'] = str(key)
    config['arc']['github-user'] = "octocat"
    config['arc']['github-token'] = "ghp_x"
    config['arc']['harbor'].update(url="harbor.example.org",
                                   username="robot$builder", password="pw")
    config['arc']['workflow']['output-dir'] = str(tmp_path / "workflow")
    return config


@pytest.fixture
def setup(configured, k8s, helm, runner, prompt):
    k8s.secret_exists.return_value = False
    return arc.ArcSetup(configured, k8s, helm, runner, prompt,
                        session=MagicMock(), sleep=lambda s: None)


def test_runner_deployment_manifest(config):
    manifest = arc.runner_deployment_manifest(config)

    assert manifest["apiVersion"] == "actions.summerwind.dev/v1alpha1"
    assert manifest["kind"] == "RunnerDeployment"
    assert manifest["metadata"] == {"name": "hello-world-runner-deployment",
                                    "namespace": "default"}
    assert manifest["spec"]["replicas"] == 1
    assert manifest["spec"]["template"]["spec"]["repository"] == \
        "octo/hello-world"


def test_render_workflow(config):
    document = yaml.safe_load(arc.render_workflow(config))

    assert document["name"] == "Build and Deploy"
    assert document["env"]["IMAGE"] == \
        "${{ secrets.HARBOR_URL }}/your-harbor-project/your-harbor-image"
    job = document["jobs"]["build-and-deploy"]
    assert job["runs-on"] == ["self-hosted"]
    login = job["steps"][1]
    assert login["with"]["password"] == "${{ secrets.HARBOR_PASSWORD }}"
    assert "kubectl apply -f k8s/deployment.yaml" in job["steps"][-1]["run"]


def test_tester_pod_manifest():
    pod = arc.tester_pod_manifest("webhook-tester-1", "arc")
    assert pod["metadata"] == {"name": "webhook-tester-1", "namespace": "arc"}
    assert pod["spec"]["containers"][0]["image"] == arc.TESTER_IMAGE


def test_app_guide(config, tmp_path, prompt):
    key = tmp_path / "key.pem"
    key.write_text("PEM")
    prompt.required.side_effect = ["123", "hook"]
    prompt.value.side_effect = ["", str(tmp_path), str(tmp_path / "nope"),
                                str(key)]
    lines = []

    cmd = arc.app_guide(config, prompt, out=lines.append)

    assert '--from-literal=github_app_id="123"' in cmd
    assert '--from-literal=github_webhook_secret="hook"' in cmd
    assert f'--from-file=github_private_key="{key}"' in cmd
    assert any(line.startswith(" 1. Open https://github.com/settings/apps/new")
               for line in lines)
    questions = [c[0][0] for c in prompt.value.call_args_list]
    assert questions[1].startswith("Private key file path cannot be empty")
    assert "is a directory" in questions[2]
    assert questions[3].startswith("File not found")


def test_app_guide_needs_repository(prompt):
    with pytest.raises(ConfigError):
        arc.app_guide(load_config(None, environ={}), prompt, out=print)


def test_create_controller_secret(setup, k8s):
    with patch("kubestrap.ci.arc.read_key", return_value=b"PEM"):
        assert setup.create_controller_secret()

    k8s.create_secret.assert_called_once_with(
        "controller-manager", "actions-runner-system", {
            "github_app_id": "12345",
            "github_app_installation_id": "678",
            "github_app_private_key": "PEM",
        })


def test_create_controller_secret_exists(setup, k8s):
    k8s.secret_exists.return_value = True
    assert not setup.create_controller_secret()
    k8s.create_secret.assert_not_called()


def test_create_controller_secret_bad_key(setup, configured):
    with patch("kubestrap.ci.arc.read_key",
               side_effect=ValueError("not a key")):
        with pytest.raises(ConfigError):
            setup.create_controller_secret()

    configured['arc']['github-app']['private-key-path'] = "/does/not/exist"
    with pytest.raises(ConfigError):
        setup.create_controller_secret()


def test_create_controller_secret_empty(setup, configured):
    configured['arc']['github-app']['id'] = ""
    with pytest.raises(ConfigError):
        setup.create_controller_secret()


def test_github_credentials_asks_again(setup, configured, prompt):
    configured['arc']['github-token'] = ""
    prompt.value.side_effect = ["bad", "good"]
    with patch("kubestrap.ci.github.verify_pat_scopes",
               side_effect=[False, True]):
        assert setup.github_credentials() == ("octocat", "good")


def test_github_credentials_configured_token_is_bad(setup):
    with patch("kubestrap.ci.github.verify_pat_scopes", return_value=False):
        with pytest.raises(ConfigError):
            setup.github_credentials()


def test_setup_prerequisites(setup, k8s):
    with patch("kubestrap.ci.arc.read_key", return_value=b"PEM"), \
            patch("kubestrap.ci.github.verify_pat_scopes", return_value=True):
        setup.setup_prerequisites()

    assert [c[0][0] for c in k8s.ensure_namespace.call_args_list] == \
        ["actions-runner-system", "default"]
    secrets = [c[0][0].metadata for c in k8s.apply_secret.call_args_list]
    assert (secrets[0].name, secrets[0].namespace) == \
        (GHCR_PULL_SECRET, "actions-runner-system")
    assert (secrets[1].name, secrets[1].namespace) == \
        (HARBOR_PULL_SECRET, "default")
    k8s.add_image_pull_secret.assert_any_call(HARBOR_PULL_SECRET, "default")
    k8s.add_image_pull_secret.assert_any_call(GHCR_PULL_SECRET,
                                              "actions-runner-system")
    k8s.copy_secret.assert_called_once_with(
        GHCR_PULL_SECRET, "actions-runner-system", "default")
    k8s.add_image_pull_secret.assert_any_call(GHCR_PULL_SECRET, "default")


def test_setup_prerequisites_creates_runner_namespace(setup, configured, k8s):
    configured['arc']['runner']['namespace'] = "ci-runners"
    with patch("kubestrap.ci.arc.read_key", return_value=b"PEM"), \
            patch("kubestrap.ci.github.verify_pat_scopes", return_value=True):
        setup.setup_prerequisites()

    calls = k8s.mock_calls
    first_secret = [c[0] for c in calls].index("apply_secret")
    assert calls.index(call.ensure_namespace("ci-runners")) < first_secret
    harbor_secret = k8s.apply_secret.call_args_list[1][0][0].metadata
    assert harbor_secret.namespace == "ci-runners"
    k8s.copy_secret.assert_called_once_with(
        GHCR_PULL_SECRET, "actions-runner-system", "ci-runners")


def test_setup_prerequisites_harbor_declined(setup, k8s, prompt):
    prompt.confirm.return_value = False
    with patch("kubestrap.ci.arc.read_key", return_value=b"PEM"), \
            patch("kubestrap.ci.github.verify_pat_scopes", return_value=True):
        setup.setup_prerequisites()

    assert k8s.apply_secret.call_count == 1
    k8s.add_image_pull_secret.assert_not_called()


def test_install_arc_skips_existing_release(setup, helm):
    helm.release_exists.return_value = True
    assert not setup.install_arc()
    helm.install.assert_not_called()


def test_install_arc(setup, helm, k8s):
    with patch.object(setup, "ensure_webhook_healthy") as healthy:
        assert setup.install_arc()

    helm.repo_add.assert_called_once_with(
        "actions-runner-controller",
        "https://actions-runner-controller.github.io/actions-runner-controller",
        force_update=True)
    args, kwargs = helm.install.call_args
    assert args == ("actions-runner-controller",
                    "actions-runner-controller/actions-runner-controller",
                    "actions-runner-system")
    assert kwargs["sets"] == {
        "image.imagePullSecrets[0].name": GHCR_PULL_SECRET,
        "authSecret.name": "controller-manager"}
    k8s.wait_for_deployment.assert_called_once_with(
        "actions-runner-system", "actions-runner-controller", timeout=300)
    healthy.assert_called_once()


def test_webhook_healthy(setup, k8s):
    with patch("kubestrap.ci.arc.wait_for") as wait:
        assert setup.ensure_webhook_healthy()

    assert wait.call_count == 2
    pod = k8s.create_pod.call_args[0][0]["metadata"]["name"]
    assert pod.startswith("webhook-tester-")
    k8s.delete_pod.assert_called_once_with(pod, "actions-runner-system")


def test_webhook_fixed_by_network_repair(setup, k8s):
    setup.microk8s = MagicMock()
    with patch("kubestrap.ci.arc.wait_for",
               side_effect=[True, TimeoutError("down"), True, True]):
        assert setup.ensure_webhook_healthy()

    setup.microk8s.fix_networking.assert_called_once()
    assert k8s.delete_pod.call_count == 2


def test_webhook_repair_declined(setup, k8s, prompt):
    setup.microk8s = MagicMock()
    prompt.confirm.return_value = False
    with patch("kubestrap.ci.arc.wait_for",
               side_effect=[True, TimeoutError("down")]):
        with pytest.raises(TimeoutError):
            setup.ensure_webhook_healthy()

    setup.microk8s.fix_networking.assert_not_called()
    k8s.delete_pod.assert_called_once()


def test_webhook_listening(setup, k8s):
    k8s.pod_ip.return_value = "10.1.0.5"
    assert setup.webhook_listening()
    setup.session.get.assert_called_once_with(
        "https://10.1.0.5:9443/healthz", verify=False, timeout=5)

    setup.session.get.side_effect = requests.ConnectionError("refused")
    assert not setup.webhook_listening()

    k8s.pod_ip.return_value = None
    assert not setup.webhook_listening()


def test_deploy_runner(setup, k8s):
    k8s.pod_ip.return_value = "10.1.0.5"

    manifest = setup.deploy_runner()

    k8s.certificate_ready.assert_called_with(
        "actions-runner-controller-serving-cert", "actions-runner-system")
    k8s.endpoints_ready.assert_called_with(
        "actions-runner-controller-webhook", "actions-runner-system")
    k8s.ensure_namespace.assert_called_once_with("default")
    k8s.apply_custom_object.assert_called_once_with(
        "actions.summerwind.dev", "v1alpha1", "runnerdeployments", manifest)


def test_ensure_gh_installed(setup, runner):
    with patch("kubestrap.util.shell.missing_tools", return_value=[]):
        assert setup.ensure_gh()
    runner.assert_not_called()


def test_ensure_gh_declined(setup, runner, prompt):
    prompt.confirm.return_value = False
    with patch("kubestrap.util.shell.missing_tools", return_value=["gh"]):
        assert not setup.ensure_gh()
    runner.assert_not_called()


def test_ensure_gh_installs(setup, runner):
    with patch("kubestrap.util.shell.missing_tools", return_value=["gh"]), \
            patch("kubestrap.util.shell.check_deps") as check:
        assert setup.ensure_gh()

    runner.assert_any_call(["apt-get", "install", "-y", "gh"], sudo=True)
    check.assert_called_once_with("gh")


def test_set_github_secrets(setup, runner):
    runner.return_value = completed(stdout="apiVersion: v1\n")

    setup.set_github_secrets()

    secrets = {c[0][0][3]: c[1]["input"] for c in runner.call_args_list
               if c[0][0][:3] == ["gh", "secret", "set"]}
    assert secrets == {"HARBOR_URL": "harbor.example.org",
                       "HARBOR_USERNAME": "robot$builder",
                       "HARBOR_PASSWORD": "pw",
                       "KUBE_CONFIG": "apiVersion: v1\n"}
    runner.assert_any_call(["microk8s", "kubectl", "config", "view", "--raw"])


def test_set_github_secrets_with_dockerhub(setup, configured, runner):
    configured['arc']['dockerhub'].update(configure="yes", username="me",
                                          token="dckr")
    setup.set_github_secrets()

    names = [c[0][0][3] for c in runner.call_args_list
             if c[0][0][:3] == ["gh", "secret", "set"]]
    assert "DOCKERHUB_USERNAME" in names
    assert "DOCKERHUB_TOKEN" in names


def test_configure_github_extras(setup, configured, prompt):
    prompt.confirm.return_value = False
    with patch.object(setup, "ensure_gh", return_value=True):
        path = setup.configure_github_extras()

    assert path == os.path.join(configured['arc']['workflow']['output-dir'],
                                "deploy.yaml")
    with open(path) as fh:
        assert yaml.safe_load(fh)["name"] == "Build and Deploy"


def test_configure_github_extras_without_gh(setup):
    with patch.object(setup, "ensure_gh", return_value=False), \
            patch.object(setup, "write_workflow") as write:
        assert setup.configure_github_extras() is None
    write.assert_not_called()


def test_cleanup(setup, configured, k8s, helm):
    helm.release_exists.return_value = True
    setup.write_workflow()

    setup.cleanup()

    k8s.delete_custom_object.assert_called_once_with(
        "actions.summerwind.dev", "v1alpha1", "runnerdeployments",
        "hello-world-runner-deployment", "default")
    helm.uninstall.assert_called_once_with(
        "actions-runner-controller", "actions-runner-system", wait=True)
    helm.repo_remove.assert_called_once_with("actions-runner-controller")
    k8s.delete_secret.assert_any_call("controller-manager",
                                      "actions-runner-system")
    k8s.delete_secret.assert_any_call(GHCR_PULL_SECRET,
                                      "actions-runner-system")
    # the default namespace is never deleted
    k8s.delete_namespace.assert_called_once_with("actions-runner-system")
    assert not os.path.exists(configured['arc']['workflow']['output-dir'])
