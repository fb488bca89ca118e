from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from kubestrap.ci import github
from kubestrap.ci.doctor import ArcDoctor, Finding
from kubestrap.ssl import fingerprint

from .conftest import completed


def pod(name):
    result = MagicMock()
    result.metadata.name = name
    return result


@pytest.fixture
def healthy(config, k8s, tmp_path):
    key = tmp_path / "app.pem"
    key.write_text("PEM")
    app = config['arc']['github-app']
    app.update({'id': 123, 'installation-id': '456',
                'private-key-path': str(key)})
    config['arc']['github-token'] = "ghp_x"

    k8s.list_nodes.return_value = [("node-1", True)]
    k8s.pods_ready.return_value = True
    k8s.certificate_ready.return_value = True
    k8s.secret_exists.return_value = True
    k8s.first_pod.side_effect = [pod("controller-0"), pod("runner-0")]
    k8s.pod_logs.return_value = "log line"
    k8s.read_secret.return_value = {"github_app_id": "123",
                                    "github_app_installation_id": "456",
                                    "github_app_private_key": "PEM"}
    return config


def doctor(config, k8s):
    return ArcDoctor(config, k8s,
                     runner=MagicMock(return_value=completed("output")),
                     session=MagicMock())


def test_all_checks_pass(healthy, k8s):
    runners = {"total_count": 1, "runners": [
        {"id": 1, "name": "runner-0", "status": "online", "labels": []}]}
    with patch("kubestrap.ci.github.list_runners", return_value=runners):
        findings = doctor(healthy, k8s).run_checks()

    assert all(f.ok for f in findings)
    assert {f.layer for f in findings} == {1, 2, 3, 4, 5}
    k8s.first_pod.assert_any_call(
        "default", "runner-deployment-name=hello-world-runner-deployment")


def test_mismatching_credentials(healthy, k8s):
    k8s.read_secret.return_value = {"github_app_id": "999",
                                    "github_app_installation_id": "456",
                                    "github_app_private_key": "OTHER"}
    doc = doctor(healthy, k8s)

    doc.compare_credentials()

    assert [f.ok for f in doc.findings] == [False, True, False]
    assert doc.findings[2].detail == (f"local {fingerprint('PEM')}, "
                                      f"secret {fingerprint('OTHER')}")


def test_missing_controller_secret(healthy, k8s):
    k8s.read_secret.return_value = None
    doc = doctor(healthy, k8s)
    doc.compare_credentials()
    assert doc.findings == [Finding(3, "controller secret exists", False,
                                    "controller-manager")]


def test_unreadable_private_key(healthy, k8s):
    healthy['arc']['github-app']['private-key-path'] = "/does/not/exist"
    doc = doctor(healthy, k8s)
    doc.compare_credentials()
    assert not doc.findings[-1].ok
    assert doc.findings[-1].detail.startswith("can't read local key")


def test_missing_pods(healthy, k8s):
    k8s.first_pod.side_effect = None
    k8s.first_pod.return_value = None
    doc = doctor(healthy, k8s)

    doc.controller_health()
    doc.runner_health()

    failed = [f.name for f in doc.findings if not f.ok]
    assert failed == ["ARC controller pod found", "runner pod found"]
    k8s.pod_logs.assert_not_called()


def test_github_without_token(healthy, k8s):
    healthy['arc']['github-token'] = ""
    doc = doctor(healthy, k8s)
    with patch("kubestrap.ci.github.list_runners") as list_runners:
        doc.github_status()
    list_runners.assert_not_called()
    assert doc.findings == []


def test_github_error(healthy, k8s):
    doc = doctor(healthy, k8s)
    with patch("kubestrap.ci.github.list_runners",
               side_effect=github.GitHubError("HTTP 401")):
        doc.github_status()
    assert not doc.findings[0].ok
    assert doc.findings[0].layer == 5


def test_api_errors_become_findings(healthy, k8s):
    k8s.list_nodes.side_effect = ApiException(status=403, reason="Forbidden")
    with patch("kubestrap.ci.github.list_runners",
               return_value={"total_count": 0}):
        findings = doctor(healthy, k8s).run_checks()

    assert findings[0].layer == 0
    assert findings[0].name == "cluster_health"
    assert not findings[0].ok
    # the other layers still ran
    assert any(f.layer == 5 for f in findings)


def test_show_survives_failing_command(healthy, k8s):
    doc = doctor(healthy, k8s)
    doc.run = MagicMock(return_value=completed("", returncode=1,
                                               stderr="not found"))
    doc.show("kubectl get nodes", ["get", "nodes"])
    doc.run.assert_called_once_with(["microk8s", "kubectl", "get", "nodes"],
                                    check=False)
