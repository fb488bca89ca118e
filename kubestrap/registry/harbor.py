"""
A small client for the Harbor REST API v2.0
"""
import requests
import urllib3

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

API_PREFIX = "/api/v2.0"
ANY = "**"


class HarborError(RuntimeError):
    """Harbor answered with an unexpected status or could not be reached"""

    def __init__(self, status, body, what="request"):
        self.status = status
        self.body = body
        super().__init__(f"{what} failed. HTTP Status: {status}. "
                         f"Response: {body}")


def selector(pattern):
    """a doublestar selector as Harbor uses for tags and repositories"""
    return {"kind": "doublestar", "decoration": "matches", "pattern": pattern}


def project_payload(name):
    """A private project which scans on push and blocks vulnerable pulls"""
    return {
        "project_name": name,
        "public": False,
        "metadata": {
            "auto_scan": "true",
            "prevent_vul": "true",
            "severity": "high",
        },
    }


def robot_payload(name, project):
    """A system robot which never expires, allowed to push and pull"""
    return {
        "name": name,
        "duration": -1,
        "level": "system",
        "disable": False,
        "permissions": [{
            "kind": "project",
            "namespace": project,
            "access": [
                {"resource": "repository", "action": "push"},
                {"resource": "repository", "action": "pull"},
            ],
        }],
    }


def retention_payload(project_id, keep=10, cron="0 0 3 * * *"):
    """Keep the latest ``keep`` pushed artifacts of every repository"""
    return {
        "algorithm": "or",
        "rules": [{
            "disabled": False,
            "action": "retain",
            "template": "latestPushedK",
            "params": {"latestPushedK": keep},
            "tag_selectors": [selector(ANY)],
            "scope_selectors": {"repository": [selector(ANY)]},
        }],
        "trigger": {"kind": "Schedule", "settings": {"cron": cron}},
        "scope": {"level": "project", "ref": project_id},
    }


def immutable_rule_payload(pattern):
    return {
        "disabled": False,
        "action": "IMMUTABLE",
        "template": "immutable_template",
        "tag_selectors": [selector(pattern)],
        "scope_selectors": {"repository": [selector(ANY)]},
    }


def gc_schedule_payload(cron="0 0 4 * * 2"):
    return {"schedule": {"type": "Weekly", "cron": cron}}


def rule_matches(rule, pattern):
    """Check if rule is an enabled immutability rule for pattern.

    Only a rule with exactly one tag selector for pattern and exactly one
    repository selector for ``**`` counts.
    """
    tags = rule.get("tag_selectors") or []
    repos = (rule.get("scope_selectors") or {}).get("repository") or []
    return (rule.get("disabled") is False and
            rule.get("action") == "IMMUTABLE" and
            rule.get("template") == "immutable_template" and
            tags == [selector(pattern)] and
            repos == [selector(ANY)])


class HarborAPI:
    """Talk to Harbor as an administrator.

    Every call returns the HTTP status and the decoded body, so the caller
    decides which status codes are fine. Only transport errors raise.

    Args:
        url (str): the Harbor URL, e.g. ``https://harbor.example.org``.
        username (str): the admin user.
        password (str): the admin password.
        session (requests.Session): used for all requests, a new one
            if not given.
        verify (bool): verify the TLS certificate.
        timeout (int): seconds per request.
    """

    def __init__(self, url, username, password, session=None,  # pylint: disable=too-many-arguments
                 verify=True, timeout=30):
        self.base_url = url.rstrip("/")
        self.api_base = self.base_url + API_PREFIX
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.verify = verify
        self.timeout = timeout
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def request(self, method, path, payload=None, params=None):
        """Send a request to the API.

        Returns:
            tuple of status code and body. The body is the decoded JSON or
            the text if it isn't JSON.

        Raises:
            HarborError if Harbor can't be reached.
        """
        url = self.api_base + path
        LOGGER.debug("%s %s", method, url)
        try:
            resp = self.session.request(method, url, json=payload,
                                        params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise HarborError(None, str(exc), f"{method} {path}")

        try:
            body = resp.json() if resp.content else None
        except ValueError:
            body = resp.text
        LOGGER.debug("HTTP %s: %s", resp.status_code, body)
        return resp.status_code, body

    def system_info(self):
        return self.request("GET", "/systeminfo")

    def list_projects(self, page_size=100, name=None):
        params = {"page_size": page_size}
        if name:
            params["name"] = name
        return self.request("GET", "/projects", params=params)

    def create_project(self, name):
        return self.request("POST", "/projects", project_payload(name))

    def delete_project(self, project_id):
        return self.request("DELETE", f"/projects/{project_id}")

    def create_robot(self, name, project):
        return self.request("POST", "/robots", robot_payload(name, project))

    def create_retention(self, project_id, keep=10, cron="0 0 3 * * *"):
        return self.request("POST", "/retentions",
                            retention_payload(project_id, keep, cron))

    def list_immutable_rules(self, project_id):
        return self.request("GET", f"/projects/{project_id}/immutabletagrules")

    def create_immutable_rule(self, project_id, pattern):
        return self.request("POST", f"/projects/{project_id}/immutabletagrules",
                            immutable_rule_payload(pattern))

    def update_gc_schedule(self, cron="0 0 4 * * 2"):
        return self.request("PUT", "/system/gc/schedule",
                            gc_schedule_payload(cron))

    def create_gc_schedule(self, cron="0 0 4 * * 2"):
        return self.request("POST", "/system/gc/schedule",
                            gc_schedule_payload(cron))
