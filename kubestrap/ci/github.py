"""
GitHub REST API and ``gh`` helpers for the runner setup
"""
import requests

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

API_URL = "https://api.github.com"
NEW_APP_URL = "https://github.com/settings/apps/new"


class GitHubError(RuntimeError):
    """The GitHub API returned an error or could not be reached"""


def _headers(token):
    return {"Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json"}


def verify_pat_scopes(token, required="read:packages", session=None):
    """Check that a personal access token is valid and carries a scope.

    Returns:
        True if GitHub accepts the token and lists the scope in
        ``X-OAuth-Scopes``.
    """
    session = session or requests.Session()
    LOGGER.info("Verifying that the provided GitHub PAT has the '%s' scope...",
                required)
    try:
        resp = session.get(f"{API_URL}/user", headers=_headers(token),
                           timeout=30)
    except requests.RequestException as exc:
        LOGGER.warning("Could not reach GitHub: %s", exc)
        return False

    if resp.status_code != 200:
        LOGGER.warning("The provided PAT is not valid or could not be used to "
                       "authenticate. Please provide a valid token.")
        return False

    scopes = [s.strip() for s in
              resp.headers.get("X-OAuth-Scopes", "").split(",") if s.strip()]
    if required in scopes:
        LOGGER.success("PAT has the required '%s' scope.", required)
        return True

    LOGGER.warning("The provided PAT is missing the required '%s' scope.",
                   required)
    LOGGER.warning("Current scopes found: %s", ", ".join(scopes) or "None")
    LOGGER.warning("Please generate a new PAT with the '%s' scope from "
                   "https://github.com/settings/tokens", required)
    return False


def list_runners(repository, token, session=None):
    """Return the self-hosted runners GitHub knows for repository.

    Raises:
        GitHubError if the request fails.
    """
    session = session or requests.Session()
    url = f"{API_URL}/repos/{repository}/actions/runners"
    LOGGER.info("Querying GitHub API endpoint: %s", url)
    try:
        resp = session.get(url, headers=_headers(token), timeout=30)
    except requests.RequestException as exc:
        raise GitHubError(f"failed to query GitHub API: {exc}")

    if resp.status_code != 200:
        raise GitHubError(f"failed to query GitHub API, HTTP "
                          f"{resp.status_code}: {resp.text}")
    return resp.json()


def runner_summary(runner):
    """The interesting fields of a runner from the API"""
    return {"id": runner.get("id"),
            "name": runner.get("name"),
            "os": runner.get("os"),
            "status": runner.get("status"),
            "busy": runner.get("busy"),
            "labels": [label.get("name") for label in
                       runner.get("labels", [])]}


def set_secret(runner, name, value, repository):
    """Set a repository secret with ``gh``.

    The value is passed on stdin, so it doesn't show up in the process list.
    """
    runner(["gh", "secret", "set", name, "--repo", repository], input=value)
    LOGGER.info("Secret %s has been set.", name)


def app_instructions(repository, redirect_url):
    """The steps to create the runner GitHub App in the web UI"""
    return [
        f"Open {NEW_APP_URL} in your web browser.",
        f"GitHub App name: ARC Runner for {repository}",
        f"Homepage URL: https://github.com/{repository}",
        f"Callback URL: {redirect_url}",
        "Expire user authorization tokens: leave UNCHECKED.",
        "Request user authorization (OAuth) during installation: leave "
        "UNCHECKED, ARC authenticates with a private key.",
        "Enable Device Flow: leave UNCHECKED.",
        "Post installation Setup URL: leave BLANK.",
        "Post installation Redirect on update: leave UNCHECKED.",
        "Webhook: Active CHECKED. The Webhook URL can stay BLANK for now. "
        "Click 'Generate a new secret' and save the secret, you will be "
        "asked for it.",
        "Repository permissions: Administration, Contents and Pull requests "
        "'Read-only'. Self-hosted runners 'Read and write'.",
        "Subscribe to events: Workflow job.",
        f"Where can this GitHub App be installed: 'Only on this account' "
        f"(the owner of {repository}).",
        "Click 'Create GitHub App'.",
        "In 'Private keys' click 'Generate a private key' and save the "
        ".pem file.",
        "Note the 'App ID' at the top of the settings page.",
        f"Click 'Install App', choose 'Only select repositories' and select "
        f"'{repository}'.",
    ]


def controller_secret_command(kubectl, secret, namespace, app_id,  # pylint: disable=too-many-arguments
                              webhook_secret, key_path):
    """The kubectl command which creates the controller secret"""
    return (f'{kubectl} create secret generic "{secret}" \\\n'
            f'  --namespace="{namespace}" \\\n'
            f'  --from-literal=github_app_id="{app_id}" \\\n'
            f'  --from-literal=github_webhook_secret="{webhook_secret}" \\\n'
            f'  --from-file=github_private_key="{key_path}"')
