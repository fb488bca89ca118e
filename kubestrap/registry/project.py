"""
Configure a Harbor project for CI/CD.

:class:`ProjectConfigurator` creates a private project with vulnerability
scanning, a robot account allowed to push and pull, a retention policy,
immutability rules for release tags and a weekly garbage collection.

Every step checks what is already there first, so running it again only
fills in what is missing.
"""
from collections import namedtuple

from kubestrap.registry.harbor import HarborError, rule_matches
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

ProjectResult = namedtuple("ProjectResult", ["project_id", "robot_name",
                                             "robot_secret",
                                             "deleted_projects"])


def _error_message(body):
    """The first error message of a Harbor error response"""
    try:
        return body["errors"][0]["message"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def find_project(projects, name):
    """Pick the project named name from a listing.

    If no name matches exactly, the first project is used.

    Returns:
        tuple of project id and retention id, both may be None.
    """
    if not projects:
        return None, None

    match = next((p for p in projects if p.get("name") == name), projects[0])
    retention_id = (match.get("metadata") or {}).get("retention_id")
    return match.get("project_id"), retention_id or None


class ProjectConfigurator:  # pylint: disable=too-many-instance-attributes
    """Create and configure a project.

    Args:
        api (HarborAPI): an authenticated client.
        project (str): the project name.
        robot (str): the robot account name.
        delete_others (bool): delete every other project first.
        immutable_patterns (tuple): tag patterns which can't be overwritten.
        keep (int): the number of artifacts the retention policy keeps.
        retention_cron (str): when the retention policy runs.
        gc_cron (str): when garbage collection runs.
    """

    def __init__(self, api, project, robot, delete_others=False,  # pylint: disable=too-many-arguments
                 immutable_patterns=("prod-*", "release-*"), keep=10,
                 retention_cron="0 0 3 * * *", gc_cron="0 0 4 * * 2"):
        self.api = api
        self.project = project
        self.robot = robot
        self.delete_others = delete_others
        self.immutable_patterns = tuple(immutable_patterns)
        self.keep = keep
        self.retention_cron = retention_cron
        self.gc_cron = gc_cron

    def run(self):
        """Run all steps in order.

        Returns:
            :class:`ProjectResult`

        Raises:
            HarborError on the first step which fails.
        """
        deleted = self.delete_other_projects() if self.delete_others else []
        if not self.delete_others:
            LOGGER.info("Skipping deletion of other projects.")

        self.check_health()
        self.create_project()
        project_id, retention_id = self.lookup_project()
        robot_name, robot_secret = self.create_robot()
        self.ensure_retention(project_id, retention_id)
        self.ensure_immutable_rules(project_id)
        self.ensure_gc_schedule()

        LOGGER.success("Harbor configuration is complete!")
        return ProjectResult(project_id, robot_name, robot_secret, deleted)

    def delete_other_projects(self):
        """Delete all projects except the target project.

        Returns:
            list of the deleted project names.
        """
        LOGGER.warning("Attempting to delete other projects as requested. "
                       "This is a DESTRUCTIVE operation.")
        status, body = self.api.list_projects(page_size=100)
        if status != 200:
            raise HarborError(status, body, "listing projects for deletion")

        deleted = []
        for proj in body or []:
            name, pid = proj.get("name"), proj.get("project_id")
            if name == self.project:
                LOGGER.info("Skipping deletion of the target project '%s'.",
                            name)
                continue

            LOGGER.info("Attempting to delete project '%s' (ID: %s)...",
                        name, pid)
            status, resp = self.api.delete_project(pid)
            if status == 200:
                LOGGER.success("Project '%s' (ID: %s) deleted successfully.",
                               name, pid)
                deleted.append(name)
            elif status == 404:
                LOGGER.warning("Project '%s' (ID: %s) not found. Already "
                               "deleted?", name, pid)
            elif status == 412:
                LOGGER.warning("Failed to delete project '%s' (ID: %s). "
                               "Precondition failed, the project may not be "
                               "empty. HTTP: %s. Body: %s",
                               name, pid, status, resp)
            else:
                LOGGER.warning("Failed to delete project '%s' (ID: %s). "
                               "HTTP: %s. Body: %s", name, pid, status, resp)

        LOGGER.success("Finished attempting to delete other projects.")
        return deleted

    def check_health(self):
        LOGGER.info("Checking Harbor status at %s...", self.api.base_url)
        status, body = self.api.system_info()
        if status != 200:
            raise HarborError(status, body,
                              "connecting or authenticating to Harbor, "
                              "please check URL and credentials")
        LOGGER.success("Successfully authenticated with Harbor.")

    def create_project(self):
        """Create the project, returns False if it already exists"""
        LOGGER.info("Creating project '%s'...", self.project)
        status, body = self.api.create_project(self.project)
        if status == 201:
            LOGGER.success("Project '%s' created and configured for "
                           "vulnerability scanning.", self.project)
            return True
        if status == 409:
            LOGGER.warning("Project '%s' already exists. Skipping creation.",
                           self.project)
            return False
        raise HarborError(status, body, "creating project")

    def lookup_project(self):
        """Return the project id and the id of its retention policy"""
        LOGGER.info("Fetching project details for '%s'...", self.project)
        status, body = self.api.list_projects(name=self.project)
        if status != 200:
            raise HarborError(status, body,
                              f"fetching project info for '{self.project}'")

        project_id, retention_id = find_project(body, self.project)
        if not project_id:
            raise HarborError(status, body, "retrieving the project ID for "
                              f"'{self.project}'")
        LOGGER.success("Using Project ID: %s for project '%s'.", project_id,
                       self.project)
        return project_id, retention_id

    def create_robot(self):
        """Create the robot account.

        The secret is printed here, Harbor never shows it again.

        Returns:
            tuple of full robot name and secret, both None if the robot
            already existed.
        """
        LOGGER.info("Creating robot account '%s'...", self.robot)
        status, body = self.api.create_robot(self.robot, self.project)
        if status == 201:
            full_name, secret = body.get("name"), body.get("secret")
            LOGGER.success("Robot account created.")
            LOGGER.important("=" * 25 + " IMPORTANT " + "=" * 25)
            LOGGER.important("Robot Account Name: %s", full_name)
            LOGGER.important("Robot Account Token: %s", secret)
            LOGGER.important("This token is your robot account's password. "
                             "Harbor will not show it again.")
            LOGGER.important("Save it securely now. You will need it for "
                             "your GitHub Actions secrets.")
            LOGGER.important("=" * 61)
            return full_name, secret

        if status == 409:
            msg = _error_message(body)
            if "already exist" in msg or "conflict" in msg:
                LOGGER.warning("Robot account '%s' (or similar) already "
                               "exists. Skipping creation.", self.robot)
                return None, None
        raise HarborError(status, body, "creating robot account")

    def ensure_retention(self, project_id, retention_id):
        if retention_id:
            LOGGER.warning("Project '%s' (ID: %s) already has a retention "
                           "policy (ID: %s). Skipping creation.",
                           self.project, project_id, retention_id)
            return False

        LOGGER.info("Creating tag retention policy for project '%s' to keep "
                    "the last %s artifacts...", self.project, self.keep)
        status, body = self.api.create_retention(project_id, self.keep,
                                                 self.retention_cron)
        if status == 201:
            LOGGER.success("Tag retention policy created for project '%s'.",
                           self.project)
            return True
        if status == 409:
            LOGGER.warning("Failed to create tag retention policy for '%s', "
                           "it might already exist. Response: %s",
                           self.project, body)
            return False
        raise HarborError(status, body, "creating tag retention policy")

    def ensure_immutable_rules(self, project_id):
        """Create the missing immutability rules.

        Returns:
            list of the patterns a rule was created for.
        """
        LOGGER.info("Checking/Creating tag immutability rules for project "
                    "ID '%s'...", project_id)
        status, rules = self.api.list_immutable_rules(project_id)
        if status != 200:
            raise HarborError(status, rules,
                              "listing existing immutability rules")

        created = []
        for pattern in self.immutable_patterns:
            existing = [r for r in rules or [] if rule_matches(r, pattern)]
            if existing:
                LOGGER.warning("An existing enabled immutability rule (ID: %s)"
                               " found for tag pattern '%s'. Skipping "
                               "creation.", existing[0].get("id"), pattern)
                continue

            status, body = self.api.create_immutable_rule(project_id, pattern)
            if status == 201:
                LOGGER.success("Immutability rule created for tags matching "
                               "'%s'.", pattern)
                created.append(pattern)
            elif status == 409:
                LOGGER.warning("Conflict (409) when creating immutability rule "
                               "for '%s'. Response: %s", pattern, body)
            else:
                raise HarborError(status, body,
                                  f"creating immutability rule for '{pattern}'")
        return created

    def ensure_gc_schedule(self):
        LOGGER.info("Configuring system-wide garbage collection schedule "
                    "(%s)...", self.gc_cron)
        status, body = self.api.update_gc_schedule(self.gc_cron)
        if status == 200:
            LOGGER.success("Garbage collection schedule updated successfully.")
            return
        if status == 409:
            LOGGER.warning("Conflict (409) when updating GC schedule. "
                           "Response: %s", body)
            return
        if status != 404:
            raise HarborError(status, body, "updating garbage collection "
                              "schedule")

        LOGGER.warning("No existing GC schedule found (404). Creating a new "
                       "one...")
        status, body = self.api.create_gc_schedule(self.gc_cron)
        if status != 201:
            raise HarborError(status, body, "creating garbage collection "
                              "schedule")
        LOGGER.success("Garbage collection schedule created successfully.")
