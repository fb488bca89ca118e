"""
General purpose utilities
"""
import base64
import os
import re
import time

from functools import wraps

from kubestrap.util.hue import red

# RFC 1123 label, which is what Kubernetes wants for namespaces and what
# Helm wants for release names.
DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def name_validation(name):
    """
    Validates a name that will be used as a namespace, release or
    resource name.
    Each name should conform to the following convention:
    not too long (maximum 63 characters)
    only lower case ASCII-letters, numbers and dashes, no leading or
    trailing dash

    Args:
        name (str): The name to be checked

    Returns:
        Name if valid

    Raises:
        ValueError if the name is invalid
    """
    if not isinstance(name, str) or not name:
        raise ValueError("name can't be empty")
    if len(name) > 63:
        raise ValueError(red(f"name '{name}' is too long"))
    if not DNS_LABEL.match(name):
        raise ValueError(red(f"name '{name}' is using illegal characters"))
    return name


def retry(exceptions, tries=4, delay=3, backoff=2, logger=None):
    """
    Retry calling the decorated function using an exponential backoff.

    Args:
        exceptions: The exception to check. may be a tuple of exceptions to check.
        tries: Number of times to try (not retry) before giving up.
        delay: Initial delay between retries in seconds.
        backoff: Backoff multiplier (e.g. value of 2 will double the delay each retry).
        logger: Logger to use. If None, print.
    """
    def deco_retry(f):  # pylint: disable=invalid-name

        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:  # pylint: disable=invalid-name
                    msg = '{}, Retrying in {} seconds...'.format(e,
                                                                 int(mdelay))
                    if logger:
                        logger(msg)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)

        return f_retry  # true decorator

    return deco_retry


def wait_for(predicate, timeout=60, interval=2, what="condition",
             logger=None, clock=time.monotonic, sleep=time.sleep):
    """Poll ``predicate`` until it returns something truthy.

    Args:
        predicate (callable): called without arguments on every poll.
        timeout (int): seconds until giving up.
        interval (int): seconds to sleep between two polls.
        what (str): a description of what we wait for, used in messages.
        logger (callable): called with a progress message after a failed poll.

    Returns:
        The first truthy value returned by ``predicate``.

    Raises:
        TimeoutError if ``predicate`` stayed falsy for ``timeout`` seconds.
    """
    end = clock() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if clock() >= end:
            raise TimeoutError(f"timed out after {timeout}s waiting for {what}")
        if logger:
            logger(f"{what} not ready yet, checking again in {interval} seconds...")
        sleep(interval)


def generate_password(nbytes=16):
    """Return ``nbytes`` random bytes encoded as base64.

    This is the same as ``openssl rand -base64 16``.
    """
    return base64.b64encode(os.urandom(nbytes)).decode()


def add_alias(alias_line, path):
    """Append ``alias_line`` to ``path`` unless it is already in there.

    The file is created if it does not exist.

    Returns:
        True if the line was added.
    """
    content = ""
    if os.path.exists(path):
        with open(path) as fh:
            content = fh.read()

    if alias_line in content:
        return False

    with open(path, "a") as fh:
        if content and not content.endswith("\n"):
            fh.write("\n")
        fh.write(alias_line + "\n")
    return True


def strip_quotes(value):
    """remove all single and double quotes, the ARC controller fails to
    parse ids pasted with quotes"""
    return str(value).replace("'", "").replace('"', "")


def normalize_url(url):
    """Strip a trailing slash and make sure the URL has a scheme.

    Returns:
        A tuple of the normalized URL and whether a scheme was prepended.
    """
    url = url.strip().rstrip("/")
    if re.match(r"^https?://", url):
        return url, False
    return "https://" + url, True


def yes(answer):
    """True if the answer means yes"""
    return bool(re.match(r"^([yY][eE][sS]|[yY])$", str(answer).strip()))
