"""
cli.py
======

misc functions to interact with the user, usually called from
``kubestrap.kubestrap.Kubestrap``.

Don't use directly
"""
import getpass

from .util.hue import que, bold
from .util.util import yes


def confirm(force, question="Are you sure?", default=False):
    """Asks the user for confirmation.

    Args:
        force (bool): skip the question and answer yes.
        question (str): what to ask.
        default (bool): the answer if the user only presses enter.

    Returns:
        True if the user agreed.
    """
    if force:
        return True

    hint = "[Y/n]" if default else "[y/N]"
    ans = input(que(bold(f"{question} {hint}: "))).strip()
    if not ans:
        return default

    return yes(ans)


class Prompt:
    """Ask for values which are missing in the configuration.

    The functions doing the asking can be replaced, which is how tests feed
    in answers.

    Args:
        ask (callable): reads a visible answer, defaults to ``input``.
        ask_secret (callable): reads a hidden answer, defaults to
            ``getpass.getpass``.
    """

    def __init__(self, ask=input, ask_secret=getpass.getpass):
        self.ask = ask
        self.ask_secret = ask_secret

    def value(self, question, default=None, secret=False):
        """Ask once, return the answer or the default"""
        hint = f" [{default}]" if default and not secret else ""
        reader = self.ask_secret if secret else self.ask
        answer = reader(que(f"{question}{hint}: ")).strip()
        return answer or default or ""

    def required(self, question, current=None, secret=False):
        """Return current if set, otherwise ask until we get an answer"""
        value = current
        while not value:
            value = self.value(question, secret=secret)
            question = f"{question.rstrip(':')} cannot be empty. Please enter it"
        return value

    def confirm(self, question, default=False):
        """Ask a yes/no question"""
        hint = "[Y/n]" if default else "[y/N]"
        answer = self.ask(que(f"{question} {hint}: ")).strip()
        if not answer:
            return default
        return yes(answer)
