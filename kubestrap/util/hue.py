"""
Colour helpers for terminal output.

Every function takes a string and returns it wrapped in ANSI escape codes.
The status helpers prefix the message with a marker:
``[+]`` good, ``[-]`` bad, ``[!]`` info, ``[~]`` run and ``[?]`` que.
"""

RESET = '\033[0m'


def _wrap(code, text):
    return '\033[%sm%s%s' % (code, text, RESET)


def bold(text):
    return _wrap('1', text)


def red(text):
    return _wrap('91', text)


def green(text):
    return _wrap('92', text)


def yellow(text):
    return _wrap('93', text)


def blue(text):
    return _wrap('94', text)


def cyan(text):
    return _wrap('96', text)


def grey(text):
    return _wrap('90', text)


def good(text):
    return _wrap('1;32', '[+]') + ' ' + text


def bad(text):
    return _wrap('1;31', '[-]') + ' ' + text


def info(text):
    return _wrap('1;33', '[!]') + ' ' + text


def run(text):
    return _wrap('1;97', '[~]') + ' ' + text


def que(text):
    return _wrap('1;34', '[?]') + ' ' + text
