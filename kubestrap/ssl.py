"""
ssl.py holds the key handling for the GitHub App private key
"""
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)


def load_key(data):
    """
    load a PEM encoded private key

    Args:
        data (bytes or str) - the PEM data

    Return:
        private_key (inst) - a private key instance

    Raises:
        ValueError if data isn't an unencrypted PEM private key
    """
    if isinstance(data, str):
        data = data.encode()

    try:
        return serialization.load_pem_private_key(
            data, password=None, backend=default_backend())
    except TypeError as exc:
        # raised for password protected keys
        raise ValueError(f"unable to load private key: {exc}")


def read_key(key):
    """
    read a private key from path

    Args:
        key (str) - path to a key on a file system

    Return:
        the PEM data as bytes, after checking it can be loaded

    Raises:
        ValueError if the file doesn't hold a usable private key
        OSError if the file can't be read
    """
    with open(key, "rb") as key_file:
        data = key_file.read()

    try:
        load_key(data)
    except ValueError as exc:
        raise ValueError(f"'{key}' is not a valid PEM private key: {exc}")
    return data


def fingerprint(data):
    """
    calculate the SHA-256 of data, as ``sha256sum`` would print it
    """
    if isinstance(data, str):
        data = data.encode()
    digest = hashes.Hash(hashes.SHA256(), backend=default_backend())
    digest.update(data)
    return digest.finalize().hex()


def file_fingerprint(path):
    """calculate the SHA-256 of a file's content"""
    with open(path, "rb") as fh:
        return fingerprint(fh.read())
