"""SSH key pair generation for cluster access."""

from __future__ import annotations

from collections.abc import Callable

import asyncssh

type KeyGenerator = Callable[[str], tuple[str, str]]


def generate_keypair(comment: str, *, algorithm: str = "ssh-rsa", key_size: int = 4096) -> tuple[str, str]:
    """Return ``(private_key, public_key)`` in OpenSSH format."""
    if algorithm == "ssh-rsa":
        key = asyncssh.generate_private_key(algorithm, comment=comment, key_size=key_size)
    else:
        key = asyncssh.generate_private_key(algorithm, comment=comment)
    private = key.export_private_key().decode()
    public = key.export_public_key().decode().strip()
    return private, public
