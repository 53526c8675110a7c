"""Abstraction for where the local backends keep tables, attachments, and caches"""

import os
from urllib.parse import urlparse

import fsspec

_user_fs_options = {}  # don't access this directly, use get_fs_options()


def set_user_fs_options(args: dict) -> None:
    """Records user arguments that can affect filesystem options (like s3_region)"""
    _user_fs_options.update(args)


def get_fs_options(protocol: str) -> dict:
    """Provides a set of storage option kwargs for fsspec calls"""
    options = {}

    if protocol == "s3":
        # If you aren't using us-east-1, you usually need to specify the region explicitly,
        # and fsspec won't pull it from ~/.aws/config for us.
        region_name = _user_fs_options.get("s3_region")
        if region_name:
            options["client_kwargs"] = {"region_name": region_name}

        # Study data is PHI-adjacent, so always ask for server side encryption.
        options["s3_additional_kwargs"] = {
            "ServerSideEncryption": "aws:kms",
        }

        kms_key = _user_fs_options.get("s3_kms_key")
        if kms_key:
            options["s3_additional_kwargs"]["SSEKMSKeyId"] = kms_key

    return options


class Root:
    """
    A folder that one of the local backends reads from and writes to.

    For example, the local table store keeps one subfolder per table under its root,
    and the attachment store keeps uploaded file handles under its own root.

    This is a coupling of a target path and the fsspec filesystem to use.
    """

    def __init__(self, path: str, create: bool = False):
        """
        :param path: location (local path or URL)
        :param create: whether to create the folder if it doesn't exist
        """
        parsed = urlparse(path)
        self.protocol = parsed.scheme or "file"  # assume local if no obvious scheme
        self.path = path if parsed.scheme else os.path.abspath(path)
        self.fs = fsspec.filesystem(self.protocol, **get_fs_options(self.protocol))

        if create:
            self.makedirs(self.path)

    def joinpath(self, *args) -> str:
        """Provides a child path based off of the root path"""
        return os.path.join(self.path, *args)

    def exists(self, path: str) -> bool:
        return self.fs.exists(path)

    def put(self, lpath: str, rpath: str) -> None:
        """Copies a local file into this root"""
        self.fs.put(lpath, rpath)

    def ls(self, path: str | None = None) -> list[str]:
        return self.fs.ls(path or self.path, detail=False)

    def makedirs(self, path: str) -> None:
        """Ensures the given path and all parents are created"""
        if self.protocol == "s3":
            # s3 doesn't really care about folders, and creating one would want CreateBucket perms
            return
        self.fs.makedirs(path, exist_ok=True)
