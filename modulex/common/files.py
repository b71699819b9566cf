# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Files written and uploaded by modulex: the module templates and the packaged artifacts.
"""

from __future__ import annotations

import json
from os import makedirs, path

import yaml

try:
    from yaml import CDumper as Dumper
except ImportError:
    from yaml import Dumper

from botocore.exceptions import ClientError
from troposphere import Template

from modulex.common import md5_hex
from modulex.common.logging import LOG

JSON_MIME = "application/json"
YAML_MIME = "application/x-yaml"
ZIP_MIME = "application/zip"


def upload_file(session, body, bucket_name: str, key: str, mime: str = None) -> str:
    """
    Uploads the body to the bucket

    :param boto3.session.Session session:
    :param body: str or bytes
    :param str bucket_name:
    :param str key:
    :param str mime:
    :return: the https:// URL of the object
    :rtype: str
    """
    if mime is None:
        mime = JSON_MIME
    client = session.client("s3")
    client.put_object(
        Body=body,
        Key=key,
        Bucket=bucket_name,
        ContentType=mime,
        ServerSideEncryption="AES256",
    )
    return f"https://{bucket_name}.s3.amazonaws.com/{key}"


class FileArtifact:
    """
    Template or content rendered to JSON or YAML, written locally and uploaded to S3.

    :ivar str file_name:
    :ivar str body: rendered content
    :ivar str mime:
    :ivar str url: URL of the uploaded object
    :ivar str file_path: local path once written
    """

    def __init__(
        self,
        file_name: str,
        file_format: str = "json",
        template: Template = None,
        content=None,
    ):
        if template is not None and not isinstance(template, Template):
            raise TypeError("template must be of type", Template, "got", type(template))
        if template is None and not isinstance(content, (dict, list, str)):
            raise TypeError(
                "content must be of type", dict, list, str, "got", type(content)
            )
        if file_format not in ("json", "yaml"):
            raise ValueError("format must be one of json, yaml. Got", file_format)
        self.template = template
        self.content = content
        self.file_name = (
            file_name
            if file_name.endswith((".json", ".yml", ".yaml"))
            else f"{file_name}.{file_format}"
        )
        self.mime = YAML_MIME if file_format == "yaml" else JSON_MIME
        self.url = None
        self.file_path = None
        self.body = self.define_body()

    def __repr__(self):
        return self.file_path if self.file_path else self.file_name

    def define_body(self) -> str:
        if self.template is not None:
            if self.mime == YAML_MIME:
                return self.template.to_yaml()
            return self.template.to_json()
        if isinstance(self.content, str):
            return self.content
        if self.mime == YAML_MIME:
            return yaml.dump(self.content, Dumper=Dumper)
        return json.dumps(self.content, indent=2)

    @property
    def minified(self) -> str:
        """
        Body without whitespaces, used to compute the content hash
        """
        if self.template is not None:
            return json.dumps(self.template.to_dict(), separators=(",", ":"))
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, separators=(",", ":"))

    @property
    def content_hash(self) -> str:
        return md5_hex(self.minified)

    def write(self, output_dir: str) -> str:
        """
        Writes the file in the directory, created if needed.

        :return: the path to the file
        :rtype: str
        """
        makedirs(output_dir, exist_ok=True)
        self.file_path = path.join(output_dir, self.file_name)
        with open(self.file_path, "w") as file_fd:
            file_fd.write(self.body)
        LOG.info(f"{self.file_name} written at {path.abspath(self.file_path)}")
        return self.file_path

    def upload(self, session, bucket_name: str, key: str) -> str:
        self.url = upload_file(session, self.body, bucket_name, key, self.mime)
        LOG.info(f"{self.file_name} uploaded to {self.url}")
        return self.url


def upload_artifact(session, file_path: str, bucket_name: str, key: str) -> str:
    """
    Uploads a packaged artifact, unless an object already exists with that key. The artifacts
    names are content addressed, so an existing key means the same content.
    """
    client = session.client("s3")
    try:
        client.head_object(Bucket=bucket_name, Key=key)
        LOG.info(f"{key} already in {bucket_name}")
        return key
    except ClientError as error:
        if error.response["Error"]["Code"] not in ("404", "NoSuchKey", "NotFound"):
            raise
    with open(file_path, "rb") as artifact_fd:
        upload_file(session, artifact_fd.read(), bucket_name, key, ZIP_MIME)
    LOG.info(f"{key} uploaded to {bucket_name}")
    return key
