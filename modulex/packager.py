# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Packaging of the functions projects and of the files of the Package parameters into zip
artifacts. The archives are reproducible: same files, same archive, same name.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modulex.model.functions import Function
    from modulex.model.module import Module
    from modulex.model.parameters import PackageParameter

import io
import zipfile
from glob import glob
from os import makedirs, path, walk

from modulex.common import md5_hex
from modulex.common.logging import LOG

FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
EXCLUDED_DIRECTORIES = ("__pycache__", ".git", "node_modules", "bin", "obj")


def list_directory_files(directory: str) -> list:
    """
    :param str directory:
    :return: (absolute path, archive name) of the files of the directory, sorted by archive name
    :rtype: list
    """
    files = []
    for root, dirs, file_names in walk(directory):
        dirs[:] = [name for name in dirs if name not in EXCLUDED_DIRECTORIES]
        for file_name in file_names:
            file_path = path.join(root, file_name)
            files.append((file_path, path.relpath(file_path, directory)))
    return sorted(files, key=lambda item: item[1])


def list_glob_files(base_dir: str, pattern: str) -> list:
    """
    A directory includes all of its files. A glob pattern includes the files matching it,
    named relative to the pattern directory.

    :rtype: list
    """
    pattern_path = path.join(base_dir, pattern)
    if path.isdir(pattern_path):
        return list_directory_files(pattern_path)
    root = path.dirname(pattern_path)
    return sorted(
        [
            (file_path, path.relpath(file_path, root))
            for file_path in glob(pattern_path, recursive=True)
            if path.isfile(file_path)
        ],
        key=lambda item: item[1],
    )


def build_archive(files: list) -> bytes:
    """
    Zips the files with a fixed timestamp and permissions, in the given order.

    :param list files: (absolute path, archive name)
    :rtype: bytes
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file_path, archive_name in files:
            info = zipfile.ZipInfo(archive_name.replace(path.sep, "/"), FIXED_DATE_TIME)
            info.external_attr = 0o644 << 16
            info.compress_type = zipfile.ZIP_DEFLATED
            with open(file_path, "rb") as file_fd:
                archive.writestr(info, file_fd.read())
    return buffer.getvalue()


class Packager:
    """
    :ivar Module module:
    :ivar str module_dir: directory the module file is in
    :ivar str output_dir: where the artifacts are written
    """

    prefix = None

    def __init__(self, module: Module, module_dir: str, output_dir: str):
        self.module = module
        self.module_dir = module_dir
        self.output_dir = output_dir

    def write_artifact(self, name: str, files: list) -> str:
        """
        :return: the artifact file name, ``{prefix}_{module}_{name}_{md5}.zip``
        :rtype: str
        """
        if not files:
            raise FileNotFoundError(f"No files to package for {name}")
        content = build_archive(files)
        artifact_name = (
            f"{self.prefix}_{self.module.name}_{name}_{md5_hex(content)}.zip"
        )
        makedirs(self.output_dir, exist_ok=True)
        artifact_path = path.join(self.output_dir, artifact_name)
        with open(artifact_path, "wb") as artifact_fd:
            artifact_fd.write(content)
        LOG.info(f"{name} - {len(files)} files packaged in {artifact_path}")
        return artifact_name


class FunctionPackager(Packager):
    prefix = "function"

    def package(self, function: Function) -> tuple:
        """
        Zips the project directory of the function, and sets the function artifact.

        :param Function function:
        :return: the artifact path and the language of the function
        :rtype: tuple
        """
        if not function.project:
            return function.package_path, function.language
        project_dir = path.join(self.module_dir, function.project)
        if path.isfile(project_dir):
            project_dir = path.dirname(project_dir)
        if not path.isdir(project_dir):
            raise FileNotFoundError(
                f"{function.name} - project directory {project_dir} not found"
            )
        function.package_path = self.write_artifact(
            function.name, list_directory_files(project_dir)
        )
        return path.join(self.output_dir, function.package_path), function.language


class FilesPackager(Packager):
    prefix = "package"

    def package(self, name: str, files_glob: str) -> str:
        """
        :param str name: name of the package parameter
        :param str files_glob: directory or glob, relative to the module directory
        :return: the artifact name
        :rtype: str
        """
        return self.write_artifact(name, list_glob_files(self.module_dir, files_glob))

    def package_parameter(self, parameter: PackageParameter) -> str:
        parameter.package_path = self.package(parameter.logical_id, parameter.files)
        return parameter.package_path


def find_existing_artifact(output_dir: str, prefix: str, module_name: str, name: str):
    """
    Latest artifact already built for the function or package, used with --skip-compile.

    :return: the artifact name, or None
    """
    candidates = sorted(
        glob(path.join(output_dir, f"{prefix}_{module_name}_{name}_*.zip")),
        key=path.getmtime,
    )
    if not candidates:
        return None
    return path.basename(candidates[-1])
