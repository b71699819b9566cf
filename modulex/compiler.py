# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Compilation pipeline of a module: preprocessing, schema validation, conversion, imports
resolution, references resolution and template generation.

Every stage records its errors in the shared :class:`ProcessingContext` and the following
stages keep running, to report as many errors as possible at once. The template is only
generated when no error was recorded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Template
    from modulex.common.settings import CompilerConfig
    from modulex.model.module import Module

from os import path

from modulex.common.context import ProcessingContext
from modulex.common.document import (
    load_module_document,
    parse_module_document,
    validate_module_document,
)
from modulex.common.logging import LOG
from modulex.converter import ModuleConverter
from modulex.generator import ModuleGenerator
from modulex.imports import ImportResolver, ImportStore
from modulex.model.parameters import PackageParameter
from modulex.packager import (
    FilesPackager,
    FunctionPackager,
    find_existing_artifact,
)
from modulex.preprocessor import Preprocessor
from modulex.references import ReferenceResolver


class CompilationResult:
    """
    :ivar ProcessingContext context: errors recorded while compiling
    :ivar Module module: the module model, None if the document could not be converted
    :ivar Template template: the module template, None when any error was recorded
    """

    def __init__(self, context: ProcessingContext, module=None, template=None):
        self.context = context
        self.module = module
        self.template = template

    def __repr__(self):
        return f"CompilationResult({self.module}, errors={len(self.context.errors)})"

    @property
    def success(self) -> bool:
        return self.template is not None and not self.context.has_errors


class ModuleCompiler:
    """
    :ivar CompilerConfig config:
    :ivar ImportStore import_store: where the imports are resolved from
    :ivar kms_client: client to resolve the KMS key aliases of the secrets
    :ivar bool package: whether to package the functions and the files
    :ivar bool skip_compile: reuse the artifacts built previously
    """

    def __init__(
        self,
        config: CompilerConfig,
        session=None,
        import_store: ImportStore = None,
        kms_client=None,
        package: bool = False,
        skip_compile: bool = False,
    ):
        self.config = config
        self.import_store = (
            import_store if import_store else ImportStore(session=session)
        )
        self.kms_client = kms_client
        if self.kms_client is None and session is not None:
            self.kms_client = session.client("kms")
        self.package = package
        self.skip_compile = skip_compile

    def compile_file(self, file_path: str) -> CompilationResult:
        context = ProcessingContext(file_path)
        try:
            document = load_module_document(file_path)
        except (OSError, ValueError) as error:
            context.add_error(f"failed to load module file: {error}")
            return CompilationResult(context)
        return self.compile_document(
            document, context, module_dir=path.dirname(path.abspath(file_path))
        )

    def compile_content(self, content: str) -> CompilationResult:
        context = ProcessingContext()
        return self.compile_document(parse_module_document(content), context)

    def compile_document(
        self, document, context: ProcessingContext = None, module_dir: str = None
    ) -> CompilationResult:
        """
        Runs the pipeline stages over the module document.

        :param dict document: the module document, as loaded from YAML
        :param ProcessingContext context:
        :param str module_dir: directory the functions projects and package files are relative to
        :rtype: CompilationResult
        """
        if context is None:
            context = ProcessingContext()
        preprocessed = Preprocessor(context, self.config).preprocess(document)
        if context.has_errors:
            return CompilationResult(context)
        if not validate_module_document(preprocessed, context):
            return CompilationResult(context)
        module = ModuleConverter(
            context, self.config, self.import_store, kms_client=self.kms_client
        ).convert(preprocessed)
        ImportResolver(context, self.config, self.import_store).resolve(module)
        if self.package and module_dir:
            self.package_artifacts(module, module_dir, context)
        ReferenceResolver(context).resolve(module)
        if context.has_errors:
            LOG.error(f"{module.name} - {len(context.errors)} errors. Not generating")
            return CompilationResult(context, module)
        template = ModuleGenerator(context, self.config).generate(module)
        if context.has_errors:
            return CompilationResult(context, module)
        return CompilationResult(context, module, template)

    def package_artifacts(
        self, module: Module, module_dir: str, context: ProcessingContext
    ) -> None:
        output_dir = (
            self.config.output_dir if self.config.output_dir else path.join(module_dir, "bin")
        )
        functions = FunctionPackager(module, module_dir, output_dir)
        files = FilesPackager(module, module_dir, output_dir)
        for function in module.functions:
            with context.at_location("Functions", function.name):
                if self.skip_compile:
                    existing = find_existing_artifact(
                        output_dir, functions.prefix, module.name, function.name
                    )
                    if existing:
                        function.package_path = existing
                        continue
                try:
                    functions.package(function)
                except OSError as error:
                    context.add_error(str(error))
        for parameter in module.iter_parameters():
            if not isinstance(parameter, PackageParameter):
                continue
            with context.at_location("Parameters", parameter.full_name):
                if self.skip_compile:
                    existing = find_existing_artifact(
                        output_dir, files.prefix, module.name, parameter.logical_id
                    )
                    if existing:
                        parameter.package_path = existing
                        continue
                try:
                    files.package_parameter(parameter)
                except OSError as error:
                    context.add_error(str(error))


def compile_module(
    document, config: CompilerConfig, import_store: ImportStore = None, **kwargs
) -> CompilationResult:
    """
    Compiles a module document without packaging.

    :param dict document:
    :param CompilerConfig config:
    :param ImportStore import_store:
    :rtype: CompilationResult
    """
    return ModuleCompiler(config, import_store=import_store, **kwargs).compile_document(
        document
    )
