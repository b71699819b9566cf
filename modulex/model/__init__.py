# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Typed model of a module: parameters, functions with their sources, and outputs.
"""
