# QuoteCore - Tenant Quote Re-estimation Pipeline
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core infrastructure components for the quote re-estimation pipeline."""

from .config import Settings, get_settings
from .database import Database
from .errors import ErrorKind, PipelineError
from .result_types import Err, Ok

__all__ = [
    "Database",
    "Err",
    "ErrorKind",
    "Ok",
    "PipelineError",
    "Settings",
    "get_settings",
]
