# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Sanity checks for generated file contents, keyed by file extension."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from pathlib import PurePath
from types import MappingProxyType
from typing import Final, TypeAlias

from ..errors import ContentValidationError

ContentValidator: TypeAlias = Callable[[str], None]


def _validate_json(content: str) -> None:
    try:
        _ = json.loads(content)
    except json.JSONDecodeError as error:
        raise ContentValidationError(f"Invalid JSON: {error}") from error


def _validate_html(content: str) -> None:
    if "<html" not in content or "</html>" not in content:
        raise ContentValidationError("HTML document must contain an <html> element")


def _validate_css(content: str) -> None:
    if "{" not in content or "}" not in content:
        raise ContentValidationError("Stylesheet must contain at least one rule block")


_FORBIDDEN_JS: Final = ("require('", "eval(")


def _validate_js(content: str) -> None:
    for token in _FORBIDDEN_JS:
        if token in content:
            raise ContentValidationError(f"Script contains forbidden call {token!r}")


VALIDATORS: Final[Mapping[str, ContentValidator]] = MappingProxyType(
    {
        ".json": _validate_json,
        ".html": _validate_html,
        ".css": _validate_css,
        ".js": _validate_js,
    }
)


def validate_content(file_name: str, content: bytes | str) -> None:
    """Check ``content`` against the rules for ``file_name``'s extension.

    Extensions without a registered validator always pass. Byte content is
    decoded as UTF-8 first.

    Raises:
        ContentValidationError: If the content is malformed for its type.
    """

    validator = VALIDATORS.get(PurePath(file_name).suffix.lower())
    if validator is None:
        return
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as error:
            raise ContentValidationError(
                f"{file_name} is not valid UTF-8 text"
            ) from error
    validator(content)


__all__ = ["VALIDATORS", "ContentValidator", "validate_content"]
